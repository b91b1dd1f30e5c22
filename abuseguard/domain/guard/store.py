"""Document store contract for the guard pipeline plus an in-memory implementation."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, Protocol, Sequence, TypeVar

from abuseguard.domain.guard.errors import StoreUnavailable
from abuseguard.domain.guard.models import (
	AdminAuditEntry,
	Comment,
	Notification,
	Post,
	SecurityEvent,
	StoredRole,
	UserProfile,
)
from abuseguard.settings import settings

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], operation: str, *, timeout: float | None = None) -> T:
	"""Await a store call with the configured upper bound."""
	limit = settings.store_timeout_seconds if timeout is None else timeout
	try:
		return await asyncio.wait_for(awaitable, timeout=limit)
	except asyncio.TimeoutError:
		raise StoreUnavailable(operation) from None


class GuardRepository(Protocol):
	async def get_user(self, user_id: str) -> Optional[UserProfile]:
		...

	async def set_stored_role(self, user_id: str, role: StoredRole) -> None:
		...

	async def adjust_unread_count(self, user_id: str, delta: int) -> int:
		...

	async def block_exists(self, user_a: str, user_b: str) -> bool:
		...

	async def get_post(self, post_id: str) -> Optional[Post]:
		...

	async def create_post(self, post: Post) -> Post:
		...

	async def increment_comment_count(self, post_id: str) -> None:
		...

	async def get_comment(self, comment_id: str) -> Optional[Comment]:
		...

	async def create_comment(self, comment: Comment) -> Comment:
		...

	async def create_notification(self, notification: Notification) -> Notification:
		...

	async def get_notification(self, notification_id: str) -> Optional[Notification]:
		...

	async def mark_notification_read(self, notification_id: str) -> bool:
		...

	async def delete_notification(self, notification_id: str) -> Optional[Notification]:
		...

	async def append_security_event(self, event: SecurityEvent) -> None:
		...

	async def append_admin_audit(self, entry: AdminAuditEntry) -> None:
		...

	async def count_admin_audit(self, actions: Sequence[str]) -> int:
		...


class InMemoryGuardRepository(GuardRepository):
	"""Simple repository implementation for development and tests."""

	def __init__(self) -> None:
		self.users: dict[str, UserProfile] = {}
		self.posts: dict[str, Post] = {}
		self.comments: dict[str, Comment] = {}
		self.notifications: dict[str, Notification] = {}
		self.blocks: set[tuple[str, str]] = set()
		self.security_events: list[SecurityEvent] = []
		self.admin_audit: list[AdminAuditEntry] = []

	def add_block(self, blocker_id: str, blocked_id: str) -> None:
		self.blocks.add((blocker_id, blocked_id))

	async def get_user(self, user_id: str) -> Optional[UserProfile]:
		return self.users.get(user_id)

	async def set_stored_role(self, user_id: str, role: StoredRole) -> None:
		profile = self.users.get(user_id)
		if profile is not None:
			profile.stored_role = role

	async def adjust_unread_count(self, user_id: str, delta: int) -> int:
		profile = self.users.get(user_id)
		if profile is None:
			return 0
		profile.unread_notification_count = max(0, profile.unread_notification_count + delta)
		return profile.unread_notification_count

	async def block_exists(self, user_a: str, user_b: str) -> bool:
		return (user_a, user_b) in self.blocks or (user_b, user_a) in self.blocks

	async def get_post(self, post_id: str) -> Optional[Post]:
		return self.posts.get(post_id)

	async def create_post(self, post: Post) -> Post:
		self.posts[post.id] = post
		return post

	async def increment_comment_count(self, post_id: str) -> None:
		post = self.posts.get(post_id)
		if post is not None:
			post.comments_count += 1

	async def get_comment(self, comment_id: str) -> Optional[Comment]:
		return self.comments.get(comment_id)

	async def create_comment(self, comment: Comment) -> Comment:
		self.comments[comment.id] = comment
		return comment

	async def create_notification(self, notification: Notification) -> Notification:
		self.notifications[notification.id] = notification
		return notification

	async def get_notification(self, notification_id: str) -> Optional[Notification]:
		return self.notifications.get(notification_id)

	async def mark_notification_read(self, notification_id: str) -> bool:
		notification = self.notifications.get(notification_id)
		if notification is None or notification.is_read:
			return False
		notification.is_read = True
		return True

	async def delete_notification(self, notification_id: str) -> Optional[Notification]:
		return self.notifications.pop(notification_id, None)

	async def append_security_event(self, event: SecurityEvent) -> None:
		self.security_events.append(event)

	async def append_admin_audit(self, entry: AdminAuditEntry) -> None:
		self.admin_audit.append(entry)

	async def count_admin_audit(self, actions: Sequence[str]) -> int:
		wanted = set(actions)
		return sum(1 for entry in self.admin_audit if entry.action in wanted)

