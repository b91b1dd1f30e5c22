"""PostgreSQL persistence for the guard document store."""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import asyncpg

from abuseguard.domain.guard.models import (
	AdminAuditEntry,
	Comment,
	Notification,
	NotificationType,
	Post,
	SecurityEvent,
	StoredRole,
	UserProfile,
)
from abuseguard.domain.guard.store import GuardRepository


def _json(value: Any) -> dict[str, Any]:
	if value is None:
		return {}
	if isinstance(value, str):
		return json.loads(value)
	return dict(value)


def _row_to_user(row: asyncpg.Record) -> UserProfile:
	return UserProfile(
		id=str(row["id"]),
		created_at=row["created_at"],
		display_name=row["display_name"],
		is_verified=bool(row["is_verified"]),
		followers_count=int(row["followers_count"]),
		stored_role=StoredRole(
			role=str(row["stored_role"]),
			permissions=frozenset(row["stored_permissions"] or ()),
		),
		unread_notification_count=int(row["unread_notification_count"]),
	)


def _row_to_post(row: asyncpg.Record) -> Post:
	return Post(
		id=str(row["id"]),
		author_id=str(row["author_id"]),
		content=str(row["content"]),
		title=row["title"],
		post_type=str(row["post_type"]),
		comments_count=int(row["comments_count"]),
		created_at=row["created_at"],
	)


def _row_to_comment(row: asyncpg.Record) -> Comment:
	return Comment(
		id=str(row["id"]),
		post_id=str(row["post_id"]),
		author_id=str(row["author_id"]),
		content=str(row["content"]),
		created_at=row["created_at"],
	)


def _row_to_notification(row: asyncpg.Record) -> Notification:
	return Notification(
		id=str(row["id"]),
		user_id=str(row["user_id"]),
		from_user_id=str(row["from_user_id"]),
		type=NotificationType(str(row["type"])),
		message=str(row["message"]),
		metadata=_json(row["metadata"]),
		is_read=bool(row["is_read"]),
		created_at=row["created_at"],
	)


_USER_COLUMNS = (
	"id, display_name, created_at, is_verified, followers_count, stored_role, stored_permissions, unread_notification_count"
)
_NOTIFICATION_COLUMNS = "id, user_id, from_user_id, type, message, metadata, is_read, created_at"


class PostgresGuardRepository(GuardRepository):
	"""Stores users, content, notifications and audit trails in guard_* tables."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self._pool = pool

	async def get_user(self, user_id: str) -> Optional[UserProfile]:
		row = await self._pool.fetchrow(f"SELECT {_USER_COLUMNS} FROM guard_user WHERE id = $1", user_id)
		return _row_to_user(row) if row else None

	async def set_stored_role(self, user_id: str, role: StoredRole) -> None:
		await self._pool.execute(
			"UPDATE guard_user SET stored_role = $2, stored_permissions = $3 WHERE id = $1",
			user_id,
			role.role,
			sorted(role.permissions),
		)

	async def adjust_unread_count(self, user_id: str, delta: int) -> int:
		value = await self._pool.fetchval(
			"""
			UPDATE guard_user
			SET unread_notification_count = GREATEST(0, unread_notification_count + $2)
			WHERE id = $1
			RETURNING unread_notification_count
			""",
			user_id,
			delta,
		)
		return int(value or 0)

	async def block_exists(self, user_a: str, user_b: str) -> bool:
		value = await self._pool.fetchval(
			"""
			SELECT EXISTS (
				SELECT 1 FROM guard_block
				WHERE (blocker_id = $1 AND blocked_id = $2) OR (blocker_id = $2 AND blocked_id = $1)
			)
			""",
			user_a,
			user_b,
		)
		return bool(value)

	async def get_post(self, post_id: str) -> Optional[Post]:
		row = await self._pool.fetchrow(
			"SELECT id, author_id, content, title, post_type, comments_count, created_at FROM guard_post WHERE id = $1",
			post_id,
		)
		return _row_to_post(row) if row else None

	async def create_post(self, post: Post) -> Post:
		await self._pool.execute(
			"""
			INSERT INTO guard_post (id, author_id, content, title, post_type, comments_count, created_at)
			VALUES ($1, $2, $3, $4, $5, $6, $7)
			""",
			post.id,
			post.author_id,
			post.content,
			post.title,
			post.post_type,
			post.comments_count,
			post.created_at,
		)
		return post

	async def increment_comment_count(self, post_id: str) -> None:
		await self._pool.execute("UPDATE guard_post SET comments_count = comments_count + 1 WHERE id = $1", post_id)

	async def get_comment(self, comment_id: str) -> Optional[Comment]:
		row = await self._pool.fetchrow(
			"SELECT id, post_id, author_id, content, created_at FROM guard_comment WHERE id = $1",
			comment_id,
		)
		return _row_to_comment(row) if row else None

	async def create_comment(self, comment: Comment) -> Comment:
		await self._pool.execute(
			"""
			INSERT INTO guard_comment (id, post_id, author_id, content, created_at)
			VALUES ($1, $2, $3, $4, $5)
			""",
			comment.id,
			comment.post_id,
			comment.author_id,
			comment.content,
			comment.created_at,
		)
		return comment

	async def create_notification(self, notification: Notification) -> Notification:
		await self._pool.execute(
			"""
			INSERT INTO guard_notification (id, user_id, from_user_id, type, message, metadata, is_read, created_at)
			VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
			""",
			notification.id,
			notification.user_id,
			notification.from_user_id,
			notification.type.value,
			notification.message,
			json.dumps(notification.metadata),
			notification.is_read,
			notification.created_at,
		)
		return notification

	async def get_notification(self, notification_id: str) -> Optional[Notification]:
		row = await self._pool.fetchrow(
			f"SELECT {_NOTIFICATION_COLUMNS} FROM guard_notification WHERE id = $1",
			notification_id,
		)
		return _row_to_notification(row) if row else None

	async def mark_notification_read(self, notification_id: str) -> bool:
		status = await self._pool.execute(
			"UPDATE guard_notification SET is_read = TRUE WHERE id = $1 AND is_read = FALSE",
			notification_id,
		)
		return status.endswith(" 1")

	async def delete_notification(self, notification_id: str) -> Optional[Notification]:
		row = await self._pool.fetchrow(
			f"DELETE FROM guard_notification WHERE id = $1 RETURNING {_NOTIFICATION_COLUMNS}",
			notification_id,
		)
		return _row_to_notification(row) if row else None

	async def append_security_event(self, event: SecurityEvent) -> None:
		await self._pool.execute(
			"""
			INSERT INTO guard_security_event (id, kind, actor_id, detail, created_at)
			VALUES ($1, $2, $3, $4::jsonb, $5)
			""",
			event.id,
			event.kind,
			event.actor_id,
			json.dumps(event.detail, default=str),
			event.created_at,
		)

	async def append_admin_audit(self, entry: AdminAuditEntry) -> None:
		await self._pool.execute(
			"""
			INSERT INTO guard_admin_audit (id, action, executor_id, target_user_id, prior_permissions, new_permissions, reason, detail, created_at)
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9)
			""",
			entry.id,
			entry.action,
			entry.executor_id,
			entry.target_user_id,
			list(entry.prior_permissions),
			list(entry.new_permissions),
			entry.reason,
			json.dumps(entry.detail, default=str),
			entry.created_at,
		)

	async def count_admin_audit(self, actions: Sequence[str]) -> int:
		value = await self._pool.fetchval(
			"SELECT COUNT(*) FROM guard_admin_audit WHERE action = ANY($1::text[])",
			list(actions),
		)
		return int(value or 0)
