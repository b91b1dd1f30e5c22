"""Domain models for the abuse-guard pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union
from uuid import uuid4

from abuseguard.domain.guard.errors import InvalidArgument, Outcome


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def new_id() -> str:
	return uuid4().hex


class NotificationType(str, Enum):
	"""Closed set of notification types."""

	LIKE = "like"
	COMMENT = "comment"
	FOLLOW = "follow"
	MENTION = "mention"
	REPLY = "reply"
	REPOST = "repost"
	SYSTEM = "system"


class AdminLevel(str, Enum):
	MODERATOR = "moderator"
	ADMIN = "admin"
	SUPER_ADMIN = "super_admin"


# Security event kinds
THREAT_DETECTED = "threat_detected"
IP_RATE_LIMIT_EXCEEDED = "ip_rate_limit_exceeded"
COORDINATED_ATTACK = "coordinated_notification_attack"
PRIVILEGE_ESCALATION_ATTEMPT = "privilege_escalation_attempt"
UNAUTHORIZED_ADMIN_ACCESS = "unauthorized_admin_function_access"
INITIAL_ADMIN_SETUP_COMPLETED = "initial_admin_setup_completed"
INVALID_SETUP_KEY = "invalid_setup_key"

# Admin audit actions
ADMIN_PRIVILEGES_GRANTED = "admin_privileges_granted"
ADMIN_PRIVILEGES_REVOKED = "admin_privileges_revoked"
INITIAL_SUPER_ADMIN_CREATED = "initial_super_admin_created"
SYSTEM_NOTIFICATION_CREATED = "system_notification_created"
NOTIFICATIONS_DELETED_BY_ADMIN = "notifications_deleted_by_admin"


@dataclass(slots=True)
class RateWindow:
	"""Counter state for one (action kind, subject) pair after an event was evaluated."""

	subject_key: str
	window_start: float
	count: int
	blocked_until: Optional[float] = None

	def is_blocked(self, now: float) -> bool:
		return self.blocked_until is not None and now <= self.blocked_until


@dataclass(slots=True, frozen=True)
class ClaimsAuthority:
	"""Authority carried by the signed, revocable claims bag. The only trusted source."""

	admin: bool = False
	super_admin: bool = False
	moderator: bool = False
	permissions: frozenset[str] = frozenset()

	def grants(self, permission: str) -> bool:
		return self.admin or self.super_admin or permission in self.permissions

	def to_claims(self) -> dict[str, Any]:
		claims: dict[str, Any] = {}
		if self.super_admin:
			claims["super_admin"] = True
		if self.admin:
			claims["admin"] = True
		if self.moderator:
			claims["moderator"] = True
		if self.permissions:
			claims["permissions"] = sorted(self.permissions)
		return claims

	@classmethod
	def from_claims(cls, raw: Optional[Mapping[str, Any]]) -> "ClaimsAuthority":
		if not raw:
			return cls()
		permissions = raw.get("permissions") or ()
		if isinstance(permissions, str):
			permissions = (permissions,)
		return cls(
			admin=raw.get("admin") is True,
			super_admin=raw.get("super_admin") is True,
			moderator=raw.get("moderator") is True,
			permissions=frozenset(str(item) for item in permissions if str(item).strip()),
		)


@dataclass(slots=True, frozen=True)
class StoredRole:
	"""Role field kept in the mutable document store. Advisory only."""

	role: str = "none"
	permissions: frozenset[str] = frozenset()

	def grants(self, permission: str) -> bool:
		return self.role in (AdminLevel.ADMIN.value, AdminLevel.SUPER_ADMIN.value) or permission in self.permissions

	def to_dict(self) -> dict[str, Any]:
		return {"role": self.role, "permissions": sorted(self.permissions)}


@dataclass(slots=True)
class UserProfile:
	id: str
	created_at: Optional[datetime] = None
	display_name: Optional[str] = None
	is_verified: bool = False
	followers_count: int = 0
	stored_role: StoredRole = field(default_factory=StoredRole)
	unread_notification_count: int = 0


@dataclass(slots=True)
class Post:
	id: str
	author_id: str
	content: str = ""
	title: Optional[str] = None
	post_type: str = "casual"
	comments_count: int = 0
	created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Comment:
	id: str
	post_id: str
	author_id: str
	content: str = ""
	created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Notification:
	id: str
	user_id: str
	from_user_id: str
	type: NotificationType
	message: str
	metadata: dict[str, Any]
	is_read: bool = False
	created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True, frozen=True)
class SecurityEvent:
	"""Append-only violation record."""

	kind: str
	actor_id: Optional[str]
	detail: dict[str, Any]
	id: str = field(default_factory=new_id)
	created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True, frozen=True)
class AdminAuditEntry:
	"""Append-only record of an admin action."""

	action: str
	executor_id: str
	reason: str
	target_user_id: Optional[str] = None
	prior_permissions: tuple[str, ...] = ()
	new_permissions: tuple[str, ...] = ()
	detail: dict[str, Any] = field(default_factory=dict)
	id: str = field(default_factory=new_id)
	created_at: datetime = field(default_factory=utcnow)


# Notification metadata variants, one per ownership rule


@dataclass(slots=True, frozen=True)
class PostRef:
	post_id: str

	def to_mapping(self) -> dict[str, Any]:
		return {"postId": self.post_id}


@dataclass(slots=True, frozen=True)
class CommentRef:
	comment_id: str

	def to_mapping(self) -> dict[str, Any]:
		return {"commentId": self.comment_id}


@dataclass(slots=True, frozen=True)
class NoRef:
	def to_mapping(self) -> dict[str, Any]:
		return {}


NotificationMetadata = Union[PostRef, CommentRef, NoRef]


@dataclass(slots=True, frozen=True)
class NotificationRequest:
	from_user_id: str
	target_user_id: str
	type: NotificationType
	message: str
	metadata: NotificationMetadata


def _ref(raw: Optional[Mapping[str, Any]], *keys: str) -> Optional[str]:
	if not raw:
		return None
	for key in keys:
		value = raw.get(key)
		if isinstance(value, str) and value.strip():
			return value.strip()
	return None


def parse_notification_type(raw: Any) -> Outcome[NotificationType]:
	try:
		return Outcome.allow(NotificationType(str(raw)))
	except ValueError:
		return Outcome.deny(InvalidArgument("unknown_notification_type", detail={"type": str(raw)}))


def parse_notification_metadata(
	kind: NotificationType,
	raw: Optional[Mapping[str, Any]],
) -> Outcome[NotificationMetadata]:
	"""Narrow a loose metadata mapping to the variant the type's ownership rule needs."""
	post_id = _ref(raw, "postId", "post_id")
	comment_id = _ref(raw, "commentId", "comment_id")
	if kind in (NotificationType.LIKE, NotificationType.REPOST):
		if post_id is None:
			return Outcome.deny(InvalidArgument("post_id_required"))
		return Outcome.allow(PostRef(post_id))
	if kind is NotificationType.COMMENT:
		if post_id is not None:
			return Outcome.allow(PostRef(post_id))
		if comment_id is not None:
			return Outcome.allow(CommentRef(comment_id))
		return Outcome.deny(InvalidArgument("post_id_required"))
	if kind is NotificationType.REPLY:
		if comment_id is None:
			return Outcome.deny(InvalidArgument("comment_id_required"))
		return Outcome.allow(CommentRef(comment_id))
	if kind in (NotificationType.FOLLOW, NotificationType.MENTION):
		return Outcome.allow(NoRef())
	return Outcome.deny(InvalidArgument("unsupported_notification_type", detail={"type": kind.value}))


def permissions_for_level(level: AdminLevel, extra: Optional[list[str]] = None) -> tuple[str, ...]:
	base = {
		AdminLevel.SUPER_ADMIN: (
			"create_system_notifications",
			"delete_notifications",
			"manage_users",
			"view_reports",
			"manage_admin_privileges",
		),
		AdminLevel.ADMIN: ("create_system_notifications", "delete_notifications", "view_reports"),
		AdminLevel.MODERATOR: ("view_reports", "moderate_content"),
	}[level]
	merged = list(base)
	for item in extra or ():
		text = str(item).strip()
		if text and text not in merged:
			merged.append(text)
	return tuple(merged)


def claims_for_level(level: AdminLevel, permissions: tuple[str, ...]) -> ClaimsAuthority:
	return ClaimsAuthority(
		admin=level in (AdminLevel.ADMIN, AdminLevel.SUPER_ADMIN),
		super_admin=level is AdminLevel.SUPER_ADMIN,
		moderator=level is AdminLevel.MODERATOR,
		permissions=frozenset(permissions),
	)
