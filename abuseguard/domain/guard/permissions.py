"""Resource ownership and block checks for notification requests."""

from __future__ import annotations

import logging

from abuseguard.domain.guard.errors import Internal, InvalidArgument, NotFound, Outcome, PermissionDenied
from abuseguard.domain.guard.models import (
	CommentRef,
	NoRef,
	NotificationMetadata,
	NotificationType,
	PostRef,
)
from abuseguard.domain.guard.store import GuardRepository, bounded
from abuseguard.obs import metrics

logger = logging.getLogger("abuseguard.guard.permissions")

_POST_TYPES = frozenset({NotificationType.LIKE, NotificationType.COMMENT, NotificationType.REPOST})
_COMMENT_TYPES = frozenset({NotificationType.COMMENT, NotificationType.REPLY})
_UNREFERENCED_TYPES = frozenset({NotificationType.FOLLOW, NotificationType.MENTION})


class PermissionValidator:
	"""A notification may only be attributed to an interaction the actor has evidence for."""

	def __init__(self, repository: GuardRepository) -> None:
		self._repo = repository

	async def validate(
		self,
		actor_id: str,
		target_id: str,
		kind: NotificationType,
		metadata: NotificationMetadata,
	) -> Outcome[None]:
		try:
			outcome = await self._validate(actor_id, target_id, kind, metadata)
		except Exception:
			logger.error(
				"permission_check_unavailable",
				extra={"actor_id": actor_id, "target_id": target_id, "type": kind.value},
				exc_info=True,
			)
			metrics.guard_decision("permission", "internal")
			return Outcome.deny(Internal("permission_check_unavailable"))
		metrics.guard_decision("permission", "allow" if outcome.ok else outcome.rejection.reason)
		return outcome

	async def _validate(
		self,
		actor_id: str,
		target_id: str,
		kind: NotificationType,
		metadata: NotificationMetadata,
	) -> Outcome[None]:
		if kind is NotificationType.SYSTEM:
			return Outcome.deny(PermissionDenied("system_notification_reserved"))
		if actor_id == target_id:
			return Outcome.deny(InvalidArgument("self_notification"))

		sender = await bounded(self._repo.get_user(actor_id), "get_user")
		if sender is None:
			return Outcome.deny(NotFound("sender_not_found"))
		target = await bounded(self._repo.get_user(target_id), "get_user")
		if target is None:
			return Outcome.deny(NotFound("target_not_found"))

		if await bounded(self._repo.block_exists(actor_id, target_id), "block_exists"):
			return Outcome.deny(PermissionDenied("blocked"))

		if isinstance(metadata, PostRef) and kind in _POST_TYPES:
			post = await bounded(self._repo.get_post(metadata.post_id), "get_post")
			if post is None:
				return Outcome.deny(NotFound("post_not_found"))
			if post.author_id != target_id:
				return Outcome.deny(PermissionDenied("not_resource_owner"))
			return Outcome.allow()
		if isinstance(metadata, CommentRef) and kind in _COMMENT_TYPES:
			comment = await bounded(self._repo.get_comment(metadata.comment_id), "get_comment")
			if comment is None:
				return Outcome.deny(NotFound("comment_not_found"))
			if comment.author_id != target_id:
				return Outcome.deny(PermissionDenied("not_resource_owner"))
			return Outcome.allow()
		if isinstance(metadata, NoRef) and kind in _UNREFERENCED_TYPES:
			return Outcome.allow()
		return Outcome.deny(InvalidArgument("metadata_mismatch", detail={"type": kind.value}))
