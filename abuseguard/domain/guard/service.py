"""Guarded operations exposed to authenticated callers.

Every operation runs its checks in a fixed order (sanitize, then permission,
then rate limit) and short-circuits on the first rejection. Rejections are
raised as :class:`GuardError` at this boundary; infrastructure failures are
logged with context and surfaced as ``Internal``.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Mapping, Optional, Sequence, TypeVar

from abuseguard.domain.guard.admin import AdminPrivilegeGuard
from abuseguard.domain.guard.audit import AdminAuditLog
from abuseguard.domain.guard.errors import GuardError, Internal, InvalidArgument, NotFound, PermissionDenied
from abuseguard.domain.guard.models import (
	NOTIFICATIONS_DELETED_BY_ADMIN,
	SYSTEM_NOTIFICATION_CREATED,
	AdminAuditEntry,
	AdminLevel,
	Comment,
	Notification,
	NotificationType,
	Post,
	new_id,
	parse_notification_metadata,
	parse_notification_type,
)
from abuseguard.domain.guard.permissions import PermissionValidator
from abuseguard.domain.guard.rate_limit import ContentRateGuard, NotificationRateGuard
from abuseguard.domain.guard.sanitizer import ContentSanitizer, FieldKind, sanitize, sanitize_input
from abuseguard.domain.guard.store import GuardRepository, bounded
from abuseguard.obs import metrics
from abuseguard.settings import settings

logger = logging.getLogger("abuseguard.guard.service")

T = TypeVar("T")

CREATE_SYSTEM_NOTIFICATIONS = "create_system_notifications"
DELETE_NOTIFICATIONS = "delete_notifications"
DEFAULT_ADMIN_NAME = "Administrator"


class GuardService:
	def __init__(
		self,
		*,
		repository: GuardRepository,
		sanitizer: ContentSanitizer,
		permissions: PermissionValidator,
		notification_rates: NotificationRateGuard,
		content_rates: ContentRateGuard,
		admin: AdminPrivilegeGuard,
		audit_log: AdminAuditLog,
	) -> None:
		self._repo = repository
		self._sanitizer = sanitizer
		self._permissions = permissions
		self._notification_rates = notification_rates
		self._content_rates = content_rates
		self._admin = admin
		self._audit = audit_log

	async def _store(self, awaitable: Awaitable[T], operation: str) -> T:
		try:
			return await bounded(awaitable, operation)
		except GuardError:
			raise
		except Exception:
			logger.error("store_unavailable", extra={"operation": operation}, exc_info=True)
			raise Internal("store_unavailable") from None

	async def _bookkeeping(self, awaitable: Awaitable[Any], operation: str, **context: Any) -> None:
		try:
			await bounded(awaitable, operation)
		except Exception:
			metrics.bookkeeping_failed(operation)
			logger.warning("bookkeeping_failed", extra={"operation": operation, **context}, exc_info=True)

	async def _undo(self, awaitable: Awaitable[Any], operation: str, **context: Any) -> None:
		try:
			await bounded(awaitable, operation)
		except Exception:
			logger.critical("admin_action_rollback_failed", extra={"operation": operation, **context}, exc_info=True)

	async def create_notification(
		self,
		actor_id: str,
		target_user_id: str,
		kind: str,
		message: str,
		metadata: Optional[Mapping[str, Any]] = None,
		*,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Notification:
		origin = {"ip": ip, "user_agent": user_agent}
		notification_type = parse_notification_type(kind).unwrap()
		if notification_type is NotificationType.SYSTEM:
			raise PermissionDenied("system_notification_reserved")
		reference = parse_notification_metadata(notification_type, metadata).unwrap()
		clean = (
			await self._sanitizer.validate(message, FieldKind.NOTIFICATION, actor_id=actor_id, **origin)
		).unwrap()
		(await self._permissions.validate(actor_id, target_user_id, notification_type, reference)).unwrap()
		(await self._notification_rates.evaluate(actor_id, target_user_id, notification_type, **origin)).unwrap()

		notification = Notification(
			id=new_id(),
			user_id=target_user_id,
			from_user_id=actor_id,
			type=notification_type,
			message=clean,
			metadata=reference.to_mapping(),
		)
		stored = await self._store(self._repo.create_notification(notification), "create_notification")
		await self._bookkeeping(
			self._repo.adjust_unread_count(target_user_id, 1),
			"unread_increment",
			user_id=target_user_id,
		)
		metrics.notification_created(notification_type.value)
		logger.info(
			"notification_created",
			extra={"notification_id": stored.id, "type": notification_type.value, "target_id": target_user_id},
		)
		return stored

	async def mark_notification_read(self, actor_id: str, notification_id: str) -> bool:
		notification = await self._store(self._repo.get_notification(notification_id), "get_notification")
		if notification is None:
			raise NotFound("notification_not_found")
		if notification.user_id != actor_id:
			raise PermissionDenied("not_notification_owner")
		changed = await self._store(self._repo.mark_notification_read(notification_id), "mark_notification_read")
		if changed:
			await self._bookkeeping(
				self._repo.adjust_unread_count(actor_id, -1),
				"unread_decrement",
				user_id=actor_id,
			)
		return changed

	async def create_system_notification(
		self,
		actor_id: str,
		target_user_ids: Sequence[str],
		message: str,
		metadata: Optional[Mapping[str, Any]] = None,
		*,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> list[str]:
		(
			await self._admin.authorize(
				actor_id,
				CREATE_SYSTEM_NOTIFICATIONS,
				operation="create_system_notification",
				ip=ip,
				user_agent=user_agent,
			)
		).unwrap()
		if len(target_user_ids) > settings.bulk_max_targets:
			raise InvalidArgument("too_many_targets", detail={"max": settings.bulk_max_targets})
		targets = _unique_ids(target_user_ids)
		if not targets:
			raise InvalidArgument("targets_required")
		clean = (
			await self._sanitizer.validate(
				message,
				FieldKind.SYSTEM_MESSAGE,
				actor_id=actor_id,
				ip=ip,
				user_agent=user_agent,
			)
		).unwrap()
		admin_profile = await self._store(self._repo.get_user(actor_id), "get_user")
		payload = _system_metadata(metadata)
		payload["adminId"] = actor_id
		payload["adminName"] = (admin_profile.display_name if admin_profile else None) or DEFAULT_ADMIN_NAME

		created: list[Notification] = []
		skipped: list[str] = []
		try:
			for target_id in targets:
				if await self._store(self._repo.get_user(target_id), "get_user") is None:
					skipped.append(target_id)
					continue
				notification = Notification(
					id=new_id(),
					user_id=target_id,
					from_user_id=actor_id,
					type=NotificationType.SYSTEM,
					message=clean,
					metadata=dict(payload),
				)
				await self._store(self._repo.create_notification(notification), "create_notification")
				created.append(notification)
			await self._audit.write(
				AdminAuditEntry(
					action=SYSTEM_NOTIFICATION_CREATED,
					executor_id=actor_id,
					reason="system_notification",
					detail={
						"notification_ids": [notification.id for notification in created],
						"target_count": len(targets),
						"skipped": skipped,
						"message": clean,
					},
				)
			)
		except GuardError:
			# an unaudited fan-out must not stand
			for notification in created:
				await self._undo(
					self._repo.delete_notification(notification.id),
					"delete_notification",
					notification_id=notification.id,
				)
			raise

		if skipped:
			logger.info("system_notification_targets_skipped", extra={"skipped": skipped})
		for notification in created:
			await self._bookkeeping(
				self._repo.adjust_unread_count(notification.user_id, 1),
				"unread_increment",
				user_id=notification.user_id,
			)
			metrics.notification_created(NotificationType.SYSTEM.value)
		return [notification.id for notification in created]

	async def delete_notifications_by_admin(
		self,
		actor_id: str,
		notification_ids: Sequence[str],
		reason: Optional[str],
		*,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> int:
		(
			await self._admin.authorize(
				actor_id,
				DELETE_NOTIFICATIONS,
				operation="delete_notifications_by_admin",
				ip=ip,
				user_agent=user_agent,
			)
		).unwrap()
		if len(notification_ids) > settings.bulk_max_targets:
			raise InvalidArgument("too_many_notifications", detail={"max": settings.bulk_max_targets})
		ids = _unique_ids(notification_ids)
		if not ids:
			raise InvalidArgument("notification_ids_required")
		text = sanitize_input(reason or "")
		if not text:
			raise InvalidArgument("reason_required")

		removed: list[Notification] = []
		try:
			for notification_id in ids:
				notification = await self._store(self._repo.delete_notification(notification_id), "delete_notification")
				if notification is not None:
					removed.append(notification)
			await self._audit.write(
				AdminAuditEntry(
					action=NOTIFICATIONS_DELETED_BY_ADMIN,
					executor_id=actor_id,
					reason=text,
					detail={
						"requested_count": len(ids),
						"deleted": [
							{"id": item.id, "user_id": item.user_id, "type": item.type.value} for item in removed
						],
					},
				)
			)
		except GuardError:
			for notification in removed:
				await self._undo(
					self._repo.create_notification(notification),
					"create_notification",
					notification_id=notification.id,
				)
			raise

		for notification in removed:
			if not notification.is_read:
				await self._bookkeeping(
					self._repo.adjust_unread_count(notification.user_id, -1),
					"unread_decrement",
					user_id=notification.user_id,
				)
		return len(removed)

	async def set_admin_privileges(
		self,
		actor_id: str,
		target_user_id: str,
		level: str,
		*,
		permissions: Optional[Sequence[str]] = None,
		reason: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> tuple[str, ...]:
		try:
			admin_level = AdminLevel(str(level))
		except ValueError:
			raise InvalidArgument("unknown_admin_level", detail={"level": str(level)}) from None
		outcome = await self._admin.grant(
			actor_id,
			target_user_id,
			admin_level,
			permissions=permissions,
			reason=reason,
			ip=ip,
			user_agent=user_agent,
		)
		return outcome.unwrap()

	async def remove_admin_privileges(
		self,
		actor_id: str,
		target_user_id: str,
		*,
		reason: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> None:
		(await self._admin.revoke(actor_id, target_user_id, reason=reason, ip=ip, user_agent=user_agent)).unwrap()

	async def create_initial_super_admin(
		self,
		actor_id: str,
		target_user_id: Optional[str] = None,
		*,
		reason: Optional[str] = None,
		setup_key: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> tuple[str, ...]:
		target = target_user_id or actor_id
		outcome = await self._admin.bootstrap(
			actor_id,
			target,
			reason=reason,
			setup_key=setup_key,
			ip=ip,
			user_agent=user_agent,
		)
		return outcome.unwrap()

	async def create_post(
		self,
		actor_id: str,
		content: str,
		*,
		title: Optional[str] = None,
		post_type: str = "casual",
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Post:
		origin = {"ip": ip, "user_agent": user_agent}
		body = (await self._sanitizer.validate(content, FieldKind.BODY, actor_id=actor_id, **origin)).unwrap()
		clean_title = None
		if title is not None and title.strip():
			clean_title = (await self._sanitizer.validate(title, FieldKind.TITLE, actor_id=actor_id, **origin)).unwrap()
		if await self._store(self._repo.get_user(actor_id), "get_user") is None:
			raise NotFound("author_not_found")
		(await self._content_rates.evaluate(actor_id, "post")).unwrap()

		post = Post(
			id=new_id(),
			author_id=actor_id,
			content=body,
			title=clean_title,
			post_type=sanitize_input(post_type) or "casual",
		)
		stored = await self._store(self._repo.create_post(post), "create_post")
		logger.info("post_created", extra={"post_id": stored.id})
		return stored

	async def create_comment(
		self,
		actor_id: str,
		post_id: str,
		content: str,
		*,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Comment:
		origin = {"ip": ip, "user_agent": user_agent}
		body = (await self._sanitizer.validate(content, FieldKind.COMMENT, actor_id=actor_id, **origin)).unwrap()
		if await self._store(self._repo.get_user(actor_id), "get_user") is None:
			raise NotFound("author_not_found")
		if await self._store(self._repo.get_post(post_id), "get_post") is None:
			raise NotFound("post_not_found")
		(await self._content_rates.evaluate(actor_id, "comment")).unwrap()

		comment = Comment(id=new_id(), post_id=post_id, author_id=actor_id, content=body)
		stored = await self._store(self._repo.create_comment(comment), "create_comment")
		await self._bookkeeping(self._repo.increment_comment_count(post_id), "comment_count", post_id=post_id)
		logger.info("comment_created", extra={"comment_id": stored.id, "post_id": post_id})
		return stored


def _unique_ids(values: Sequence[str]) -> list[str]:
	cleaned = (str(value).strip() for value in values)
	return list(dict.fromkeys(text for text in cleaned if text))


def _system_metadata(raw: Optional[Mapping[str, Any]]) -> dict[str, Any]:
	"""Admin metadata is a flat map of scalars; strings are encoded like any other text."""
	payload: dict[str, Any] = {}
	for key, value in (raw or {}).items():
		name = sanitize_input(str(key))
		if not name:
			continue
		if isinstance(value, str):
			payload[name] = sanitize(sanitize_input(value))
		elif value is None or isinstance(value, (bool, int, float)):
			payload[name] = value
		else:
			raise InvalidArgument("invalid_metadata", detail={"key": name})
	return payload
