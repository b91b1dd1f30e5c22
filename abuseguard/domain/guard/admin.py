"""Admin authorization against two independently sourced views.

Only the claims bag decides. The stored role is read alongside it purely to
detect anomalies: a stored role that grants more than the claims is logged as
an escalation attempt and the request is still denied. The two views are
never merged into an effective role.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from typing import Awaitable, NamedTuple, Optional, Sequence, TypeVar

from abuseguard.domain.guard.audit import AdminAuditLog, SecurityEventRecorder
from abuseguard.domain.guard.errors import (
	EscalationAttempt,
	FailedPrecondition,
	GuardError,
	Internal,
	InvalidArgument,
	NotFound,
	Outcome,
	PermissionDenied,
)
from abuseguard.domain.guard.identity import IdentityProvider
from abuseguard.domain.guard.models import (
	ADMIN_PRIVILEGES_GRANTED,
	ADMIN_PRIVILEGES_REVOKED,
	INITIAL_ADMIN_SETUP_COMPLETED,
	INITIAL_SUPER_ADMIN_CREATED,
	INVALID_SETUP_KEY,
	PRIVILEGE_ESCALATION_ATTEMPT,
	UNAUTHORIZED_ADMIN_ACCESS,
	AdminAuditEntry,
	AdminLevel,
	ClaimsAuthority,
	StoredRole,
	claims_for_level,
	permissions_for_level,
)
from abuseguard.domain.guard.store import GuardRepository, bounded
from abuseguard.obs import metrics
from abuseguard.settings import settings

logger = logging.getLogger("abuseguard.guard.admin")

T = TypeVar("T")

MANAGE_ADMIN_PRIVILEGES = "manage_admin_privileges"
BOOTSTRAP_PERMISSION = "initial_setup"


def _claims_grant(claims: ClaimsAuthority, permission: str, require_super_admin: bool) -> bool:
	if require_super_admin:
		return claims.super_admin
	return claims.grants(permission)


def _stored_grants(stored: StoredRole, permission: str, require_super_admin: bool) -> bool:
	if require_super_admin:
		return stored.role == AdminLevel.SUPER_ADMIN.value or permission in stored.permissions
	return stored.grants(permission)


def _required_reason(reason: Optional[str]) -> Optional[str]:
	text = (reason or "").strip()
	return text or None


class _Origin(NamedTuple):
	ip: Optional[str]
	user_agent: Optional[str]


class AdminPrivilegeGuard:
	def __init__(
		self,
		identity: IdentityProvider,
		repository: GuardRepository,
		recorder: SecurityEventRecorder,
		audit_log: AdminAuditLog,
	) -> None:
		self._identity = identity
		self._repo = repository
		self._recorder = recorder
		self._audit = audit_log
		self._bootstrap_lock = asyncio.Lock()

	async def authorize(
		self,
		actor_id: str,
		permission: str,
		*,
		require_super_admin: bool = False,
		operation: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Outcome[ClaimsAuthority]:
		origin = _Origin(ip, user_agent)
		return await self._guarded(
			"authorize",
			self._authorize(actor_id, permission, require_super_admin, operation, origin),
		)

	async def grant(
		self,
		executor_id: str,
		target_id: str,
		level: AdminLevel,
		*,
		permissions: Optional[Sequence[str]] = None,
		reason: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Outcome[tuple[str, ...]]:
		origin = _Origin(ip, user_agent)
		return await self._guarded(
			"grant",
			self._grant(executor_id, target_id, level, list(permissions or ()), reason, origin),
		)

	async def revoke(
		self,
		executor_id: str,
		target_id: str,
		*,
		reason: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Outcome[None]:
		# self-revocation is refused before any authority lookup
		if executor_id == target_id:
			return Outcome.deny(InvalidArgument("self_revocation"))
		return await self._guarded("revoke", self._revoke(executor_id, target_id, reason, _Origin(ip, user_agent)))

	async def bootstrap(
		self,
		actor_id: str,
		target_id: str,
		*,
		reason: Optional[str] = None,
		setup_key: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Outcome[tuple[str, ...]]:
		origin = _Origin(ip, user_agent)
		return await self._guarded("bootstrap", self._bootstrap(actor_id, target_id, reason, setup_key, origin))

	async def _guarded(self, operation: str, work: Awaitable[Outcome[T]]) -> Outcome[T]:
		try:
			return await work
		except GuardError as exc:
			return Outcome.deny(exc)
		except Exception:
			logger.error("admin_guard_unavailable", extra={"operation": operation}, exc_info=True)
			metrics.guard_decision("admin", "internal")
			return Outcome.deny(Internal("admin_guard_unavailable"))

	async def _authorize(
		self,
		actor_id: str,
		permission: str,
		require_super_admin: bool,
		operation: Optional[str],
		origin: _Origin,
	) -> Outcome[ClaimsAuthority]:
		claims, profile = await asyncio.gather(
			bounded(self._identity.get_claims(actor_id), "get_claims"),
			bounded(self._repo.get_user(actor_id), "get_user"),
		)
		if _claims_grant(claims, permission, require_super_admin):
			metrics.guard_decision("admin", "allow")
			return Outcome.allow(claims)

		stored = profile.stored_role if profile is not None else StoredRole()
		detail = {
			"permission": permission,
			"operation": operation,
			"require_super_admin": require_super_admin,
		}
		if _stored_grants(stored, permission, require_super_admin):
			metrics.guard_decision("admin", "escalation_attempt")
			await self._recorder.record(
				PRIVILEGE_ESCALATION_ATTEMPT,
				actor_id,
				{**detail, "claims": claims.to_claims(), "stored_role": stored.to_dict()},
				ip=origin.ip,
				user_agent=origin.user_agent,
			)
			return Outcome.deny(EscalationAttempt())

		if claims == ClaimsAuthority():
			await self._recorder.record(
				UNAUTHORIZED_ADMIN_ACCESS,
				actor_id,
				detail,
				ip=origin.ip,
				user_agent=origin.user_agent,
			)
		metrics.guard_decision("admin", "insufficient_privileges")
		return Outcome.deny(PermissionDenied("insufficient_privileges"))

	async def _require_target(self, target_id: str) -> None:
		if await bounded(self._repo.get_user(target_id), "get_user") is None:
			raise NotFound("target_not_found")

	async def _apply_claims(
		self,
		target_id: str,
		prior: ClaimsAuthority,
		updated: ClaimsAuthority,
		entry: AdminAuditEntry,
	) -> None:
		await bounded(self._identity.set_claims(target_id, updated), "set_claims")
		try:
			await self._audit.write(entry)
		except GuardError:
			# an unaudited change must not stand
			try:
				await bounded(self._identity.set_claims(target_id, prior), "set_claims")
			except Exception:
				logger.critical(
					"claims_rollback_failed",
					extra={"target_id": target_id, "action": entry.action},
					exc_info=True,
				)
			raise

	async def _mirror_stored_role(self, target_id: str, role: StoredRole) -> None:
		try:
			await bounded(self._repo.set_stored_role(target_id, role), "set_stored_role")
		except Exception:
			metrics.bookkeeping_failed("stored_role_mirror")
			logger.warning("stored_role_mirror_failed", extra={"target_id": target_id}, exc_info=True)

	async def _grant(
		self,
		executor_id: str,
		target_id: str,
		level: AdminLevel,
		extra: list[str],
		reason: Optional[str],
		origin: _Origin,
	) -> Outcome[tuple[str, ...]]:
		text = _required_reason(reason)
		if text is None:
			return Outcome.deny(InvalidArgument("reason_required"))
		authority = await self._authorize(executor_id, MANAGE_ADMIN_PRIVILEGES, True, "set_admin_privileges", origin)
		if not authority.ok:
			return Outcome.deny(authority.rejection)
		if executor_id == target_id and level is not AdminLevel.SUPER_ADMIN:
			return Outcome.deny(InvalidArgument("self_demotion"))
		await self._require_target(target_id)

		prior = await bounded(self._identity.get_claims(target_id), "get_claims")
		permissions = permissions_for_level(level, extra)
		updated = claims_for_level(level, permissions)
		entry = AdminAuditEntry(
			action=ADMIN_PRIVILEGES_GRANTED,
			executor_id=executor_id,
			target_user_id=target_id,
			reason=text,
			prior_permissions=tuple(sorted(prior.permissions)),
			new_permissions=permissions,
			detail={"level": level.value, "previous_claims": prior.to_claims()},
		)
		await self._apply_claims(target_id, prior, updated, entry)
		await self._mirror_stored_role(target_id, StoredRole(role=level.value, permissions=frozenset(permissions)))
		logger.info("admin_privileges_granted", extra={"target_id": target_id, "level": level.value})
		return Outcome.allow(permissions)

	async def _revoke(
		self,
		executor_id: str,
		target_id: str,
		reason: Optional[str],
		origin: _Origin,
	) -> Outcome[None]:
		text = _required_reason(reason)
		if text is None:
			return Outcome.deny(InvalidArgument("reason_required"))
		authority = await self._authorize(executor_id, MANAGE_ADMIN_PRIVILEGES, True, "remove_admin_privileges", origin)
		if not authority.ok:
			return Outcome.deny(authority.rejection)
		await self._require_target(target_id)

		prior = await bounded(self._identity.get_claims(target_id), "get_claims")
		entry = AdminAuditEntry(
			action=ADMIN_PRIVILEGES_REVOKED,
			executor_id=executor_id,
			target_user_id=target_id,
			reason=text,
			prior_permissions=tuple(sorted(prior.permissions)),
			detail={"previous_claims": prior.to_claims()},
		)
		await self._apply_claims(target_id, prior, ClaimsAuthority(), entry)
		await self._mirror_stored_role(target_id, StoredRole())
		logger.info("admin_privileges_revoked", extra={"target_id": target_id})
		return Outcome.allow()

	async def _bootstrap(
		self,
		actor_id: str,
		target_id: str,
		reason: Optional[str],
		setup_key: Optional[str],
		origin: _Origin,
	) -> Outcome[tuple[str, ...]]:
		configured = settings.initial_admin_setup_key
		if configured:
			if not setup_key or not hmac.compare_digest(setup_key.encode("utf-8"), configured.encode("utf-8")):
				await self._recorder.record(
					INVALID_SETUP_KEY,
					actor_id,
					{"target_id": target_id},
					ip=origin.ip,
					user_agent=origin.user_agent,
				)
				return Outcome.deny(PermissionDenied("invalid_setup_key"))
		elif settings.is_prod():
			return Outcome.deny(FailedPrecondition("bootstrap_disabled"))

		text = _required_reason(reason)
		if text is None:
			return Outcome.deny(InvalidArgument("reason_required"))

		# serialise the zero-admins check and the grant within this process
		async with self._bootstrap_lock:
			existing = await self._audit.count(ADMIN_PRIVILEGES_GRANTED, INITIAL_SUPER_ADMIN_CREATED)
			if existing > 0:
				return Outcome.deny(FailedPrecondition("admins_already_exist"))
			await self._require_target(target_id)

			prior = await bounded(self._identity.get_claims(target_id), "get_claims")
			permissions = permissions_for_level(AdminLevel.SUPER_ADMIN, [BOOTSTRAP_PERMISSION])
			entry = AdminAuditEntry(
				action=INITIAL_SUPER_ADMIN_CREATED,
				executor_id=actor_id,
				target_user_id=target_id,
				reason=text,
				prior_permissions=tuple(sorted(prior.permissions)),
				new_permissions=permissions,
				detail={"level": AdminLevel.SUPER_ADMIN.value, "setup_key_used": bool(configured)},
			)
			await self._apply_claims(target_id, prior, claims_for_level(AdminLevel.SUPER_ADMIN, permissions), entry)

		await self._mirror_stored_role(
			target_id,
			StoredRole(role=AdminLevel.SUPER_ADMIN.value, permissions=frozenset(permissions)),
		)
		await self._recorder.record(
			INITIAL_ADMIN_SETUP_COMPLETED,
			actor_id,
			{"target_id": target_id},
			ip=origin.ip,
			user_agent=origin.user_agent,
		)
		return Outcome.allow(permissions)
