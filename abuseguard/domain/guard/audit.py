"""Security event and admin audit writers.

Security events are fire-and-forget relative to the decision that produced
them: the event is always logged on ``audit.security`` and then persisted,
and a persistence failure is logged and counted but never raised. Admin audit
entries are part of the action they describe, so a failed write fails the
action. Every security event carries the client ip and user agent of the
request that produced it, or None for both outside a request.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from abuseguard.domain.guard.errors import Internal
from abuseguard.domain.guard.models import AdminAuditEntry, SecurityEvent
from abuseguard.domain.guard.store import GuardRepository, bounded
from abuseguard.obs import metrics

security_log = logging.getLogger("audit.security")
admin_log = logging.getLogger("audit.admin")


class SecurityEventRecorder:
	def __init__(self, repository: GuardRepository) -> None:
		self._repo = repository

	async def record(
		self,
		kind: str,
		actor_id: Optional[str],
		detail: Optional[Mapping[str, Any]] = None,
		*,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> SecurityEvent:
		payload = dict(detail or {})
		payload["ip"] = ip
		payload["user_agent"] = user_agent
		event = SecurityEvent(kind=kind, actor_id=actor_id, detail=payload)
		metrics.security_event(kind)
		security_log.warning(
			"security_event",
			extra={"event_id": event.id, "kind": kind, "actor_id": actor_id, "detail": event.detail},
		)
		try:
			await bounded(self._repo.append_security_event(event), "append_security_event")
		except Exception:
			metrics.security_event_write_failed(kind)
			security_log.error(
				"security_event_write_failed",
				extra={"event_id": event.id, "kind": kind, "actor_id": actor_id},
				exc_info=True,
			)
		return event


class AdminAuditLog:
	def __init__(self, repository: GuardRepository) -> None:
		self._repo = repository

	async def write(self, entry: AdminAuditEntry) -> AdminAuditEntry:
		try:
			await bounded(self._repo.append_admin_audit(entry), "append_admin_audit")
		except Exception:
			admin_log.error(
				"admin_audit_write_failed",
				extra={"action": entry.action, "executor_id": entry.executor_id, "target_user_id": entry.target_user_id},
				exc_info=True,
			)
			raise Internal("audit_write_failed") from None
		metrics.admin_action(entry.action)
		admin_log.info(
			"admin_action",
			extra={
				"audit_id": entry.id,
				"action": entry.action,
				"executor_id": entry.executor_id,
				"target_user_id": entry.target_user_id,
				"prior_permissions": list(entry.prior_permissions),
				"new_permissions": list(entry.new_permissions),
				"reason": entry.reason,
			},
		)
		return entry

	async def count(self, *actions: str) -> int:
		return await bounded(self._repo.count_admin_audit(actions), "count_admin_audit")
