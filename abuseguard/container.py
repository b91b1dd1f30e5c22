"""Lightweight service container for the guard pipeline.

Defaults to in-memory stores so the app and tests run without external
services; ``configure_from_settings`` swaps in Postgres and Redis backends.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import asyncpg

from abuseguard.domain.guard.admin import AdminPrivilegeGuard
from abuseguard.domain.guard.audit import AdminAuditLog, SecurityEventRecorder
from abuseguard.domain.guard.identity import IdentityProvider, InMemoryIdentityProvider
from abuseguard.domain.guard.permissions import PermissionValidator
from abuseguard.domain.guard.rate_limit import (
	Clock,
	ContentRateGuard,
	CounterStore,
	InMemoryCounterStore,
	NotificationRateGuard,
	RateLimiter,
)
from abuseguard.domain.guard.sanitizer import ContentSanitizer
from abuseguard.domain.guard.service import GuardService
from abuseguard.domain.guard.store import GuardRepository, InMemoryGuardRepository
from abuseguard.infra.counter_store import RedisCounterStore
from abuseguard.infra.guard_repo import PostgresGuardRepository
from abuseguard.infra.identity_repo import PostgresIdentityProvider
from abuseguard.infra.redis import redis_client
from abuseguard.settings import settings

logger = logging.getLogger("abuseguard.container")

_repository: GuardRepository = InMemoryGuardRepository()
_identity: IdentityProvider = InMemoryIdentityProvider()
_counter_store: CounterStore = InMemoryCounterStore()
_clock: Clock = time.time
_service: Optional[GuardService] = None


def _build() -> GuardService:
	recorder = SecurityEventRecorder(_repository)
	audit_log = AdminAuditLog(_repository)
	limiter = RateLimiter(_counter_store, clock=_clock)
	return GuardService(
		repository=_repository,
		sanitizer=ContentSanitizer(recorder),
		permissions=PermissionValidator(_repository),
		notification_rates=NotificationRateGuard(limiter, _repository, recorder),
		content_rates=ContentRateGuard(limiter),
		admin=AdminPrivilegeGuard(_identity, _repository, recorder, audit_log),
		audit_log=audit_log,
	)


def configure(
	*,
	repository: Optional[GuardRepository] = None,
	identity: Optional[IdentityProvider] = None,
	counter_store: Optional[CounterStore] = None,
	clock: Optional[Clock] = None,
) -> None:
	global _repository, _identity, _counter_store, _clock, _service
	if repository is not None:
		_repository = repository
	if identity is not None:
		_identity = identity
	if counter_store is not None:
		_counter_store = counter_store
	if clock is not None:
		_clock = clock
	_service = _build()


def configure_from_settings(pool: Optional[asyncpg.Pool] = None) -> None:
	"""Wire durable backends according to ``storage_backend`` and ``counter_backend``."""
	repository: Optional[GuardRepository] = None
	identity: Optional[IdentityProvider] = None
	if settings.storage_backend == "postgres" and pool is not None:
		repository = PostgresGuardRepository(pool)
		identity = PostgresIdentityProvider(pool)
	counter_store: Optional[CounterStore] = None
	if settings.counter_backend == "redis":
		counter_store = RedisCounterStore(redis_client)
	else:
		logger.info("counter_backend_memory", extra={"note": "counters are per process"})
	configure(repository=repository, identity=identity, counter_store=counter_store)


def reset() -> None:
	"""Return to fresh in-memory backends."""
	configure(
		repository=InMemoryGuardRepository(),
		identity=InMemoryIdentityProvider(),
		counter_store=InMemoryCounterStore(),
		clock=time.time,
	)


def get_service() -> GuardService:
	global _service
	if _service is None:
		_service = _build()
	return _service
