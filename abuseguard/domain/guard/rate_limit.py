"""Sliding-window rate limiting with escalating lockout.

Each (action kind, subject) pair moves Open -> AtLimit -> Blocked -> Open.
Every check first prunes events older than ``now - window`` and only then
compares the remaining count against the limit. The event that finds the
window full sets ``blocked_until = now + lockout`` and is not itself counted;
once the lockout elapses every recorded event has aged out of the window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from abuseguard.domain.guard.audit import SecurityEventRecorder
from abuseguard.domain.guard.errors import Internal, Outcome, ResourceExhausted
from abuseguard.domain.guard.models import (
	COORDINATED_ATTACK,
	IP_RATE_LIMIT_EXCEEDED,
	NotificationType,
	RateWindow,
	UserProfile,
)
from abuseguard.domain.guard.store import GuardRepository, bounded
from abuseguard.obs import metrics
from abuseguard.settings import settings

logger = logging.getLogger("abuseguard.guard.rate_limit")

Clock = Callable[[], float]


@dataclass(slots=True, frozen=True)
class RatePolicy:
	"""Limit configuration for a single window."""

	name: str
	limit: int
	window_seconds: float
	lockout_multiplier: float = 2.0

	@property
	def lockout_seconds(self) -> float:
		return self.window_seconds * self.lockout_multiplier


@dataclass(slots=True, frozen=True)
class RateDecision:
	allowed: bool
	remaining: Optional[int] = None
	retry_after_seconds: Optional[float] = None
	reason: Optional[str] = None
	count: int = 0


class CounterStore(Protocol):
	async def record(
		self,
		key: str,
		*,
		now: float,
		window_seconds: float,
		limit: int,
		lockout_seconds: float,
	) -> RateWindow:
		"""Evaluate one event against the window and return the resulting state.

		A blocked or full window records nothing; a full window starts a lockout.
		"""
		...

	async def record_distinct(self, key: str, member: str, *, now: float, window_seconds: float) -> int:
		"""Note ``member`` as active under ``key`` and return the distinct members still in the window."""
		...


class InMemoryCounterStore(CounterStore):
	"""Per-process counters. Best effort only: separate workers do not share state.

	Subjects whose events and lockout have all expired are swept at most once
	per ``sweep_interval`` seconds so the maps do not grow with every subject
	ever seen.
	"""

	def __init__(self, *, sweep_interval: float = 60.0) -> None:
		self._events: dict[str, deque[float]] = {}
		self._blocked: dict[str, float] = {}
		self._members: dict[str, dict[str, float]] = {}
		self._expires: dict[str, float] = {}
		self._sweep_interval = sweep_interval
		self._last_sweep = float("-inf")
		self._lock = asyncio.Lock()

	def key_count(self) -> int:
		return len(self._expires)

	def _touch(self, key: str, until: float) -> None:
		self._expires[key] = max(self._expires.get(key, until), until)

	def _sweep(self, now: float) -> None:
		if now - self._last_sweep < self._sweep_interval:
			return
		self._last_sweep = now
		for key in [name for name, until in self._expires.items() if until < now]:
			del self._expires[key]
			self._events.pop(key, None)
			self._blocked.pop(key, None)
			self._members.pop(key, None)

	async def record(
		self,
		key: str,
		*,
		now: float,
		window_seconds: float,
		limit: int,
		lockout_seconds: float,
	) -> RateWindow:
		async with self._lock:
			self._sweep(now)
			events = self._events.setdefault(key, deque())
			cutoff = now - window_seconds
			while events and events[0] < cutoff:
				events.popleft()
			window_start = events[0] if events else now
			blocked_until = self._blocked.get(key)
			if blocked_until is not None and now <= blocked_until:
				self._touch(key, blocked_until)
				return RateWindow(key, window_start, len(events), blocked_until)
			self._blocked.pop(key, None)
			if len(events) >= limit:
				blocked_until = now + lockout_seconds
				self._blocked[key] = blocked_until
				self._touch(key, blocked_until)
				return RateWindow(key, window_start, len(events), blocked_until)
			events.append(now)
			self._touch(key, now + window_seconds)
			return RateWindow(key, events[0], len(events))

	async def record_distinct(self, key: str, member: str, *, now: float, window_seconds: float) -> int:
		async with self._lock:
			self._sweep(now)
			members = self._members.setdefault(key, {})
			members[member] = now
			cutoff = now - window_seconds
			for stale in [name for name, seen in members.items() if seen < cutoff]:
				del members[stale]
			self._touch(key, now + window_seconds)
			return len(members)


class RateLimiter:
	def __init__(self, store: CounterStore, *, clock: Clock = time.time, namespace: str = "rl") -> None:
		self._store = store
		self._clock = clock
		self._namespace = namespace

	def now(self) -> float:
		return self._clock()

	async def check(self, action_kind: str, subject_key: str, policy: RatePolicy) -> RateDecision:
		"""Record one event for the subject and report whether it fits the policy.

		Store failures propagate; callers treat them as a denial.
		"""
		now = self._clock()
		if policy.limit <= 0:
			return RateDecision(False, remaining=0, retry_after_seconds=policy.window_seconds, reason=f"{policy.name}_limit")
		key = f"{self._namespace}:{action_kind}:{subject_key}"
		window = await bounded(
			self._store.record(
				key,
				now=now,
				window_seconds=policy.window_seconds,
				limit=policy.limit,
				lockout_seconds=policy.lockout_seconds,
			),
			"counter_record",
		)
		if window.is_blocked(now):
			metrics.rate_limit_trip(policy.name)
			retry_after = max(0.0, (window.blocked_until or now) - now)
			return RateDecision(
				False,
				remaining=0,
				retry_after_seconds=retry_after,
				reason=f"{policy.name}_limit",
				count=window.count,
			)
		return RateDecision(True, remaining=max(0, policy.limit - window.count), count=window.count)

	async def distinct(self, action_kind: str, subject_key: str, member: str, *, window_seconds: float) -> int:
		key = f"{self._namespace}:{action_kind}:{subject_key}"
		return await bounded(
			self._store.record_distinct(key, member, now=self._clock(), window_seconds=window_seconds),
			"counter_distinct",
		)


def _exhausted(decision: RateDecision) -> ResourceExhausted:
	return ResourceExhausted(decision.reason, retry_after_seconds=decision.retry_after_seconds or 1)


class NotificationRateGuard:
	"""Evaluates every notification window in order and stops at the first denial.

	Windows already evaluated keep the event even when a later window denies.
	Any store failure denies the request as Internal.
	"""

	def __init__(
		self,
		limiter: RateLimiter,
		repository: GuardRepository,
		recorder: SecurityEventRecorder,
	) -> None:
		self._limiter = limiter
		self._repo = repository
		self._recorder = recorder

	def actor_policy(self, sender: Optional[UserProfile]) -> RatePolicy:
		limit = settings.rate_actor_limit
		if self.is_new_account(sender):
			limit = settings.rate_actor_new_account_limit
		return RatePolicy("actor", limit, settings.rate_actor_window_seconds, settings.lockout_multiplier)

	def ip_policy(self) -> RatePolicy:
		return RatePolicy("ip", settings.rate_ip_limit, settings.rate_ip_window_seconds, settings.lockout_multiplier)

	def target_policy(self, target: Optional[UserProfile]) -> RatePolicy:
		limit = settings.rate_target_limit
		if target is not None and (target.is_verified or target.followers_count > settings.rate_target_vip_followers):
			limit = settings.rate_target_vip_limit
		return RatePolicy("target", limit, settings.rate_target_window_seconds, settings.lockout_multiplier)

	def is_new_account(self, profile: Optional[UserProfile]) -> bool:
		# unknown age is treated as new
		if profile is None or profile.created_at is None:
			return True
		created = profile.created_at
		if created.tzinfo is None:
			created = created.replace(tzinfo=timezone.utc)
		now = datetime.fromtimestamp(self._limiter.now(), tz=timezone.utc)
		return now - created < timedelta(hours=settings.rate_new_account_age_hours)

	async def evaluate(
		self,
		sender_id: str,
		target_id: str,
		kind: NotificationType,
		*,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Outcome[RateDecision]:
		try:
			return await self._evaluate(sender_id, target_id, kind, ip, user_agent)
		except Exception:
			logger.error(
				"rate_limit_unavailable",
				extra={"sender_id": sender_id, "target_id": target_id, "type": kind.value},
				exc_info=True,
			)
			metrics.guard_decision("rate_limit", "internal")
			return Outcome.deny(Internal("rate_limit_unavailable"))

	async def _evaluate(
		self,
		sender_id: str,
		target_id: str,
		kind: NotificationType,
		ip: Optional[str],
		user_agent: Optional[str],
	) -> Outcome[RateDecision]:
		# profiles are re-read on every check so account age is never stale
		sender = await bounded(self._repo.get_user(sender_id), "get_user")
		actor = await self._limiter.check("notification_actor", sender_id, self.actor_policy(sender))
		if not actor.allowed:
			metrics.guard_decision("rate_limit", "actor_limit")
			return Outcome.deny(_exhausted(actor))

		if ip:
			by_ip = await self._limiter.check("notification_ip", ip, self.ip_policy())
			if not by_ip.allowed:
				metrics.guard_decision("rate_limit", "ip_limit")
				await self._recorder.record(
					IP_RATE_LIMIT_EXCEEDED,
					sender_id,
					{"limit": settings.rate_ip_limit, "window_seconds": settings.rate_ip_window_seconds},
					ip=ip,
					user_agent=user_agent,
				)
				return Outcome.deny(_exhausted(by_ip))
			if by_ip.count >= settings.rate_ip_warn_threshold:
				logger.warning("ip_rate_near_limit", extra={"ip": ip, "count": by_ip.count, "limit": settings.rate_ip_limit})
		else:
			logger.debug("ip_rate_skipped", extra={"sender_id": sender_id})

		target = await bounded(self._repo.get_user(target_id), "get_user")
		incoming = await self._limiter.check("notification_target", target_id, self.target_policy(target))
		if not incoming.allowed:
			metrics.guard_decision("rate_limit", "target_limit")
			return Outcome.deny(_exhausted(incoming))

		senders = await self._limiter.distinct(
			"notification_senders",
			f"{target_id}:{kind.value}",
			sender_id,
			window_seconds=settings.coordinated_window_seconds,
		)
		if senders >= settings.coordinated_sender_threshold:
			metrics.rate_limit_trip("coordinated")
			metrics.guard_decision("rate_limit", "coordinated_attack")
			await self._recorder.record(
				COORDINATED_ATTACK,
				sender_id,
				{
					"target_id": target_id,
					"type": kind.value,
					"distinct_senders": senders,
					"window_seconds": settings.coordinated_window_seconds,
				},
				ip=ip,
				user_agent=user_agent,
			)
			return Outcome.deny(
				ResourceExhausted("coordinated_attack", retry_after_seconds=settings.coordinated_window_seconds)
			)

		metrics.guard_decision("rate_limit", "allow")
		return Outcome.allow(actor)


class ContentRateGuard:
	"""Per-actor authoring budget for posts and comments."""

	def __init__(self, limiter: RateLimiter) -> None:
		self._limiter = limiter

	async def evaluate(self, actor_id: str, action: str) -> Outcome[RateDecision]:
		limit = settings.rate_post_limit if action == "post" else settings.rate_comment_limit
		policy = RatePolicy(action, limit, settings.rate_content_window_seconds, settings.lockout_multiplier)
		try:
			decision = await self._limiter.check(f"content_{action}", actor_id, policy)
		except Exception:
			logger.error("rate_limit_unavailable", extra={"actor_id": actor_id, "action": action}, exc_info=True)
			metrics.guard_decision("rate_limit", "internal")
			return Outcome.deny(Internal("rate_limit_unavailable"))
		if not decision.allowed:
			metrics.guard_decision("rate_limit", f"{action}_limit")
			return Outcome.deny(_exhausted(decision))
		return Outcome.allow(decision)
