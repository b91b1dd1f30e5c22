"""Redis-backed sliding-window counters shared by every worker.

Events live in a sorted set scored by timestamp; the lockout deadline lives in
a sibling key. Each update is a WATCH/MULTI read-modify-write so two workers
racing on the same subject cannot both pass the boundary check. A conflicting
write aborts the transaction and the update is retried a bounded number of
times.
"""

from __future__ import annotations

import logging
import math
from typing import Optional
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import WatchError

from abuseguard.domain.guard.errors import StoreUnavailable
from abuseguard.domain.guard.models import RateWindow
from abuseguard.domain.guard.rate_limit import CounterStore
from abuseguard.infra.redis import RedisProxy
from abuseguard.settings import settings

logger = logging.getLogger("abuseguard.infra.counter_store")


class RedisCounterStore(CounterStore):
	def __init__(self, redis: Redis | RedisProxy, *, max_retries: Optional[int] = None) -> None:
		self._redis = redis
		self._max_retries = max(1, max_retries if max_retries is not None else settings.counter_max_retries)

	async def record(
		self,
		key: str,
		*,
		now: float,
		window_seconds: float,
		limit: int,
		lockout_seconds: float,
	) -> RateWindow:
		events_key = f"{key}:events"
		block_key = f"{key}:blocked"
		cutoff = now - window_seconds
		for attempt in range(self._max_retries):
			async with self._redis.pipeline(transaction=True) as pipe:
				try:
					await pipe.watch(events_key, block_key)
					raw_block = await pipe.get(block_key)
					blocked_until = float(raw_block) if raw_block is not None else None
					count = int(await pipe.zcount(events_key, cutoff, "+inf"))
					oldest = await pipe.zrangebyscore(events_key, cutoff, "+inf", start=0, num=1, withscores=True)
					window_start = float(oldest[0][1]) if oldest else now
					if blocked_until is not None and now <= blocked_until:
						await pipe.unwatch()
						return RateWindow(key, window_start, count, blocked_until)
					pipe.multi()
					pipe.zremrangebyscore(events_key, "-inf", f"({cutoff}")
					if count >= limit:
						blocked_until = now + lockout_seconds
						pipe.set(block_key, repr(blocked_until), ex=max(1, int(math.ceil(lockout_seconds))))
						await pipe.execute()
						return RateWindow(key, window_start, count, blocked_until)
					pipe.delete(block_key)
					pipe.zadd(events_key, {f"{now}:{uuid4().hex}": now})
					pipe.expire(events_key, max(1, int(math.ceil(window_seconds))))
					await pipe.execute()
					return RateWindow(key, window_start, count + 1)
				except WatchError:
					logger.debug("counter_conflict", extra={"key": key, "attempt": attempt + 1})
					continue
		logger.warning("counter_contention_exhausted", extra={"key": key, "attempts": self._max_retries})
		raise StoreUnavailable("counter_record")

	async def record_distinct(self, key: str, member: str, *, now: float, window_seconds: float) -> int:
		members_key = f"{key}:members"
		async with self._redis.pipeline(transaction=True) as pipe:
			pipe.zadd(members_key, {member: now})
			pipe.zremrangebyscore(members_key, "-inf", f"({now - window_seconds}")
			pipe.zcard(members_key)
			pipe.expire(members_key, max(1, int(math.ceil(window_seconds))))
			_, _, distinct, _ = await pipe.execute()
		return int(distinct)
