"""PostgreSQL-backed claims bag used as the identity provider."""

from __future__ import annotations

import json

import asyncpg

from abuseguard.domain.guard.identity import IdentityProvider
from abuseguard.domain.guard.models import ClaimsAuthority


class PostgresIdentityProvider(IdentityProvider):
	def __init__(self, pool: asyncpg.Pool) -> None:
		self._pool = pool

	async def get_claims(self, user_id: str) -> ClaimsAuthority:
		raw = await self._pool.fetchval("SELECT claims FROM guard_claims WHERE user_id = $1", user_id)
		if raw is None:
			return ClaimsAuthority()
		return ClaimsAuthority.from_claims(json.loads(raw) if isinstance(raw, str) else raw)

	async def set_claims(self, user_id: str, claims: ClaimsAuthority) -> None:
		await self._pool.execute(
			"""
			INSERT INTO guard_claims (user_id, claims, updated_at)
			VALUES ($1, $2::jsonb, now())
			ON CONFLICT (user_id) DO UPDATE SET claims = EXCLUDED.claims, updated_at = now()
			""",
			user_id,
			json.dumps(claims.to_claims()),
		)
