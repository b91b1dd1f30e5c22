"""Identity provider contract: the signed, revocable claims bag per user."""

from __future__ import annotations

from typing import Protocol

from abuseguard.domain.guard.models import ClaimsAuthority


class IdentityProvider(Protocol):
	async def get_claims(self, user_id: str) -> ClaimsAuthority:
		...

	async def set_claims(self, user_id: str, claims: ClaimsAuthority) -> None:
		...


class InMemoryIdentityProvider(IdentityProvider):
	def __init__(self) -> None:
		self.claims: dict[str, ClaimsAuthority] = {}

	async def get_claims(self, user_id: str) -> ClaimsAuthority:
		return self.claims.get(user_id, ClaimsAuthority())

	async def set_claims(self, user_id: str, claims: ClaimsAuthority) -> None:
		if claims == ClaimsAuthority():
			self.claims.pop(user_id, None)
			return
		self.claims[user_id] = claims
