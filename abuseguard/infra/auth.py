"""Authentication helpers for FastAPI endpoints.

Bearer JWTs are verified with HS256 using settings.secret_key. Dev headers are
only respected in development.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from abuseguard.domain.guard.errors import Unauthenticated
from abuseguard.infra import jwt as jwt_helper
from abuseguard.obs.middleware import client_ip
from abuseguard.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	ip: Optional[str] = None
	user_agent: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		# Normalise all decode failures to invalid_token for the API surface
		raise Unauthenticated("invalid_token") from None
	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise Unauthenticated("invalid_token")
	return AuthenticatedUser(id=sub)


async def get_current_user(
	request: Request,
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated actor.

	In development we allow a simple X-User-Id header. In all other environments
	a valid Bearer JWT is required.
	"""
	user: Optional[AuthenticatedUser] = None
	if credentials and credentials.scheme.lower() == "bearer":
		user = verify_access_jwt(credentials.credentials)
	elif settings.is_dev() and x_user_id and x_user_id.strip():
		user = AuthenticatedUser(id=x_user_id.strip())
	if user is None:
		raise Unauthenticated("missing_credentials")
	user.ip = client_ip(request)
	user.user_agent = request.headers.get("user-agent")
	return user
