"""Viewer resolution for the compatibility endpoints.

The matching core never looks a viewer up by credentials; it trusts the id
resolved here:
- Bearer JWTs (HS256, settings.secret_key) in every environment.
- An ``X-User-Id`` header only in development, for local tools and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from stellr.infra import jwt as jwt_helper
from stellr.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	session_id: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
	return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		claims = jwt_helper.decode_access(token)
	except InvalidTokenError as exc:
		raise _unauthorized() from exc
	return AuthenticatedUser(id=claims.subject, session_id=claims.session_id)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	# Header identity is a development convenience only
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthenticatedUser(id=x_user_id.strip())

	raise _unauthorized()
