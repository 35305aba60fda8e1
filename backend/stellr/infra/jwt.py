"""HS256 access tokens identifying the viewer of a compatibility request.

Tokens are minted by the account service; this module only needs to verify
them, plus an encoder for local tooling and tests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from jwt import InvalidTokenError

from stellr.settings import settings


ISSUER = "stellr-api"
AUDIENCE = "stellr-app"
ALGORITHM = "HS256"
LEEWAY_SECONDS = 5


@dataclass(slots=True, frozen=True)
class AccessClaims:
    subject: str
    session_id: Optional[str]
    expires_at: int


def encode_access(subject: str, *, session_id: Optional[str] = None, ttl_seconds: int = 900) -> str:
    now = int(time.time())
    body: Dict[str, Any] = {"sub": subject, "iss": ISSUER, "aud": AUDIENCE, "iat": now, "exp": now + ttl_seconds}
    if session_id is not None:
        body["sid"] = session_id
    return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> AccessClaims:
    """Verify signature, expiry, issuer and audience.

    Raises ``jwt.InvalidTokenError`` (or a subclass) for anything unusable,
    including a blank subject.
    """
    payload = jwt.decode(
        token,
        settings.secret_key,
        algorithms=[ALGORITHM],
        audience=AUDIENCE,
        issuer=ISSUER,
        leeway=LEEWAY_SECONDS,
        options={"require": ["exp", "iat", "iss", "aud", "sub"]},
    )
    subject = str(payload.get("sub") or "").strip()
    if not subject:
        raise InvalidTokenError("missing_claim:sub")
    session_id = payload.get("sid")
    return AccessClaims(
        subject=subject,
        session_id=str(session_id).strip() if session_id is not None else None,
        expires_at=int(payload["exp"]),
    )
