"""Correlates each compatibility request with an ``X-Request-Id``.

A caller-supplied id is reused when it looks like an id; anything else (too
long, odd characters) is replaced so it cannot pollute logs or headers.
"""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from stellr.api.request_id import REQUEST_ID_ATTR, REQUEST_ID_HEADER

_ACCEPTABLE_ID = re.compile(r"^[A-Za-z0-9._-]{8,128}$")


def resolve_request_id(candidate: str | None) -> str:
	if candidate and _ACCEPTABLE_ID.match(candidate):
		return candidate
	return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
		setattr(request.state, REQUEST_ID_ATTR, rid)
		response = await call_next(request)
		response.headers[REQUEST_ID_HEADER] = rid
		return response
