"""API key check for the device API.

The key may be sent as ``Authorization: Bearer <key>`` or ``X-API-Key: <key>``.
Health and the OpenAPI docs stay reachable without one.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

logger = logging.getLogger("devicewatch.auth")

PUBLIC_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})


def presented_key(request: Request) -> str | None:
    """The API key a client sent, bearer token first."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.headers.get("X-API-Key") or None


class APIKeyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_key: str) -> None:  # noqa: ANN001
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        key = presented_key(request)
        if key is not None and secrets.compare_digest(key.encode(), self.api_key.encode()):
            return await call_next(request)

        logger.debug("Rejected %s %s: %s API key", request.method, request.url.path,
                     "missing" if key is None else "wrong")
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid or missing API key"},
            headers={"WWW-Authenticate": "Bearer"},
        )
