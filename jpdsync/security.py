"""Shared-secret protection for the webhook endpoints."""

from __future__ import annotations

import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

SECRET_HEADER = "X-Webhook-Secret"


class WebhookSecretMiddleware(BaseHTTPMiddleware):
    """Reject requests under `protected_prefix` that lack the configured secret.

    Everything else (/health, /api/*) passes through untouched.
    """

    def __init__(self, app, *, secret: str, protected_prefix: str = "/webhook"):
        super().__init__(app)
        self._secret = secret
        self._prefix = protected_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self._prefix):
            return await call_next(request)

        provided = request.headers.get(SECRET_HEADER, "")
        if not provided or not secrets.compare_digest(provided, self._secret):
            return JSONResponse({"detail": "Invalid webhook secret"}, status_code=401)

        return await call_next(request)
