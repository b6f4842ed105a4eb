"""
Shared-secret authentication middleware.

Every ``/sync/`` request must carry the service secret, either as
``Authorization: Bearer <secret>`` or in the ``X-API-Key`` header.
"""

import hashlib
import hmac
from typing import Any

from aiohttp import web

from healthsync.service.api.errors import APIError, ErrorCode
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.service.api.middleware.auth")

PROTECTED_PREFIX = "/sync/"
DEFAULT_WHITELIST = ["/health"]


class AuthConfig:
    """The configured secret, kept only as a SHA-256 digest, plus the open paths."""

    def __init__(self, secret: str | None, whitelist: list[str] | None = None) -> None:
        self.enabled = bool(secret)
        self.whitelist: list[str] = whitelist if whitelist is not None else list(DEFAULT_WHITELIST)
        self._secret_hash = hashlib.sha256(secret.encode()).hexdigest() if secret else ""

    def check(self, provided: str) -> bool:
        """Compare a provided secret in constant time."""
        provided_hash = hashlib.sha256(provided.encode()).hexdigest()
        return hmac.compare_digest(provided_hash, self._secret_hash)


AUTH_CONFIG_KEY = web.AppKey("auth_config", AuthConfig)


def _is_whitelisted(path: str, whitelist: list[str]) -> bool:
    """Entries match exactly, or as a prefix when they end in ``*``."""
    return any(
        path.startswith(entry[:-1]) if entry.endswith("*") else path == entry
        for entry in whitelist
    )


def _extract_token(request: web.Request) -> str | None:
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme == "Bearer" and credentials.strip():
        return credentials.strip()
    return request.headers.get("X-API-Key") or None


def setup_auth(app: web.Application, secret: str | None, whitelist: list[str] | None = None) -> AuthConfig:
    """
    Register the shared-secret check on ``app``.

    Args:
        app: Application being built
        secret: Shared request secret (``AUTH_SECRET``); auth is disabled
            when empty
        whitelist: Paths served without credentials (default ``/health``)
    """
    auth_config = AuthConfig(secret, whitelist)
    app[AUTH_CONFIG_KEY] = auth_config

    if not auth_config.enabled:
        logger.warning("No auth secret configured - sync endpoints are unauthenticated")
        return auth_config

    @web.middleware
    async def auth_middleware(request: web.Request, handler: Any) -> web.Response:
        path = request.path
        protected = path.startswith(PROTECTED_PREFIX) or path == PROTECTED_PREFIX.rstrip("/")
        if not protected or _is_whitelisted(path, auth_config.whitelist):
            return await handler(request)  # type: ignore[no-any-return]

        token = _extract_token(request)
        if not token:
            raise APIError(
                code=ErrorCode.UNAUTHORIZED,
                message="Missing credentials. Provide via Authorization: Bearer <secret> or X-API-Key header.",
                status=401,
            )
        if not auth_config.check(token):
            raise APIError(code=ErrorCode.UNAUTHORIZED, message="Invalid credentials", status=401)

        return await handler(request)  # type: ignore[no-any-return]

    # Runs inside error_middleware so rejections get the JSON error shape
    app.middlewares.append(auth_middleware)
    logger.info("Shared-secret authentication enabled")
    return auth_config

