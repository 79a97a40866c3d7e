"""API key gate for the REST surface."""

import hmac
import logging
from typing import Optional, Sequence

from fastapi import Header, Request, Response

from .errors import AuthenticationError, AuthNotConfiguredError

logger = logging.getLogger("gasnet_graph_api")


def key_matches(provided: str, allowed: Sequence[str]) -> bool:
    """Constant-time comparison against every configured key."""
    if not provided:
        return False
    matched = False
    for key in allowed:
        # no early exit
        if hmac.compare_digest(provided.encode(), key.encode()):
            matched = True
    return matched


async def api_key_gate(
    request: Request,
    response: Response,
    x_api_key: Optional[str] = Header(None),
) -> None:
    """
    Check ``x-api-key`` against the configured keys.

    When auth is not required, failures only add an ``x-auth-warning``
    header and the request proceeds.
    """
    settings = request.app.state.settings
    provided = (x_api_key or "").strip()

    if not settings.api_keys:
        if settings.auth_required:
            logger.error("Auth is required but no API keys are configured")
            raise AuthNotConfiguredError()
        response.headers["x-auth-warning"] = "auth-not-configured"
        return

    if not key_matches(provided, settings.api_keys):
        if settings.auth_required:
            raise AuthenticationError()
        response.headers["x-auth-warning"] = "missing-or-invalid-x-api-key"
        return

    response.headers["x-auth-status"] = "ok"
