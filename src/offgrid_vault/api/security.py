# API Security - Per-process session token
#
# The local API listens on loopback, which every local process can reach.
# Vault routes require X-Session-Token to match the token the launcher
# printed at startup. The token is random per process unless
# OFFGRID_VAULT_SESSION_TOKEN pins it for a scripted local client.
# Rejected requests are audited; the presented value never is.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ..core.audit_log import EventSeverity, EventType, log_security_event
from ..core.config import get_config

MIN_TOKEN_LENGTH = 32

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token(token: Optional[str] = None) -> str:
    """
    Set the token vault routes require.

    Args:
        token: Fixed token (default: the configured one, else 256 random bits)

    Raises:
        ValueError: A fixed token shorter than MIN_TOKEN_LENGTH
    """
    global _SESSION_TOKEN
    token = token or get_config().session_token
    if token is None:
        token = secrets.token_urlsafe(32)
    elif len(token) < MIN_TOKEN_LENGTH:
        raise ValueError(f"Session token must be at least {MIN_TOKEN_LENGTH} characters")
    _SESSION_TOKEN = token
    return token


def is_initialized() -> bool:
    return _SESSION_TOKEN is not None


def _reject(request: Request, reason: str) -> HTTPException:
    log_security_event(
        EventType.API_AUTH_FAILED,
        EventSeverity.ALERT,
        f"Vault API request rejected: {reason}",
        details={"method": request.method, "path": request.url.path},
    )
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=reason)


async def verify_session_token(
    request: Request,
    x_session_token: Optional[str] = Header(None),
) -> str:
    """
    FastAPI dependency checking the X-Session-Token header.

    Raises:
        HTTPException: 503 before startup, 401 on a missing or wrong token
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized"
        )

    if x_session_token is None:
        raise _reject(request, "Missing X-Session-Token header")

    # Constant-time comparison
    if not secrets.compare_digest(x_session_token.encode("utf-8"), _SESSION_TOKEN.encode("utf-8")):
        raise _reject(request, "Invalid session token")

    return x_session_token
