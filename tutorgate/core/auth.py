"""
Auth utilities for the tutorgate API.

Verifies HS256/RS256 bearer tokens issued by the user directory and extracts
the user id. Trusted internal callers (and tests) may send X-User-Id instead
when ALLOW_HEADER_AUTH is enabled.
"""
from typing import Optional
import logging

from fastapi import Header, Request
import jwt

from tutorgate.core.config import Settings, settings as default_settings
from tutorgate.core.errors import UnauthorizedError

logger = logging.getLogger("tutorgate")


def verify_token(token: str, cfg: Settings) -> str:
    """
    Verify a JWT and return its user id (`sub`, or `userId` for legacy tokens).

    Raises:
        UnauthorizedError: Missing secret, invalid/expired token, or no user claim
    """
    if not cfg.JWT_SECRET:
        logger.warning("Bearer token received but JWT_SECRET is not configured")
        raise UnauthorizedError("Token verification is not configured")

    try:
        payload = jwt.decode(
            token,
            cfg.JWT_SECRET,
            algorithms=[cfg.JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token") from None

    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        raise UnauthorizedError("Token has no user claim")
    return str(user_id)


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Trusted caller / test user ID"),
) -> str:
    """
    Resolve the caller's user id.

    Priority:
    1. Bearer JWT from the Authorization header (an invalid token is a 401,
       never a fallback)
    2. X-User-Id header, when ALLOW_HEADER_AUTH
    3. 401 Unauthorized
    """
    cfg = getattr(request.app.state, "settings", None) or default_settings

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return verify_token(auth_header[7:], cfg)

    if x_user_id and cfg.ALLOW_HEADER_AUTH:
        return x_user_id

    raise UnauthorizedError("Missing Authorization (Bearer JWT) or X-User-Id header")
