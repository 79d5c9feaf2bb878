"""
Authentication Utility - founder sessions, portal tokens and cron auth.

Provides:
- Password verification with bcrypt (founder login)
- Founder session cookie handling
- Referrer portal token extraction (cookie, bearer, body, query)
- FastAPI dependencies for protected routes
"""

import logging
from typing import Optional

from fastapi import HTTPException, Request, Response, status
from passlib.context import CryptContext

from irefair.core.config import get_settings
from irefair.core.tokens import (
    TokenError,
    create_founder_session_token,
    verify_founder_session_token,
)

settings = get_settings()
logger = logging.getLogger(__name__)

FOUNDER_SESSION_COOKIE = "irefair_founder"
REFERRER_PORTAL_COOKIE = "irefair_ref_portal"

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash. A malformed stored hash never verifies."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning("Founder password hash could not be used: %s", e)
        return False


# ============================================================
# FOUNDER
# ============================================================

def founder_auth_configured() -> bool:
    return bool(settings.founder_email and settings.founder_password_hash and settings.founder_auth_secret)


def authenticate_founder(email: str, password: str) -> Optional[str]:
    """Return a session token when the credentials match the configured founder."""
    if (email or "").strip().lower() != settings.founder_email.strip().lower():
        return None
    if not verify_password(password, settings.founder_password_hash):
        return None
    return create_founder_session_token(settings.founder_email)


def set_founder_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=FOUNDER_SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
        max_age=settings.founder_session_ttl_seconds,
    )


def clear_founder_cookie(response: Response) -> None:
    response.delete_cookie(FOUNDER_SESSION_COOKIE, path="/")


def get_founder_from_request(request: Request) -> Optional[dict]:
    token = request.cookies.get(FOUNDER_SESSION_COOKIE)
    if not token:
        return None
    try:
        return verify_founder_session_token(token)
    except TokenError:
        return None


async def require_founder(request: Request) -> dict:
    """
    FastAPI dependency - founder session cookie required.

    Usage:
        @router.get("/stats")
        async def stats(founder: dict = Depends(require_founder)):
            ...
    """
    founder = get_founder_from_request(request)
    if not founder:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return founder


# ============================================================
# REFERRER PORTAL
# ============================================================

def get_referrer_portal_token(request: Request, fallback_token: Optional[str] = None) -> str:
    """Cookie first, then bearer header, then an explicit token, then ?token=."""
    cookie_token = request.cookies.get(REFERRER_PORTAL_COOKIE)
    if cookie_token:
        return cookie_token

    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token

    fallback = fallback_token.strip() if isinstance(fallback_token, str) else ""
    if fallback:
        return fallback

    return request.query_params.get("token") or ""


def set_referrer_portal_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=REFERRER_PORTAL_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
        max_age=settings.referrer_portal_token_ttl_seconds,
    )


def clear_referrer_portal_cookie(response: Response) -> None:
    response.delete_cookie(REFERRER_PORTAL_COOKIE, path="/")


def get_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""


# ============================================================
# CRON
# ============================================================

async def require_cron_auth(request: Request) -> None:
    """Scheduled jobs authenticate with `Authorization: Bearer <CRON_SECRET>`."""
    cron_secret = (settings.cron_secret or "").strip()
    if not cron_secret:
        logger.error("CRON_SECRET is not configured.")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    auth_header = (request.headers.get("authorization") or "").strip()
    if auth_header != f"Bearer {cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


