"""
Token helpers.

Two kinds of tokens are used:
- Signed tokens (HS256 JWTs via python-jose) for portal links, applicant
  update/confirmation links and founder sessions.
- Opaque random tokens for one-shot links (reschedule, update requests).
  Only their SHA-256 hash is ever stored.
"""

import base64
import hashlib
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt

from irefair.core.config import get_settings

settings = get_settings()


class TokenError(Exception):
    """Raised when a signed token is malformed, forged, expired or unconfigured."""


# ============================================================
# OPAQUE TOKENS
# ============================================================

def create_opaque_token() -> str:
    """48 hex chars (24 random bytes)."""
    return secrets.token_hex(24)


def hash_opaque_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if not value or not str(value).strip():
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(expires_at: Optional[str]) -> bool:
    """True when the timestamp is missing, unparsable, or not in the future."""
    parsed = parse_iso(expires_at)
    if parsed is None:
        return True
    return parsed <= datetime.now(timezone.utc)


def create_applicant_secret() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(24)).rstrip(b"=").decode("ascii")


def hash_applicant_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


# ============================================================
# SIGNED TOKENS
# ============================================================

def _encode(payload: dict, secret: Optional[str]) -> str:
    if not secret:
        raise TokenError("Token secret is not configured")
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def _decode(token: str, secret: Optional[str], allow_expired: bool = False) -> dict:
    if not secret:
        raise TokenError("Token secret is not configured")
    if not token or token.count(".") != 2:
        raise TokenError("Invalid token")
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": not allow_expired},
        )
    except JWTError as e:
        raise TokenError(str(e)) from e
    if not isinstance(payload.get("exp"), (int, float)):
        raise TokenError("Invalid payload")
    return payload


def _expiry(ttl_seconds: int) -> int:
    return int(time.time()) + int(ttl_seconds)


def normalize_portal_token_version(value) -> int:
    """Positive integer version, anything else counts as version 1."""
    try:
        parsed = int(str(value if value is not None else "").strip())
    except ValueError:
        return 1
    return parsed if parsed > 0 else 1


# Referrer portal -------------------------------------------------------

def create_referrer_token(irref: str, version: int = 1, ttl_seconds: Optional[int] = None) -> str:
    ttl = ttl_seconds or settings.referrer_portal_token_ttl_seconds
    return _encode(
        {"irref": irref, "exp": _expiry(ttl), "v": version},
        settings.referrer_portal_token_secret,
    )


def verify_referrer_token(token: str, allow_expired: bool = False) -> dict:
    payload = _decode(token, settings.referrer_portal_token_secret, allow_expired=allow_expired)
    if not payload.get("irref"):
        raise TokenError("Invalid payload")
    version = payload.get("v")
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        payload["v"] = 1
    return payload


def verify_referrer_token_allow_expired(token: str) -> dict:
    return verify_referrer_token(token, allow_expired=True)


# Applicant portal (mobile access tokens) -------------------------------

def create_applicant_portal_token(irain: str, ttl_seconds: Optional[int] = None) -> str:
    ttl = ttl_seconds or settings.mobile_access_token_ttl_seconds
    return _encode({"irain": irain, "exp": _expiry(ttl)}, settings.applicant_portal_secret)


def verify_applicant_portal_token(token: str) -> dict:
    payload = _decode(token, settings.applicant_portal_secret)
    if not payload.get("irain"):
        raise TokenError("Invalid payload")
    return payload


# Applicant update / confirmation links ---------------------------------

def create_applicant_update_token(
    email: str, irain: str, locale: str = "en", ttl_seconds: Optional[int] = None, exp: Optional[int] = None
) -> str:
    """`exp` pins an absolute expiry (reminders reuse the original deadline)."""
    ttl = ttl_seconds or settings.applicant_update_token_ttl_seconds
    return _encode(
        {"email": email, "irain": irain, "locale": locale or "en", "exp": exp or _expiry(ttl)},
        settings.applicant_update_secret,
    )


def verify_applicant_update_token(token: str) -> dict:
    payload = _decode(token, settings.applicant_update_secret)
    if not payload.get("email"):
        raise TokenError("Invalid payload")
    return payload


# Founder session -------------------------------------------------------

def create_founder_session_token(email: str, ttl_seconds: Optional[int] = None) -> str:
    ttl = ttl_seconds or settings.founder_session_ttl_seconds
    return _encode({"email": email, "exp": _expiry(ttl)}, settings.founder_auth_secret)


def verify_founder_session_token(token: str) -> dict:
    payload = _decode(token, settings.founder_auth_secret)
    if not payload.get("email"):
        raise TokenError("Invalid payload")
    return payload
