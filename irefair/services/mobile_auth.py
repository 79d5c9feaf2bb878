"""
Refresh-token sessions for the mobile apps.

A refresh token is `<session id>.<random secret>`. Only its SHA-256 hash is
stored, in `mobile_sessions`, next to the role ("referrer" or "applicant")
and the subject id (iRREF or iRAIN). Access tokens are short lived signed
portal tokens and are never stored.

Refresh expiry never outlives the session expiry; rotation only succeeds
when the presented token is still the current one.
"""

import base64
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import text

from irefair.core.config import get_settings
from irefair.core.tokens import (
    create_applicant_portal_token,
    create_referrer_token,
    hash_opaque_token,
    normalize_portal_token_version,
    parse_iso,
)
from irefair.db.postgres import get_db_session, insert_row
from irefair.utils.timezone import utc_now

settings = get_settings()
logger = logging.getLogger(__name__)

ROLE_REFERRER = "referrer"
ROLE_APPLICANT = "applicant"

MIN_TTL_SECONDS = 60
MIN_SECRET_LENGTH = 16
MAX_USER_AGENT_LENGTH = 512


@dataclass
class IssuedSession:
    access_token: str
    access_token_expires_in: int
    refresh_token: str
    refresh_token_expires_in: int


@dataclass
class ValidatedRefreshToken:
    session_id: str
    role: str
    subject_id: str
    refresh_token_hash: str
    session_expires_at: datetime


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds")


def _parse_refresh_token(refresh_token: str):
    """Return (session_id, token_hash) or None when the shape is wrong."""
    trimmed = (refresh_token or "").strip()
    session_id, separator, secret = trimmed.partition(".")
    if not separator or not session_id.strip() or len(secret.strip()) < MIN_SECRET_LENGTH:
        return None
    return session_id.strip(), hash_opaque_token(trimmed)


def _make_refresh_token(session_id: str):
    secret = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    refresh_token = f"{session_id}.{secret}"
    return refresh_token, hash_opaque_token(refresh_token)


def _normalize_ttl(ttl_seconds: Optional[int], fallback: int) -> int:
    if not ttl_seconds or ttl_seconds <= 0:
        return fallback
    return max(MIN_TTL_SECONDS, int(ttl_seconds))


def _refresh_expiry(session_expires_at: datetime, ttl_seconds: int) -> datetime:
    return min(utc_now() + timedelta(seconds=ttl_seconds), session_expires_at)


def _expires_in(expires_at: datetime) -> int:
    return max(1, int((expires_at - utc_now()).total_seconds()))


def sanitize_user_agent(value: Optional[str]) -> Optional[str]:
    trimmed = (value or "").strip()
    return trimmed[:MAX_USER_AGENT_LENGTH] or None


# ============================================================
# ACCESS TOKENS
# ============================================================

def issue_referrer_access_token(irref: str, token_version: int) -> tuple:
    ttl = settings.mobile_access_token_ttl_seconds
    version = normalize_portal_token_version(token_version)
    return create_referrer_token(irref, version, ttl_seconds=ttl), ttl


def issue_applicant_access_token(irain: str) -> tuple:
    ttl = settings.mobile_access_token_ttl_seconds
    return create_applicant_portal_token(irain, ttl_seconds=ttl), ttl


# ============================================================
# SESSIONS
# ============================================================

def _issue_session(
    role: str,
    subject_id: str,
    access_token: str,
    access_ttl: int,
    user_agent: Optional[str] = None,
    refresh_ttl_seconds: Optional[int] = None,
    session_ttl_seconds: Optional[int] = None,
) -> IssuedSession:
    session_id = str(uuid.uuid4())
    now = utc_now()
    session_ttl = _normalize_ttl(session_ttl_seconds, settings.mobile_session_ttl_seconds)
    refresh_ttl = _normalize_ttl(refresh_ttl_seconds, settings.mobile_refresh_token_ttl_seconds)
    session_expires_at = now + timedelta(seconds=session_ttl)
    refresh_expires_at = _refresh_expiry(session_expires_at, refresh_ttl)
    refresh_token, refresh_hash = _make_refresh_token(session_id)

    with get_db_session() as db:
        insert_row(db, "mobile_sessions", {
            "id": session_id,
            "role": role,
            "subject_id": subject_id,
            "refresh_token_hash": refresh_hash,
            "refresh_token_expires_at": _iso(refresh_expires_at),
            "session_expires_at": _iso(session_expires_at),
            "user_agent": sanitize_user_agent(user_agent),
            "last_used_at": _iso(now),
            "revoked_at": None,
            "created_at": _iso(now),
        })
    logger.info("Issued %s mobile session for %s", role, subject_id)

    return IssuedSession(
        access_token=access_token,
        access_token_expires_in=access_ttl,
        refresh_token=refresh_token,
        refresh_token_expires_in=_expires_in(refresh_expires_at),
    )


def issue_referrer_session(irref: str, token_version: int, user_agent: Optional[str] = None, **ttls) -> IssuedSession:
    access_token, access_ttl = issue_referrer_access_token(irref, token_version)
    return _issue_session(ROLE_REFERRER, irref, access_token, access_ttl, user_agent=user_agent, **ttls)


def issue_applicant_session(irain: str, user_agent: Optional[str] = None, **ttls) -> IssuedSession:
    access_token, access_ttl = issue_applicant_access_token(irain)
    return _issue_session(ROLE_APPLICANT, irain, access_token, access_ttl, user_agent=user_agent, **ttls)


def validate_refresh_token(refresh_token: str, role: str) -> Optional[ValidatedRefreshToken]:
    parsed = _parse_refresh_token(refresh_token)
    if not parsed:
        return None
    session_id, token_hash = parsed

    with get_db_session() as db:
        row = db.execute(
            text("SELECT * FROM mobile_sessions WHERE id = :id AND role = :role"),
            {"id": session_id, "role": role},
        ).mappings().first()
    if not row or row["revoked_at"]:
        return None

    now = utc_now()
    session_expires_at = parse_iso(row["session_expires_at"])
    refresh_expires_at = parse_iso(row["refresh_token_expires_at"])
    if session_expires_at is None or session_expires_at <= now:
        return None
    if refresh_expires_at is None or refresh_expires_at <= now:
        return None
    if not secrets.compare_digest(row["refresh_token_hash"], token_hash):
        return None

    return ValidatedRefreshToken(
        session_id=row["id"],
        role=row["role"],
        subject_id=row["subject_id"],
        refresh_token_hash=token_hash,
        session_expires_at=session_expires_at,
    )


def session_subject_hint(refresh_token: str, role: str) -> Optional[str]:
    """Subject of the session a stale refresh token belongs to, if any."""
    parsed = _parse_refresh_token(refresh_token)
    if not parsed:
        return None
    with get_db_session() as db:
        return db.execute(
            text("SELECT subject_id FROM mobile_sessions WHERE id = :id AND role = :role"),
            {"id": parsed[0], "role": role},
        ).scalar()


def rotate_refresh_token(validated: ValidatedRefreshToken) -> Optional[tuple]:
    """
    Replace the refresh token of a validated session.

    Returns (refresh_token, expires_in), or None when the session changed
    underneath (already rotated, revoked or expired).
    """
    now = utc_now()
    refresh_token, refresh_hash = _make_refresh_token(validated.session_id)
    refresh_expires_at = _refresh_expiry(validated.session_expires_at, settings.mobile_refresh_token_ttl_seconds)
    now_iso = _iso(now)

    with get_db_session() as db:
        result = db.execute(
            text(
                """
                UPDATE mobile_sessions
                SET refresh_token_hash = :new_hash, refresh_token_expires_at = :refresh_expires_at, last_used_at = :now
                WHERE id = :id AND refresh_token_hash = :old_hash AND revoked_at IS NULL
                  AND session_expires_at > :now AND refresh_token_expires_at > :now
                """
            ),
            {
                "new_hash": refresh_hash,
                "refresh_expires_at": _iso(refresh_expires_at),
                "now": now_iso,
                "id": validated.session_id,
                "old_hash": validated.refresh_token_hash,
            },
        )
        if result.rowcount != 1:
            return None
    return refresh_token, _expires_in(refresh_expires_at)


def revoke_session_by_refresh_token(refresh_token: str, role: str) -> bool:
    parsed = _parse_refresh_token(refresh_token)
    if not parsed:
        return False
    session_id, token_hash = parsed
    with get_db_session() as db:
        result = db.execute(
            text(
                "UPDATE mobile_sessions SET revoked_at = :now "
                "WHERE id = :id AND role = :role AND refresh_token_hash = :hash AND revoked_at IS NULL"
            ),
            {"now": _iso(utc_now()), "id": session_id, "role": role, "hash": token_hash},
        )
        return result.rowcount > 0


def revoke_all_sessions(role: str, subject_id: str) -> int:
    with get_db_session() as db:
        result = db.execute(
            text(
                "UPDATE mobile_sessions SET revoked_at = :now "
                "WHERE role = :role AND lower(subject_id) = :subject AND revoked_at IS NULL"
            ),
            {"now": _iso(utc_now()), "role": role, "subject": (subject_id or "").strip().lower()},
        )
        revoked = result.rowcount
    if revoked:
        logger.info("Revoked %d %s mobile sessions for %s", revoked, role, subject_id)
    return revoked
