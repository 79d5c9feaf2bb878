"""
Mobile App Auth Routes

POST /referrer/mobile/auth/exchange - Portal link token -> access + refresh token
POST /referrer/mobile/auth/refresh - Rotate a referrer refresh token
POST /referrer/mobile/auth/logout - Revoke a referrer session
POST /referrer/mobile/auth/request-link - Email a portal sign-in link
POST /applicant/mobile/auth/exchange - Applicant portal token, or iRAIN + applicant key -> tokens
POST /applicant/mobile/auth/refresh - Rotate an applicant refresh token
POST /applicant/mobile/auth/logout - Revoke an applicant session
GET  /applicant/mobile/portal/data - Applicant profile and applications (bearer access token)
"""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from irefair.api.routes.portal_routes import ARCHIVED_MESSAGE as REFERRER_ARCHIVED_MESSAGE
from irefair.api.routes.portal_routes import send_portal_link_by_email
from irefair.core.auth import get_bearer_token
from irefair.core.rate_limit import rate_limited
from irefair.core.tokens import (
    TokenError,
    hash_applicant_secret,
    normalize_portal_token_version,
    verify_applicant_portal_token,
    verify_referrer_token,
)
from irefair.schemas.schemas import ApplicantMobileExchange, EmailBody, ReferrerMobileExchange, RefreshTokenBody
from irefair.services import mobile_auth
from irefair.services.applicant_service import find_applicant_by_identifier
from irefair.services.application_service import list_applications, normalize_status
from irefair.services.referrer_service import get_referrer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Mobile"])

APPLICANT_ARCHIVED_MESSAGE = "This applicant account has been archived and portal access is no longer available."
INVALID_SESSION = "Invalid or expired session."


def _session_body(session: mobile_auth.IssuedSession) -> dict:
    return {
        "ok": True,
        "accessToken": session.access_token,
        "accessTokenExpiresIn": session.access_token_expires_in,
        "refreshToken": session.refresh_token,
        "refreshTokenExpiresIn": session.refresh_token_expires_in,
    }


def _refresh_token(data: RefreshTokenBody) -> str:
    refresh_token = (data.refresh_token or "").strip()
    if not refresh_token:
        raise HTTPException(status_code=400, detail="Missing refresh token.")
    return refresh_token


def _logout(data: RefreshTokenBody, role: str) -> dict:
    refresh_token = (data.refresh_token or "").strip()
    if not refresh_token:
        return {"ok": True}
    try:
        mobile_auth.revoke_session_by_refresh_token(refresh_token, role)
    except SQLAlchemyError as e:
        logger.error("Failed to revoke %s mobile session: %s", role, e)
        raise HTTPException(status_code=500, detail="Unable to end session.")
    return {"ok": True}


# ============================================================
# REFERRER
# ============================================================

@router.post(
    "/referrer/mobile/auth/exchange",
    dependencies=[Depends(rate_limited("referrer", "referrer-mobile-exchange"))],
)
async def referrer_exchange(data: ReferrerMobileExchange, request: Request):
    portal_token = (data.portal_token or "").strip()
    if not portal_token:
        raise HTTPException(status_code=400, detail="Missing login credentials.")

    try:
        payload = verify_referrer_token(portal_token)
    except TokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    referrer = get_referrer(payload["irref"])
    if not referrer:
        raise HTTPException(status_code=404, detail="Referrer not found.")
    if referrer.get("archived"):
        raise HTTPException(status_code=403, detail=REFERRER_ARCHIVED_MESSAGE)

    expected_version = normalize_portal_token_version(referrer.get("portal_token_version"))
    if payload["v"] != expected_version:
        raise HTTPException(status_code=403, detail="Session expired. Please request a fresh sign-in link.")

    session = mobile_auth.issue_referrer_session(
        referrer["irref"], expected_version, user_agent=request.headers.get("user-agent")
    )
    return {
        **_session_body(session),
        "referrer": {
            "irref": referrer["irref"],
            "name": referrer.get("name") or "",
            "email": referrer.get("email") or "",
        },
    }


@router.post(
    "/referrer/mobile/auth/refresh",
    dependencies=[Depends(rate_limited("referrer", "referrer-mobile-refresh"))],
)
async def referrer_refresh(data: RefreshTokenBody):
    refresh_token = _refresh_token(data)

    validated = mobile_auth.validate_refresh_token(refresh_token, mobile_auth.ROLE_REFERRER)
    if not validated:
        hinted = mobile_auth.session_subject_hint(refresh_token, mobile_auth.ROLE_REFERRER)
        referrer = get_referrer(hinted) if hinted else None
        if referrer and referrer.get("archived"):
            raise HTTPException(status_code=403, detail=REFERRER_ARCHIVED_MESSAGE)
        raise HTTPException(status_code=401, detail=INVALID_SESSION)

    referrer = get_referrer(validated.subject_id)
    if not referrer:
        mobile_auth.revoke_session_by_refresh_token(refresh_token, mobile_auth.ROLE_REFERRER)
        raise HTTPException(status_code=404, detail="Referrer not found.")
    if referrer.get("archived"):
        mobile_auth.revoke_session_by_refresh_token(refresh_token, mobile_auth.ROLE_REFERRER)
        raise HTTPException(status_code=403, detail=REFERRER_ARCHIVED_MESSAGE)

    rotated = mobile_auth.rotate_refresh_token(validated)
    if not rotated:
        raise HTTPException(status_code=401, detail="Session rotation failed. Please sign in again.")

    access_token, access_ttl = mobile_auth.issue_referrer_access_token(
        referrer["irref"], referrer.get("portal_token_version")
    )
    return _session_body(mobile_auth.IssuedSession(access_token, access_ttl, rotated[0], rotated[1]))


@router.post("/referrer/mobile/auth/logout")
async def referrer_logout(data: RefreshTokenBody):
    return _logout(data, mobile_auth.ROLE_REFERRER)


@router.post(
    "/referrer/mobile/auth/request-link",
    dependencies=[Depends(rate_limited("referrer", "referrer-mobile-request-link"))],
)
async def referrer_request_link(data: EmailBody):
    return send_portal_link_by_email(data.email)


# ============================================================
# APPLICANT
# ============================================================

def _applicant_summary(applicant: dict) -> dict:
    return {
        "irain": applicant["irain"],
        "firstName": applicant.get("first_name") or "",
        "lastName": applicant.get("family_name") or "",
        "email": applicant.get("email") or "",
    }


def _load_applicant(irain: str) -> dict:
    applicant = find_applicant_by_identifier(irain)
    if not applicant:
        raise HTTPException(status_code=404, detail="Applicant not found.")
    if applicant.get("archived"):
        raise HTTPException(status_code=403, detail=APPLICANT_ARCHIVED_MESSAGE)
    return applicant


@router.post(
    "/applicant/mobile/auth/exchange",
    dependencies=[Depends(rate_limited("applicant", "applicant-mobile-exchange"))],
)
async def applicant_exchange(data: ApplicantMobileExchange, request: Request):
    """
    Sign an applicant in to the mobile app.

    Accepts either a signed applicant portal token, or the iRAIN together
    with the applicant key emailed at registration.
    """
    portal_token = (data.portal_token or "").strip()
    applicant_id = (data.applicant_id or "").strip()
    applicant_key = (data.applicant_key or "").strip()

    if portal_token:
        try:
            payload = verify_applicant_portal_token(portal_token)
        except TokenError:
            raise HTTPException(status_code=401, detail="Invalid or expired token.")
        applicant = _load_applicant(payload["irain"])
    else:
        if not applicant_id or not applicant_key:
            raise HTTPException(status_code=400, detail="Missing applicant credentials.")
        applicant = _load_applicant(applicant_id)
        stored = (applicant.get("secret_hash") or "").strip().lower()
        provided = hash_applicant_secret(applicant_key)
        if not stored or not secrets.compare_digest(stored, provided):
            raise HTTPException(status_code=401, detail="Invalid applicant credentials.")

    session = mobile_auth.issue_applicant_session(applicant["irain"], user_agent=request.headers.get("user-agent"))
    return {**_session_body(session), "applicant": _applicant_summary(applicant)}


@router.post(
    "/applicant/mobile/auth/refresh",
    dependencies=[Depends(rate_limited("applicant", "applicant-mobile-refresh"))],
)
async def applicant_refresh(data: RefreshTokenBody):
    refresh_token = _refresh_token(data)

    validated = mobile_auth.validate_refresh_token(refresh_token, mobile_auth.ROLE_APPLICANT)
    if not validated:
        hinted = mobile_auth.session_subject_hint(refresh_token, mobile_auth.ROLE_APPLICANT)
        applicant = find_applicant_by_identifier(hinted) if hinted else None
        if applicant and applicant.get("archived"):
            raise HTTPException(status_code=403, detail=APPLICANT_ARCHIVED_MESSAGE)
        raise HTTPException(status_code=401, detail=INVALID_SESSION)

    applicant = find_applicant_by_identifier(validated.subject_id)
    if not applicant:
        mobile_auth.revoke_session_by_refresh_token(refresh_token, mobile_auth.ROLE_APPLICANT)
        raise HTTPException(status_code=404, detail="Applicant not found.")
    if applicant.get("archived"):
        mobile_auth.revoke_session_by_refresh_token(refresh_token, mobile_auth.ROLE_APPLICANT)
        raise HTTPException(status_code=403, detail=APPLICANT_ARCHIVED_MESSAGE)

    rotated = mobile_auth.rotate_refresh_token(validated)
    if not rotated:
        raise HTTPException(status_code=401, detail="Session rotation failed. Please sign in again.")

    access_token, access_ttl = mobile_auth.issue_applicant_access_token(applicant["irain"])
    return _session_body(mobile_auth.IssuedSession(access_token, access_ttl, rotated[0], rotated[1]))


@router.post("/applicant/mobile/auth/logout")
async def applicant_logout(data: RefreshTokenBody):
    return _logout(data, mobile_auth.ROLE_APPLICANT)


@router.get("/applicant/mobile/portal/data")
async def applicant_portal_data(request: Request):
    token = get_bearer_token(request) or (request.query_params.get("token") or "").strip()
    if not token:
        raise HTTPException(status_code=400, detail="Missing token")
    try:
        payload = verify_applicant_portal_token(token)
    except TokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    applicant = _load_applicant(payload["irain"])
    applicant_ids = {value.strip() for value in (payload["irain"], applicant["irain"], applicant.get("legacy_applicant_id")) if value and value.strip()}
    applications, _ = list_applications(applicant_ids=applicant_ids, limit=None)

    items = [
        {
            "id": application["id"],
            "timestamp": application.get("created_at") or "",
            "position": application.get("position") or "",
            "iCrn": application.get("ircrn") or "",
            "status": normalize_status(application.get("status")),
            "meetingDate": application.get("meeting_date") or "",
            "meetingTime": application.get("meeting_time") or "",
            "meetingTimezone": application.get("meeting_timezone") or "",
            "meetingUrl": application.get("meeting_url") or "",
            "resumeFileName": application.get("resume_file_name") or "",
            "referrerIrref": application.get("referrer_irref") or "",
        }
        for application in applications
    ]
    return {"ok": True, "total": len(items), "items": items, "applicant": _applicant_summary(applicant)}
