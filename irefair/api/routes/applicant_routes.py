"""
Applicant Routes

POST /applicant - Register or update a profile (multipart form)
GET  /applicant/confirm-registration - Confirm a new registration (HTML page)
POST /applicant/confirm-registration - Confirm a new registration (JSON)
GET  /applicant/confirm-update - Apply a pending profile update (HTML page)
POST /applicant/confirm-update - Apply a pending profile update (JSON)
GET  /applicant/data - Prefill data for a referrer's update request
"""

import json
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.exc import SQLAlchemyError

from irefair.core.config import get_settings
from irefair.core.rate_limit import rate_limited
from irefair.core.tokens import (
    TokenError,
    create_applicant_secret,
    create_applicant_update_token,
    hash_applicant_secret,
    hash_opaque_token,
    is_expired,
    parse_iso,
    verify_applicant_update_token,
)
from irefair.services import applicant_service, application_service, notifications, referrer_service
from irefair.services.action_history import append_action_history_entry, make_entry
from irefair.services.applicant_service import PENDING_CONFIRMATION
from irefair.services.file_scan import read_and_check_resume
from irefair.services.mailer import MAIL_ERRORS, send_mail, try_send_mail
from irefair.services.portal_links import try_portal_link_for
from irefair.services.resume_service import get_resume_store
from irefair.utils.file_upload import RESUME_REQUIRED_MESSAGE, has_upload
from irefair.utils.timezone import utc_now
from irefair.utils.validation import escape_html, normalize_email, normalize_http_url

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applicant", tags=["Applicants"])

RESEND_COOLDOWN = timedelta(minutes=10)
NOT_PROVIDED = "Not provided"

# Form field -> applicants column, for fields stored as submitted
TEXT_FIELDS = {
    "firstName": "first_name",
    "middleName": "middle_name",
    "familyName": "family_name",
    "email": "email",
    "phone": "phone",
    "locatedCanada": "located_canada",
    "province": "province",
    "authorizedCanada": "authorized_canada",
    "eligibleMoveCanada": "eligible_move_canada",
    "countryOfOrigin": "country_of_origin",
    "languagesOther": "languages_other",
    "industryType": "industry_type",
    "industryOther": "industry_other",
    "employmentStatus": "employment_status",
}

# Optional profile fields, only overwritten when the form sends them
EXTRA_FIELDS = {
    "desiredRole": "desired_role",
    "targetCompanies": "target_companies",
    "hasPostings": "has_postings",
    "postingNotes": "posting_notes",
    "pitch": "pitch",
}


def _form_value(form, key: str) -> str:
    value = form.get(key)
    return value.strip() if isinstance(value, str) else ""


def _hash_matches(stored: Optional[str], provided: str) -> bool:
    stored = (stored or "").strip()
    return bool(stored) and secrets.compare_digest(stored, provided)


def _languages_snapshot(raw: str, other: str) -> str:
    items = [item.strip() for item in raw.split(",") if item.strip() and item.strip().lower() != "other"]
    if other:
        items.append(other)
    return ", ".join(items) or NOT_PROVIDED


def _cleanup_pending():
    try:
        applicant_service.cleanup_expired_pending_applicants()
    except SQLAlchemyError as e:
        logger.error("Failed to clean up expired pending applicants: %s", e)
    try:
        applicant_service.cleanup_expired_pending_updates()
    except SQLAlchemyError as e:
        logger.error("Failed to clean up expired pending updates: %s", e)


def _validate_update_request(token: str, application_id: str) -> dict:
    """Check the update-request link a referrer sent. Returns the application row."""
    if not token or not application_id:
        raise HTTPException(status_code=400, detail="Missing update request information. Please use the link from your email.")

    application = application_service.get_application(application_id)
    if not application:
        raise HTTPException(status_code=404, detail="Update request not found.")
    if application["archived"]:
        raise HTTPException(status_code=403, detail="This application has been archived and can no longer be updated.")
    if is_expired(application.get("update_request_expires_at")):
        raise HTTPException(status_code=410, detail="This update link has expired.")
    if not _hash_matches(application.get("update_request_token_hash"), hash_opaque_token(token)):
        raise HTTPException(status_code=401, detail="Invalid update link.")
    return application


def _store_resume(irain: str, resume: tuple) -> dict:
    content, filename, content_type = resume
    file_id = get_resume_store().insert(irain, content, filename, content_type)
    return {"resume_file_id": file_id, "resume_file_name": filename}


def _send_or_fail(to: str, email: notifications.Email) -> None:
    try:
        send_mail(to, email.subject, email.text, html=email.html)
    except MAIL_ERRORS:
        raise HTTPException(status_code=500, detail="Failed to send email")


# ============================================================
# REGISTRATION
# ============================================================

@router.post("", dependencies=[Depends(rate_limited("applicant"))])
async def register_applicant(request: Request):
    """
    Register a new applicant or start a profile update.

    Every path ends with an email the applicant has to confirm:
    new registrations get a confirm-registration link, existing profiles
    get a confirm-update link and the submitted data waits as a pending
    payload until then.
    """
    _cleanup_pending()

    form = await request.form()

    # Honeypot
    if _form_value(form, "website"):
        return {"ok": True}

    first_name = _form_value(form, "firstName")
    email = _form_value(form, "email")
    if not first_name or not email:
        raise HTTPException(status_code=400, detail="Missing required fields: firstName and email.")

    locale = "fr" if _form_value(form, "language").lower() == "fr" else "en"

    update_application = None
    update_token_hash = ""
    update_purpose = ""
    update_token = _form_value(form, "updateRequestToken")
    update_application_id = _form_value(form, "updateRequestApplicationId")
    if update_token or update_application_id:
        update_application = _validate_update_request(update_token, update_application_id)
        update_token_hash = hash_opaque_token(update_token)
        update_purpose = (update_application.get("update_request_purpose") or "").strip().lower()
    should_update_application = update_application is not None and update_purpose in ("", "info")

    resume_entry = form.get("resume")
    resume_required = not (update_application is not None and update_purpose == "info")
    if resume_required and not has_upload(resume_entry):
        raise HTTPException(status_code=400, detail={"field": "resume", "error": RESUME_REQUIRED_MESSAGE})

    existing = applicant_service.find_existing_applicant(
        first_name, _form_value(form, "familyName"), email, _form_value(form, "phone")
    ) or applicant_service.get_applicant_by_email(email)

    if update_application is not None:
        application_applicant_id = (update_application.get("applicant_id") or "").strip()
        if not application_applicant_id:
            raise HTTPException(status_code=400, detail="This update request is missing applicant information.")
        known_ids = {
            (existing or {}).get("irain", "").lower(),
            ((existing or {}).get("legacy_applicant_id") or "").lower(),
        }
        if application_applicant_id.lower() not in known_ids:
            existing = applicant_service.find_applicant_by_identifier(application_applicant_id)
            if not existing:
                raise HTTPException(
                    status_code=404,
                    detail="We could not find the applicant associated with this update request.",
                )

    if existing and existing["archived"]:
        raise HTTPException(status_code=403, detail="This applicant profile has been archived and can no longer be updated.")

    resume = await read_and_check_resume(resume_entry, field="resume")
    if resume is None and resume_required:
        raise HTTPException(status_code=400, detail={"field": "resume", "error": RESUME_REQUIRED_MESSAGE})

    fields = {column: _form_value(form, key) for key, column in TEXT_FIELDS.items()}
    fields.update({column: _form_value(form, key) for key, column in EXTRA_FIELDS.items() if key in form})
    linkedin = _form_value(form, "linkedin")
    fields["linkedin"] = normalize_http_url(linkedin) or linkedin
    fields["languages"] = _languages_snapshot(_form_value(form, "languages"), fields["languages_other"])
    fields["locale"] = locale

    if existing and resume is not None:
        fields.update(_store_resume(existing["irain"], resume))

    # Returning applicant whose registration was never confirmed
    if existing and normalize_email(existing["email"]) == normalize_email(email):
        if (existing.get("registration_status") or "").strip() == PENDING_CONFIRMATION:
            return _refresh_pending_registration(existing, fields, locale)

    if existing:
        return _start_profile_update(
            existing,
            fields,
            locale,
            update_application if should_update_application else None,
            update_token_hash,
            update_purpose,
        )

    expires_at = utc_now() + timedelta(seconds=settings.applicant_update_token_ttl_seconds)
    irain = applicant_service.create_applicant({
        **fields,
        "registration_status": PENDING_CONFIRMATION,
        "update_token_expires_at": expires_at.isoformat(timespec="milliseconds"),
    })
    token = create_applicant_update_token(email, irain, locale, exp=int(expires_at.timestamp()))
    new_fields = {"update_token_hash": hash_opaque_token(token)}
    if resume is not None:
        new_fields.update(_store_resume(irain, resume))
    applicant_service.update_applicant(irain, new_fields)

    confirm_email = notifications.applicant_registration_confirmation(
        first_name, notifications.applicant_confirm_registration_link(token)
    )
    _send_or_fail(email, confirm_email)
    return {"ok": True, "needsEmailConfirm": True, "confirmationEmailStatus": "first"}


def _refresh_pending_registration(existing: dict, fields: dict, locale: str) -> dict:
    """Update a still-pending registration and resend its link unless one went out recently."""
    irain = existing["irain"]
    now = utc_now()
    stored_expiry = parse_iso(existing.get("update_token_expires_at"))
    issued_at = stored_expiry - timedelta(seconds=settings.applicant_update_token_ttl_seconds) if stored_expiry else None
    within_cooldown = issued_at is not None and now - issued_at < RESEND_COOLDOWN

    updates = dict(fields)
    if within_cooldown:
        applicant_service.update_applicant(irain, updates)
        return {"ok": True, "needsEmailConfirm": True, "confirmationEmailStatus": "recent"}

    expires_at = now + timedelta(seconds=settings.applicant_update_token_ttl_seconds)
    token = create_applicant_update_token(fields["email"], irain, locale, exp=int(expires_at.timestamp()))
    updates.update({
        "update_token_hash": hash_opaque_token(token),
        "update_token_expires_at": expires_at.isoformat(timespec="milliseconds"),
        "registration_status": PENDING_CONFIRMATION,
        "reminder_token_hash": None,
        "reminder_sent_at": None,
    })
    applicant_service.update_applicant(irain, updates)

    confirm_email = notifications.applicant_registration_confirmation(
        fields["first_name"], notifications.applicant_confirm_registration_link(token)
    )
    _send_or_fail(fields["email"], confirm_email)
    return {"ok": True, "needsEmailConfirm": True, "confirmationEmailStatus": "sent"}


def _start_profile_update(
    existing: dict,
    fields: dict,
    locale: str,
    update_application: Optional[dict],
    update_token_hash: str,
    update_purpose: str,
) -> dict:
    """Park the submitted data as a pending payload and email a confirm-update link."""
    irain = existing["irain"]
    expires_at = utc_now() + timedelta(seconds=settings.applicant_update_token_ttl_seconds)
    token = create_applicant_update_token(
        existing["email"] or fields["email"], irain, locale, exp=int(expires_at.timestamp())
    )

    payload = {key: value for key, value in fields.items() if value is not None}
    if update_application is not None:
        payload["update_request_application_id"] = update_application["id"]
        payload["update_request_token_hash"] = update_token_hash
        payload["update_request_purpose"] = update_purpose or "info"

    applicant_service.update_applicant(irain, {
        "update_token_hash": hash_opaque_token(token),
        "update_token_expires_at": expires_at.isoformat(timespec="milliseconds"),
        "update_pending_payload": json.dumps(payload),
    })

    confirm_email = notifications.applicant_profile_update_confirmation(
        fields["first_name"], notifications.applicant_confirm_update_link(token)
    )
    _send_or_fail(fields["email"], confirm_email)
    return {"ok": True, "needsEmailConfirm": True, "confirmationEmailStatus": "sent"}


# ============================================================
# CONFIRMATION LINKS
# ============================================================

async def _read_token(request: Request) -> str:
    """Token from ?token=, a JSON body or a form body."""
    token = request.query_params.get("token")
    if token:
        return token.strip()

    content_type = request.headers.get("content-type") or ""
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            return ""
        value = body.get("token") if isinstance(body, dict) else None
        return value.strip() if isinstance(value, str) else ""
    if "form" in content_type:
        form = await request.form()
        return _form_value(form, "token")
    return ""


def _html_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    body = (
        "<!doctype html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape_html(title)} | iRefair</title></head>"
        f"<body><main><h1>{escape_html(title)}</h1><p>{escape_html(message)}</p></main></body></html>"
    )
    return HTMLResponse(content=body, status_code=status_code)


def _confirm_registration(token: str) -> dict:
    if not token:
        raise HTTPException(status_code=400, detail="Missing confirmation token. Please use the link from your email.")
    try:
        payload = verify_applicant_update_token(token)
    except TokenError:
        raise HTTPException(status_code=401, detail="This confirmation link is invalid or has expired. Please register again.")

    applicant = applicant_service.get_applicant_by_email(payload["email"])
    if not applicant:
        raise HTTPException(status_code=404, detail="We couldn't find your registration. Please register again.")

    ineligible = applicant_service.applicant_is_ineligible(applicant)
    # Tokens are cleared on first confirmation, so repeat clicks land here
    if (applicant.get("registration_status") or "").strip() != PENDING_CONFIRMATION:
        return {"ok": True, "alreadyConfirmed": True, "ineligible": ineligible}

    token_hash = hash_opaque_token(token)
    if not (
        _hash_matches(applicant.get("update_token_hash"), token_hash)
        or _hash_matches(applicant.get("reminder_token_hash"), token_hash)
    ):
        raise HTTPException(status_code=403, detail="This confirmation link is no longer valid. Please register again.")

    irain = applicant["irain"]
    if is_expired(applicant.get("update_token_expires_at")):
        applicant_service.delete_applicant(irain)
        get_resume_store().delete_by_owner(irain)
        raise HTTPException(status_code=403, detail="This confirmation link has expired. Please register again.")

    applicant_key = create_applicant_secret()
    applicant_service.update_applicant(irain, {
        "secret_hash": hash_applicant_secret(applicant_key),
        "update_token_hash": None,
        "update_token_expires_at": None,
        "registration_status": "",
        "reminder_token_hash": None,
        "reminder_sent_at": None,
    })
    logger.info("Applicant %s confirmed registration", irain)

    welcome = notifications.applicant_registration_confirmed(
        applicant.get("first_name") or "there", irain, applicant_key, ineligible
    )
    try_send_mail(payload["email"], welcome.subject, welcome.text, html=welcome.html)
    return {"ok": True, "alreadyConfirmed": False, "ineligible": ineligible, "iRain": irain}


@router.get("/confirm-registration", response_class=HTMLResponse)
async def confirm_registration_page(request: Request):
    try:
        result = _confirm_registration(await _read_token(request))
    except HTTPException as e:
        return _html_page("Confirmation failed", str(e.detail), e.status_code)

    if result["alreadyConfirmed"]:
        return _html_page("Already confirmed", "Your registration is already confirmed.")
    message = f"Your registration is confirmed. Your iRAIN is {result['iRain']}. Check your email for your applicant key."
    return _html_page("Registration confirmed", message)


@router.post("/confirm-registration")
async def confirm_registration(request: Request):
    return _confirm_registration(await _read_token(request))


def _cancel_meetings_for_ineligible(applicant: dict) -> None:
    """Close open applications of an applicant who is no longer eligible."""
    ids = [applicant["irain"], applicant.get("legacy_applicant_id")]
    open_applications = application_service.find_open_applications_for_applicant([i for i in ids if i])
    if not open_applications:
        return

    application_service.mark_applications_ineligible([item["id"] for item in open_applications])
    applicant_name = applicant_service.full_name(applicant)

    for application in open_applications:
        if application_service.normalize_status(application.get("status")) != "meeting scheduled":
            continue
        referrer = referrer_service.get_referrer(application.get("referrer_irref") or "")
        referrer_email = application.get("referrer_email") or (referrer or {}).get("email")
        if not referrer_email:
            continue
        referrer_name = (referrer or {}).get("name") or ""
        company = application_service.company_name_for(application, referrer)
        position = application.get("position") or ""

        to_applicant = notifications.meeting_cancelled_to_applicant(
            applicant_name, referrer_name, company, position,
            "Your profile no longer meets the eligibility requirements.",
        )
        try_send_mail(applicant["email"], to_applicant.subject, to_applicant.text, html=to_applicant.html)

        to_referrer = notifications.meeting_cancelled_to_referrer(
            referrer_name, applicant_name, company, position,
            "the applicant's profile no longer meets eligibility requirements",
            try_portal_link_for(application.get("referrer_irref")),
        )
        try_send_mail(referrer_email, to_referrer.subject, to_referrer.text, html=to_referrer.html)


def _complete_update_request(applicant: dict, pending: dict, ineligible: bool) -> None:
    """Record the applicant's answer to a referrer's info request on the application."""
    application_id = pending.get("update_request_application_id")
    token_hash = pending.get("update_request_token_hash")
    if not application_id or not token_hash:
        return

    application = application_service.get_application(application_id)
    if not application or application["archived"]:
        return
    purpose = (pending.get("update_request_purpose") or "").strip().lower()
    if purpose not in ("", "info"):
        return
    if not _hash_matches(application.get("update_request_token_hash"), token_hash):
        return

    fields = {
        "action_history": append_action_history_entry(
            application.get("action_history"),
            make_entry("APPLICANT_UPDATED", "applicant", performed_by_email=applicant.get("email")),
        ),
        "update_request_token_hash": None,
        "update_request_expires_at": None,
        "update_request_purpose": None,
    }
    if not ineligible:
        fields["status"] = "info updated"
    application_service.update_application(application_id, fields)

    if ineligible:
        return
    referrer = referrer_service.get_referrer(application.get("referrer_irref") or "")
    if not referrer or referrer["archived"] or not referrer.get("email"):
        return
    notice = notifications.applicant_updated_to_referrer(
        referrer.get("name") or "",
        applicant_service.full_name(applicant),
        applicant["irain"],
        application_id,
        try_portal_link_for(referrer["irref"]),
    )
    try_send_mail(referrer["email"], notice.subject, notice.text, html=notice.html)


def _confirm_update(token: str) -> dict:
    if not token:
        raise HTTPException(status_code=400, detail="Missing confirmation token. Please use the link from your email.")
    try:
        payload = verify_applicant_update_token(token)
    except TokenError:
        raise HTTPException(
            status_code=401,
            detail="This confirmation link is invalid or has expired. Please submit a new update request.",
        )

    token_hash = hash_opaque_token(token)
    applicant = applicant_service.get_applicant_by_email(payload["email"])
    if (not applicant or not _hash_matches(applicant.get("update_token_hash"), token_hash)) and payload.get("irain"):
        applicant = applicant_service.get_applicant(payload["irain"]) or applicant
    if not applicant:
        raise HTTPException(status_code=404, detail="We couldn't find your profile. Please contact support if this persists.")
    if applicant["archived"]:
        raise HTTPException(status_code=403, detail="This applicant profile has been archived and can no longer be updated.")
    if not _hash_matches(applicant.get("update_token_hash"), token_hash):
        raise HTTPException(status_code=403, detail="This confirmation link is no longer valid. Please submit a new update request.")
    if is_expired(applicant.get("update_token_expires_at")):
        raise HTTPException(status_code=403, detail="This confirmation link has expired. Please submit a new update request.")

    raw_payload = applicant.get("update_pending_payload") or ""
    if not raw_payload.strip():
        raise HTTPException(status_code=400, detail="No pending update found. Your profile may have already been updated.")
    pending = applicant_service.parse_pending_payload(raw_payload)
    if pending is None:
        raise HTTPException(status_code=400, detail="There was a problem processing your update. Please try again.")

    irain = applicant["irain"]
    fields = {column: pending[column] for column in applicant_service.PROFILE_FIELDS if pending.get(column) is not None}
    applicant_key = None
    if not applicant.get("secret_hash"):
        applicant_key = create_applicant_secret()
        fields["secret_hash"] = hash_applicant_secret(applicant_key)
    fields.update({"update_token_hash": None, "update_token_expires_at": None, "update_pending_payload": None})
    applicant_service.update_applicant(irain, fields)
    logger.info("Applied pending profile update for %s", irain)

    updated = applicant_service.get_applicant(irain)
    ineligible = applicant_service.applicant_is_ineligible(updated)

    if ineligible:
        try:
            _cancel_meetings_for_ineligible(updated)
        except SQLAlchemyError as e:
            logger.error("Failed to close applications for ineligible applicant %s: %s", irain, e)
    try:
        _complete_update_request(updated, pending, ineligible)
    except SQLAlchemyError as e:
        logger.error("Failed to record update request for %s: %s", irain, e)

    confirmed = notifications.applicant_registration_confirmed(
        updated.get("first_name") or "there", irain, applicant_key, ineligible, updated=True
    )
    try_send_mail(pending.get("email") or payload["email"], confirmed.subject, confirmed.text, html=confirmed.html)
    return {"ok": True}


@router.get("/confirm-update", response_class=HTMLResponse)
async def confirm_update_page(request: Request):
    try:
        _confirm_update(await _read_token(request))
    except HTTPException as e:
        return _html_page("Update failed", str(e.detail), e.status_code)
    return _html_page("Profile Updated", "Your iRefair profile has been updated. Check your email for a summary.")


@router.post("/confirm-update")
async def confirm_update(request: Request):
    return _confirm_update(await _read_token(request))


# ============================================================
# UPDATE REQUEST PREFILL
# ============================================================

@router.get("/data")
async def get_update_request_data(updateToken: str = "", appId: str = ""):
    """Profile and applications for the form behind a referrer's update-request link."""
    update_token = updateToken.strip()
    application_id = appId.strip()
    if not update_token or not application_id:
        raise HTTPException(status_code=400, detail="Missing updateToken or appId")

    application = application_service.get_application(application_id)
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")
    if is_expired(application.get("update_request_expires_at")):
        raise HTTPException(status_code=410, detail="Update link has expired")
    if not _hash_matches(application.get("update_request_token_hash"), hash_opaque_token(update_token)):
        raise HTTPException(status_code=401, detail="Invalid update token")

    applicant_id = application.get("applicant_id")
    applicant = applicant_service.find_applicant_by_identifier(applicant_id) if applicant_id else None
    if not applicant:
        raise HTTPException(status_code=404, detail="Applicant not found")

    ids = {applicant_id, applicant["irain"], applicant.get("legacy_applicant_id")}
    rows, _ = application_service.list_applications(applicant_ids=[i for i in ids if i], archived=None, limit=None)
    applications = [
        {
            "id": row["id"],
            "timestamp": row.get("created_at") or "",
            "position": row.get("position") or "",
            "iCrn": row.get("ircrn") or "",
            "status": application_service.normalize_status(row.get("status")),
            "meetingDate": row.get("meeting_date") or "",
            "meetingTime": row.get("meeting_time") or "",
            "meetingTimezone": row.get("meeting_timezone") or "",
            "meetingUrl": row.get("meeting_url") or "",
            "resumeFileName": row.get("resume_file_name") or "",
            "referrerIrref": row.get("referrer_irref") or "",
        }
        for row in rows
    ]

    profile = applicant_service.applicant_to_dict(applicant)
    data_keys = (
        "firstName", "middleName", "familyName", "email", "phone", "locatedCanada", "province",
        "authorizedCanada", "eligibleMoveCanada", "countryOfOrigin", "languages", "languagesOther",
        "industryType", "industryOther", "employmentStatus", "linkedin", "resumeFileName",
        "desiredRole", "targetCompanies", "hasPostings", "postingNotes", "pitch",
    )
    return {
        "ok": True,
        "updatePurpose": application.get("update_request_purpose") or "cv",
        "applications": applications,
        "data": {key: profile[key] for key in data_keys},
    }
