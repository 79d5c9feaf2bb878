"""
Referrer Portal Routes

GET    /referrer/portal/data - Referrer summary, applications and approved companies
POST   /referrer/portal/feedback - Record a referrer decision on an application
GET    /referrer/portal/resume - Download the CV attached to an application
POST   /referrer/portal/link - Founder: generate and email a portal link
POST   /referrer/portal/request-link - Email a fresh portal link to a referrer
POST   /referrer/portal/session - Exchange a link token for the portal cookie
DELETE /referrer/portal/session - Log out of the portal
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from irefair.core.auth import (
    clear_referrer_portal_cookie,
    get_referrer_portal_token,
    require_founder,
    set_referrer_portal_cookie,
)
from irefair.core.config import get_settings
from irefair.core.exceptions import NotFoundError
from irefair.core.rate_limit import check_rate_limit
from irefair.core.tokens import (
    TokenError,
    create_opaque_token,
    hash_opaque_token,
    normalize_portal_token_version,
    verify_referrer_token,
)
from irefair.schemas.schemas import EmailBody, FeedbackAction, FeedbackRequest, PortalLinkRequest, TokenBody
from irefair.services import application_service, notifications, referrer_service
from irefair.services.action_history import append_action_history_entry, make_entry, parse_action_history
from irefair.services.applicant_service import find_applicant_by_identifier, full_name
from irefair.services.mailer import MAIL_ERRORS, try_send_mail
from irefair.services.portal_links import build_referrer_portal_link, send_referrer_portal_link_email
from irefair.services.resume_service import get_resume_store
from irefair.utils.timezone import COMMON_TIMEZONES, iso_in
from irefair.utils.validation import is_valid_email, normalize_email, normalize_http_url

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrer/portal", tags=["Referrer Portal"])

ARCHIVED_MESSAGE = "This referrer account has been archived and portal access is no longer available."

RESCHEDULE_TOKEN_DAYS = 30
UPDATE_REQUEST_TOKEN_DAYS = 7

STATUS_FOR_ACTION = {
    FeedbackAction.schedule_meeting: "meeting scheduled",
    FeedbackAction.cancel_meeting: "new",
    FeedbackAction.reject: "not a good fit",
    FeedbackAction.cv_mismatch: "cv mismatch",
    FeedbackAction.request_cv_update: "cv update requested",
    FeedbackAction.request_info: "info requested",
    FeedbackAction.mark_interviewed: "interviewed",
    FeedbackAction.offer_job: "hired",
}
VALID_ACTIONS = ", ".join(action.value for action in FeedbackAction)


def authenticate_referrer(
    token: str,
    missing_status: int = 400,
    missing_message: str = "Missing token",
    invalid_message: str = "Invalid or expired token",
    not_found_message: str = "Referrer not found",
    version_message: str = "Forbidden",
) -> dict:
    """
    Verify a portal token against the stored referrer.

    Returns the referrer row. The token version must equal the referrer's
    current portal token version and archived referrers are refused.
    """
    if not token:
        raise HTTPException(status_code=missing_status, detail=missing_message)
    try:
        payload = verify_referrer_token(token)
    except TokenError:
        raise HTTPException(status_code=401, detail=invalid_message)

    referrer = referrer_service.get_referrer(payload["irref"])
    if not referrer:
        raise HTTPException(status_code=404, detail=not_found_message)
    if payload["v"] != normalize_portal_token_version(referrer.get("portal_token_version")):
        raise HTTPException(status_code=403, detail=version_message)
    if referrer.get("archived"):
        raise HTTPException(status_code=403, detail=ARCHIVED_MESSAGE)
    return referrer


def _owns(referrer: dict, application: dict) -> bool:
    owner = (application.get("referrer_irref") or "").strip().lower()
    return bool(owner) and owner == referrer["irref"].strip().lower()


def _sanitize_filename(name: str) -> str:
    trimmed = (name or "").strip() or "resume"
    return re.sub(r'[<>:/\\|?*]', "_", re.sub(r'[\r\n"]', "", trimmed))


# ============================================================
# PORTAL DATA
# ============================================================

def portal_items(referrer: dict) -> dict:
    """Applications addressed to the referrer, with applicant details, plus approved companies."""
    applications, total = application_service.list_applications(referrer_irref=referrer["irref"], limit=None)
    companies = referrer_service.list_companies(referrer["irref"])
    by_id = {company["id"]: company for company in companies}
    by_ircrn = {company["company_ircrn"]: company for company in companies if company.get("company_ircrn")}

    items = []
    for application in applications:
        applicant = find_applicant_by_identifier(application["applicant_id"]) if application.get("applicant_id") else None
        applicant = applicant or {}
        company = by_id.get(application.get("referrer_company_id")) or by_ircrn.get(application.get("ircrn")) or {}
        items.append({
            "id": application["id"],
            "applicantId": application.get("applicant_id") or "",
            "applicantName": full_name(applicant) if applicant else "",
            "applicantEmail": applicant.get("email") or "",
            "applicantPhone": applicant.get("phone") or "",
            "position": application.get("position") or "",
            "iCrn": application.get("ircrn") or "",
            "companyId": company.get("id") or "",
            "companyName": company.get("company_name") or "",
            "resumeFileName": application.get("resume_file_name") or "",
            "resumeDownloadUrl": (
                f"/api/referrer/portal/resume?applicationId={application['id']}"
                if application.get("resume_file_id") else ""
            ),
            "status": application_service.normalize_status(application.get("status")),
            "ownerNotes": application.get("owner_notes") or "",
            "meetingDate": application.get("meeting_date") or "",
            "meetingTime": application.get("meeting_time") or "",
            "meetingTimezone": application.get("meeting_timezone") or "",
            "meetingUrl": application.get("meeting_url") or "",
            "countryOfOrigin": applicant.get("country_of_origin") or "",
            "languages": applicant.get("languages") or "",
            "languagesOther": applicant.get("languages_other") or "",
            "locatedCanada": applicant.get("located_canada") or "",
            "province": applicant.get("province") or "",
            "authorizedCanada": applicant.get("authorized_canada") or "",
            "eligibleMoveCanada": applicant.get("eligible_move_canada") or "",
            "industryType": applicant.get("industry_type") or "",
            "industryOther": applicant.get("industry_other") or "",
            "employmentStatus": applicant.get("employment_status") or "",
            "actionHistory": parse_action_history(application.get("action_history")),
        })

    approved = [
        {"id": company["id"], "name": company.get("company_name") or "", "ircrn": company.get("company_ircrn") or ""}
        for company in companies
        if company.get("approval") == referrer_service.APPROVAL_APPROVED
    ]
    return {"total": total, "items": items, "companies": approved}


def referrer_summary(referrer: dict) -> dict:
    return {
        "irref": referrer["irref"],
        "name": referrer.get("name") or "",
        "email": referrer.get("email") or "",
        "company": referrer.get("company") or "",
    }


@router.get("/data")
async def get_portal_data(request: Request):
    referrer = authenticate_referrer(get_referrer_portal_token(request))
    return {"ok": True, "referrer": referrer_summary(referrer), **portal_items(referrer)}


# ============================================================
# FEEDBACK
# ============================================================

def _normalize_action(value: Optional[str]) -> Optional[FeedbackAction]:
    if not value:
        return None
    try:
        return FeedbackAction(value.strip().upper().replace("-", "_"))
    except ValueError:
        return None


def _check_transition(action: FeedbackAction, current_status: str) -> None:
    if action == FeedbackAction.offer_job and current_status != "interviewed":
        raise HTTPException(status_code=400, detail="Cannot offer job until the applicant has been interviewed.")
    if action == FeedbackAction.cancel_meeting and current_status != "meeting scheduled":
        raise HTTPException(status_code=400, detail="No meeting is currently scheduled to cancel.")
    if action == FeedbackAction.mark_interviewed and current_status not in ("meeting scheduled", "meeting requested"):
        raise HTTPException(
            status_code=400,
            detail="Can only mark as interviewed after a meeting was scheduled or requested.",
        )


def _meeting_fields(data: FeedbackRequest) -> dict:
    meeting_date = (data.meeting_date or "").strip()
    meeting_time = (data.meeting_time or "").strip()
    meeting_timezone = (data.meeting_timezone or "").strip()
    meeting_url = (data.meeting_url or "").strip()

    if not meeting_date or not meeting_time or not meeting_timezone:
        raise HTTPException(status_code=400, detail="Meeting date, time, and timezone are required.")
    if meeting_timezone not in COMMON_TIMEZONES:
        raise HTTPException(status_code=400, detail="Invalid timezone. Please select from the provided list.")

    normalized_url = ""
    if meeting_url:
        normalized_url = normalize_http_url(meeting_url)
        if not normalized_url:
            raise HTTPException(status_code=400, detail="Invalid meeting URL.")

    return {
        "meeting_date": meeting_date,
        "meeting_time": meeting_time,
        "meeting_timezone": meeting_timezone,
        "meeting_url": normalized_url,
    }


def _applicant_email(action: FeedbackAction, context: dict) -> Optional[notifications.Email]:
    names = (context["applicant_name"], context["referrer_name"], context["company"], context["position"])
    notes = context["notes"]
    if action == FeedbackAction.schedule_meeting:
        return notifications.meeting_invite_to_applicant(
            *names,
            context["meeting_date"], context["meeting_time"], context["meeting_timezone"], context["meeting_url"],
            context["reschedule_token"], context["application_id"],
        )
    if action == FeedbackAction.cancel_meeting:
        return notifications.meeting_cancelled_to_applicant(*names, notes)
    if action == FeedbackAction.reject:
        return notifications.rejection_to_applicant(*names)
    if action == FeedbackAction.cv_mismatch:
        return notifications.cv_mismatch_to_applicant(*names, notes, context["update_token"], context["application_id"])
    if action == FeedbackAction.request_cv_update:
        return notifications.cv_update_request_to_applicant(*names, notes, context["update_token"], context["application_id"])
    if action == FeedbackAction.request_info:
        return notifications.info_request_to_applicant(*names, notes, context["update_token"], context["application_id"])
    if action == FeedbackAction.mark_interviewed:
        return notifications.interview_completed_to_applicant(*names)
    if action == FeedbackAction.offer_job:
        return notifications.job_offer_to_applicant(*names, notes)
    return None


@router.post("/feedback")
async def submit_feedback(data: FeedbackRequest, request: Request):
    """
    Apply a referrer decision to one of their applications.

    Hired is terminal (a repeated OFFER_JOB is a no-op). Scheduling creates a
    30-day reschedule link; CV and info requests create a 7-day update link.
    """
    token = get_referrer_portal_token(request, data.token)
    application_id = (data.application_id or "").strip()
    action = _normalize_action(data.action)
    notes = (data.notes or "").strip()

    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token.")
    if not application_id:
        raise HTTPException(status_code=400, detail="Missing applicationId.")
    if not action:
        raise HTTPException(status_code=400, detail=f"Invalid action. Valid actions: {VALID_ACTIONS}")

    referrer = authenticate_referrer(
        token,
        invalid_message="Invalid or expired token.",
        not_found_message="Referrer not found.",
        version_message="Session expired. Please refresh your portal link.",
    )

    application = application_service.get_application(application_id)
    if not application or not application.get("applicant_id"):
        raise HTTPException(status_code=404, detail="Application not found.")
    if not _owns(referrer, application):
        raise HTTPException(status_code=403, detail="You do not have permission to update this application.")

    current_status = application_service.normalize_status(application.get("status"))
    if current_status == "hired":
        if action != FeedbackAction.offer_job:
            raise HTTPException(status_code=400, detail="This application is already marked as Hired.")
        return {"ok": True, "status": "hired"}
    _check_transition(action, current_status)

    patch = {}
    context = {
        "application_id": application_id,
        "notes": notes,
        "reschedule_token": "",
        "update_token": None,
        "meeting_date": "",
        "meeting_time": "",
        "meeting_timezone": "",
        "meeting_url": "",
    }
    meeting_details = None

    if action == FeedbackAction.schedule_meeting:
        meeting = _meeting_fields(data)
        reschedule_token = create_opaque_token()
        patch.update(meeting)
        patch.update({
            "reschedule_token_hash": hash_opaque_token(reschedule_token),
            "reschedule_token_expires_at": iso_in(days=RESCHEDULE_TOKEN_DAYS),
            "update_request_token_hash": None,
            "update_request_expires_at": None,
            "update_request_purpose": None,
        })
        context.update(meeting)
        context["reschedule_token"] = reschedule_token
        meeting_details = {
            "date": meeting["meeting_date"],
            "time": meeting["meeting_time"],
            "timezone": meeting["meeting_timezone"],
            "url": meeting["meeting_url"],
        }

    if action == FeedbackAction.cancel_meeting:
        patch.update({
            "meeting_date": None,
            "meeting_time": None,
            "meeting_timezone": None,
            "meeting_url": None,
            "reschedule_token_hash": None,
            "reschedule_token_expires_at": None,
        })

    if action in (FeedbackAction.request_cv_update, FeedbackAction.request_info) or (
        action == FeedbackAction.cv_mismatch and data.include_update_link
    ):
        update_token = create_opaque_token()
        patch.update({
            "update_request_token_hash": hash_opaque_token(update_token),
            "update_request_expires_at": iso_in(days=UPDATE_REQUEST_TOKEN_DAYS),
            "update_request_purpose": "info" if action == FeedbackAction.request_info else "cv",
        })
        context["update_token"] = update_token

    new_status = STATUS_FOR_ACTION[action]
    patch["status"] = new_status
    entry = make_entry(
        action.value,
        referrer["irref"],
        performed_by_email=referrer.get("email"),
        notes=notes,
        meeting_details=meeting_details,
    )
    patch["action_history"] = append_action_history_entry(application.get("action_history"), entry)
    application_service.update_application(application_id, patch)
    logger.info("Referrer %s set application %s to %s", referrer["irref"], application_id, new_status)

    applicant = find_applicant_by_identifier(application["applicant_id"])
    if applicant and applicant.get("email"):
        context.update({
            "applicant_name": full_name(applicant),
            "referrer_name": referrer.get("name") or "",
            "company": application_service.company_name_for(application, referrer),
            "position": application.get("position") or "",
        })
        email = _applicant_email(action, context)
        if email:
            try_send_mail(
                applicant["email"], email.subject, email.text, html=email.html,
                reply_to=referrer.get("email") or None,
            )

    if action == FeedbackAction.offer_job and settings.reward_recipient:
        reward = notifications.referral_reward(
            application_id,
            application["applicant_id"],
            application.get("ircrn") or "",
            application.get("position") or "",
            referrer["irref"],
        )
        try_send_mail(settings.reward_recipient, reward.subject, reward.text, html=reward.html)

    return {"ok": True, "status": new_status}


# ============================================================
# RESUME DOWNLOAD
# ============================================================

@router.get("/resume")
async def download_resume(request: Request, applicationId: str = ""):
    if not applicationId:
        raise HTTPException(status_code=400, detail="Missing applicationId")

    referrer = authenticate_referrer(get_referrer_portal_token(request), missing_status=401)

    application = application_service.get_application(applicationId)
    if not application or not application.get("applicant_id"):
        raise HTTPException(status_code=404, detail="Application not found.")
    if not _owns(referrer, application):
        raise HTTPException(status_code=403, detail="Forbidden")

    # Only the CV submitted with this application, never the profile CV
    file_id = (application.get("resume_file_id") or "").strip()
    if not file_id:
        raise HTTPException(status_code=404, detail="Resume not available.")

    document = get_resume_store().get(file_id)
    if not document:
        logger.error("Resume %s for application %s is missing from the document store", file_id, applicationId)
        raise HTTPException(status_code=500, detail="Unable to download resume.")

    filename = _sanitize_filename(application.get("resume_file_name") or document.get("filename") or "resume")
    content_type = "application/pdf" if document.get("content_type") == "application/pdf" else "application/octet-stream"
    return Response(
        content=document["content"],
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "private, no-store, max-age=0",
            "X-Content-Type-Options": "nosniff",
        },
    )


# ============================================================
# PORTAL LINKS
# ============================================================

@router.post("/link")
async def create_portal_link(data: PortalLinkRequest, founder: dict = Depends(require_founder)):
    irref = (data.irref or "").strip()
    if not irref:
        raise HTTPException(status_code=400, detail="Missing iRREF")

    referrer = referrer_service.get_referrer(irref)
    if not referrer:
        raise HTTPException(status_code=404, detail="Referrer not found")

    try:
        version = referrer_service.ensure_portal_token_version(referrer["irref"])
        link = build_referrer_portal_link(referrer["irref"], version)
    except (NotFoundError, TokenError, ValueError) as e:
        logger.error("Failed to generate portal link for %s: %s", irref, e)
        raise HTTPException(status_code=500, detail=str(e) or "Failed to generate portal link")

    if referrer.get("email"):
        try:
            send_referrer_portal_link_email(referrer["email"], referrer.get("name"), link)
        except MAIL_ERRORS:
            logger.warning("Portal link for %s generated but not emailed", irref)

    return {"ok": True, "link": link}


def send_portal_link_by_email(raw_email: Optional[str]) -> dict:
    """
    Email a portal link to the referrer registered with this address.

    Unknown and archived addresses get the same response as known ones.
    """
    email = normalize_email(raw_email)
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email address")

    limit = check_rate_limit(f"ratelimit:portal-link:{email}", settings.portal_link_requests_per_hour, 3600)
    if not limit.allowed:
        raise HTTPException(status_code=429, detail="Too many requests. Please try again in an hour.")

    referrer = referrer_service.get_referrer_by_email(email)
    if not referrer:
        logger.info("Portal link requested for unknown email")
        return {"ok": True}
    if referrer.get("archived"):
        logger.info("Portal link requested for archived referrer %s", referrer["irref"])
        return {"ok": True}

    try:
        version = referrer_service.ensure_portal_token_version(referrer["irref"])
        link = build_referrer_portal_link(referrer["irref"], version)
        send_referrer_portal_link_email(email, referrer.get("name"), link)
    except (NotFoundError, TokenError, ValueError) + MAIL_ERRORS as e:
        logger.error("Error sending portal link to %s: %s", referrer["irref"], e)
        raise HTTPException(status_code=500, detail="Unable to send link. Please try again later.")

    logger.info("Portal link sent to referrer %s", referrer["irref"])
    return {"ok": True}


@router.post("/request-link")
async def request_portal_link(data: EmailBody):
    return send_portal_link_by_email(data.email)


# ============================================================
# SESSION COOKIE
# ============================================================

@router.post("/session")
async def start_portal_session(data: TokenBody, response: Response):
    token = (data.token or "").strip()
    referrer = authenticate_referrer(token)
    set_referrer_portal_cookie(response, token)
    return {"ok": True, "irref": referrer["irref"]}


@router.delete("/session")
async def end_portal_session(response: Response):
    clear_referrer_portal_cookie(response)
    return {"ok": True}
