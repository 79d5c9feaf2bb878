"""
Referrer Routes

POST /referrer - Register as a referrer (or add a company to an existing profile)
GET  /referrer/reschedule - Reschedule confirmation page (HTML)
POST /referrer/reschedule - Request a new meeting time (HTML)
GET  /referrer/reschedule/validate - Check a reschedule link (JSON)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse

from irefair.core.rate_limit import rate_limited
from irefair.core.tokens import hash_opaque_token, is_expired
from irefair.schemas.schemas import ReferrerRegistration
from irefair.services import application_service, notifications, referrer_service
from irefair.services.action_history import append_action_history_entry, make_entry
from irefair.services.applicant_service import find_applicant_by_identifier, full_name
from irefair.services.mailer import MAIL_ERRORS, send_mail, try_send_mail
from irefair.services.portal_links import try_portal_link_for
from irefair.utils.timezone import format_meeting_datetime
from irefair.utils.validation import escape_html, normalize_http_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrer", tags=["Referrers"])


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _send_or_fail(to: str, email: notifications.Email) -> None:
    try:
        send_mail(to, email.subject, email.text, html=email.html)
    except MAIL_ERRORS:
        raise HTTPException(status_code=500, detail="Failed to send email")


# ============================================================
# REGISTRATION
# ============================================================

@router.post("", dependencies=[Depends(rate_limited("referrer"))])
async def register_referrer(data: ReferrerRegistration):
    """
    Register a referrer.

    A known email never creates a second referrer: the submitted company is
    added to the existing profile (pending approval) and changed profile
    details are queued for founder review.
    """
    # Honeypot
    if _clean(data.website):
        return {"ok": True}

    email = _clean(data.email)
    if not email:
        raise HTTPException(status_code=400, detail="Missing required field: email.")

    industry = _clean(data.company_industry)
    industry_other = _clean(data.company_industry_other)
    if industry.lower() == "other" and industry_other:
        industry = industry_other
    careers_portal = _clean(data.careers_portal)
    careers_portal = normalize_http_url(careers_portal) or careers_portal
    company = _clean(data.company)
    name = _clean(data.name)

    profile = {
        "name": name,
        "email": email,
        "phone": _clean(data.phone),
        "country": _clean(data.country),
        "company": company,
        "company_industry": industry,
        "careers_portal": careers_portal,
        "work_type": _clean(data.work_type),
        "linkedin": normalize_http_url(_clean(data.linkedin)) or _clean(data.linkedin),
        "locale": "fr" if _clean(data.language).lower() == "fr" else "en",
    }

    existing = referrer_service.get_referrer_by_email(email)
    if existing:
        return _register_existing(existing, profile)

    irref = referrer_service.create_referrer(profile)
    if company:
        referrer_service.add_company(irref, company, industry, careers_portal, profile["work_type"])

    _send_or_fail(email, notifications.referrer_registration_received(name, irref, company))
    return {"ok": True, "iRref": irref}


def _register_existing(existing: dict, profile: dict) -> dict:
    irref = existing["irref"]
    name = existing.get("name") or profile["name"]

    changes = {
        key: profile[column]
        for key, column in (("name", "name"), ("phone", "phone"), ("country", "country"), ("linkedin", "linkedin"))
        if profile[column] and profile[column] != (existing.get(column) or "")
    }
    if changes:
        update_id = referrer_service.add_pending_update(irref, changes)
        logger.info("Queued profile update %s for referrer %s", update_id, irref)

    company = profile["company"]
    if not company or referrer_service.find_company_by_name(irref, company):
        portal_link = try_portal_link_for(irref) if referrer_service.has_approved_company(irref) else None
        _send_or_fail(profile["email"], notifications.referrer_already_registered(name, irref, portal_link))
        return {"ok": True, "iRref": irref, "isExisting": True}

    company_id = referrer_service.add_company(
        irref, company, profile["company_industry"], profile["careers_portal"], profile["work_type"]
    )
    _send_or_fail(profile["email"], notifications.referrer_new_company_received(name, irref, company))
    return {"ok": True, "iRref": irref, "isExisting": True, "newCompanyAdded": True, "companyId": company_id}


# ============================================================
# RESCHEDULE (applicant follows the link from a meeting invite)
# ============================================================

def _page(title: str, message: str, status_code: int = 200, extra: str = "") -> HTMLResponse:
    body = (
        "<!doctype html><html lang=\"en\"><head><meta charset=\"utf-8\">"
        f"<title>{escape_html(title)} - iRefair</title></head>"
        f"<body><main><h1>{escape_html(title)}</h1><p>{escape_html(message)}</p>{extra}</main></body></html>"
    )
    return HTMLResponse(content=body, status_code=status_code)


def _find_reschedule_application(token: str):
    """Returns (application, None) or (None, (status, message))."""
    application = application_service.find_by_reschedule_token_hash(hash_opaque_token(token))
    if not application:
        return None, (404, "This reschedule link is invalid or has already been used.")
    if is_expired(application.get("reschedule_token_expires_at")):
        return None, (410, "This reschedule link has expired. Please contact the recruiter directly to reschedule.")
    return application, None


@router.get("/reschedule/validate")
async def validate_reschedule(token: str = ""):
    if not token:
        return JSONResponse(status_code=400, content={"valid": False, "error": "Missing reschedule token."})

    application, error = _find_reschedule_application(token)
    if error:
        return JSONResponse(status_code=error[0], content={"valid": False, "error": error[1]})

    meeting_date = application.get("meeting_date") or ""
    meeting_time = application.get("meeting_time") or ""
    meeting_timezone = application.get("meeting_timezone") or ""
    return {
        "valid": True,
        "meetingInfo": {
            "meetingDate": meeting_date,
            "meetingTime": meeting_time,
            "meetingTimezone": meeting_timezone,
            "position": application.get("position") or "the position",
            "formattedDateTime": format_meeting_datetime(meeting_date, meeting_time, meeting_timezone),
        },
    }


@router.get("/reschedule", response_class=HTMLResponse)
async def reschedule_page(token: str = ""):
    if not token:
        return _page("Invalid Link", "This reschedule link is missing required information. Please use the link from your email.", 400)

    application, error = _find_reschedule_application(token)
    if error:
        return _page("Link Not Found" if error[0] == 404 else "Link Expired", error[1], error[0])

    when = format_meeting_datetime(
        application.get("meeting_date") or "", application.get("meeting_time") or "", application.get("meeting_timezone") or ""
    )
    details = f"<p>Current meeting: {escape_html(when)}</p>" if when else ""
    details += f"<p>Position: {escape_html(application.get('position') or 'the position')}</p>"
    form = (
        f"<form method=\"POST\" action=\"/api/referrer/reschedule?token={escape_html(token)}\">"
        "<button type=\"submit\">Yes, request a reschedule</button></form>"
    )
    return _page(
        "Request to Reschedule",
        "Would you like to request a new meeting time? The recruiter will be notified and will reach out with alternative options.",
        extra=details + form,
    )


@router.post("/reschedule", response_class=HTMLResponse)
async def request_reschedule(token: str = ""):
    if not token:
        return _page("Invalid Request", "Missing reschedule token.", 400)

    application, error = _find_reschedule_application(token)
    if error:
        return _page("Link Not Found" if error[0] == 404 else "Link Expired", error[1], error[0])

    meeting_details = None
    if application.get("meeting_date"):
        meeting_details = {
            "date": application["meeting_date"],
            "time": application.get("meeting_time") or "",
            "timezone": application.get("meeting_timezone") or "",
            "url": application.get("meeting_url") or "",
        }
    entry = make_entry(
        "RESCHEDULE_REQUESTED",
        "applicant",
        notes="Applicant requested to reschedule via email link",
        meeting_details=meeting_details,
    )
    application_service.update_application(application["id"], {
        "status": "needs reschedule",
        "meeting_date": None,
        "meeting_time": None,
        "meeting_timezone": None,
        "meeting_url": None,
        "reschedule_token_hash": None,
        "reschedule_token_expires_at": None,
        "action_history": append_action_history_entry(application.get("action_history"), entry),
    })
    logger.info("Reschedule requested for application %s", application["id"])

    referrer = referrer_service.get_referrer(application.get("referrer_irref") or "")
    if referrer and referrer.get("email"):
        applicant = find_applicant_by_identifier(application.get("applicant_id") or "")
        notice = notifications.reschedule_request_to_referrer(
            referrer.get("name") or "",
            full_name(applicant) if applicant else "The applicant",
            application.get("position") or "",
            "",
            try_portal_link_for(referrer["irref"]),
        )
        try_send_mail(referrer["email"], notice.subject, notice.text, html=notice.html)

    return _page(
        "Reschedule Requested",
        "Your request has been submitted successfully. The recruiter has been notified and will reach out with new meeting options.",
    )
