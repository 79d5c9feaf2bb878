"""
Founder Console Routes

POST   /founder/auth/login - Founder login (sets session cookie)
POST   /founder/auth/logout - Clear the founder session
GET    /founder/stats - Headline counts
GET    /founder/applicants - List applicants
GET    /founder/applicants/{irain} - Get applicant
PATCH  /founder/applicants/{irain} - Update admin fields
DELETE /founder/applicants/{irain} - Archive applicant (and their applications)
POST   /founder/applicants/{irain}/request-resume - Email a resume request
POST   /founder/applicants/{irain}/create-application - Link applicant to a company
GET    /founder/applicants/{irain}/resume - Download the profile CV
POST   /founder/applicants/{irain}/resume - Upload a CV on the applicant's behalf
GET    /founder/applications - List applications
GET    /founder/applications/{id} - Get application
PATCH  /founder/applications/{id} - Update status / owner notes
POST   /founder/applications/{id}/archive - Archive with a reason
GET    /founder/archive/{applicants|referrers|applications} - Archived records
POST   /founder/archive/{kind}/{id}/restore - Restore an archived record
DELETE /founder/archive/{kind}/{id} - Permanently delete an archived record
GET    /founder/matches - List matches
POST   /founder/matches - Create a match
PATCH  /founder/matches/{match_id} - Update stage / notes / introSentAt
POST   /founder/matches/{match_id}/send-intro - Email the introduction
GET    /founder/approved-companies - Approved companies (code + name)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from irefair.core.auth import (
    authenticate_founder,
    clear_founder_cookie,
    founder_auth_configured,
    require_founder,
    set_founder_cookie,
)
from irefair.core.exceptions import ConflictError, NotFoundError
from irefair.core.rate_limit import rate_limited
from irefair.schemas.schemas import (
    ApplicantAdminPatch,
    ApplicationAdminPatch,
    ArchiveApplicationRequest,
    CreateApplicationRequest,
    FounderLogin,
    MatchCreate,
    MatchPatch,
)
from irefair.services import applicant_service, application_service, match_service, notifications, referrer_service
from irefair.services.action_history import append_action_history_entry, make_entry
from irefair.services.file_scan import read_and_check_resume
from irefair.services.mailer import MAIL_ERRORS, send_mail, try_send_mail
from irefair.services.portal_links import try_portal_link_for
from irefair.services.resume_service import get_resume_store
from irefair.utils.timezone import iso_in, utc_now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/founder", tags=["Founder"])

APPLICANT_NOT_FOUND = "Applicant not found"


def _founder_email(founder: dict) -> Optional[str]:
    return founder.get("email") or None


def _patch_values(data) -> tuple:
    """(snake_case fields, camelCase keys) for the fields present in a PATCH body."""
    fields = {key: ("" if value is None else value) for key, value in data.model_dump(exclude_unset=True).items()}
    updated = list(data.model_dump(exclude_unset=True, by_alias=True).keys())
    return fields, updated


def _load_applicant(irain: str) -> dict:
    applicant = applicant_service.find_applicant_by_identifier(irain)
    if not applicant:
        raise HTTPException(status_code=404, detail=APPLICANT_NOT_FOUND)
    return applicant


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


# ============================================================
# AUTH
# ============================================================

@router.post("/auth/login", dependencies=[Depends(rate_limited("founder_login"))])
async def login(data: FounderLogin, response: Response):
    if not founder_auth_configured():
        logger.error("Founder login attempted but founder auth is not configured")
        raise HTTPException(status_code=500, detail="Authentication is not configured.")

    email = (data.email or "").strip()
    password = data.password or ""
    if not email or not password:
        raise HTTPException(status_code=400, detail="Please provide email and password.")

    token = authenticate_founder(email, password)
    if not token:
        logger.warning("Failed founder login for %s", email)
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    set_founder_cookie(response, token)
    return {"ok": True}


@router.post("/auth/logout")
async def logout(response: Response):
    clear_founder_cookie(response)
    return {"ok": True}


# ============================================================
# STATS
# ============================================================

@router.get("/stats")
async def get_stats(founder: dict = Depends(require_founder)):
    since = iso_in(days=-7)
    return {
        "ok": True,
        "applicants": applicant_service.count_applicants(),
        "referrers": referrer_service.count_referrers(),
        "applications": application_service.count_applications_since(since),
        "matches": match_service.count_matches(),
        "since": since,
    }


# ============================================================
# APPLICANTS
# ============================================================

@router.get("/applicants")
async def list_applicants(
    search: Optional[str] = None,
    status: Optional[str] = None,
    eligible: Optional[str] = None,
    locatedCanada: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    founder: dict = Depends(require_founder),
):
    applicant_service.cleanup_expired_pending_applicants()
    items, total = applicant_service.list_applicants(
        search=search,
        status=status,
        eligible=_parse_bool(eligible),
        located_canada=locatedCanada,
        limit=max(limit, 1),
        offset=max(offset, 0),
    )
    return {"ok": True, "items": [applicant_service.applicant_to_dict(item) for item in items], "total": total}


@router.get("/applicants/{irain}")
async def get_applicant(irain: str, founder: dict = Depends(require_founder)):
    applicant = _load_applicant(irain)
    return {"ok": True, "item": applicant_service.applicant_to_dict(applicant)}


@router.patch("/applicants/{irain}")
async def update_applicant(irain: str, data: ApplicantAdminPatch, founder: dict = Depends(require_founder)):
    applicant = _load_applicant(irain)
    fields, updated = _patch_values(data)
    applicant_service.update_applicant_admin(applicant["irain"], fields)
    return {"ok": True, "updated": updated}


@router.delete("/applicants/{irain}")
async def archive_applicant(irain: str, founder: dict = Depends(require_founder)):
    """Archive an applicant together with their live applications."""
    applicant = _load_applicant(irain)
    if applicant.get("archived"):
        raise HTTPException(status_code=400, detail="Applicant is already archived")

    archived_by = _founder_email(founder) or "founder"
    applicant_service.archive_applicant(applicant["irain"], archived_by)

    applicant_ids = {applicant["irain"], applicant.get("legacy_applicant_id")}
    applications, _ = application_service.list_applications(
        applicant_ids=[value for value in applicant_ids if value], limit=None
    )
    archived_applications = 0
    for application in applications:
        try:
            application_service.archive_application(application["id"], archived_by)
            archived_applications += 1
        except ConflictError:
            continue
    return {"ok": True, "archivedApplications": archived_applications}


@router.post("/applicants/{irain}/request-resume")
async def request_resume(irain: str, founder: dict = Depends(require_founder)):
    applicant = _load_applicant(irain)
    if not applicant.get("email"):
        raise HTTPException(status_code=400, detail="Applicant email is missing; cannot send request.")

    email = notifications.resume_request(applicant_service.full_name(applicant), applicant["irain"])
    try:
        send_mail(applicant["email"], email.subject, email.text, html=email.html)
    except MAIL_ERRORS as e:
        logger.error("Failed to send resume request to %s: %s", applicant["irain"], e)
        raise HTTPException(status_code=500, detail="Unable to send resume request.")

    applicant_service.update_applicant(applicant["irain"], {
        "status": "resume requested",
        "last_contacted_at": utc_now_iso(),
    })
    return {"ok": True}


@router.post("/applicants/{irain}/create-application")
async def create_application(irain: str, data: CreateApplicationRequest, founder: dict = Depends(require_founder)):
    """
    Link an applicant to an approved company on their behalf.

    Uses the applicant's profile CV; the company's referrer and the
    applicant are both notified.
    """
    applicant = _load_applicant(irain)
    if applicant.get("archived"):
        raise HTTPException(status_code=403, detail="This applicant profile has been archived.")

    ircrn = (data.ircrn or "").strip()
    if not ircrn:
        raise HTTPException(status_code=400, detail="Company iRCRN is required.")

    applicant_ids = [value for value in (applicant["irain"], applicant.get("legacy_applicant_id")) if value]
    for application in application_service.find_open_applications_for_applicant(applicant_ids):
        if (application.get("ircrn") or "").lower() == ircrn.lower():
            raise HTTPException(status_code=409, detail=f"An active application already exists (ID: {application['id']}).")

    if not applicant.get("resume_file_id") or not applicant.get("resume_file_name"):
        raise HTTPException(status_code=409, detail="Resume is missing. Request a CV before creating the application.")

    company = referrer_service.find_approved_company_by_ircrn(ircrn)
    if not company:
        raise HTTPException(status_code=400, detail="No approved company found for that iRCRN.")
    referrer = referrer_service.get_referrer(company["referrer_irref"])
    if not referrer or not referrer.get("email"):
        raise HTTPException(status_code=400, detail="The referrer for that company has no email on file.")

    position = (data.position or "").strip() or "TBD"
    reference_number = (data.reference_number or "").strip() or "TBD"
    entry = make_entry("LINKED_BY_FOUNDER", "founder", performed_by_email=_founder_email(founder))
    application_id = application_service.create_application({
        "applicant_id": applicant["irain"],
        "ircrn": company["company_ircrn"],
        "position": position,
        "reference_number": reference_number,
        "resume_file_id": applicant["resume_file_id"],
        "resume_file_name": applicant["resume_file_name"],
        "referrer_irref": referrer["irref"],
        "referrer_email": referrer["email"],
        "referrer_company_id": company["id"],
        "status": "ineligible" if applicant_service.applicant_is_ineligible(applicant) else "new",
        "action_history": append_action_history_entry(None, entry),
    })
    logger.info("Founder linked %s to %s as %s", applicant["irain"], company["company_ircrn"], application_id)

    applicant_name = applicant_service.full_name(applicant)
    if applicant.get("email"):
        notice = notifications.application_linked_to_applicant(
            applicant_name, company.get("company_name") or "", position, application_id
        )
        try_send_mail(applicant["email"], notice.subject, notice.text, html=notice.html)

    notice = notifications.application_to_referrer(
        referrer.get("name") or "",
        applicant_name,
        applicant.get("email") or "",
        applicant.get("phone") or "",
        applicant["irain"],
        company["company_ircrn"],
        position,
        reference_number,
        applicant["resume_file_name"],
        try_portal_link_for(referrer["irref"]),
    )
    try_send_mail(referrer["email"], notice.subject, notice.text, html=notice.html)

    return {"ok": True, "id": application_id}


@router.get("/applicants/{irain}/resume")
async def download_applicant_resume(irain: str, founder: dict = Depends(require_founder)):
    applicant = _load_applicant(irain)
    document = get_resume_store().get(applicant.get("resume_file_id") or "")
    if not document:
        raise HTTPException(status_code=404, detail="Resume not available.")

    filename = (applicant.get("resume_file_name") or document.get("filename") or "resume").replace('"', "")
    return Response(
        content=document["content"],
        media_type=document.get("content_type") or "application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "private, no-store, max-age=0",
        },
    )


@router.post("/applicants/{irain}/resume")
async def upload_applicant_resume(irain: str, request: Request, founder: dict = Depends(require_founder)):
    applicant = _load_applicant(irain)
    form = await request.form()
    resume = await read_and_check_resume(form.get("resume"))
    if resume is None:
        raise HTTPException(status_code=400, detail="Please upload a resume file.")

    content, filename, content_type = resume
    store = get_resume_store()
    file_id = store.insert(applicant["irain"], content, filename, content_type)
    previous_file_id = applicant.get("resume_file_id")
    applicant_service.update_applicant(applicant["irain"], {"resume_file_id": file_id, "resume_file_name": filename})
    if previous_file_id:
        store.delete(previous_file_id)

    logger.info("Resume uploaded by founder for %s (%s)", applicant["irain"], filename)
    return {"ok": True, "resumeFileName": filename, "resumeFileId": file_id}


# ============================================================
# APPLICATIONS
# ============================================================

@router.get("/applications")
async def list_applications(
    search: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    founder: dict = Depends(require_founder),
):
    items, total = application_service.list_applications(
        search=search, status=status, limit=max(limit, 1), offset=max(offset, 0)
    )
    return {"ok": True, "items": [application_service.application_to_dict(item) for item in items], "total": total}


@router.get("/applications/{application_id}")
async def get_application(application_id: str, founder: dict = Depends(require_founder)):
    application = application_service.get_application(application_id)
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")
    return {"ok": True, "item": application_service.application_to_dict(application)}


@router.patch("/applications/{application_id}")
async def update_application(application_id: str, data: ApplicationAdminPatch, founder: dict = Depends(require_founder)):
    fields, updated = _patch_values(data)
    if "status" in fields and fields["status"]:
        fields["status"] = data.status.value
    if not application_service.update_application_admin(application_id, fields):
        raise HTTPException(status_code=404, detail="Application not found")
    return {"ok": True, "updated": updated}


@router.post("/applications/{application_id}/archive")
async def archive_application(
    application_id: str, data: ArchiveApplicationRequest, founder: dict = Depends(require_founder)
):
    reason = (data.reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Reason is required.")

    application = application_service.get_application(application_id)
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")
    if application.get("archived"):
        raise HTTPException(status_code=400, detail="Application is already archived.")

    founder_email = _founder_email(founder)
    entry = make_entry("ARCHIVED_BY_FOUNDER", "founder", performed_by_email=founder_email, notes=reason)
    application_service.archive_application(
        application_id,
        founder_email or "founder",
        {"action_history": append_action_history_entry(application.get("action_history"), entry)},
    )

    referrer = referrer_service.get_referrer(application.get("referrer_irref") or "")
    company = application_service.company_name_for(application, referrer)
    position = application.get("position") or ""

    if data.notify_applicant is not False:
        applicant = applicant_service.find_applicant_by_identifier(application.get("applicant_id") or "")
        if applicant and applicant.get("email"):
            notice = notifications.application_archived_to_applicant(
                applicant_service.full_name(applicant), company, position
            )
            try_send_mail(applicant["email"], notice.subject, notice.text, html=notice.html)

    referrer_email = (referrer or {}).get("email") or application.get("referrer_email")
    if data.notify_referrer is not False and referrer_email:
        notice = notifications.application_archived_to_referrer(
            (referrer or {}).get("name") or "", application_id, reason
        )
        try_send_mail(referrer_email, notice.subject, notice.text, html=notice.html)

    return {"ok": True}


# ============================================================
# ARCHIVE
# ============================================================

@router.get("/archive/applicants")
async def list_archived_applicants(
    search: Optional[str] = None, limit: int = 50, offset: int = 0, founder: dict = Depends(require_founder)
):
    items, total = applicant_service.list_applicants(
        search=search, archived=True, limit=max(limit, 1), offset=max(offset, 0)
    )
    return {"ok": True, "items": [applicant_service.applicant_to_dict(item) for item in items], "total": total}


@router.get("/archive/referrers")
async def list_archived_referrers(
    search: Optional[str] = None, limit: int = 50, offset: int = 0, founder: dict = Depends(require_founder)
):
    items, total = referrer_service.list_referrers(
        search=search, archived=True, limit=max(limit, 1), offset=max(offset, 0)
    )
    return {"ok": True, "items": [referrer_service.referrer_to_dict(item) for item in items], "total": total}


@router.get("/archive/applications")
async def list_archived_applications(
    search: Optional[str] = None, limit: int = 50, offset: int = 0, founder: dict = Depends(require_founder)
):
    items, total = application_service.list_applications(
        search=search, archived=True, limit=max(limit, 1), offset=max(offset, 0)
    )
    return {"ok": True, "items": [application_service.application_to_dict(item) for item in items], "total": total}


def _run_archive_action(action, record_id: str, not_archived_message: str) -> dict:
    try:
        action(record_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError:
        raise HTTPException(status_code=400, detail=not_archived_message)
    return {"ok": True}


@router.post("/archive/applicants/{irain}/restore")
async def restore_applicant(irain: str, founder: dict = Depends(require_founder)):
    return _run_archive_action(applicant_service.restore_applicant, irain, "Applicant is not archived")


@router.delete("/archive/applicants/{irain}")
async def delete_applicant(irain: str, founder: dict = Depends(require_founder)):
    applicant = applicant_service.get_applicant(irain)
    result = _run_archive_action(
        applicant_service.delete_archived_applicant, irain, "Only archived applicants can be permanently deleted"
    )
    get_resume_store().delete_by_owner(applicant["irain"])
    return result


@router.post("/archive/referrers/{irref}/restore")
async def restore_referrer(irref: str, founder: dict = Depends(require_founder)):
    return _run_archive_action(referrer_service.restore_referrer, irref, "Referrer is not archived")


@router.delete("/archive/referrers/{irref}")
async def delete_referrer(irref: str, founder: dict = Depends(require_founder)):
    return _run_archive_action(
        referrer_service.delete_archived_referrer, irref, "Only archived referrers can be permanently deleted"
    )


@router.post("/archive/applications/{application_id}/restore")
async def restore_application(application_id: str, founder: dict = Depends(require_founder)):
    return _run_archive_action(application_service.restore_application, application_id, "Application is not archived")


@router.delete("/archive/applications/{application_id}")
async def delete_application(application_id: str, founder: dict = Depends(require_founder)):
    return _run_archive_action(
        application_service.delete_archived_application,
        application_id,
        "Only archived applications can be permanently deleted",
    )


# ============================================================
# MATCHES
# ============================================================

@router.get("/matches")
async def list_matches(
    search: Optional[str] = None,
    stage: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    founder: dict = Depends(require_founder),
):
    items, total = match_service.list_matches(search=search, stage=stage, limit=max(limit, 1), offset=max(offset, 0))
    return {"ok": True, "items": [match_service.match_to_dict(item) for item in items], "total": total}


@router.post("/matches")
async def create_match(data: MatchCreate, founder: dict = Depends(require_founder)):
    applicant_irain = (data.applicant_irain or "").strip()
    referrer_irref = (data.referrer_irref or "").strip()
    if not applicant_irain or not referrer_irref:
        raise HTTPException(status_code=400, detail="Applicant iRAIN and referrer iRREF are required.")
    if data.stage and data.stage.strip().lower() not in match_service.MATCH_STAGES:
        raise HTTPException(status_code=400, detail="Invalid stage.")

    match_id = match_service.create_match(
        applicant_irain,
        referrer_irref,
        company_ircrn=(data.company_ircrn or "").strip(),
        position_context=(data.position_context or "").strip(),
        stage=data.stage or "new",
        notes=data.notes or "",
    )
    return {"ok": True, "matchId": match_id}


@router.patch("/matches/{match_id}")
async def update_match(match_id: str, data: MatchPatch, founder: dict = Depends(require_founder)):
    patch = data.model_dump(exclude_unset=True, by_alias=True)
    updated = match_service.update_match(match_id, patch)
    if updated is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return {"ok": True, "updated": updated}


@router.post("/matches/{match_id}/send-intro")
async def send_match_intro(match_id: str, founder: dict = Depends(require_founder)):
    """Email the applicant with the referrer in cc, then move the match to `intro sent`."""
    match = match_service.get_match(match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")

    applicant = applicant_service.find_applicant_by_identifier(match.get("applicant_irain") or "")
    referrer = referrer_service.get_referrer(match.get("referrer_irref") or "")
    if not (applicant and applicant.get("email")) or not (referrer and referrer.get("email")):
        raise HTTPException(status_code=400, detail="Missing applicant or referrer email for intro.")

    company = ""
    if match.get("company_ircrn"):
        approved = referrer_service.find_approved_company_by_ircrn(match["company_ircrn"])
        company = (approved or {}).get("company_name") or match["company_ircrn"]

    email = notifications.match_intro(
        applicant_service.full_name(applicant),
        referrer.get("name") or "",
        company,
        match.get("position_context") or "",
    )
    try:
        send_mail(applicant["email"], email.subject, email.text, html=email.html, cc=referrer["email"])
    except MAIL_ERRORS as e:
        logger.error("Failed to send intro for match %s: %s", match_id, e)
        raise HTTPException(status_code=500, detail="Unable to send intro email.")

    logger.info("Match intro sent for %s", match["match_id"])
    match_service.update_match(match["match_id"], {"stage": match_service.STAGE_INTRO_SENT, "introSentAt": utc_now_iso()})
    return {"ok": True}


# ============================================================
# COMPANIES
# ============================================================

@router.get("/approved-companies")
async def list_approved_companies(founder: dict = Depends(require_founder)):
    companies = [
        {"code": company["company_ircrn"], "name": company.get("company_name") or ""}
        for company in referrer_service.list_approved_companies()
    ]
    return {"ok": True, "companies": companies}
