"""
Founder Console - Referrer Routes

GET    /founder/referrers - List referrers
GET    /founder/referrers/{irref} - Get referrer (with companies and missing fields)
PATCH  /founder/referrers/{irref} - Update admin fields
DELETE /founder/referrers/{irref} - Archive referrer
GET    /founder/referrers/{irref}/companies - Referrer companies, pending first
POST   /founder/referrers/{irref}/companies - Add a company for a referrer
POST   /founder/referrers/{irref}/pending-updates - Approve or deny a profile update
POST   /founder/referrers/{irref}/rotate-portal-token - Invalidate issued portal links
POST   /founder/referrers/{irref}/invite-meeting - Invite the referrer to meet the founder
PATCH  /founder/referrer-companies/{company_id} - Edit company details
POST   /founder/referrer-companies/{company_id}/approval - Approve or deny a company
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from irefair.core.auth import require_founder
from irefair.core.config import get_settings
from irefair.core.exceptions import ConflictError, NotFoundError, ValidationError
from irefair.core.tokens import TokenError
from irefair.schemas.schemas import (
    CompanyApprovalRequest,
    CompanyCreate,
    CompanyPatch,
    InviteMeetingRequest,
    PendingUpdateAction,
    ReferrerAdminPatch,
)
from irefair.services import mobile_auth, notifications, referrer_service
from irefair.services.mailer import MAIL_ERRORS, send_mail
from irefair.services.portal_links import portal_link_for, send_referrer_portal_link_email
from irefair.utils.timezone import utc_now_iso
from irefair.utils.validation import normalize_http_url

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/founder", tags=["Founder"])


def _load_referrer(irref: str) -> dict:
    referrer = referrer_service.get_referrer(irref)
    if not referrer:
        raise HTTPException(status_code=404, detail="Referrer not found")
    return referrer


def _missing_fields(referrer: dict, companies: list) -> list:
    missing = []
    if not referrer.get("email"):
        missing.append("Email")
    if not referrer.get("phone"):
        missing.append("Phone")
    if not referrer.get("company") and not companies:
        missing.append("Company")
    if not referrer.get("careers_portal") and not any(company.get("careers_portal") for company in companies):
        missing.append("Careers Portal")
    return missing


def _sorted_companies(companies: list) -> list:
    """Pending companies first, newest first within each group."""
    newest_first = sorted(companies, key=lambda company: company.get("created_at") or "", reverse=True)
    return sorted(
        newest_first,
        key=lambda company: (company.get("approval") or referrer_service.APPROVAL_PENDING) != referrer_service.APPROVAL_PENDING,
    )


# ============================================================
# REFERRERS
# ============================================================

@router.get("/referrers")
async def list_referrers(
    search: Optional[str] = None,
    status: Optional[str] = None,
    company: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    founder: dict = Depends(require_founder),
):
    items, total = referrer_service.list_referrers(
        search=search, status=status, company=company, limit=max(limit, 1), offset=max(offset, 0)
    )
    return {"ok": True, "items": [referrer_service.referrer_to_dict(item) for item in items], "total": total}


@router.get("/referrers/{irref}")
async def get_referrer(irref: str, founder: dict = Depends(require_founder)):
    referrer = _load_referrer(irref)
    companies = referrer_service.list_companies(referrer["irref"])
    item = referrer_service.referrer_to_dict(referrer)
    item["companies"] = [referrer_service.company_to_dict(company) for company in _sorted_companies(companies)]
    item["missingFields"] = _missing_fields(referrer, companies)
    return {"ok": True, "item": item}


@router.patch("/referrers/{irref}")
async def update_referrer(irref: str, data: ReferrerAdminPatch, founder: dict = Depends(require_founder)):
    referrer = _load_referrer(irref)
    fields = {key: ("" if value is None else value) for key, value in data.model_dump(exclude_unset=True).items()}
    referrer_service.update_referrer_admin(referrer["irref"], fields)
    return {"ok": True, "updated": list(data.model_dump(exclude_unset=True, by_alias=True).keys())}


@router.delete("/referrers/{irref}")
async def archive_referrer(irref: str, founder: dict = Depends(require_founder)):
    referrer = _load_referrer(irref)
    if referrer.get("archived"):
        raise HTTPException(status_code=400, detail="Referrer is already archived")
    referrer_service.archive_referrer(referrer["irref"], founder.get("email") or "founder")
    revoked = mobile_auth.revoke_all_sessions(mobile_auth.ROLE_REFERRER, referrer["irref"])
    if revoked:
        logger.info("Revoked %d mobile sessions for archived referrer %s", revoked, referrer["irref"])
    return {"ok": True}


# ============================================================
# REFERRER COMPANIES
# ============================================================

@router.get("/referrers/{irref}/companies")
async def list_referrer_companies(irref: str, founder: dict = Depends(require_founder)):
    referrer = _load_referrer(irref)
    companies = _sorted_companies(referrer_service.list_companies(referrer["irref"]))
    return {"ok": True, "companies": [referrer_service.company_to_dict(company) for company in companies]}


@router.post("/referrers/{irref}/companies")
async def add_referrer_company(irref: str, data: CompanyCreate, founder: dict = Depends(require_founder)):
    referrer = _load_referrer(irref)
    company_name = (data.company_name or "").strip()
    if not company_name:
        raise HTTPException(status_code=400, detail="Company name is required.")
    if referrer_service.find_company_by_name(referrer["irref"], company_name):
        raise HTTPException(status_code=409, detail="This referrer already has a company with that name.")

    careers_portal = (data.careers_portal or "").strip()
    company_id = referrer_service.add_company(
        referrer["irref"],
        company_name,
        (data.company_industry or "").strip(),
        normalize_http_url(careers_portal) or careers_portal,
        (data.work_type or "").strip(),
    )
    return {"ok": True, "companyId": company_id}


@router.patch("/referrer-companies/{company_id}")
async def update_referrer_company(company_id: str, data: CompanyPatch, founder: dict = Depends(require_founder)):
    if not referrer_service.get_company(company_id):
        raise HTTPException(status_code=404, detail="Company not found")

    patch = {key: (value or "").strip() for key, value in data.model_dump(exclude_unset=True).items()}
    if "company_name" in patch and not patch["company_name"]:
        raise HTTPException(status_code=400, detail="Company name cannot be empty.")
    if not patch:
        return {"ok": True, "message": "No changes"}

    company = referrer_service.update_company(company_id, patch)
    return {"ok": True, "company": referrer_service.company_to_dict(company)}


@router.post("/referrer-companies/{company_id}/approval")
async def set_company_approval(company_id: str, data: CompanyApprovalRequest, founder: dict = Depends(require_founder)):
    """
    Approve or deny a referrer company.

    A newly approved company gets an iRCRN and the referrer is emailed a
    portal link. A mail failure is reported in `emailError` without
    undoing the approval.
    """
    approval = (data.approval or "").strip().lower()
    if approval not in (referrer_service.APPROVAL_APPROVED, referrer_service.APPROVAL_DENIED):
        raise HTTPException(status_code=400, detail="Invalid approval value. Use approved or denied.")

    company = referrer_service.get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    referrer = _load_referrer(company["referrer_irref"])

    if approval == referrer_service.APPROVAL_APPROVED:
        if not referrer.get("email"):
            raise HTTPException(
                status_code=400, detail="Referrer email is missing. Please add the email before approving."
            )
        if not (company.get("company_name") or "").strip():
            raise HTTPException(status_code=400, detail="Company name is missing. Please add it before approving.")

    try:
        result = referrer_service.set_company_approval(company_id, approval)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    updated = result["company"]
    body = {
        "ok": True,
        "approval": approval,
        "companyIrcrn": updated.get("company_ircrn") or "",
        "companyId": company_id,
    }
    if approval == referrer_service.APPROVAL_DENIED:
        return body

    body["isFirstCompanyApproval"] = result["was_first_approval"]
    body["portalLinkSent"] = False
    if company.get("approval") == referrer_service.APPROVAL_APPROVED:
        return body

    try:
        link = portal_link_for(referrer["irref"])
        send_referrer_portal_link_email(referrer["email"], referrer.get("name"), link)
        body["portalLinkSent"] = True
    except (NotFoundError, TokenError, ValueError) + MAIL_ERRORS as e:
        logger.error("Approved %s but could not email the portal link to %s: %s", company_id, referrer["irref"], e)
        body["emailError"] = "Company approved, but the portal link email could not be sent."
    return body


# ============================================================
# PROFILE UPDATES, PORTAL TOKEN, MEETINGS
# ============================================================

@router.post("/referrers/{irref}/pending-updates")
async def resolve_pending_update(irref: str, data: PendingUpdateAction, founder: dict = Depends(require_founder)):
    update_id = (data.update_id or "").strip()
    if not update_id:
        raise HTTPException(status_code=400, detail="Missing updateId.")
    action = (data.action or "").strip().lower()
    if action not in ("approve", "deny"):
        raise HTTPException(status_code=400, detail="Invalid action. Use approve or deny.")

    try:
        status = referrer_service.resolve_pending_update(irref, update_id, action)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ConflictError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "action": status, "updateId": update_id}


@router.post("/referrers/{irref}/rotate-portal-token")
async def rotate_portal_token(irref: str, founder: dict = Depends(require_founder)):
    """Bump the token version so every issued portal link (and mobile session) stops working."""
    referrer = _load_referrer(irref)
    version = referrer_service.rotate_portal_token_version(referrer["irref"])
    mobile_auth.revoke_all_sessions(mobile_auth.ROLE_REFERRER, referrer["irref"])
    return {"ok": True, "version": version}


@router.post("/referrers/{irref}/invite-meeting")
async def invite_meeting(irref: str, data: Optional[InviteMeetingRequest] = None, founder: dict = Depends(require_founder)):
    referrer = _load_referrer(irref)
    if not referrer.get("email"):
        raise HTTPException(status_code=400, detail="Referrer email is missing; cannot send invite.")

    link = normalize_http_url((data.link if data else None) or settings.founder_meet_link)
    email = notifications.meet_founder_invite(referrer.get("name") or "", referrer["irref"], link)
    try:
        send_mail(referrer["email"], email.subject, email.text, html=email.html)
    except MAIL_ERRORS as e:
        logger.error("Failed to send meeting invite to %s: %s", referrer["irref"], e)
        raise HTTPException(status_code=500, detail="Unable to send invite.")

    referrer_service.update_referrer(referrer["irref"], {
        "status": "meeting invited",
        "last_contacted_at": utc_now_iso(),
    })
    return {"ok": True}
