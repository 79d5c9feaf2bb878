"""
Apply Routes

POST /apply - Submit a referral application to a hiring company (multipart form)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from irefair.core.config import get_settings
from irefair.core.rate_limit import rate_limited
from irefair.services import notifications, referrer_service
from irefair.services.applicant_service import applicant_is_ineligible, find_applicant_by_identifier, full_name
from irefair.services.application_service import create_application
from irefair.services.file_scan import check_resume
from irefair.services.mailer import MAIL_ERRORS, send_mail
from irefair.services.portal_links import try_portal_link_for
from irefair.services.resume_service import get_resume_store
from irefair.utils.file_upload import RESUME_REQUIRED_MESSAGE, read_resume_upload

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/apply", tags=["Applications"])

SUBMIT_FAILED_MESSAGE = "Unable to submit your application right now. Please try again shortly."


def _form_value(form, key: str) -> str:
    value = form.get(key)
    return value.strip() if isinstance(value, str) else ""


def resolve_referrer(ircrn: str) -> Optional[dict]:
    """
    The referrer behind an approved company, else the configured fallback.

    Returns {"irref", "name", "email", "company_id"} or None.
    """
    company = referrer_service.find_approved_company_by_ircrn(ircrn)
    if company:
        referrer = referrer_service.get_referrer(company["referrer_irref"])
        if referrer and referrer.get("email"):
            return {
                "irref": referrer["irref"],
                "name": referrer.get("name") or "",
                "email": referrer["email"],
                "company_id": company["id"],
            }

    if settings.application_fallback_referrer_email:
        return {
            "irref": None,
            "name": settings.application_fallback_referrer_name or "Referrer",
            "email": settings.application_fallback_referrer_email,
            "company_id": None,
        }
    return None


@router.post("", dependencies=[Depends(rate_limited("apply"))])
async def submit_application(request: Request):
    form = await request.form()
    applicant_id = _form_value(form, "applicantId") or _form_value(form, "candidateId")
    ircrn = _form_value(form, "iCrn")
    position = _form_value(form, "position")
    reference_number = _form_value(form, "referenceNumber")

    if not applicant_id or not ircrn or not position:
        raise HTTPException(
            status_code=400,
            detail="Please provide your iRAIN (or legacy candidate ID), iRCRN, and the position you are applying for.",
        )

    resume = await read_resume_upload(form.get("resume"))
    if resume is None:
        raise HTTPException(status_code=400, detail=RESUME_REQUIRED_MESSAGE)

    applicant = find_applicant_by_identifier(applicant_id)
    if not applicant or applicant.get("archived"):
        raise HTTPException(status_code=404, detail="We could not find a candidate with that ID.")

    referrer = resolve_referrer(ircrn)
    if not referrer:
        raise HTTPException(status_code=404, detail="We could not find a referrer for that company yet.")

    content, filename, content_type = resume
    check_resume(content, filename, content_type)
    irain = applicant["irain"]
    store = get_resume_store()
    file_id = store.insert(irain, content, filename, content_type, kind="application")

    email = notifications.application_to_referrer(
        referrer["name"],
        full_name(applicant),
        applicant.get("email") or "",
        applicant.get("phone") or "",
        irain,
        ircrn,
        position,
        reference_number,
        filename,
        try_portal_link_for(referrer["irref"]),
    )
    try:
        send_mail(referrer["email"], email.subject, email.text, html=email.html)
        application_id = create_application({
            "applicant_id": irain,
            "ircrn": ircrn,
            "position": position,
            "reference_number": reference_number,
            "resume_file_id": file_id,
            "resume_file_name": filename,
            "referrer_irref": referrer["irref"],
            "referrer_email": referrer["email"],
            "referrer_company_id": referrer["company_id"],
            "status": "ineligible" if applicant_is_ineligible(applicant) else "new",
        })
    except MAIL_ERRORS + (SQLAlchemyError,) as e:
        logger.error("Error submitting application for %s to %s: %s", irain, ircrn, e)
        store.delete(file_id)
        raise HTTPException(status_code=500, detail=SUBMIT_FAILED_MESSAGE)

    return {"ok": True, "id": application_id}
