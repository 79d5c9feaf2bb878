"""
Scheduled Job Routes (Authorization: Bearer <CRON_SECRET>)

GET /cron/cleanup-expired-applicants - Delete unconfirmed registrations past their deadline
GET /cron/applicant-registration-reminders - Remind pending applicants to confirm
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from irefair.core.auth import require_cron_auth
from irefair.core.config import get_settings
from irefair.core.tokens import create_applicant_update_token, hash_opaque_token, parse_iso
from irefair.services import applicant_service, notifications
from irefair.services.mailer import MAIL_ERRORS, send_mail
from irefair.services.resume_service import get_resume_store
from irefair.utils.timezone import utc_now_iso

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(require_cron_auth)])

REMINDER_MIN_AGE_HOURS = 24


@router.get("/cleanup-expired-applicants")
async def cleanup_expired_applicants():
    result = applicant_service.cleanup_expired_pending_applicants()
    cleared_updates = applicant_service.cleanup_expired_pending_updates()
    logger.info(
        "Cron cleanup: %d applicants deleted, %d errors, %d pending updates cleared",
        result["deleted"], result["errors"], cleared_updates,
    )
    return {"ok": True, "deleted": result["deleted"], "errors": result["errors"]}


@router.get("/applicant-registration-reminders")
async def send_registration_reminders():
    """
    One reminder per pending registration.

    The reminder carries a fresh token pinned to the original deadline; its
    hash is stored separately so the first confirmation link keeps working.
    """
    due = applicant_service.find_applicants_needing_reminder(
        min_age_hours=REMINDER_MIN_AGE_HOURS,
        token_ttl_seconds=settings.applicant_update_token_ttl_seconds,
    )

    sent = 0
    errors = 0
    for applicant in due:
        expires_at = parse_iso(applicant["update_token_expires_at"])
        token = create_applicant_update_token(
            applicant["email"], applicant["irain"], applicant.get("locale") or "en", exp=int(expires_at.timestamp())
        )
        email = notifications.applicant_registration_reminder(
            applicant.get("first_name") or "",
            notifications.applicant_confirm_registration_link(token),
            expires_at.strftime("%B %d, %Y").replace(" 0", " "),
        )
        try:
            send_mail(applicant["email"], email.subject, email.text, html=email.html)
            applicant_service.update_applicant(applicant["irain"], {
                "reminder_token_hash": hash_opaque_token(token),
                "reminder_sent_at": utc_now_iso(),
            })
            sent += 1
        except MAIL_ERRORS + (SQLAlchemyError,) as e:
            logger.error("Failed to send registration reminder to %s: %s", applicant["irain"], e)
            errors += 1

    return {"ok": True, "sent": sent, "errors": errors, "total": len(due)}
