"""
Application data access.

An application links an applicant (iRAIN) to a referrer company (iRCRN)
for one position. Status changes made by referrers are recorded in the
application's action history.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import text

from irefair.core.exceptions import ConflictError, NotFoundError
from irefair.db.postgres import get_db_session, insert_row, update_row
from irefair.services.action_history import parse_action_history
from irefair.services.identifiers import generate_submission_id
from irefair.services.referrer_service import find_approved_company_by_ircrn, get_company
from irefair.utils.timezone import utc_now_iso

logger = logging.getLogger(__name__)

APPLICATION_STATUSES = (
    "new",
    "meeting requested",
    "meeting scheduled",
    "needs reschedule",
    "interviewed",
    "hired",
    "not a good fit",
    "cv mismatch",
    "cv update requested",
    "info requested",
    "info updated",
    "ineligible",
)

# Statuses after which nothing else happens to an application
CLOSED_STATUSES = ("hired", "not a good fit", "ineligible")

_LEGACY_STATUSES = {
    "wants to meet": "meeting requested",
    "cv not matching requirements": "cv mismatch",
    "cv needs adjustments": "cv update requested",
    "cv missing information": "info requested",
    "he interviewed": "interviewed",
    "met with referrer": "interviewed",
    "he got the job": "hired",
    "landed job": "hired",
}

ADMIN_FIELDS = ("status", "owner_notes")


def normalize_status(value) -> str:
    if not isinstance(value, str) or not value.strip():
        return "new"
    lowered = value.strip().lower()
    return _LEGACY_STATUSES.get(lowered, lowered)


def _stored_status_values(status: str) -> List[str]:
    """Raw column values that read back as `status`, legacy phrases and blanks included."""
    values = [status] + [legacy for legacy, current in _LEGACY_STATUSES.items() if current == status]
    if status == "new":
        values.append("")
    return values


def _fetch_one(db, sql: str, params: dict) -> Optional[dict]:
    row = db.execute(text(sql), params).mappings().first()
    return dict(row) if row else None


def create_application(fields: dict) -> str:
    application_id = generate_submission_id("APP")
    with get_db_session() as db:
        insert_row(db, "applications", {
            "id": application_id,
            "applicant_id": fields["applicant_id"],
            "ircrn": fields.get("ircrn"),
            "position": fields.get("position"),
            "reference_number": fields.get("reference_number"),
            "resume_file_id": fields.get("resume_file_id"),
            "resume_file_name": fields.get("resume_file_name"),
            "referrer_irref": fields.get("referrer_irref"),
            "referrer_email": fields.get("referrer_email"),
            "referrer_company_id": fields.get("referrer_company_id"),
            "status": fields.get("status") or "new",
            "action_history": fields.get("action_history"),
            "archived": False,
            "created_at": utc_now_iso(),
        })
    logger.info("Created application %s for %s", application_id, fields["applicant_id"])
    return application_id


def get_application(application_id: str) -> Optional[dict]:
    with get_db_session() as db:
        return _fetch_one(db, "SELECT * FROM applications WHERE id = :id", {"id": (application_id or "").strip()})


def update_application(application_id: str, fields: dict) -> bool:
    with get_db_session() as db:
        return update_row(db, "applications", "id", application_id, fields) > 0


def list_applications(
    applicant_id: Optional[str] = None,
    applicant_ids: Optional[Iterable[str]] = None,
    referrer_irref: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    archived: Optional[bool] = False,
    limit: Optional[int] = 50,
    offset: int = 0,
) -> Tuple[List[dict], int]:
    clauses = ["1 = 1"]
    params = {}
    if archived is not None:
        clauses.append("archived = :archived")
        params["archived"] = archived
    if applicant_id:
        clauses.append("lower(applicant_id) = :applicant_id")
        params["applicant_id"] = applicant_id.strip().lower()
    if applicant_ids is not None:
        ids = [value.lower() for value in applicant_ids if value]
        if not ids:
            return [], 0
        names = []
        for index, value in enumerate(ids):
            params[f"aid{index}"] = value
            names.append(f":aid{index}")
        clauses.append(f"lower(applicant_id) IN ({', '.join(names)})")
    if referrer_irref:
        clauses.append("lower(referrer_irref) = :irref")
        params["irref"] = referrer_irref.strip().lower()
    if status:
        stored = _stored_status_values(normalize_status(status))
        names = []
        for index, value in enumerate(stored):
            params[f"status{index}"] = value
            names.append(f":status{index}")
        clauses.append(f"lower(trim(coalesce(status, ''))) IN ({', '.join(names)})")
    if search:
        clauses.append(
            "(lower(id) LIKE :search OR lower(applicant_id) LIKE :search OR lower(coalesce(position, '')) LIKE :search"
            " OR lower(coalesce(ircrn, '')) LIKE :search OR lower(coalesce(referrer_irref, '')) LIKE :search)"
        )
        params["search"] = f"%{search.strip().lower()}%"

    where = " AND ".join(clauses)
    sql = f"SELECT * FROM applications WHERE {where} ORDER BY created_at DESC"
    with get_db_session() as db:
        total = db.execute(text(f"SELECT COUNT(*) FROM applications WHERE {where}"), params).scalar() or 0
        if limit is not None:
            sql += " LIMIT :limit OFFSET :offset"
            params = {**params, "limit": limit, "offset": offset}
        rows = db.execute(text(sql), params).mappings().all()
    return [dict(row) for row in rows], total


def update_application_admin(application_id: str, patch: dict) -> Optional[dict]:
    fields = {key: value for key, value in patch.items() if key in ADMIN_FIELDS}
    if "status" in fields:
        fields["status"] = normalize_status(fields["status"])
    if fields:
        update_application(application_id, fields)
    return get_application(application_id)


def find_by_reschedule_token_hash(token_hash: str) -> Optional[dict]:
    if not token_hash:
        return None
    with get_db_session() as db:
        return _fetch_one(
            db,
            "SELECT * FROM applications WHERE reschedule_token_hash = :hash",
            {"hash": token_hash.lower()},
        )


def count_applications_since(since_iso: str) -> int:
    with get_db_session() as db:
        return db.execute(
            text("SELECT COUNT(*) FROM applications WHERE created_at >= :since AND archived = :archived"),
            {"since": since_iso, "archived": False},
        ).scalar() or 0


def find_open_applications_for_applicant(applicant_ids: Iterable[str]) -> List[dict]:
    """Non-archived applications that are not closed yet."""
    items, _ = list_applications(applicant_ids=applicant_ids, archived=False, limit=None)
    return [item for item in items if normalize_status(item.get("status")) not in CLOSED_STATUSES]


def mark_applications_ineligible(application_ids: Iterable[str]) -> int:
    """Set status `ineligible` and drop any scheduled meeting or pending links."""
    updated = 0
    with get_db_session() as db:
        for application_id in application_ids:
            updated += update_row(db, "applications", "id", application_id, {
                "status": "ineligible",
                "meeting_date": None,
                "meeting_time": None,
                "meeting_timezone": None,
                "meeting_url": None,
                "reschedule_token_hash": None,
                "reschedule_token_expires_at": None,
            })
    return updated


# ============================================================
# ARCHIVE
# ============================================================

def archive_application(application_id: str, archived_by: str, fields: Optional[dict] = None) -> dict:
    application = get_application(application_id)
    if not application:
        raise NotFoundError("Application not found")
    if application["archived"]:
        raise ConflictError("Application is already archived")
    update_application(application_id, {
        **(fields or {}),
        "archived": True,
        "archived_at": utc_now_iso(),
        "archived_by": archived_by,
    })
    logger.info("Archived application %s", application_id)
    return get_application(application_id)


def restore_application(application_id: str) -> dict:
    application = get_application(application_id)
    if not application:
        raise NotFoundError("Application not found")
    if not application["archived"]:
        raise ConflictError("Application is not archived")
    update_application(application_id, {"archived": False, "archived_at": None, "archived_by": None})
    return get_application(application_id)


def delete_archived_application(application_id: str) -> dict:
    application = get_application(application_id)
    if not application:
        raise NotFoundError("Application not found")
    if not application["archived"]:
        raise ConflictError("Application must be archived before permanent deletion")
    with get_db_session() as db:
        db.execute(text("DELETE FROM applications WHERE id = :id"), {"id": application_id})
    return application


def application_to_dict(application: dict) -> dict:
    return {
        "id": application["id"],
        "applicantId": application.get("applicant_id") or "",
        "iCrn": application.get("ircrn") or "",
        "position": application.get("position") or "",
        "referenceNumber": application.get("reference_number") or "",
        "resumeFileName": application.get("resume_file_name") or "",
        "hasResume": bool(application.get("resume_file_id")),
        "referrerIrref": application.get("referrer_irref") or "",
        "referrerEmail": application.get("referrer_email") or "",
        "referrerCompanyId": application.get("referrer_company_id") or "",
        "status": normalize_status(application.get("status")),
        "ownerNotes": application.get("owner_notes") or "",
        "meetingDate": application.get("meeting_date") or "",
        "meetingTime": application.get("meeting_time") or "",
        "meetingTimezone": application.get("meeting_timezone") or "",
        "meetingUrl": application.get("meeting_url") or "",
        "actionHistory": parse_action_history(application.get("action_history")),
        "archived": bool(application.get("archived")),
        "archivedAt": application.get("archived_at") or "",
        "archivedBy": application.get("archived_by") or "",
        "createdAt": application.get("created_at") or "",
    }


def company_name_for(application: dict, referrer: Optional[dict] = None) -> str:
    """Company the application was made to: its referrer company, then the iRCRN, then the referrer's own company."""
    company_id = application.get("referrer_company_id")
    if company_id:
        company = get_company(company_id)
        if company and company.get("company_name"):
            return company["company_name"]
    if application.get("ircrn"):
        company = find_approved_company_by_ircrn(application["ircrn"])
        if company and company.get("company_name"):
            return company["company_name"]
    return (referrer or {}).get("company") or ""
