"""
Applicant data access.

Applicants are keyed by iRAIN. Lookups by email are case-insensitive and the
2-of-3 match (full name, email, phone) is used to recognise returning
applicants who registered with slightly different details.
"""

import json
import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import text

from irefair.core.exceptions import ConflictError, NotFoundError
from irefair.core.tokens import is_expired, parse_iso
from irefair.db.postgres import get_db_session, insert_row, update_row
from irefair.services.identifiers import IRAIN_PREFIX, allocate_sequential_id
from irefair.utils.timezone import utc_now, utc_now_iso
from irefair.utils.validation import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

PENDING_CONFIRMATION = "Pending Confirmation"

# Profile columns an applicant may set through the registration form
PROFILE_FIELDS = (
    "first_name",
    "middle_name",
    "family_name",
    "email",
    "phone",
    "linkedin",
    "located_canada",
    "province",
    "authorized_canada",
    "eligible_move_canada",
    "country_of_origin",
    "languages",
    "languages_other",
    "industry_type",
    "industry_other",
    "employment_status",
    "desired_role",
    "target_companies",
    "has_postings",
    "posting_notes",
    "pitch",
    "resume_file_id",
    "resume_file_name",
    "locale",
)

# Columns the founder console may edit
ADMIN_FIELDS = ("status", "owner_notes", "tags", "last_contacted_at", "next_action_at")


def is_ineligible(located_canada: Optional[str], authorized_canada: Optional[str], eligible_move_canada: Optional[str]) -> bool:
    """Outside Canada and unable to move, or inside Canada without work authorisation."""
    located = (located_canada or "").strip().lower()
    authorized = (authorized_canada or "").strip().lower()
    eligible_move = (eligible_move_canada or "").strip().lower()
    return (located == "no" and eligible_move == "no") or (located == "yes" and authorized == "no")


def applicant_is_ineligible(applicant: dict) -> bool:
    return is_ineligible(
        applicant.get("located_canada"),
        applicant.get("authorized_canada"),
        applicant.get("eligible_move_canada"),
    )


def full_name(applicant: dict) -> str:
    parts = [applicant.get("first_name"), applicant.get("middle_name"), applicant.get("family_name")]
    return " ".join(part.strip() for part in parts if part and part.strip())


def _fetch_one(db, sql: str, params: dict) -> Optional[dict]:
    row = db.execute(text(sql), params).mappings().first()
    return dict(row) if row else None


# ============================================================
# LOOKUPS
# ============================================================

def get_applicant(irain: str) -> Optional[dict]:
    with get_db_session() as db:
        return _fetch_one(db, "SELECT * FROM applicants WHERE lower(irain) = :irain", {"irain": (irain or "").strip().lower()})


def get_applicant_by_email(email: str) -> Optional[dict]:
    normalized = normalize_email(email)
    if not normalized:
        return None
    with get_db_session() as db:
        return _fetch_one(
            db,
            "SELECT * FROM applicants WHERE lower(email) = :email ORDER BY created_at DESC LIMIT 1",
            {"email": normalized},
        )


def find_applicant_by_identifier(identifier: str) -> Optional[dict]:
    """Resolve an iRAIN, a legacy applicant id, or an email address."""
    value = (identifier or "").strip().lower()
    if not value:
        return None
    with get_db_session() as db:
        return _fetch_one(
            db,
            """
            SELECT * FROM applicants
            WHERE lower(irain) = :value OR lower(legacy_applicant_id) = :value OR lower(email) = :value
            ORDER BY CASE WHEN lower(irain) = :value THEN 0 WHEN lower(legacy_applicant_id) = :value THEN 1 ELSE 2 END
            LIMIT 1
            """,
            {"value": value},
        )


def find_existing_applicant(first_name: str, family_name: str, email: str, phone: str) -> Optional[dict]:
    """
    Match a returning applicant when at least two of name, email and phone agree.

    Name compares first + family name case-insensitively; phone compares
    digits only.
    """
    wanted_name = f"{(first_name or '').strip()} {(family_name or '').strip()}".strip().lower()
    wanted_email = normalize_email(email)
    wanted_phone = normalize_phone(phone)

    with get_db_session() as db:
        rows = db.execute(
            text("SELECT irain, first_name, family_name, email, phone FROM applicants ORDER BY created_at DESC")
        ).mappings().all()

        for row in rows:
            name = f"{(row['first_name'] or '').strip()} {(row['family_name'] or '').strip()}".strip().lower()
            score = 0
            if wanted_name and name == wanted_name:
                score += 1
            if wanted_email and normalize_email(row["email"]) == wanted_email:
                score += 1
            if wanted_phone and normalize_phone(row["phone"]) == wanted_phone:
                score += 1
            if score >= 2:
                return _fetch_one(db, "SELECT * FROM applicants WHERE irain = :irain", {"irain": row["irain"]})
    return None


# ============================================================
# WRITES
# ============================================================

def create_applicant(fields: dict) -> str:
    """Insert a new applicant and return its iRAIN. `fields` uses column names."""
    with get_db_session() as db:
        irain = fields.get("irain") or allocate_sequential_id(db, IRAIN_PREFIX, "applicants", "irain")
        values = {column: fields.get(column) for column in PROFILE_FIELDS}
        values.update({
            "irain": irain,
            "first_name": fields.get("first_name") or "",
            "email": fields.get("email") or "",
            "locale": fields.get("locale") or "en",
            "registration_status": fields.get("registration_status") or "",
            "update_token_hash": fields.get("update_token_hash"),
            "update_token_expires_at": fields.get("update_token_expires_at"),
            "legacy_applicant_id": fields.get("legacy_applicant_id"),
            "secret_hash": fields.get("secret_hash"),
            "archived": False,
            "created_at": utc_now_iso(),
        })
        insert_row(db, "applicants", values)
    logger.info("Created applicant %s", irain)
    return irain


def update_applicant(irain: str, fields: dict) -> bool:
    with get_db_session() as db:
        return update_row(db, "applicants", "irain", irain, fields) > 0


def update_applicant_admin(irain: str, patch: dict) -> Optional[dict]:
    """Apply founder edits (admin columns only) and return the updated row."""
    fields = {key: value for key, value in patch.items() if key in ADMIN_FIELDS}
    if fields:
        update_applicant(irain, fields)
    return get_applicant(irain)


def list_applicants(
    search: Optional[str] = None,
    status: Optional[str] = None,
    eligible: Optional[bool] = None,
    located_canada: Optional[str] = None,
    archived: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[dict], int]:
    clauses = ["archived = :archived", "coalesce(registration_status, '') <> :pending"]
    params = {"archived": archived, "pending": PENDING_CONFIRMATION}

    if search:
        clauses.append(
            "(lower(irain) LIKE :search OR lower(first_name) LIKE :search OR lower(coalesce(family_name, '')) LIKE :search"
            " OR lower(email) LIKE :search OR lower(coalesce(phone, '')) LIKE :search"
            " OR lower(coalesce(desired_role, '')) LIKE :search)"
        )
        params["search"] = f"%{search.strip().lower()}%"
    if status:
        clauses.append("lower(coalesce(status, '')) = :status")
        params["status"] = status.strip().lower()
    if located_canada:
        clauses.append("lower(coalesce(located_canada, '')) = :located")
        params["located"] = located_canada.strip().lower()

    where = " AND ".join(clauses)
    with get_db_session() as db:
        rows = db.execute(
            text(f"SELECT * FROM applicants WHERE {where} ORDER BY created_at DESC"),
            params,
        ).mappings().all()

    items = [dict(row) for row in rows]
    if eligible is not None:
        items = [item for item in items if applicant_is_ineligible(item) != eligible]
    total = len(items)
    return items[offset:offset + limit], total


# ============================================================
# ARCHIVE
# ============================================================

def archive_applicant(irain: str, archived_by: str) -> dict:
    applicant = get_applicant(irain)
    if not applicant:
        raise NotFoundError("Applicant not found")
    if applicant["archived"]:
        return applicant
    update_applicant(applicant["irain"], {"archived": True, "archived_at": utc_now_iso(), "archived_by": archived_by})
    logger.info("Archived applicant %s", applicant["irain"])
    return get_applicant(applicant["irain"])


def restore_applicant(irain: str) -> dict:
    applicant = get_applicant(irain)
    if not applicant:
        raise NotFoundError("Applicant not found")
    if not applicant["archived"]:
        raise ConflictError("Applicant is not archived")
    update_applicant(applicant["irain"], {"archived": False, "archived_at": None, "archived_by": None})
    return get_applicant(applicant["irain"])


def delete_archived_applicant(irain: str) -> dict:
    """Permanently delete an archived applicant. Live applicants must be archived first."""
    applicant = get_applicant(irain)
    if not applicant:
        raise NotFoundError("Applicant not found")
    if not applicant["archived"]:
        raise ConflictError("Applicant must be archived before permanent deletion")
    delete_applicant(applicant["irain"])
    return applicant


def delete_applicant(irain: str) -> bool:
    with get_db_session() as db:
        result = db.execute(text("DELETE FROM applicants WHERE irain = :irain"), {"irain": irain})
        return result.rowcount > 0


# ============================================================
# PENDING REGISTRATIONS AND UPDATES
# ============================================================

def cleanup_expired_pending_applicants() -> dict:
    """Delete registrations that were never confirmed before their token expired."""
    with get_db_session() as db:
        rows = db.execute(
            text("SELECT irain, update_token_expires_at FROM applicants WHERE registration_status = :pending"),
            {"pending": PENDING_CONFIRMATION},
        ).mappings().all()

    deleted = 0
    errors = 0
    for row in rows:
        if not is_expired(row["update_token_expires_at"]):
            continue
        try:
            if delete_applicant(row["irain"]):
                deleted += 1
        except Exception as e:
            logger.error("Failed to delete expired applicant %s: %s", row["irain"], e)
            errors += 1
    if deleted:
        logger.info("Removed %d expired pending applicants", deleted)
    return {"deleted": deleted, "errors": errors}


def cleanup_expired_pending_updates() -> int:
    """Drop pending profile updates whose confirmation link expired."""
    with get_db_session() as db:
        rows = db.execute(
            text(
                "SELECT irain, update_token_expires_at FROM applicants "
                "WHERE update_pending_payload IS NOT NULL AND update_pending_payload <> ''"
            )
        ).mappings().all()

        cleared = 0
        for row in rows:
            if not is_expired(row["update_token_expires_at"]):
                continue
            cleared += update_row(db, "applicants", "irain", row["irain"], {
                "update_pending_payload": None,
                "update_token_hash": None,
                "update_token_expires_at": None,
            })
    return cleared


def find_applicants_needing_reminder(min_age_hours: int = 24, token_ttl_seconds: int = 7 * 24 * 60 * 60) -> List[dict]:
    """
    Pending registrations issued at least `min_age_hours` ago that have not
    been reminded and whose confirmation link is still valid.
    """
    with get_db_session() as db:
        rows = db.execute(
            text(
                "SELECT * FROM applicants WHERE registration_status = :pending "
                "AND (reminder_sent_at IS NULL OR reminder_sent_at = '') AND archived = :archived"
            ),
            {"pending": PENDING_CONFIRMATION, "archived": False},
        ).mappings().all()

    now = utc_now()
    due = []
    for row in rows:
        expires_at = parse_iso(row["update_token_expires_at"])
        if expires_at is None or expires_at <= now:
            continue
        issued_at = expires_at - timedelta(seconds=token_ttl_seconds)
        if now - issued_at >= timedelta(hours=min_age_hours):
            due.append(dict(row))
    return due


def parse_pending_payload(raw: Optional[str]) -> Optional[dict]:
    if not raw or not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def count_applicants() -> int:
    with get_db_session() as db:
        return db.execute(
            text("SELECT COUNT(*) FROM applicants WHERE archived = :archived AND coalesce(registration_status, '') <> :pending"),
            {"archived": False, "pending": PENDING_CONFIRMATION},
        ).scalar() or 0


def applicant_to_dict(applicant: dict) -> dict:
    """API shape (camelCase) for one applicant row."""
    return {
        "irain": applicant["irain"],
        "legacyApplicantId": applicant.get("legacy_applicant_id") or "",
        "firstName": applicant.get("first_name") or "",
        "middleName": applicant.get("middle_name") or "",
        "familyName": applicant.get("family_name") or "",
        "fullName": full_name(applicant),
        "email": applicant.get("email") or "",
        "phone": applicant.get("phone") or "",
        "linkedin": applicant.get("linkedin") or "",
        "locatedCanada": applicant.get("located_canada") or "",
        "province": applicant.get("province") or "",
        "authorizedCanada": applicant.get("authorized_canada") or "",
        "eligibleMoveCanada": applicant.get("eligible_move_canada") or "",
        "countryOfOrigin": applicant.get("country_of_origin") or "",
        "languages": applicant.get("languages") or "",
        "languagesOther": applicant.get("languages_other") or "",
        "industryType": applicant.get("industry_type") or "",
        "industryOther": applicant.get("industry_other") or "",
        "employmentStatus": applicant.get("employment_status") or "",
        "desiredRole": applicant.get("desired_role") or "",
        "targetCompanies": applicant.get("target_companies") or "",
        "hasPostings": applicant.get("has_postings") or "",
        "postingNotes": applicant.get("posting_notes") or "",
        "pitch": applicant.get("pitch") or "",
        "resumeFileName": applicant.get("resume_file_name") or "",
        "hasResume": bool(applicant.get("resume_file_id")),
        "locale": applicant.get("locale") or "en",
        "status": applicant.get("status") or "",
        "ownerNotes": applicant.get("owner_notes") or "",
        "tags": applicant.get("tags") or "",
        "lastContactedAt": applicant.get("last_contacted_at") or "",
        "nextActionAt": applicant.get("next_action_at") or "",
        "eligible": not applicant_is_ineligible(applicant),
        "archived": bool(applicant.get("archived")),
        "archivedAt": applicant.get("archived_at") or "",
        "archivedBy": applicant.get("archived_by") or "",
        "createdAt": applicant.get("created_at") or "",
    }
