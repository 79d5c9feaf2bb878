"""
Referrer and referrer-company data access.

A referrer (iRREF) can refer into several companies. Each company row starts
as `pending`; the founder approves or denies it. The first approval assigns
the company an iRCRN, which is what applicants apply against.
"""

import json
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import text

from irefair.core.exceptions import ConflictError, NotFoundError, ValidationError
from irefair.core.tokens import normalize_portal_token_version
from irefair.db.postgres import get_db_session, insert_row, update_row
from irefair.services.identifiers import (
    IRCRN_PREFIX,
    IRREF_PREFIX,
    allocate_sequential_id,
    generate_referrer_company_id,
)
from irefair.utils.timezone import utc_now_iso
from irefair.utils.validation import normalize_email, normalize_http_url

logger = logging.getLogger(__name__)

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_DENIED = "denied"

PROFILE_FIELDS = (
    "name",
    "email",
    "phone",
    "country",
    "company",
    "company_industry",
    "careers_portal",
    "work_type",
    "linkedin",
)
ADMIN_FIELDS = ("status", "owner_notes", "tags", "last_contacted_at", "next_action_at")
COMPANY_FIELDS = ("company_name", "company_industry", "careers_portal", "work_type")

# camelCase keys used by pending updates and the API
_CAMEL_TO_COLUMN = {
    "name": "name",
    "email": "email",
    "phone": "phone",
    "country": "country",
    "company": "company",
    "companyIndustry": "company_industry",
    "careersPortal": "careers_portal",
    "workType": "work_type",
    "linkedin": "linkedin",
}


def _fetch_one(db, sql: str, params: dict) -> Optional[dict]:
    row = db.execute(text(sql), params).mappings().first()
    return dict(row) if row else None


# ============================================================
# REFERRERS
# ============================================================

def get_referrer(irref: str) -> Optional[dict]:
    with get_db_session() as db:
        return _fetch_one(db, "SELECT * FROM referrers WHERE lower(irref) = :irref", {"irref": (irref or "").strip().lower()})


def get_referrer_by_email(email: str) -> Optional[dict]:
    normalized = normalize_email(email)
    if not normalized:
        return None
    with get_db_session() as db:
        return _fetch_one(
            db,
            "SELECT * FROM referrers WHERE lower(email) = :email ORDER BY created_at ASC LIMIT 1",
            {"email": normalized},
        )


def create_referrer(fields: dict) -> str:
    with get_db_session() as db:
        irref = allocate_sequential_id(db, IRREF_PREFIX, "referrers", "irref")
        values = {column: fields.get(column) for column in PROFILE_FIELDS}
        values.update({
            "irref": irref,
            "email": fields.get("email") or "",
            "locale": fields.get("locale") or "en",
            "portal_token_version": 1,
            "archived": False,
            "created_at": utc_now_iso(),
        })
        insert_row(db, "referrers", values)
    logger.info("Created referrer %s", irref)
    return irref


def update_referrer(irref: str, fields: dict) -> bool:
    with get_db_session() as db:
        return update_row(db, "referrers", "irref", irref, fields) > 0


def update_referrer_admin(irref: str, patch: dict) -> Optional[dict]:
    fields = {key: value for key, value in patch.items() if key in ADMIN_FIELDS}
    if fields:
        update_referrer(irref, fields)
    return get_referrer(irref)


def list_referrers(
    search: Optional[str] = None,
    status: Optional[str] = None,
    company: Optional[str] = None,
    archived: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[dict], int]:
    clauses = ["archived = :archived"]
    params = {"archived": archived}
    if search:
        clauses.append(
            "(lower(irref) LIKE :search OR lower(coalesce(name, '')) LIKE :search OR lower(email) LIKE :search"
            " OR lower(coalesce(company, '')) LIKE :search)"
        )
        params["search"] = f"%{search.strip().lower()}%"
    if status:
        clauses.append("lower(coalesce(status, '')) = :status")
        params["status"] = status.strip().lower()
    if company:
        clauses.append(
            "(lower(coalesce(company, '')) LIKE :company OR irref IN ("
            "SELECT referrer_irref FROM referrer_companies WHERE lower(company_name) LIKE :company))"
        )
        params["company"] = f"%{company.strip().lower()}%"

    where = " AND ".join(clauses)
    with get_db_session() as db:
        total = db.execute(text(f"SELECT COUNT(*) FROM referrers WHERE {where}"), params).scalar() or 0
        rows = db.execute(
            text(f"SELECT * FROM referrers WHERE {where} ORDER BY created_at DESC LIMIT :limit OFFSET :offset"),
            {**params, "limit": limit, "offset": offset},
        ).mappings().all()
    return [dict(row) for row in rows], total


def count_referrers() -> int:
    with get_db_session() as db:
        return db.execute(
            text("SELECT COUNT(*) FROM referrers WHERE archived = :archived"), {"archived": False}
        ).scalar() or 0


# ============================================================
# PORTAL TOKEN VERSION
# ============================================================

def ensure_portal_token_version(irref: str) -> int:
    """Return the stored version, normalising the column when it is missing or invalid."""
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    stored = referrer.get("portal_token_version")
    version = normalize_portal_token_version(stored)
    if stored != version:
        update_referrer(referrer["irref"], {"portal_token_version": version})
    return version


def rotate_portal_token_version(irref: str) -> int:
    """Invalidate every portal link issued so far."""
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    new_version = normalize_portal_token_version(referrer.get("portal_token_version")) + 1
    update_referrer(referrer["irref"], {"portal_token_version": new_version})
    logger.info("Rotated portal token for %s to v%d", referrer["irref"], new_version)
    return new_version


# ============================================================
# PENDING UPDATES
# ============================================================

def parse_pending_updates(raw: Optional[str]) -> List[dict]:
    if not raw or not raw.strip():
        return []
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise ValidationError("Failed to parse pending updates.") from e
    return parsed if isinstance(parsed, list) else []


def add_pending_update(irref: str, data: dict) -> str:
    """Queue profile changes submitted by an existing referrer for founder review."""
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    updates = parse_pending_updates(referrer.get("pending_updates"))
    update_id = f"UPD-{uuid.uuid4().hex[:12]}"
    updates.append({
        "id": update_id,
        "status": APPROVAL_PENDING,
        "submittedAt": utc_now_iso(),
        "data": {key: value for key, value in data.items() if key in _CAMEL_TO_COLUMN and value},
    })
    update_referrer(referrer["irref"], {"pending_updates": json.dumps(updates)})
    return update_id


def resolve_pending_update(irref: str, update_id: str, action: str) -> str:
    """Approve (apply) or deny one pending update. Returns the new status."""
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    updates = parse_pending_updates(referrer.get("pending_updates"))
    target = next((item for item in updates if item.get("id") == update_id), None)
    if target is None:
        raise NotFoundError("Update not found.")
    if target.get("status") != APPROVAL_PENDING:
        raise ConflictError(f"Update already {target.get('status')}.")

    fields = {}
    if action == "approve":
        for key, value in (target.get("data") or {}).items():
            column = _CAMEL_TO_COLUMN.get(key)
            if column and value:
                fields[column] = value

    target["status"] = APPROVAL_APPROVED if action == "approve" else APPROVAL_DENIED
    target["resolvedAt"] = utc_now_iso()
    fields["pending_updates"] = json.dumps(updates)
    update_referrer(referrer["irref"], fields)
    return target["status"]


# ============================================================
# ARCHIVE
# ============================================================

def archive_referrer(irref: str, archived_by: str) -> dict:
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    if not referrer["archived"]:
        update_referrer(referrer["irref"], {"archived": True, "archived_at": utc_now_iso(), "archived_by": archived_by})
        logger.info("Archived referrer %s", referrer["irref"])
    return get_referrer(referrer["irref"])


def restore_referrer(irref: str) -> dict:
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    if not referrer["archived"]:
        raise ConflictError("Referrer is not archived")
    update_referrer(referrer["irref"], {"archived": False, "archived_at": None, "archived_by": None})
    return get_referrer(referrer["irref"])


def delete_archived_referrer(irref: str) -> dict:
    referrer = get_referrer(irref)
    if not referrer:
        raise NotFoundError("Referrer not found")
    if not referrer["archived"]:
        raise ConflictError("Referrer must be archived before permanent deletion")
    with get_db_session() as db:
        db.execute(text("DELETE FROM referrer_companies WHERE referrer_irref = :irref"), {"irref": referrer["irref"]})
        db.execute(text("DELETE FROM referrers WHERE irref = :irref"), {"irref": referrer["irref"]})
    return referrer


# ============================================================
# COMPANIES
# ============================================================

def add_company(irref: str, company_name: str, company_industry: str = "", careers_portal: str = "", work_type: str = "") -> str:
    company_id = generate_referrer_company_id()
    with get_db_session() as db:
        insert_row(db, "referrer_companies", {
            "id": company_id,
            "referrer_irref": irref,
            "company_name": company_name,
            "company_ircrn": None,
            "company_industry": company_industry or None,
            "careers_portal": careers_portal or None,
            "work_type": work_type or None,
            "approval": APPROVAL_PENDING,
            "created_at": utc_now_iso(),
            "updated_at": None,
        })
    return company_id


def get_company(company_id: str) -> Optional[dict]:
    with get_db_session() as db:
        return _fetch_one(db, "SELECT * FROM referrer_companies WHERE id = :id", {"id": company_id})


def list_companies(irref: str) -> List[dict]:
    with get_db_session() as db:
        rows = db.execute(
            text("SELECT * FROM referrer_companies WHERE referrer_irref = :irref ORDER BY created_at ASC"),
            {"irref": irref},
        ).mappings().all()
    return [dict(row) for row in rows]


def find_company_by_name(irref: str, company_name: str) -> Optional[dict]:
    with get_db_session() as db:
        return _fetch_one(
            db,
            "SELECT * FROM referrer_companies WHERE referrer_irref = :irref AND lower(company_name) = :name",
            {"irref": irref, "name": (company_name or "").strip().lower()},
        )


def find_approved_company_by_ircrn(ircrn: str) -> Optional[dict]:
    with get_db_session() as db:
        return _fetch_one(
            db,
            """
            SELECT c.* FROM referrer_companies c
            JOIN referrers r ON r.irref = c.referrer_irref
            WHERE lower(c.company_ircrn) = :ircrn AND c.approval = :approved AND r.archived = :archived
            ORDER BY c.created_at ASC LIMIT 1
            """,
            {"ircrn": (ircrn or "").strip().lower(), "approved": APPROVAL_APPROVED, "archived": False},
        )


def has_approved_company(irref: str) -> bool:
    with get_db_session() as db:
        count = db.execute(
            text("SELECT COUNT(*) FROM referrer_companies WHERE referrer_irref = :irref AND approval = :approved"),
            {"irref": irref, "approved": APPROVAL_APPROVED},
        ).scalar()
    return bool(count)


def update_company(company_id: str, patch: dict) -> Optional[dict]:
    fields = {key: value for key, value in patch.items() if key in COMPANY_FIELDS}
    if "careers_portal" in fields and fields["careers_portal"]:
        fields["careers_portal"] = normalize_http_url(fields["careers_portal"]) or fields["careers_portal"]
    if fields:
        fields["updated_at"] = utc_now_iso()
        with get_db_session() as db:
            update_row(db, "referrer_companies", "id", company_id, fields)
    return get_company(company_id)


def set_company_approval(company_id: str, approval: str) -> dict:
    """
    Approve or deny a company.

    Returns {"company": row, "was_first_approval": bool}. An approval
    assigns an iRCRN when the company has none, reusing the iRCRN of an
    approved company with the same name.
    """
    if approval not in (APPROVAL_APPROVED, APPROVAL_DENIED):
        raise ValidationError("Invalid approval value. Use approved or denied.")

    with get_db_session() as db:
        company = _fetch_one(db, "SELECT * FROM referrer_companies WHERE id = :id", {"id": company_id})
        if not company:
            raise NotFoundError("Company not found")

        fields = {"approval": approval, "updated_at": utc_now_iso()}
        was_first_approval = False
        if approval == APPROVAL_APPROVED and company["approval"] != APPROVAL_APPROVED:
            approved_before = db.execute(
                text(
                    "SELECT COUNT(*) FROM referrer_companies "
                    "WHERE referrer_irref = :irref AND approval = :approved AND id <> :id"
                ),
                {"irref": company["referrer_irref"], "approved": APPROVAL_APPROVED, "id": company_id},
            ).scalar()
            was_first_approval = not approved_before

        if approval == APPROVAL_APPROVED and not company["company_ircrn"]:
            shared = db.execute(
                text(
                    "SELECT company_ircrn FROM referrer_companies "
                    "WHERE lower(company_name) = :name AND company_ircrn IS NOT NULL AND company_ircrn <> '' LIMIT 1"
                ),
                {"name": (company["company_name"] or "").strip().lower()},
            ).scalar()
            fields["company_ircrn"] = shared or allocate_sequential_id(
                db, IRCRN_PREFIX, "referrer_companies", "company_ircrn"
            )

        update_row(db, "referrer_companies", "id", company_id, fields)
        company.update(fields)

    logger.info("Company %s %s (iRCRN %s)", company_id, approval, company.get("company_ircrn"))
    return {"company": company, "was_first_approval": was_first_approval}


def list_approved_companies() -> List[dict]:
    """Approved companies of active referrers, one entry per iRCRN."""
    with get_db_session() as db:
        rows = db.execute(
            text(
                """
                SELECT c.* FROM referrer_companies c
                JOIN referrers r ON r.irref = c.referrer_irref
                WHERE c.approval = :approved AND r.archived = :archived
                  AND c.company_ircrn IS NOT NULL AND c.company_ircrn <> ''
                ORDER BY c.created_at ASC
                """
            ),
            {"approved": APPROVAL_APPROVED, "archived": False},
        ).mappings().all()

    seen = set()
    companies = []
    for row in rows:
        key = row["company_ircrn"].lower()
        if key in seen:
            continue
        seen.add(key)
        companies.append(dict(row))
    return companies


# ============================================================
# SERIALISERS
# ============================================================

def company_to_dict(company: dict) -> dict:
    return {
        "id": company["id"],
        "referrerIrref": company.get("referrer_irref") or "",
        "companyName": company.get("company_name") or "",
        "companyIrcrn": company.get("company_ircrn") or "",
        "companyIndustry": company.get("company_industry") or "",
        "careersPortal": company.get("careers_portal") or "",
        "workType": company.get("work_type") or "",
        "approval": company.get("approval") or APPROVAL_PENDING,
        "createdAt": company.get("created_at") or "",
        "updatedAt": company.get("updated_at") or "",
    }


def referrer_to_dict(referrer: dict) -> dict:
    try:
        pending_updates = parse_pending_updates(referrer.get("pending_updates"))
    except ValidationError:
        pending_updates = []
    return {
        "irref": referrer["irref"],
        "name": referrer.get("name") or "",
        "email": referrer.get("email") or "",
        "phone": referrer.get("phone") or "",
        "country": referrer.get("country") or "",
        "company": referrer.get("company") or "",
        "companyIndustry": referrer.get("company_industry") or "",
        "careersPortal": referrer.get("careers_portal") or "",
        "workType": referrer.get("work_type") or "",
        "linkedin": referrer.get("linkedin") or "",
        "locale": referrer.get("locale") or "en",
        "status": referrer.get("status") or "",
        "ownerNotes": referrer.get("owner_notes") or "",
        "tags": referrer.get("tags") or "",
        "lastContactedAt": referrer.get("last_contacted_at") or "",
        "nextActionAt": referrer.get("next_action_at") or "",
        "pendingUpdates": pending_updates,
        "archived": bool(referrer.get("archived")),
        "archivedAt": referrer.get("archived_at") or "",
        "archivedBy": referrer.get("archived_by") or "",
        "createdAt": referrer.get("created_at") or "",
    }
