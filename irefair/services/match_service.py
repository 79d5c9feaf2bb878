"""
Founder-made introductions between an applicant and a referrer.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import text

from irefair.db.postgres import get_db_session, insert_row, update_row
from irefair.services.identifiers import generate_submission_id
from irefair.utils.timezone import utc_now_iso

logger = logging.getLogger(__name__)

MATCH_STAGES = ("new", "intro sent", "meeting", "referred", "hired", "closed")
STAGE_INTRO_SENT = "intro sent"

_PATCH_COLUMNS = {"stage": "stage", "notes": "notes", "introSentAt": "intro_sent_at"}


def create_match(applicant_irain: str, referrer_irref: str, company_ircrn: str = "", position_context: str = "",
                 stage: str = "new", notes: str = "") -> str:
    match_id = generate_submission_id("MATCH")
    with get_db_session() as db:
        insert_row(db, "matches", {
            "match_id": match_id,
            "applicant_irain": applicant_irain,
            "referrer_irref": referrer_irref,
            "company_ircrn": company_ircrn or None,
            "position_context": position_context or None,
            "stage": (stage or "new").strip().lower(),
            "notes": notes or None,
            "intro_sent_at": None,
            "created_at": utc_now_iso(),
        })
    logger.info("Created match %s (%s -> %s)", match_id, applicant_irain, referrer_irref)
    return match_id


def get_match(match_id: str) -> Optional[dict]:
    with get_db_session() as db:
        row = db.execute(
            text("SELECT * FROM matches WHERE match_id = :id"), {"id": (match_id or "").strip()}
        ).mappings().first()
    return dict(row) if row else None


def list_matches(search: Optional[str] = None, stage: Optional[str] = None,
                 limit: int = 50, offset: int = 0) -> Tuple[List[dict], int]:
    clauses = ["1 = 1"]
    params = {}
    if search:
        clauses.append(
            "(lower(match_id) LIKE :search OR lower(applicant_irain) LIKE :search"
            " OR lower(referrer_irref) LIKE :search OR lower(coalesce(company_ircrn, '')) LIKE :search"
            " OR lower(coalesce(position_context, '')) LIKE :search)"
        )
        params["search"] = f"%{search.strip().lower()}%"
    if stage:
        clauses.append("lower(coalesce(stage, '')) = :stage")
        params["stage"] = stage.strip().lower()

    where = " AND ".join(clauses)
    with get_db_session() as db:
        total = db.execute(text(f"SELECT COUNT(*) FROM matches WHERE {where}"), params).scalar() or 0
        rows = db.execute(
            text(f"SELECT * FROM matches WHERE {where} ORDER BY created_at DESC LIMIT :limit OFFSET :offset"),
            {**params, "limit": limit, "offset": offset},
        ).mappings().all()
    return [dict(row) for row in rows], total


def update_match(match_id: str, patch: dict) -> Optional[List[str]]:
    """Apply stage/notes/introSentAt. Returns the updated keys, or None when the match does not exist."""
    if not get_match(match_id):
        return None
    fields = {}
    for key, column in _PATCH_COLUMNS.items():
        if key in patch:
            value = patch[key] if patch[key] is not None else ""
            fields[column] = value.strip().lower() if key == "stage" else value
    if fields:
        with get_db_session() as db:
            update_row(db, "matches", "match_id", match_id, fields)
    return [key for key in _PATCH_COLUMNS if key in patch]


def count_matches() -> int:
    with get_db_session() as db:
        return db.execute(text("SELECT COUNT(*) FROM matches")).scalar() or 0


def match_to_dict(match: dict) -> dict:
    return {
        "matchId": match["match_id"],
        "applicantIrain": match.get("applicant_irain") or "",
        "referrerIrref": match.get("referrer_irref") or "",
        "companyIrcrn": match.get("company_ircrn") or "",
        "positionContext": match.get("position_context") or "",
        "stage": match.get("stage") or "new",
        "notes": match.get("notes") or "",
        "introSentAt": match.get("intro_sent_at") or "",
        "createdAt": match.get("created_at") or "",
    }
