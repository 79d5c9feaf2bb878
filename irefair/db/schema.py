"""
Relational schema for iRefair.

Tables:
- applicants          - registered job seekers (iRAIN)
- referrers           - corporate referrers (iRREF)
- referrer_companies  - companies a referrer can refer into (iRCRN once approved)
- applications        - an applicant applying through a referrer company
- matches             - founder-made applicant/referrer introductions
- mobile_sessions     - refresh-token sessions for the mobile apps

Timestamps are stored as ISO-8601 UTC strings so rows read the same on
PostgreSQL and SQLite.
"""

import logging

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text

from irefair.db.postgres import engine

logger = logging.getLogger(__name__)

metadata = MetaData()


applicants = Table(
    "applicants",
    metadata,
    Column("irain", String(32), primary_key=True),
    Column("legacy_applicant_id", String(64), index=True),
    Column("first_name", String(120), nullable=False),
    Column("middle_name", String(120)),
    Column("family_name", String(120)),
    Column("email", String(320), nullable=False, index=True),
    Column("phone", String(64)),
    Column("linkedin", String(512)),
    Column("located_canada", String(8)),
    Column("province", String(120)),
    Column("authorized_canada", String(8)),
    Column("eligible_move_canada", String(8)),
    Column("country_of_origin", String(120)),
    Column("languages", Text),
    Column("languages_other", Text),
    Column("industry_type", String(120)),
    Column("industry_other", String(255)),
    Column("employment_status", String(64)),
    Column("desired_role", String(255)),
    Column("target_companies", Text),
    Column("has_postings", String(8)),
    Column("posting_notes", Text),
    Column("pitch", Text),
    Column("resume_file_id", String(64)),
    Column("resume_file_name", String(255)),
    Column("locale", String(8), default="en"),
    Column("registration_status", String(32), default=""),
    Column("update_token_hash", String(64)),
    Column("update_token_expires_at", String(40)),
    Column("reminder_token_hash", String(64)),
    Column("reminder_sent_at", String(40)),
    Column("update_pending_payload", Text),
    Column("secret_hash", String(64)),
    Column("status", String(64)),
    Column("owner_notes", Text),
    Column("tags", Text),
    Column("last_contacted_at", String(40)),
    Column("next_action_at", String(40)),
    Column("archived", Boolean, default=False, nullable=False),
    Column("archived_at", String(40)),
    Column("archived_by", String(320)),
    Column("created_at", String(40), nullable=False),
)


referrers = Table(
    "referrers",
    metadata,
    Column("irref", String(32), primary_key=True),
    Column("name", String(255)),
    Column("email", String(320), nullable=False, index=True),
    Column("phone", String(64)),
    Column("country", String(120)),
    Column("company", String(255)),
    Column("company_industry", String(120)),
    Column("careers_portal", String(512)),
    Column("work_type", String(64)),
    Column("linkedin", String(512)),
    Column("locale", String(8), default="en"),
    Column("portal_token_version", Integer, default=1, nullable=False),
    Column("status", String(64)),
    Column("owner_notes", Text),
    Column("tags", Text),
    Column("last_contacted_at", String(40)),
    Column("next_action_at", String(40)),
    Column("pending_updates", Text),
    Column("archived", Boolean, default=False, nullable=False),
    Column("archived_at", String(40)),
    Column("archived_by", String(320)),
    Column("created_at", String(40), nullable=False),
)


referrer_companies = Table(
    "referrer_companies",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("referrer_irref", String(32), nullable=False, index=True),
    Column("company_name", String(255), nullable=False),
    Column("company_ircrn", String(32), index=True),
    Column("company_industry", String(120)),
    Column("careers_portal", String(512)),
    Column("work_type", String(64)),
    Column("approval", String(16), default="pending", nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40)),
)


applications = Table(
    "applications",
    metadata,
    Column("id", String(40), primary_key=True),
    Column("applicant_id", String(32), nullable=False, index=True),
    Column("ircrn", String(32), index=True),
    Column("position", String(255)),
    Column("reference_number", String(255)),
    Column("resume_file_id", String(64)),
    Column("resume_file_name", String(255)),
    Column("referrer_irref", String(32), index=True),
    Column("referrer_email", String(320)),
    Column("referrer_company_id", String(32)),
    Column("status", String(64), default="new"),
    Column("owner_notes", Text),
    Column("meeting_date", String(16)),
    Column("meeting_time", String(16)),
    Column("meeting_timezone", String(64)),
    Column("meeting_url", String(1024)),
    Column("reschedule_token_hash", String(64), index=True),
    Column("reschedule_token_expires_at", String(40)),
    Column("update_request_token_hash", String(64)),
    Column("update_request_expires_at", String(40)),
    Column("update_request_purpose", String(8)),
    Column("action_history", Text),
    Column("archived", Boolean, default=False, nullable=False),
    Column("archived_at", String(40)),
    Column("archived_by", String(320)),
    Column("created_at", String(40), nullable=False),
)


matches = Table(
    "matches",
    metadata,
    Column("match_id", String(40), primary_key=True),
    Column("applicant_irain", String(32), nullable=False, index=True),
    Column("referrer_irref", String(32), nullable=False, index=True),
    Column("company_ircrn", String(32)),
    Column("position_context", Text),
    Column("stage", String(32), default="new"),
    Column("notes", Text),
    Column("intro_sent_at", String(40)),
    Column("created_at", String(40), nullable=False),
)


mobile_sessions = Table(
    "mobile_sessions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("role", String(16), nullable=False),
    Column("subject_id", String(32), nullable=False, index=True),
    Column("refresh_token_hash", String(64), nullable=False),
    Column("refresh_token_expires_at", String(40), nullable=False),
    Column("session_expires_at", String(40), nullable=False),
    Column("user_agent", String(512)),
    Column("last_used_at", String(40)),
    Column("revoked_at", String(40)),
    Column("created_at", String(40), nullable=False),
)


def init_db():
    """Create all tables that do not exist yet. Safe to call on every startup."""
    metadata.create_all(engine)
    logger.info("Database tables ensured")
