"""
Pydantic Schemas - Request/Response Validation

All API request schemas in one file for simplicity. The public API speaks
camelCase, so models accept camelCase aliases and expose snake_case
attributes. Fields are optional where the handler reports a specific
error message for a missing value.
"""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================================
# ENUMS
# ============================================================

class ApplicationStatus(str, Enum):
    new = "new"
    meeting_requested = "meeting requested"
    meeting_scheduled = "meeting scheduled"
    needs_reschedule = "needs reschedule"
    interviewed = "interviewed"
    hired = "hired"
    not_a_good_fit = "not a good fit"
    cv_mismatch = "cv mismatch"
    cv_update_requested = "cv update requested"
    info_requested = "info requested"
    info_updated = "info updated"
    ineligible = "ineligible"


class FeedbackAction(str, Enum):
    schedule_meeting = "SCHEDULE_MEETING"
    cancel_meeting = "CANCEL_MEETING"
    reject = "REJECT"
    cv_mismatch = "CV_MISMATCH"
    request_cv_update = "REQUEST_CV_UPDATE"
    request_info = "REQUEST_INFO"
    mark_interviewed = "MARK_INTERVIEWED"
    offer_job = "OFFER_JOB"


# ============================================================
# REFERRER REGISTRATION
# ============================================================

class ReferrerRegistration(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    company: Optional[str] = None
    company_industry: Optional[str] = None
    company_industry_other: Optional[str] = None
    careers_portal: Optional[str] = None
    work_type: Optional[str] = None
    linkedin: Optional[str] = None
    language: Optional[str] = None
    website: Optional[str] = None


# ============================================================
# TOKENS IN BODIES
# ============================================================

class TokenBody(CamelModel):
    token: Optional[str] = None


class EmailBody(CamelModel):
    email: Optional[str] = None


class RescheduleRequest(CamelModel):
    token: Optional[str] = None
    reason: Optional[str] = None


# ============================================================
# REFERRER PORTAL
# ============================================================

class FeedbackRequest(CamelModel):
    token: Optional[str] = None
    application_id: Optional[str] = None
    action: Optional[str] = None
    notes: Optional[str] = None
    meeting_date: Optional[str] = None
    meeting_time: Optional[str] = None
    meeting_timezone: Optional[str] = None
    meeting_url: Optional[str] = None
    include_update_link: Optional[bool] = False


class PortalLinkRequest(CamelModel):
    irref: Optional[str] = None


# ============================================================
# MOBILE AUTH
# ============================================================

class ReferrerMobileExchange(CamelModel):
    portal_token: Optional[str] = None


class ApplicantMobileExchange(CamelModel):
    portal_token: Optional[str] = None
    applicant_id: Optional[str] = None
    applicant_key: Optional[str] = None


class RefreshTokenBody(CamelModel):
    refresh_token: Optional[str] = None


# ============================================================
# FOUNDER
# ============================================================

class FounderLogin(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ApplicantAdminPatch(CamelModel):
    status: Optional[str] = None
    owner_notes: Optional[str] = None
    tags: Optional[str] = None
    last_contacted_at: Optional[str] = None
    next_action_at: Optional[str] = None


class ReferrerAdminPatch(ApplicantAdminPatch):
    pass


class ApplicationAdminPatch(CamelModel):
    status: Optional[ApplicationStatus] = None
    owner_notes: Optional[str] = None


class CreateApplicationRequest(CamelModel):
    ircrn: Optional[str] = Field(None, alias="iCrn")
    position: Optional[str] = None
    reference_number: Optional[str] = None
    referrer_irref: Optional[str] = None


class CompanyCreate(CamelModel):
    company_name: Optional[str] = None
    company_industry: Optional[str] = None
    careers_portal: Optional[str] = None
    work_type: Optional[str] = None


class CompanyPatch(CompanyCreate):
    pass


class CompanyApprovalRequest(CamelModel):
    approval: Optional[str] = None


class PendingUpdateAction(CamelModel):
    update_id: Optional[str] = None
    action: Optional[str] = None


class InviteMeetingRequest(CamelModel):
    link: Optional[str] = None


class ArchiveApplicationRequest(CamelModel):
    reason: Optional[str] = None
    notify_applicant: Optional[bool] = True
    notify_referrer: Optional[bool] = True


class MatchCreate(CamelModel):
    applicant_irain: Optional[str] = None
    referrer_irref: Optional[str] = None
    company_ircrn: Optional[str] = None
    position_context: Optional[str] = None
    stage: Optional[str] = "new"
    notes: Optional[str] = None


class MatchPatch(CamelModel):
    stage: Optional[str] = None
    notes: Optional[str] = None
    intro_sent_at: Optional[str] = None


# ============================================================
# CHATGPT
# ============================================================

class ChatMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[Any] = None


class ChatRequest(BaseModel):
    prompt: Optional[Any] = None
    system: Optional[Any] = None
    messages: Optional[List[ChatMessage]] = None
