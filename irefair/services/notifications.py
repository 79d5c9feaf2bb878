"""
Transactional email content.

Each builder returns an Email (subject, text, html). Bodies are short plain
text; the html alternative is the same paragraphs, escaped, with links made
clickable.
"""

from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import quote

from irefair.utils.timezone import format_meeting_datetime
from irefair.utils.validation import escape_html, get_app_base_url, job_openings_url, normalize_http_url


@dataclass
class Email:
    subject: str
    text: str
    html: str


def _compose(subject: str, greeting_name: Optional[str], paragraphs: List[str], links: Optional[List[tuple]] = None) -> Email:
    """links: (label, url) pairs appended after the paragraphs."""
    greeting = f"Hi {greeting_name or 'there'},"
    lines = [greeting, ""]
    html_parts = [f"<p>{escape_html(greeting)}</p>"]

    for paragraph in paragraphs:
        if not paragraph:
            continue
        lines.extend([paragraph, ""])
        html_parts.append(f"<p>{escape_html(paragraph)}</p>")

    for label, url in links or []:
        safe_url = normalize_http_url(url)
        if not safe_url:
            continue
        lines.extend([f"{label}: {safe_url}", ""])
        html_parts.append(f'<p><a href="{escape_html(safe_url)}">{escape_html(label)}</a></p>')

    lines.append("- The iRefair team")
    html_parts.append("<p>- The iRefair team</p>")
    return Email(subject=subject, text="\n".join(lines), html="\n".join(html_parts))


def _position_phrase(position: str, company: str) -> str:
    if position and company:
        return f"the {position} role at {company}"
    if company:
        return f"your application at {company}"
    if position:
        return f"the {position} role"
    return "your application"


# ============================================================
# LINKS
# ============================================================

def applicant_confirm_registration_link(token: str) -> str:
    return f"{get_app_base_url()}/api/applicant/confirm-registration?token={quote(token, safe='')}"


def applicant_confirm_update_link(token: str) -> str:
    return f"{get_app_base_url()}/api/applicant/confirm-update?token={quote(token, safe='')}"


def applicant_update_request_link(update_token: str, application_id: str) -> str:
    return (
        f"{get_app_base_url()}/applicant?updateToken={quote(update_token, safe='')}"
        f"&appId={quote(application_id, safe='')}"
    )


def reschedule_link(token: str, application_id: str) -> str:
    return f"{get_app_base_url()}/reschedule?token={quote(token, safe='')}&app={quote(application_id, safe='')}"


# ============================================================
# APPLICANT REGISTRATION
# ============================================================

def applicant_registration_confirmation(first_name: str, confirm_link: str) -> Email:
    return _compose(
        "Confirm your iRefair registration",
        first_name,
        [
            "Thanks for registering with iRefair.",
            "Please confirm your email address within 7 days to activate your profile. "
            "Unconfirmed registrations are removed after that.",
        ],
        [("Confirm registration", confirm_link)],
    )


def applicant_registration_reminder(first_name: str, confirm_link: str, expires_on: str) -> Email:
    return _compose(
        "Reminder: confirm your iRefair registration",
        first_name,
        [f"Your iRefair registration is still waiting for confirmation. The link expires on {expires_on}."],
        [("Confirm registration", confirm_link)],
    )


def applicant_registration_confirmed(
    first_name: str, irain: str, applicant_key: Optional[str], ineligible: bool, updated: bool = False
) -> Email:
    paragraphs = [
        f"Your iRefair profile has been updated. Your iRAIN is {irain}."
        if updated
        else f"Your iRefair profile is active. Your iRAIN is {irain}.",
    ]
    if applicant_key:
        paragraphs.append(
            f"Your applicant key is {applicant_key}. Keep it private; use it with your iRAIN to sign in to the iRefair mobile app."
        )
    if ineligible:
        paragraphs.append(
            "Based on your location and work authorisation you are not currently eligible for referrals. "
            "We will keep your profile and contact you if that changes."
        )
    subject = "Your iRefair profile was updated" if updated else "Welcome to iRefair"
    return _compose(subject, first_name, paragraphs, [("Current openings", job_openings_url())])


def applicant_profile_update_confirmation(first_name: str, confirm_link: str) -> Email:
    return _compose(
        "Confirm your iRefair profile update",
        first_name,
        ["We received an update to your iRefair profile. Confirm it to apply the changes."],
        [("Confirm update", confirm_link)],
    )


# ============================================================
# REFERRER
# ============================================================

def referrer_registration_received(name: str, irref: str, company: str) -> Email:
    return _compose(
        "Thanks for joining iRefair as a referrer",
        name,
        [
            f"Your iRREF is {irref}.",
            f"We will review {company or 'your company'} and send your referrer portal link once it is approved.",
        ],
    )


def referrer_already_registered(name: str, irref: str, portal_link: Optional[str]) -> Email:
    paragraphs = [f"You are already registered as an iRefair referrer. Your iRREF is {irref}."]
    if not portal_link:
        paragraphs.append("We will send your portal link once your company is approved.")
    return _compose(
        "You are already an iRefair referrer",
        name,
        paragraphs,
        [("Open your portal", portal_link)] if portal_link else None,
    )


def referrer_new_company_received(name: str, irref: str, company: str) -> Email:
    return _compose(
        "New company added to your iRefair profile",
        name,
        [
            f"We added {company or 'a new company'} to your referrer profile ({irref}).",
            "It will appear in your portal once the iRefair team approves it.",
        ],
    )


def referrer_portal_link(name: str, link: str) -> Email:
    return _compose(
        "Your iRefair referrer portal link",
        name,
        ["Here is your iRefair referrer portal link. You can view your candidates, CVs and statuses, and send feedback."],
        [("Open your portal", link), ("Current openings", job_openings_url())],
    )


def meet_founder_invite(name: str, irref: str, link: Optional[str]) -> Email:
    paragraphs = [f"Thanks for being part of iRefair ({irref}). The founder would like to set up a short call."]
    if not link:
        paragraphs.append("We will follow up with a calendar invitation.")
    return _compose("Meet the iRefair founder", name, paragraphs, [("Schedule a call", link)] if link else None)


def application_to_referrer(
    referrer_name: str,
    applicant_name: str,
    applicant_email: str,
    applicant_phone: str,
    applicant_id: str,
    ircrn: str,
    position: str,
    reference_number: str,
    resume_file_name: str,
    portal_link: Optional[str],
) -> Email:
    details = [
        f"Candidate: {applicant_name or applicant_id} ({applicant_id})",
        f"Email: {applicant_email or 'Not provided'}",
        f"Phone: {applicant_phone or 'Not provided'}",
        f"Company iRCRN: {ircrn}",
        f"Position: {position or 'Not provided'}",
        f"Reference number: {reference_number or 'Not provided'}",
        f"CV: {resume_file_name or 'Attached in portal'}",
    ]
    return _compose(
        f"New referral request: {applicant_id} for {ircrn}",
        referrer_name,
        ["A candidate has applied for a referral through iRefair.", "\n".join(details)],
        [("Review in your portal", portal_link)] if portal_link else None,
    )


def reschedule_request_to_referrer(
    referrer_name: str, applicant_name: str, position: str, reason: str, portal_link: Optional[str]
) -> Email:
    return _compose(
        f"Reschedule requested by {applicant_name or 'a candidate'}",
        referrer_name,
        [
            f"{applicant_name or 'The candidate'} asked to reschedule the meeting for {_position_phrase(position, '')}.",
            f"Reason: {reason}" if reason else "",
            "Please pick a new time from your portal.",
        ],
        [("Open your portal", portal_link)] if portal_link else None,
    )


def applicant_updated_to_referrer(
    referrer_name: str, applicant_name: str, applicant_id: str, application_id: str, portal_link: Optional[str]
) -> Email:
    return _compose(
        f"{applicant_name or applicant_id} updated their details",
        referrer_name,
        [
            f"{applicant_name or 'The candidate'} ({applicant_id}) sent the information you requested "
            f"for application {application_id}.",
            "The updated profile is available in your portal.",
        ],
        [("Open your portal", portal_link)] if portal_link else None,
    )


def meeting_cancelled_to_referrer(
    referrer_name: str, applicant_name: str, company: str, position: str, cause: str, portal_link: Optional[str]
) -> Email:
    return _compose(
        "Meeting cancelled",
        referrer_name,
        [
            f"Your meeting with {applicant_name or 'the candidate'} about {_position_phrase(position, company)} "
            f"was cancelled because {cause}.",
        ],
        [("Open your portal", portal_link)] if portal_link else None,
    )


# ============================================================
# REFERRER FEEDBACK TO APPLICANT
# ============================================================

def meeting_invite_to_applicant(
    applicant_name: str, referrer_name: str, company: str, position: str,
    meeting_date: str, meeting_time: str, meeting_timezone: str, meeting_url: str,
    reschedule_token: str, application_id: str,
) -> Email:
    when = format_meeting_datetime(meeting_date, meeting_time, meeting_timezone)
    return _compose(
        f"Meeting scheduled: {position or company or 'your referral'}",
        applicant_name,
        [
            f"{referrer_name or 'Your referrer'} scheduled a meeting with you about {_position_phrase(position, company)}.",
            f"When: {when}",
        ],
        [("Join meeting", meeting_url), ("Request a different time", reschedule_link(reschedule_token, application_id))],
    )


def meeting_cancelled_to_applicant(applicant_name: str, referrer_name: str, company: str, position: str, reason: str) -> Email:
    return _compose(
        "Meeting cancelled",
        applicant_name,
        [
            f"{referrer_name or 'Your referrer'} cancelled the meeting about {_position_phrase(position, company)}.",
            f"Reason: {reason}" if reason else "",
        ],
    )


def rejection_to_applicant(applicant_name: str, referrer_name: str, company: str, position: str) -> Email:
    return _compose(
        "Update on your referral request",
        applicant_name,
        [
            f"After reviewing your profile, {referrer_name or 'the referrer'} decided not to move forward with "
            f"{_position_phrase(position, company)}.",
            "Your profile stays active for other openings.",
        ],
        [("Current openings", job_openings_url())],
    )


def cv_mismatch_to_applicant(
    applicant_name: str, referrer_name: str, company: str, position: str,
    feedback: str, update_token: Optional[str], application_id: str,
) -> Email:
    links = [("Update your CV", applicant_update_request_link(update_token, application_id))] if update_token else None
    return _compose(
        "Your CV does not match this role yet",
        applicant_name,
        [
            f"{referrer_name or 'The referrer'} reviewed your CV for {_position_phrase(position, company)} "
            "and found it does not match the requirements.",
            f"Feedback: {feedback}" if feedback else "",
        ],
        links,
    )


def cv_update_request_to_applicant(
    applicant_name: str, referrer_name: str, company: str, position: str,
    feedback: str, update_token: str, application_id: str,
) -> Email:
    return _compose(
        "Please update your CV",
        applicant_name,
        [
            f"{referrer_name or 'Your referrer'} asked for an updated CV for {_position_phrase(position, company)}.",
            f"Feedback: {feedback}" if feedback else "",
            "The link below is valid for 7 days.",
        ],
        [("Update your CV", applicant_update_request_link(update_token, application_id))],
    )


def info_request_to_applicant(
    applicant_name: str, referrer_name: str, company: str, position: str,
    requested_info: str, update_token: str, application_id: str,
) -> Email:
    return _compose(
        "More information requested",
        applicant_name,
        [
            f"{referrer_name or 'Your referrer'} needs more information about {_position_phrase(position, company)}.",
            f"Requested: {requested_info}" if requested_info else "",
            "The link below is valid for 7 days.",
        ],
        [("Update your details", applicant_update_request_link(update_token, application_id))],
    )


def interview_completed_to_applicant(applicant_name: str, referrer_name: str, company: str, position: str) -> Email:
    return _compose(
        "Thanks for interviewing",
        applicant_name,
        [f"{referrer_name or 'Your referrer'} marked your interview for {_position_phrase(position, company)} as complete."],
    )


def job_offer_to_applicant(applicant_name: str, referrer_name: str, company: str, position: str, message: str) -> Email:
    return _compose(
        "Congratulations!",
        applicant_name,
        [
            f"{referrer_name or 'Your referrer'} let us know you were hired for {_position_phrase(position, company)}.",
            message,
        ],
    )


def referral_reward(application_id: str, applicant_id: str, ircrn: str, position: str, irref: str) -> Email:
    text = f"Applicant {applicant_id} marked as hired for {ircrn} ({position}). Referrer: {irref}."
    html = (
        f"Applicant <strong>{escape_html(applicant_id)}</strong> marked as hired for "
        f"<strong>{escape_html(ircrn)}</strong> ({escape_html(position)}).<br/>"
        f"Referrer: <strong>{escape_html(irref)}</strong>."
    )
    return Email(subject=f"Referral reward triggered: {application_id}", text=text, html=html)


# ============================================================
# FOUNDER OPERATIONS
# ============================================================

def resume_request(applicant_name: str, irain: str) -> Email:
    return _compose(
        "Please send your latest resume",
        applicant_name,
        [
            f"To keep your iRefair profile ({irain}) ready for referrals, please upload your most recent resume.",
        ],
        [("Update your profile", f"{get_app_base_url()}/applicant")],
    )


def match_intro(applicant_name: str, referrer_name: str, company: str, position: str) -> Email:
    return _compose(
        f"Introduction: {applicant_name} <> {referrer_name or 'iRefair referrer'}",
        applicant_name,
        [
            f"I'd like to introduce you to {referrer_name or 'one of our referrers'}"
            f"{f' at {company}' if company else ''}.",
            f"Context: {position}" if position else "",
            "Please reply all to continue the conversation.",
        ],
    )


def application_archived_to_applicant(applicant_name: str, company: str, position: str) -> Email:
    return _compose(
        "Your referral request was closed",
        applicant_name,
        [f"Your request for {_position_phrase(position, company)} has been closed by the iRefair team."],
        [("Current openings", job_openings_url())],
    )


def application_archived_to_referrer(referrer_name: str, application_id: str, reason: str) -> Email:
    return _compose(
        f"Application {application_id} archived",
        referrer_name,
        [
            f"Application {application_id} was archived by the iRefair team and removed from your portal.",
            f"Reason: {reason}" if reason else "",
        ],
    )


def application_linked_to_applicant(applicant_name: str, company: str, position: str, application_id: str) -> Email:
    return _compose(
        f"Your referral request to {company or 'a hiring company'} was submitted",
        applicant_name,
        [
            f"The iRefair team submitted your profile for {_position_phrase(position, company)}.",
            f"Your application ID is {application_id}. The referrer will review your CV and reach out with next steps.",
        ],
    )
