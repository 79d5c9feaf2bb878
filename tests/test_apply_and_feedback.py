import io
import re

import pytest
from conftest import RESUME_UPLOAD, approved_referrer, body_text, find_token, register_applicant
from docx import Document

from irefair.core.tokens import create_referrer_token
from irefair.services import application_service, applicant_service, file_scan
from irefair.services.action_history import parse_action_history
from irefair.utils.timezone import iso_in

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def referral(client, outbox):
    """An applicant who applied to an approved company, plus the referrer's portal token."""
    applicant = register_applicant(client, outbox)
    referrer = approved_referrer()
    response = client.post(
        "/api/apply",
        data={"applicantId": applicant["irain"], "iCrn": referrer["ircrn"], "position": "Backend Developer"},
        files={"resume": RESUME_UPLOAD},
    )
    assert response.status_code == 200, response.text
    return {
        "applicant": applicant,
        "referrer": referrer,
        "application_id": response.json()["id"],
        "token": create_referrer_token(referrer["irref"], 1),
    }


def _feedback(client, referral, action, **extra):
    return client.post(
        "/api/referrer/portal/feedback",
        json={"token": referral["token"], "applicationId": referral["application_id"], "action": action, **extra},
    )


# ============================================================
# APPLY
# ============================================================

def test_apply_creates_application_and_emails_referrer(referral, outbox):
    application = application_service.get_application(referral["application_id"])

    assert referral["application_id"].startswith("APP-")
    assert application["status"] == "new"
    assert application["referrer_irref"] == referral["referrer"]["irref"]
    assert application["resume_file_name"] == "cv.doc"
    assert any(message["To"] == "sam@northwind.test" for message in outbox)


def test_apply_requires_fields(client):
    response = client.post("/api/apply", data={"applicantId": "iRAIN0000000001"}, files={"resume": RESUME_UPLOAD})
    assert response.status_code == 400


def test_apply_requires_resume(client, outbox):
    applicant = register_applicant(client, outbox)
    referrer = approved_referrer()
    response = client.post(
        "/api/apply", data={"applicantId": applicant["irain"], "iCrn": referrer["ircrn"], "position": "Dev"}
    )
    assert response.status_code == 400


def test_apply_unknown_applicant(client):
    referrer = approved_referrer()
    response = client.post(
        "/api/apply",
        data={"applicantId": "iRAIN0000000099", "iCrn": referrer["ircrn"], "position": "Dev"},
        files={"resume": RESUME_UPLOAD},
    )
    assert response.status_code == 404


def test_apply_unknown_company(client, outbox):
    applicant = register_applicant(client, outbox)
    response = client.post(
        "/api/apply",
        data={"applicantId": applicant["irain"], "iCrn": "iRCRN0000000042", "position": "Dev"},
        files={"resume": RESUME_UPLOAD},
    )
    assert response.status_code == 404
    assert response.json()["error"] == "We could not find a referrer for that company yet."


def test_apply_as_ineligible_applicant(client, outbox):
    applicant = register_applicant(client, outbox, locatedCanada="No", eligibleMoveCanada="No")
    referrer = approved_referrer()
    response = client.post(
        "/api/apply",
        data={"candidateId": applicant["irain"], "iCrn": referrer["ircrn"], "position": "Dev"},
        files={"resume": RESUME_UPLOAD},
    )
    assert application_service.get_application(response.json()["id"])["status"] == "ineligible"


@pytest.fixture
def scanned(monkeypatch):
    """Filenames sent to the virus scanner."""
    calls = []

    def fake_scan(content, filename):
        calls.append(filename)
        return file_scan.ScanResult(ok=True)

    monkeypatch.setattr(file_scan, "scan_for_viruses", fake_scan)
    return calls


def _short_docx() -> tuple:
    document = Document()
    document.add_paragraph("Hello, please hire me.")
    buffer = io.BytesIO()
    document.save(buffer)
    return ("cv.docx", buffer.getvalue(), DOCX_TYPE)


def test_apply_unknown_applicant_is_not_scanned(client, scanned):
    referrer = approved_referrer()
    response = client.post(
        "/api/apply",
        data={"applicantId": "iRAIN0000000099", "iCrn": referrer["ircrn"], "position": "Dev"},
        files={"resume": _short_docx()},
    )
    assert response.status_code == 404
    assert response.json()["error"] == "We could not find a candidate with that ID."
    assert scanned == []


def test_apply_unknown_company_is_not_scanned(client, outbox, scanned):
    applicant = register_applicant(client, outbox)
    scanned.clear()
    response = client.post(
        "/api/apply",
        data={"applicantId": applicant["irain"], "iCrn": "iRCRN0000000042", "position": "Dev"},
        files={"resume": _short_docx()},
    )
    assert response.status_code == 404
    assert scanned == []


def test_apply_rejects_short_resume(client, outbox, scanned):
    applicant = register_applicant(client, outbox)
    referrer = approved_referrer()
    scanned.clear()
    response = client.post(
        "/api/apply",
        data={"applicantId": applicant["irain"], "iCrn": referrer["ircrn"], "position": "Dev"},
        files={"resume": _short_docx()},
    )
    assert response.status_code == 400
    assert "too short" in response.json()["error"]
    assert scanned == ["cv.docx"]
    assert application_service.list_applications(applicant_ids=[applicant["irain"]])[1] == 0


# ============================================================
# PORTAL FEEDBACK
# ============================================================

def test_portal_lists_the_application(client, referral):
    response = client.get("/api/referrer/portal/data", params={"token": referral["token"]})

    items = response.json()["items"]
    assert [item["id"] for item in items] == [referral["application_id"]]
    assert items[0]["applicantName"] == "Jane Doe"
    assert items[0]["status"] == "new"
    assert items[0]["resumeDownloadUrl"].endswith(referral["application_id"])


def test_portal_resume_download(client, referral):
    response = client.get(
        "/api/referrer/portal/resume",
        params={"applicationId": referral["application_id"]},
        headers={"Authorization": f"Bearer {referral['token']}"},
    )
    assert response.status_code == 200
    assert response.content == RESUME_UPLOAD[1]
    assert 'filename="cv.doc"' in response.headers["content-disposition"]


def test_feedback_rejects_unknown_action(client, referral):
    response = _feedback(client, referral, "DANCE")
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid action.")


def test_feedback_requires_ownership(client, referral):
    other = approved_referrer(name="Other", email="other@contoso.test", company="Contoso")
    response = client.post(
        "/api/referrer/portal/feedback",
        json={
            "token": create_referrer_token(other["irref"], 1),
            "applicationId": referral["application_id"],
            "action": "REJECT",
        },
    )
    assert response.status_code == 403


def test_schedule_meeting_validates_timezone(client, referral):
    response = _feedback(
        client, referral, "SCHEDULE_MEETING", meetingDate="2025-01-03", meetingTime="14:30", meetingTimezone="Mars/Base"
    )
    assert response.status_code == 400


def test_schedule_then_reschedule(client, referral, outbox):
    response = _feedback(
        client, referral, "schedule-meeting",
        meetingDate="2025-01-03", meetingTime="14:30", meetingTimezone="America/Toronto", meetingUrl="meet.example.com/abc",
    )
    assert response.json() == {"ok": True, "status": "meeting scheduled"}

    application = application_service.get_application(referral["application_id"])
    assert application["meeting_url"] == "https://meet.example.com/abc"
    history = parse_action_history(application["action_history"])
    assert history[-1]["action"] == "SCHEDULE_MEETING"
    assert history[-1]["meetingDetails"]["timezone"] == "America/Toronto"

    invite = outbox[-1]
    assert invite["To"] == "jane@example.com"
    assert invite["Reply-To"] == "sam@northwind.test"
    token = find_token(invite, "/reschedule")

    validated = client.get("/api/referrer/reschedule/validate", params={"token": token})
    assert validated.json()["meetingInfo"]["formattedDateTime"] == "Friday, January 3, 2025 at 2:30 PM (EST)"

    page = client.post("/api/referrer/reschedule", params={"token": token})
    assert page.status_code == 200
    application = application_service.get_application(referral["application_id"])
    assert application["status"] == "needs reschedule"
    assert application["meeting_date"] is None

    used = client.get("/api/referrer/reschedule/validate", params={"token": token})
    assert used.status_code == 404


def test_offer_requires_interview(client, referral):
    response = _feedback(client, referral, "OFFER_JOB")
    assert response.status_code == 400


def test_hired_is_terminal(client, referral, outbox):
    _feedback(client, referral, "SCHEDULE_MEETING", meetingDate="2025-01-03", meetingTime="14:30", meetingTimezone="UTC")
    assert _feedback(client, referral, "MARK_INTERVIEWED").json()["status"] == "interviewed"

    hired = _feedback(client, referral, "OFFER_JOB", notes="Welcome aboard")
    assert hired.json() == {"ok": True, "status": "hired"}
    assert outbox[-1]["To"] == "rewards@irefair.test"

    assert _feedback(client, referral, "OFFER_JOB").json() == {"ok": True, "status": "hired"}
    assert _feedback(client, referral, "REJECT").status_code == 400


def test_info_request_round_trip(client, referral, outbox):
    response = _feedback(client, referral, "REQUEST_INFO", notes="Please add your portfolio")
    assert response.json()["status"] == "info requested"

    match = re.search(r"updateToken=([A-Za-z0-9]+)&appId=([A-Za-z0-9-]+)", body_text(outbox[-1]))
    update_token, app_id = match.group(1), match.group(2)
    assert app_id == referral["application_id"]

    prefill = client.get("/api/applicant/data", params={"updateToken": update_token, "appId": app_id})
    body = prefill.json()
    assert body["updatePurpose"] == "info"
    assert body["data"]["email"] == "jane@example.com"
    assert [item["id"] for item in body["applications"]] == [app_id]

    submitted = client.post(
        "/api/applicant",
        data={
            "firstName": "Jane",
            "familyName": "Doe",
            "email": "jane@example.com",
            "pitch": "Portfolio: https://jane.dev",
            "updateRequestToken": update_token,
            "updateRequestApplicationId": app_id,
        },
    )
    assert submitted.status_code == 200, submitted.text

    confirm_token = find_token(outbox[-1], "/api/applicant/confirm-update")
    client.post("/api/applicant/confirm-update", json={"token": confirm_token})

    application = application_service.get_application(app_id)
    assert application["status"] == "info updated"
    assert application["update_request_token_hash"] is None
    assert parse_action_history(application["action_history"])[-1]["action"] == "APPLICANT_UPDATED"


def test_update_request_link_rejects_wrong_token(client, referral):
    _feedback(client, referral, "REQUEST_CV_UPDATE")
    response = client.get("/api/applicant/data", params={"updateToken": "0" * 48, "appId": referral["application_id"]})
    assert response.status_code == 401


def test_update_request_link_expires(client, referral, outbox):
    _feedback(client, referral, "REQUEST_INFO", notes="Please add your portfolio")
    update_token = re.search(r"updateToken=([A-Za-z0-9]+)", body_text(outbox[-1])).group(1)
    application_service.update_application(referral["application_id"], {"update_request_expires_at": iso_in(seconds=-5)})

    response = client.get("/api/applicant/data", params={"updateToken": update_token, "appId": referral["application_id"]})

    assert response.status_code == 410
    assert response.json()["error"] == "Update link has expired"


# ============================================================
# MEETINGS
# ============================================================

def _schedule(client, referral):
    response = _feedback(
        client, referral, "SCHEDULE_MEETING", meetingDate="2025-01-03", meetingTime="14:30", meetingTimezone="UTC"
    )
    assert response.status_code == 200, response.text


def test_cancel_meeting_requires_scheduled_meeting(client, referral):
    response = _feedback(client, referral, "CANCEL_MEETING")

    assert response.status_code == 400
    assert response.json()["error"] == "No meeting is currently scheduled to cancel."
    assert application_service.get_application(referral["application_id"])["status"] == "new"


def test_expired_reschedule_link(client, referral, outbox):
    _schedule(client, referral)
    token = find_token(outbox[-1], "/reschedule")
    application_service.update_application(referral["application_id"], {"reschedule_token_expires_at": iso_in(seconds=-5)})

    validated = client.get("/api/referrer/reschedule/validate", params={"token": token})
    assert validated.status_code == 410
    assert validated.json()["valid"] is False

    page = client.get("/api/referrer/reschedule", params={"token": token})
    assert page.status_code == 410
    assert "Link Expired" in page.text

    submitted = client.post("/api/referrer/reschedule", params={"token": token})
    assert submitted.status_code == 410
    assert application_service.get_application(referral["application_id"])["status"] == "meeting scheduled"


def test_ineligible_update_cancels_scheduled_meeting(client, referral, outbox):
    _schedule(client, referral)

    client.post(
        "/api/applicant",
        data={
            "firstName": "Jane",
            "familyName": "Doe",
            "email": "jane@example.com",
            "phone": "+1 416 555 0100",
            "locatedCanada": "No",
            "eligibleMoveCanada": "No",
        },
        files={"resume": RESUME_UPLOAD},
    )
    token = find_token(outbox[-1], "/api/applicant/confirm-update")
    confirmed = client.post("/api/applicant/confirm-update", json={"token": token})
    assert confirmed.json() == {"ok": True}

    application = application_service.get_application(referral["application_id"])
    assert application["status"] == "ineligible"
    assert application["meeting_date"] is None
    cancelled = {message["To"] for message in outbox if message["Subject"] == "Meeting cancelled"}
    assert cancelled == {"jane@example.com", "sam@northwind.test"}
    assert applicant_service.applicant_is_ineligible(applicant_service.get_applicant(referral["applicant"]["irain"]))


# ============================================================
# STATUS FILTER
# ============================================================

def test_status_filter_matches_legacy_and_blank_values(referral):
    application_id = referral["application_id"]

    application_service.update_application(application_id, {"status": "Wants to meet"})
    items, total = application_service.list_applications(status="meeting requested")
    assert total == 1
    assert [item["id"] for item in items] == [application_id]

    application_service.update_application(application_id, {"status": ""})
    assert application_service.list_applications(status="new")[1] == 1
    assert application_service.list_applications(status="meeting requested")[1] == 0

    application_service.update_application(application_id, {"status": None})
    assert application_service.list_applications(status="New")[1] == 1
