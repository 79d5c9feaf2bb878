from conftest import CRON_SECRET, RESUME_UPLOAD, find_token

from irefair.services import applicant_service
from irefair.utils.timezone import iso_in

CRON_HEADERS = {"Authorization": f"Bearer {CRON_SECRET}"}
FORM = {"firstName": "Jane", "familyName": "Doe", "email": "jane@example.com", "phone": "+1 416 555 0100"}


def _register_pending(client):
    response = client.post("/api/applicant", data=FORM, files={"resume": RESUME_UPLOAD})
    assert response.status_code == 200, response.text
    return "iRAIN0000000001"


def test_cron_requires_secret(client):
    assert client.get("/api/cron/cleanup-expired-applicants").status_code == 401
    wrong = client.get("/api/cron/cleanup-expired-applicants", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401


def test_cleanup_removes_expired_registrations(client):
    irain = _register_pending(client)
    applicant_service.update_applicant(irain, {"update_token_expires_at": iso_in(hours=-1)})

    response = client.get("/api/cron/cleanup-expired-applicants", headers=CRON_HEADERS)

    assert response.json() == {"ok": True, "deleted": 1, "errors": 0}
    assert applicant_service.get_applicant(irain) is None


def test_cleanup_keeps_live_registrations(client):
    irain = _register_pending(client)

    response = client.get("/api/cron/cleanup-expired-applicants", headers=CRON_HEADERS)

    assert response.json()["deleted"] == 0
    assert applicant_service.get_applicant(irain) is not None


def test_fresh_registration_gets_no_reminder(client, outbox):
    _register_pending(client)

    response = client.get("/api/cron/applicant-registration-reminders", headers=CRON_HEADERS)

    assert response.json() == {"ok": True, "sent": 0, "errors": 0, "total": 0}
    assert len(outbox) == 1


def test_reminder_is_sent_once_and_confirms(client, outbox):
    irain = _register_pending(client)
    # Issued two days ago
    applicant_service.update_applicant(irain, {"update_token_expires_at": iso_in(days=5)})

    response = client.get("/api/cron/applicant-registration-reminders", headers=CRON_HEADERS)
    assert response.json() == {"ok": True, "sent": 1, "errors": 0, "total": 1}
    assert applicant_service.get_applicant(irain)["reminder_token_hash"]

    again = client.get("/api/cron/applicant-registration-reminders", headers=CRON_HEADERS)
    assert again.json()["total"] == 0

    token = find_token(outbox[-1], "/api/applicant/confirm-registration")
    confirmed = client.post("/api/applicant/confirm-registration", json={"token": token})
    assert confirmed.json()["iRain"] == irain
    assert applicant_service.get_applicant(irain)["registration_status"] == ""
