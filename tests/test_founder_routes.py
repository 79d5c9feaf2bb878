from conftest import FOUNDER_EMAIL, RESUME_UPLOAD, approved_referrer, register_applicant

from irefair.services import application_service, applicant_service, match_service, mobile_auth, referrer_service
from irefair.services.action_history import parse_action_history
from irefair.services.resume_service import get_resume_store


# ============================================================
# AUTH
# ============================================================

def test_console_requires_login(client):
    response = client.get("/api/founder/stats")
    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": "Unauthorized"}


def test_login_rejects_wrong_password(client):
    response = client.post("/api/founder/auth/login", json={"email": FOUNDER_EMAIL, "password": "nope"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid email or password."


def test_login_requires_both_fields(client):
    response = client.post("/api/founder/auth/login", json={"email": FOUNDER_EMAIL})
    assert response.status_code == 400


def test_logout_clears_session(founder_client):
    assert founder_client.get("/api/founder/stats").status_code == 200
    founder_client.post("/api/founder/auth/logout")
    assert founder_client.get("/api/founder/stats").status_code == 401


def test_stats(founder_client, outbox):
    register_applicant(founder_client, outbox)
    approved_referrer()

    body = founder_client.get("/api/founder/stats").json()

    assert body["applicants"] == 1
    assert body["referrers"] == 1
    assert body["applications"] == 0
    assert body["matches"] == 0


# ============================================================
# APPLICANTS
# ============================================================

def test_applicant_list_hides_pending_registrations(founder_client, outbox):
    confirmed = register_applicant(founder_client, outbox)
    founder_client.post(
        "/api/applicant",
        data={"firstName": "Pending", "email": "pending@example.com", "phone": "555 0000"},
        files={"resume": RESUME_UPLOAD},
    )

    body = founder_client.get("/api/founder/applicants").json()

    assert body["total"] == 1
    assert body["items"][0]["irain"] == confirmed["irain"]


def test_applicant_list_filters(founder_client, outbox):
    register_applicant(founder_client, outbox)
    register_applicant(
        founder_client, outbox,
        firstName="Omar", familyName="Far", email="omar@example.com", phone="555 1111",
        locatedCanada="No", eligibleMoveCanada="No",
    )

    eligible = founder_client.get("/api/founder/applicants", params={"eligible": "true"}).json()
    assert [item["firstName"] for item in eligible["items"]] == ["Jane"]

    search = founder_client.get("/api/founder/applicants", params={"search": "omar"}).json()
    assert [item["firstName"] for item in search["items"]] == ["Omar"]


def test_patch_applicant_admin_fields(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)

    response = founder_client.patch(
        f"/api/founder/applicants/{applicant['irain']}", json={"status": "Contacted", "ownerNotes": "Strong profile"}
    )

    assert sorted(response.json()["updated"]) == ["ownerNotes", "status"]
    item = founder_client.get(f"/api/founder/applicants/{applicant['irain']}").json()["item"]
    assert item["status"] == "Contacted"
    assert item["ownerNotes"] == "Strong profile"


def test_unknown_applicant(founder_client):
    response = founder_client.get("/api/founder/applicants/iRAIN0000000404")
    assert response.status_code == 404


def test_request_resume(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)

    response = founder_client.post(f"/api/founder/applicants/{applicant['irain']}/request-resume")

    assert response.json() == {"ok": True}
    assert outbox[-1]["To"] == applicant["email"]
    assert applicant_service.get_applicant(applicant["irain"])["status"] == "resume requested"


def test_create_application_for_applicant(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)
    referrer = approved_referrer()

    response = founder_client.post(
        f"/api/founder/applicants/{applicant['irain']}/create-application", json={"iCrn": referrer["ircrn"]}
    )

    application_id = response.json()["id"]
    application = application_service.get_application(application_id)
    assert application["position"] == "TBD"
    assert application["referrer_irref"] == referrer["irref"]
    assert parse_action_history(application["action_history"])[0]["action"] == "LINKED_BY_FOUNDER"
    assert {message["To"] for message in outbox[-2:]} == {applicant["email"], "sam@northwind.test"}

    duplicate = founder_client.post(
        f"/api/founder/applicants/{applicant['irain']}/create-application", json={"iCrn": referrer["ircrn"]}
    )
    assert duplicate.status_code == 409


def test_create_application_needs_approved_company(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)
    response = founder_client.post(
        f"/api/founder/applicants/{applicant['irain']}/create-application", json={"iCrn": "iRCRN0000000077"}
    )
    assert response.status_code == 400


def test_founder_resume_upload_and_download(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)

    uploaded = founder_client.post(
        f"/api/founder/applicants/{applicant['irain']}/resume",
        files={"resume": ("new-cv.doc", b"updated resume", "application/msword")},
    )
    assert uploaded.json()["resumeFileName"] == "new-cv.doc"

    downloaded = founder_client.get(f"/api/founder/applicants/{applicant['irain']}/resume")
    assert downloaded.content == b"updated resume"


# ============================================================
# ARCHIVE
# ============================================================

def test_archive_restore_and_delete_applicant(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)
    referrer = approved_referrer()
    founder_client.post(
        "/api/apply",
        data={"applicantId": applicant["irain"], "iCrn": referrer["ircrn"], "position": "Dev"},
        files={"resume": RESUME_UPLOAD},
    )

    archived = founder_client.delete(f"/api/founder/applicants/{applicant['irain']}")
    assert archived.json() == {"ok": True, "archivedApplications": 1}
    assert founder_client.delete(f"/api/founder/applicants/{applicant['irain']}").status_code == 400

    listed = founder_client.get("/api/founder/archive/applicants").json()
    assert [item["irain"] for item in listed["items"]] == [applicant["irain"]]

    restored = founder_client.post(f"/api/founder/archive/applicants/{applicant['irain']}/restore")
    assert restored.json() == {"ok": True}
    again = founder_client.post(f"/api/founder/archive/applicants/{applicant['irain']}/restore")
    assert again.status_code == 400
    assert again.json()["error"] == "Applicant is not archived"

    refused = founder_client.delete(f"/api/founder/archive/applicants/{applicant['irain']}")
    assert refused.status_code == 400

    founder_client.delete(f"/api/founder/applicants/{applicant['irain']}")
    deleted = founder_client.delete(f"/api/founder/archive/applicants/{applicant['irain']}")
    assert deleted.json() == {"ok": True}
    assert applicant_service.get_applicant(applicant["irain"]) is None
    assert get_resume_store().collection.count_documents({"owner_id": applicant["irain"]}) == 0


def test_delete_archived_applicant_with_lowercase_id(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)
    founder_client.delete(f"/api/founder/applicants/{applicant['irain']}")
    assert get_resume_store().collection.count_documents({"owner_id": applicant["irain"]}) > 0

    deleted = founder_client.delete(f"/api/founder/archive/applicants/{applicant['irain'].lower()}")

    assert deleted.json() == {"ok": True}
    assert applicant_service.get_applicant(applicant["irain"]) is None
    assert get_resume_store().collection.count_documents({"owner_id": applicant["irain"]}) == 0


def test_archive_application_requires_reason(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)
    referrer = approved_referrer()
    application_id = founder_client.post(
        f"/api/founder/applicants/{applicant['irain']}/create-application", json={"iCrn": referrer["ircrn"]}
    ).json()["id"]

    assert founder_client.post(f"/api/founder/applications/{application_id}/archive", json={}).status_code == 400

    response = founder_client.post(
        f"/api/founder/applications/{application_id}/archive",
        json={"reason": "Position filled", "notifyApplicant": False, "notifyReferrer": False},
    )
    assert response.json() == {"ok": True}
    application = application_service.get_application(application_id)
    assert application["archived"]
    assert parse_action_history(application["action_history"])[-1]["action"] == "ARCHIVED_BY_FOUNDER"


def test_archiving_referrer_revokes_mobile_sessions(founder_client):
    referrer = approved_referrer()
    session = mobile_auth.issue_referrer_session(referrer["irref"], 1)

    response = founder_client.delete(f"/api/founder/referrers/{referrer['irref']}")

    assert response.json() == {"ok": True}
    assert referrer_service.get_referrer(referrer["irref"])["archived"]
    assert mobile_auth.validate_refresh_token(session.refresh_token, mobile_auth.ROLE_REFERRER) is None
    assert founder_client.get("/api/hiring-companies").json()["companies"] == []


def test_invite_referrer_to_meeting(founder_client, outbox):
    referrer = approved_referrer()

    response = founder_client.post(
        f"/api/founder/referrers/{referrer['irref']}/invite-meeting", json={"link": "cal.example.com/founder"}
    )

    assert response.json() == {"ok": True}
    assert outbox[-1]["To"] == "sam@northwind.test"
    assert referrer_service.get_referrer(referrer["irref"])["status"] == "meeting invited"


def test_referrer_detail_lists_companies_and_missing_fields(founder_client):
    referrer = approved_referrer()
    referrer_service.add_company(referrer["irref"], "Contoso")

    item = founder_client.get(f"/api/founder/referrers/{referrer['irref']}").json()["item"]

    assert [company["companyName"] for company in item["companies"]] == ["Contoso", "Northwind"]
    assert item["missingFields"] == ["Phone"]


# ============================================================
# MATCHES
# ============================================================

def test_match_lifecycle(founder_client, outbox):
    applicant = register_applicant(founder_client, outbox)
    referrer = approved_referrer()

    created = founder_client.post(
        "/api/founder/matches",
        json={
            "applicantIrain": applicant["irain"],
            "referrerIrref": referrer["irref"],
            "companyIrcrn": referrer["ircrn"],
            "positionContext": "Backend roles",
        },
    )
    match_id = created.json()["matchId"]
    assert match_id.startswith("MATCH-")

    patched = founder_client.patch(f"/api/founder/matches/{match_id}", json={"notes": "Great fit"})
    assert patched.json() == {"ok": True, "updated": ["notes"]}

    intro = founder_client.post(f"/api/founder/matches/{match_id}/send-intro")
    assert intro.json() == {"ok": True}
    assert outbox[-1]["To"] == applicant["email"]
    assert outbox[-1]["Cc"] == "sam@northwind.test"

    match = match_service.get_match(match_id)
    assert match["stage"] == "intro sent"
    assert match["intro_sent_at"]

    listed = founder_client.get("/api/founder/matches", params={"stage": "intro sent"}).json()
    assert listed["total"] == 1


def test_match_validation(founder_client):
    assert founder_client.post("/api/founder/matches", json={"applicantIrain": "iRAIN0000000001"}).status_code == 400
    invalid_stage = founder_client.post(
        "/api/founder/matches",
        json={"applicantIrain": "iRAIN0000000001", "referrerIrref": "iRREF0000000001", "stage": "dating"},
    )
    assert invalid_stage.status_code == 400
    assert founder_client.patch("/api/founder/matches/MATCH-missing", json={"notes": "x"}).status_code == 404


def test_approved_companies(founder_client):
    referrer = approved_referrer()
    body = founder_client.get("/api/founder/approved-companies").json()
    assert body["companies"] == [{"code": referrer["ircrn"], "name": "Northwind"}]
