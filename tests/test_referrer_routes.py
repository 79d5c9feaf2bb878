import json

import fakeredis
from conftest import approved_referrer, body_text

from irefair.core.rate_limit import set_redis_client
from irefair.core.tokens import create_referrer_token
from irefair.services import referrer_service

REGISTRATION = {
    "name": "Sam Referrer",
    "email": "sam@northwind.test",
    "phone": "+1 647 555 0199",
    "country": "Canada",
    "company": "Northwind",
    "companyIndustry": "Other",
    "companyIndustryOther": "Logistics",
    "careersPortal": "northwind.test/careers",
    "workType": "Hybrid",
}


# ============================================================
# REGISTRATION
# ============================================================

def test_register_referrer_creates_pending_company(client, outbox):
    response = client.post("/api/referrer", json=REGISTRATION)

    assert response.json() == {"ok": True, "iRref": "iRREF0000000001"}
    referrer = referrer_service.get_referrer("iRREF0000000001")
    assert referrer["name"] == "Sam Referrer"
    assert referrer["careers_portal"] == "https://northwind.test/careers"

    companies = referrer_service.list_companies("iRREF0000000001")
    assert len(companies) == 1
    assert companies[0]["approval"] == "pending"
    assert companies[0]["company_industry"] == "Logistics"
    assert companies[0]["company_ircrn"] is None
    assert outbox[-1]["To"] == "sam@northwind.test"


def test_register_referrer_requires_email(client):
    response = client.post("/api/referrer", json={"name": "No Email"})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing required field: email."


def test_existing_referrer_adds_new_company(client, outbox):
    client.post("/api/referrer", json=REGISTRATION)
    response = client.post("/api/referrer", json={**REGISTRATION, "company": "Contoso"})

    body = response.json()
    assert body["isExisting"] is True
    assert body["newCompanyAdded"] is True
    names = sorted(c["company_name"] for c in referrer_service.list_companies("iRREF0000000001"))
    assert names == ["Contoso", "Northwind"]


def test_existing_referrer_changes_are_queued(client, outbox):
    client.post("/api/referrer", json=REGISTRATION)
    response = client.post("/api/referrer", json={**REGISTRATION, "phone": "+1 647 555 0000"})

    assert response.json() == {"ok": True, "iRref": "iRREF0000000001", "isExisting": True}
    referrer = referrer_service.get_referrer("iRREF0000000001")
    assert referrer["phone"] == "+1 647 555 0199"
    updates = json.loads(referrer["pending_updates"])
    assert updates[0]["status"] == "pending"
    assert updates[0]["data"] == {"phone": "+1 647 555 0000"}


# ============================================================
# FOUNDER COMPANY APPROVAL
# ============================================================

def test_approving_company_assigns_ircrn_and_sends_portal_link(founder_client, outbox):
    founder_client.post("/api/referrer", json=REGISTRATION)
    company_id = referrer_service.list_companies("iRREF0000000001")[0]["id"]

    response = founder_client.post(
        f"/api/founder/referrer-companies/{company_id}/approval", json={"approval": "approved"}
    )

    body = response.json()
    assert body["ok"] is True
    assert body["companyIrcrn"] == "iRCRN0000000001"
    assert body["isFirstCompanyApproval"] is True
    assert body["portalLinkSent"] is True
    assert "/referrer/portal?token=" in body_text(outbox[-1])


def test_same_company_name_shares_ircrn(founder_client):
    first = approved_referrer()
    other = referrer_service.create_referrer({"name": "Alex", "email": "alex@northwind.test"})
    company_id = referrer_service.add_company(other, "northwind")

    response = founder_client.post(
        f"/api/founder/referrer-companies/{company_id}/approval", json={"approval": "approved"}
    )
    assert response.json()["companyIrcrn"] == first["ircrn"]


def test_invalid_approval_value(founder_client):
    response = founder_client.post("/api/founder/referrer-companies/RCMP-1/approval", json={"approval": "maybe"})
    assert response.status_code == 400


def test_hiring_companies_lists_approved_only(client):
    approved_referrer()
    pending = referrer_service.create_referrer({"name": "Pat", "email": "pat@contoso.test"})
    referrer_service.add_company(pending, "Contoso")

    response = client.get("/api/hiring-companies")

    assert response.json() == {
        "ok": True,
        "companies": [{
            "code": "iRCRN0000000001",
            "name": "Northwind",
            "industry": "Technology",
            "careersUrl": "https://northwind.test/careers",
        }],
    }


def test_pending_update_approval_applies_changes(founder_client):
    founder_client.post("/api/referrer", json=REGISTRATION)
    founder_client.post("/api/referrer", json={**REGISTRATION, "country": "France"})
    update_id = json.loads(referrer_service.get_referrer("iRREF0000000001")["pending_updates"])[0]["id"]

    response = founder_client.post(
        "/api/founder/referrers/iRREF0000000001/pending-updates", json={"updateId": update_id, "action": "approve"}
    )
    assert response.json() == {"ok": True, "action": "approved", "updateId": update_id}
    assert referrer_service.get_referrer("iRREF0000000001")["country"] == "France"

    again = founder_client.post(
        "/api/founder/referrers/iRREF0000000001/pending-updates", json={"updateId": update_id, "action": "deny"}
    )
    assert again.status_code == 400


# ============================================================
# PORTAL ACCESS
# ============================================================

def test_portal_data_requires_valid_token(client):
    assert client.get("/api/referrer/portal/data").status_code == 400
    assert client.get("/api/referrer/portal/data", params={"token": "bad.token.value"}).status_code == 401


def test_portal_data_lists_companies(client):
    referrer = approved_referrer()
    token = create_referrer_token(referrer["irref"], 1)

    response = client.get("/api/referrer/portal/data", headers={"Authorization": f"Bearer {token}"})

    body = response.json()
    assert body["referrer"]["irref"] == referrer["irref"]
    assert body["total"] == 0
    assert body["companies"] == [{"id": referrer["company_id"], "name": "Northwind", "ircrn": referrer["ircrn"]}]


def test_rotated_portal_token_is_refused(founder_client):
    referrer = approved_referrer()
    token = create_referrer_token(referrer["irref"], 1)

    rotated = founder_client.post(f"/api/founder/referrers/{referrer['irref']}/rotate-portal-token")
    assert rotated.json() == {"ok": True, "version": 2}

    response = founder_client.get("/api/referrer/portal/data", params={"token": token})
    assert response.status_code == 403


def test_archived_referrer_is_refused(client):
    referrer = approved_referrer()
    token = create_referrer_token(referrer["irref"], 1)
    referrer_service.archive_referrer(referrer["irref"], "founder")

    response = client.get("/api/referrer/portal/data", params={"token": token})
    assert response.status_code == 403


def test_portal_session_cookie(client):
    referrer = approved_referrer()
    token = create_referrer_token(referrer["irref"], 1)

    started = client.post("/api/referrer/portal/session", json={"token": token})
    assert started.json() == {"ok": True, "irref": referrer["irref"]}
    assert client.get("/api/referrer/portal/data").status_code == 200

    client.delete("/api/referrer/portal/session")
    assert client.get("/api/referrer/portal/data").status_code == 400


def test_request_link_does_not_reveal_unknown_email(client, outbox):
    response = client.post("/api/referrer/portal/request-link", json={"email": "nobody@example.com"})
    assert response.json() == {"ok": True}
    assert outbox == []


def test_request_link_emails_known_referrer(client, outbox):
    approved_referrer()
    response = client.post("/api/referrer/portal/request-link", json={"email": "SAM@northwind.test"})

    assert response.json() == {"ok": True}
    assert outbox[-1]["To"] == "sam@northwind.test"


def test_request_link_is_limited_per_email(client, outbox):
    approved_referrer()
    set_redis_client(fakeredis.FakeRedis())

    statuses = [
        client.post("/api/referrer/portal/request-link", json={"email": "sam@northwind.test"}).status_code
        for _ in range(4)
    ]

    assert statuses == [200, 200, 200, 429]
    assert len([message for message in outbox if message["To"] == "sam@northwind.test"]) == 3
