import os
import re
import tempfile

from passlib.context import CryptContext

# Settings are cached on first import, so the environment is pinned here
_db_dir = tempfile.mkdtemp(prefix="irefair-tests-")
FOUNDER_EMAIL = "founder@irefair.test"
FOUNDER_PASSWORD = "correct horse battery"
CRON_SECRET = "cron-secret-for-tests"

os.environ.update({
    "DATABASE_URL": f"sqlite:///{os.path.join(_db_dir, 'irefair.db')}",
    "REDIS_URL": "",
    "MONGODB_DB": "irefair_test",
    "FOUNDER_AUTH_SECRET": "founder-secret-0123456789abcdef",
    "APPLICANT_TOKEN_SECRET": "applicant-secret-0123456789abcdef",
    "APPLICANT_PORTAL_TOKEN_SECRET": "applicant-portal-secret-0123456789",
    "REFERRER_PORTAL_TOKEN_SECRET": "referrer-secret-0123456789abcdef",
    "FOUNDER_EMAIL": FOUNDER_EMAIL,
    "FOUNDER_PASSWORD_HASH": CryptContext(schemes=["bcrypt"]).hash(FOUNDER_PASSWORD),
    "CRON_SECRET": CRON_SECRET,
    "SMTP_HOST": "smtp.irefair.test",
    "SMTP_PORT": "587",
    "SMTP_USER": "mailer",
    "SMTP_PASSWORD": "mailer-password",
    "SMTP_FROM_EMAIL": "info@irefair.test",
    "APP_BASE_URL": "https://app.irefair.test",
    "REFERRAL_REWARD_EMAIL": "rewards@irefair.test",
    "APPLICATION_FALLBACK_REFERRER_EMAIL": "",
    "COOKIE_SECURE": "false",
    "VIRUSTOTAL_API_KEY": "",
    "OPENAI_API_KEY": "",
    "LOG_LEVEL": "WARNING",
})

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import text  # noqa: E402

from irefair.core.rate_limit import set_redis_client  # noqa: E402
from irefair.db.mongodb import COLLECTIONS, get_collection, set_mongo_client  # noqa: E402
from irefair.db.postgres import get_db_session  # noqa: E402
from irefair.db.schema import init_db, metadata  # noqa: E402
from irefair.services import mailer  # noqa: E402
from irefair.services.chatgpt_client import set_chatgpt_client  # noqa: E402
from irefair.services.resume_service import reset_resume_store  # noqa: E402

set_mongo_client(mongomock.MongoClient())
reset_resume_store()
init_db()

# A .doc upload is stored without text extraction, so the CV heuristic is skipped
RESUME_UPLOAD = ("cv.doc", b"Jane Doe resume", "application/msword")


@pytest.fixture(autouse=True)
def clean_state():
    with get_db_session() as db:
        for table in reversed(metadata.sorted_tables):
            db.execute(text(f"DELETE FROM {table.name}"))
    get_collection(COLLECTIONS["resumes"]).delete_many({})
    set_redis_client(None)
    set_chatgpt_client(None)
    yield


@pytest.fixture
def outbox(monkeypatch):
    """Messages handed to SMTP, captured instead of sent."""
    sent = []
    monkeypatch.setattr(mailer, "deliver_message", sent.append)
    return sent


@pytest.fixture
def client(outbox):
    from irefair.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def founder_client(client):
    response = client.post(
        "/api/founder/auth/login",
        json={"email": FOUNDER_EMAIL, "password": FOUNDER_PASSWORD},
    )
    assert response.status_code == 200, response.text
    return client


def body_text(message) -> str:
    return message.get_body(preferencelist=("plain",)).get_content()


def find_token(message, path: str) -> str:
    match = re.search(rf"{re.escape(path)}\?token=([A-Za-z0-9._%-]+)", body_text(message))
    assert match, body_text(message)
    return match.group(1)


def register_applicant(client, outbox, **overrides) -> dict:
    """Register and confirm an applicant. Returns {"irain", "key", "email"}."""
    form = {
        "firstName": "Jane",
        "familyName": "Doe",
        "email": "jane@example.com",
        "phone": "+1 416 555 0100",
        "locatedCanada": "Yes",
        "authorizedCanada": "Yes",
        "province": "Ontario",
        "languages": "English, French",
    }
    form.update(overrides)
    response = client.post("/api/applicant", data=form, files={"resume": RESUME_UPLOAD})
    assert response.status_code == 200, response.text

    token = find_token(outbox[-1], "/api/applicant/confirm-registration")
    confirmed = client.post("/api/applicant/confirm-registration", json={"token": token})
    assert confirmed.status_code == 200, confirmed.text
    key = re.search(r"applicant key is ([A-Za-z0-9_-]+)\.", body_text(outbox[-1])).group(1)
    return {"irain": confirmed.json()["iRain"], "key": key, "email": form["email"]}


def approved_referrer(name="Sam Referrer", email="sam@northwind.test", company="Northwind") -> dict:
    """A referrer with one approved company. Returns {"irref", "company_id", "ircrn"}."""
    from irefair.services import referrer_service

    irref = referrer_service.create_referrer({"name": name, "email": email, "company": company})
    company_id = referrer_service.add_company(irref, company, "Technology", "https://northwind.test/careers")
    approved = referrer_service.set_company_approval(company_id, referrer_service.APPROVAL_APPROVED)
    return {"irref": irref, "company_id": company_id, "ircrn": approved["company"]["company_ircrn"]}
