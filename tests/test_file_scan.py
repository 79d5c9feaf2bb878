import io

from docx import Document

from irefair.core.config import get_settings
from irefair.services import file_scan
from irefair.services.file_scan import ensure_resume_looks_like_cv, scan_for_viruses
from irefair.utils.file_upload import is_allowed_resume

settings = get_settings()

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _docx(paragraphs) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


RESUME_PARAGRAPHS = [
    "Jane Doe - jane.doe@example.com - +1 416 555 0100",
    "Professional Summary: backend developer with eight years of experience building payment "
    "platforms, data pipelines and internal tooling for growing product teams.",
    "Experience: Senior Engineer at Northwind Traders, Toronto. Led a team of five engineers, "
    "migrated the billing system to a service architecture and cut settlement time in half.",
    "Education: BSc Computer Science, University of Toronto.",
    "Skills: Python, FastAPI, PostgreSQL, Redis, MongoDB, Docker, Kubernetes, observability.",
]


def test_resume_like_document_passes():
    result = ensure_resume_looks_like_cv(_docx(RESUME_PARAGRAPHS), DOCX_TYPE, "cv.docx")
    assert result.ok
    assert not result.skipped


def test_short_document_is_rejected():
    result = ensure_resume_looks_like_cv(_docx(["Hello, please hire me."]), DOCX_TYPE, "cv.docx")
    assert not result.ok
    assert "too short" in result.message


def test_document_without_contact_details_is_rejected():
    paragraphs = RESUME_PARAGRAPHS[1:] + [
        "Projects: a long list of side projects covering compilers, games and home automation work.",
    ]
    result = ensure_resume_looks_like_cv(_docx(paragraphs), DOCX_TYPE, "cv.docx")
    assert not result.ok
    assert "contact details" in result.message


def test_unextractable_format_skips_heuristic():
    result = ensure_resume_looks_like_cv(b"legacy word bytes", "application/msword", "cv.doc")
    assert result.ok
    assert result.skipped


def test_allowed_resume_types():
    assert is_allowed_resume("cv.pdf", None)
    assert is_allowed_resume("upload", "application/msword")
    assert not is_allowed_resume("cv.txt", "text/plain")


def test_virus_scan_skipped_without_key():
    result = scan_for_viruses(b"data", "cv.pdf")
    assert result.ok
    assert result.skipped


class _FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = ""

    def json(self):
        return self._payload


def test_virus_scan_rejects_flagged_file(monkeypatch):
    monkeypatch.setattr(settings, "virustotal_api_key", "vt-key")
    monkeypatch.setattr(settings, "virustotal_poll_interval_seconds", 0)
    monkeypatch.setattr(
        file_scan.requests, "post", lambda *args, **kwargs: _FakeResponse({"data": {"id": "analysis-1"}})
    )
    monkeypatch.setattr(
        file_scan.requests,
        "get",
        lambda *args, **kwargs: _FakeResponse(
            {"data": {"attributes": {"status": "completed", "stats": {"malicious": 2, "suspicious": 0}}}}
        ),
    )

    result = scan_for_viruses(b"data", "cv.pdf")
    assert not result.ok
    assert result.message == "File flagged by antivirus scan."


def test_virus_scan_passes_clean_file(monkeypatch):
    monkeypatch.setattr(settings, "virustotal_api_key", "vt-key")
    monkeypatch.setattr(settings, "virustotal_poll_interval_seconds", 0)
    monkeypatch.setattr(
        file_scan.requests, "post", lambda *args, **kwargs: _FakeResponse({"data": {"id": "analysis-1"}})
    )
    monkeypatch.setattr(
        file_scan.requests,
        "get",
        lambda *args, **kwargs: _FakeResponse({"data": {"attributes": {"status": "completed", "stats": {}}}}),
    )

    assert scan_for_viruses(b"data", "cv.pdf").ok
