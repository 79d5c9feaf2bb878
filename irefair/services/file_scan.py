"""
Resume checks run before a file is stored.

- scan_for_viruses: uploads to VirusTotal and polls the analysis
- ensure_resume_looks_like_cv: cheap heuristic so random documents are rejected
- check_resume / read_and_check_resume: both checks, on bytes or on a form upload
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
from fastapi import HTTPException

from irefair.core.config import get_settings
from irefair.utils.file_upload import extract_text, read_resume_upload

settings = get_settings()
logger = logging.getLogger(__name__)

VIRUSTOTAL_BASE_URL = "https://www.virustotal.com/api/v3"
REQUEST_TIMEOUT_SECONDS = 8

MIN_TEXT_LENGTH = 400
CV_KEYWORDS = [
    "experience",
    "education",
    "skills",
    "summary",
    "professional",
    "employment",
    "project",
    "career",
    "work",
    "profile",
]
EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
PHONE_RE = re.compile(r"\b(?:\+?\d{1,3}[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?){2}\d{4}\b")


@dataclass
class ScanResult:
    ok: bool
    skipped: bool = False
    message: Optional[str] = None


def scan_for_viruses(content: bytes, filename: str) -> ScanResult:
    """Skipped without an API key or on timeout; fails on any flagged verdict."""
    api_key = settings.virustotal_api_key
    if not api_key:
        return ScanResult(ok=True, skipped=True)

    headers = {"x-apikey": api_key}
    try:
        upload = requests.post(
            f"{VIRUSTOTAL_BASE_URL}/files",
            headers=headers,
            files={"file": (filename or "upload.bin", content)},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if not upload.ok:
            return ScanResult(ok=False, message=f"Virus scan upload failed ({upload.status_code}): {upload.text}")

        analysis_id = (upload.json().get("data") or {}).get("id")
        if not analysis_id:
            return ScanResult(ok=False, message="Virus scan service did not return an analysis ID.")

        stats = {}
        for _ in range(settings.virustotal_poll_attempts):
            time.sleep(settings.virustotal_poll_interval_seconds)
            analysis = requests.get(
                f"{VIRUSTOTAL_BASE_URL}/analyses/{analysis_id}",
                headers=headers,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            if not analysis.ok:
                continue
            attributes = (analysis.json().get("data") or {}).get("attributes") or {}
            stats = attributes.get("stats") or {}
            if attributes.get("status") == "completed":
                break
    except requests.Timeout as e:
        logger.warning("VirusTotal scan timeout; skipping: %s", e)
        return ScanResult(ok=True, skipped=True, message="Virus scan skipped (timeout).")
    except (requests.RequestException, ValueError) as e:
        logger.error("VirusTotal scan error: %s", e)
        return ScanResult(ok=False, message="Virus scan failed (service unavailable).")

    if (stats.get("malicious") or 0) > 0 or (stats.get("suspicious") or 0) > 0:
        return ScanResult(ok=False, message="File flagged by antivirus scan.")
    return ScanResult(ok=True)


def ensure_resume_looks_like_cv(content: bytes, content_type: Optional[str], filename: Optional[str]) -> ScanResult:
    text = extract_text(content, content_type, filename)
    if not text:
        logger.warning("Resume text extraction unavailable; skipping CV heuristic")
        return ScanResult(ok=True, skipped=True, message="Text extraction unavailable; CV heuristic skipped.")

    normalized = " ".join(text.split())
    if len(normalized) < MIN_TEXT_LENGTH:
        return ScanResult(ok=False, message="Your CV seems too short. Please upload a full resume (PDF/DOCX).")

    lowered = normalized.lower()
    keyword_hits = [keyword for keyword in CV_KEYWORDS if keyword in lowered]
    has_contact = bool(EMAIL_RE.search(normalized) or PHONE_RE.search(normalized))
    if len(keyword_hits) < 2 or not has_contact:
        return ScanResult(
            ok=False,
            message=(
                "We could not verify this looks like a resume. Please include contact details "
                "and common sections (Experience, Education, Skills)."
            ),
        )
    return ScanResult(ok=True)


def check_resume(content: bytes, filename: str, content_type: Optional[str], field: Optional[str] = None) -> None:
    """Virus scan then CV heuristic. Raises HTTPException 400 when either fails."""

    def reject(message: str):
        detail = {"field": field, "error": message} if field else message
        return HTTPException(status_code=400, detail=detail)

    virus_scan = scan_for_viruses(content, filename)
    if not virus_scan.ok:
        logger.warning("Rejected upload %s: %s", filename, virus_scan.message)
        raise reject(virus_scan.message or "Your file failed virus scanning.")

    cv_check = ensure_resume_looks_like_cv(content, content_type, filename)
    if not cv_check.ok:
        raise reject(cv_check.message or "Please upload a complete resume (PDF/DOCX).")


async def read_and_check_resume(file, field: Optional[str] = None) -> Optional[Tuple[bytes, str, str]]:
    """
    Read an uploaded resume and run both checks.

    Returns (content, filename, content_type), or None when nothing was
    uploaded. Raises HTTPException 400 when a check fails.
    """
    upload = await read_resume_upload(file, field=field)
    if upload is None:
        return None
    content, filename, content_type = upload
    check_resume(content, filename, content_type, field=field)
    return content, filename, content_type
