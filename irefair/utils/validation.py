"""
Small input helpers shared by routes and notifications.
"""

import html
import re
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from irefair.core.config import get_settings

settings = get_settings()

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

JOB_OPENINGS_PATH = "/hiring-companies"


def normalize_http_url(value: Optional[str]) -> Optional[str]:
    """
    Return an absolute http(s) URL, or None.

    Values without a scheme are treated as https. Any other scheme
    (mailto:, javascript:, ftp:) is rejected.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        return None

    candidate = trimmed if _SCHEME_RE.match(trimmed) else f"https://{trimmed}"
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https"):
        return None
    if not parts.hostname or any(ch.isspace() for ch in parts.netloc):
        return None
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, parts.fragment))


def escape_html(value: Optional[str]) -> str:
    return html.escape(value or "", quote=True).replace("&#x27;", "&#39;")


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    return bool(_EMAIL_RE.match((value or "").strip()))


def normalize_phone(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def get_app_base_url() -> str:
    base = (settings.app_base_url or "").strip().rstrip("/")
    if not base:
        return "http://localhost:3000"
    return base if base.startswith("http") else f"https://{base}"


def job_openings_url() -> str:
    return f"{get_app_base_url()}{JOB_OPENINGS_PATH}"
