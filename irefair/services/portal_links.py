"""
Referrer portal magic links.

Used by the founder portal-link endpoint, the self-service request-link
endpoints and company approval.
"""

import logging
from typing import Optional
from urllib.parse import quote

from irefair.core.exceptions import NotFoundError
from irefair.core.tokens import TokenError, create_referrer_token
from irefair.services import notifications
from irefair.services.mailer import send_mail
from irefair.services.referrer_service import ensure_portal_token_version
from irefair.utils.validation import get_app_base_url, normalize_http_url

logger = logging.getLogger(__name__)


def build_referrer_portal_link(irref: str, version: int) -> str:
    token = create_referrer_token(irref, version)
    link = normalize_http_url(f"{get_app_base_url()}/referrer/portal?token={quote(token, safe='')}")
    if not link:
        raise ValueError("Invalid portal link URL")
    return link


def portal_link_for(irref: str) -> str:
    """Link signed with the referrer's current token version."""
    return build_referrer_portal_link(irref, ensure_portal_token_version(irref))


def try_portal_link_for(irref: Optional[str]) -> Optional[str]:
    """portal_link_for for email bodies, where a missing link is acceptable."""
    if not irref:
        return None
    try:
        return portal_link_for(irref)
    except (NotFoundError, TokenError, ValueError) as e:
        logger.warning("Could not build portal link for %s: %s", irref, e)
        return None


def send_referrer_portal_link_email(to: str, name: Optional[str], link: str) -> None:
    email = notifications.referrer_portal_link(name, link)
    send_mail(to, email.subject, email.text, html=email.html)
