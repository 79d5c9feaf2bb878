#!/usr/bin/env python3
"""
Rotate a referrer's portal token version.

Every portal link issued before the rotation stops working, and the
referrer's mobile sessions are revoked.

Usage: python scripts/rotate_referrer_token.py iRREF0000000012
"""
import sys
sys.path.insert(0, '.')

from irefair.core.exceptions import NotFoundError
from irefair.core.tokens import normalize_portal_token_version
from irefair.services import mobile_auth
from irefair.services.referrer_service import get_referrer, rotate_portal_token_version


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/rotate_referrer_token.py <iRREF>")
        sys.exit(1)

    irref = sys.argv[1].strip()
    print(f"Rotating portal token for {irref}...")

    referrer = get_referrer(irref)
    if not referrer:
        print(f"❌ Referrer {irref} not found")
        sys.exit(1)

    current_version = normalize_portal_token_version(referrer.get("portal_token_version"))
    print(f"Current version: {current_version}")
    try:
        new_version = rotate_portal_token_version(referrer["irref"])
    except NotFoundError as e:
        print(f"❌ {e}")
        sys.exit(1)
    revoked = mobile_auth.revoke_all_sessions(mobile_auth.ROLE_REFERRER, referrer["irref"])

    print(f"✅ Rotated token to version {new_version}")
    print(f"All links with version {current_version} are now invalid. Revoked {revoked} mobile session(s).")


if __name__ == "__main__":
    main()
