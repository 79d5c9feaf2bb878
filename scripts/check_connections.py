#!/usr/bin/env python3
"""
Connection Check Script

Run this to verify the database, MongoDB, Redis, SMTP and OpenAI settings.
Usage: python scripts/check_connections.py
"""
import sys
sys.path.insert(0, '.')

from irefair.core.config import get_settings
from irefair.core.rate_limit import test_redis_connection
from irefair.db.mongodb import test_mongo_connection
from irefair.db.postgres import test_postgres_connection
from irefair.services.chatgpt_client import openai_configured


def _mask_url(url: str) -> str:
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:****@{host}"


def main():
    settings = get_settings()
    print("=" * 50)
    print("IREFAIR - CONNECTION CHECK")
    print("=" * 50)

    print("\n[1] Testing database...")
    print(f"    URL: {_mask_url(settings.sqlalchemy_url)}")
    if test_postgres_connection():
        print("    ✅ Database: CONNECTED")
    else:
        print("    ❌ Database: FAILED")

    print("\n[2] Testing MongoDB...")
    print(f"    URI: {_mask_url(settings.mongodb_uri)}")
    print(f"    Database: {settings.mongodb_db}")
    if test_mongo_connection():
        print("    ✅ MongoDB: CONNECTED")
    else:
        print("    ❌ MongoDB: FAILED")

    print("\n[3] Testing Redis...")
    if not settings.redis_url:
        print("    ⚠️  Redis: REDIS_URL not set (rate limiting disabled)")
    elif test_redis_connection():
        print("    ✅ Redis: CONNECTED")
    else:
        print("    ❌ Redis: FAILED")

    print("\n[4] Checking SMTP...")
    if settings.smtp_host and settings.smtp_user and settings.smtp_password and settings.smtp_from_email:
        print(f"    ✅ SMTP: configured ({settings.smtp_host}:{settings.smtp_port}, from {settings.smtp_from_email})")
    else:
        print("    ⚠️  SMTP: not fully configured (emails will fail)")

    print("\n[5] Checking OpenAI...")
    if openai_configured():
        print(f"    ✅ OpenAI: API key set (model {settings.openai_model})")
    else:
        print("    ⚠️  OpenAI: API key not configured (founder assistant disabled)")

    print("\n" + "=" * 50)
    print("Connection check complete!")
    print("=" * 50)


if __name__ == "__main__":
    main()
