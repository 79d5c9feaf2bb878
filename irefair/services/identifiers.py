"""
Identifier generation.

Sequential ids (iRAIN, iRREF, iRCRN) are the prefix plus a zero padded
10 digit number, one more than the highest number issued so far.
Submission ids (APP-, MATCH-) are date stamped with a random suffix.
"""

import re
import secrets
import time
from typing import Iterable

from sqlalchemy import text

from irefair.utils.timezone import utc_now

IRAIN_PREFIX = "iRAIN"
IRREF_PREFIX = "iRREF"
IRCRN_PREFIX = "iRCRN"
ID_DIGITS = 10


def next_sequential_id(prefix: str, existing: Iterable[str]) -> str:
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$", re.IGNORECASE)
    highest = 0
    for value in existing:
        match = pattern.match((value or "").strip())
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}{str(highest + 1).zfill(ID_DIGITS)}"


def allocate_sequential_id(db, prefix: str, table: str, column: str) -> str:
    """Next id for `table.column`, read inside the caller's session."""
    rows = db.execute(
        text(f"SELECT {column} FROM {table} WHERE {column} LIKE :prefix"),
        {"prefix": f"{prefix}%"},
    ).fetchall()
    return next_sequential_id(prefix, (row[0] for row in rows))


def generate_submission_id(prefix: str) -> str:
    """`APP-20250103-1A2B3C4D5E6F` style id."""
    stamp = utc_now().strftime("%Y%m%d")
    return f"{prefix}-{stamp}-{secrets.token_hex(6).upper()}"


def is_ircrn(value: str) -> bool:
    return bool(re.match(rf"^{IRCRN_PREFIX}\d{{{ID_DIGITS}}}$", (value or "").strip(), re.IGNORECASE))


def generate_referrer_company_id() -> str:
    """`RCMP-<epoch ms>-<base36 suffix>`."""
    alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
    suffix = "".join(secrets.choice(alphabet) for _ in range(8))
    return f"RCMP-{int(time.time() * 1000)}-{suffix}"
