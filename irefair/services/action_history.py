"""
Action history for applications.

The history is a JSON array stored in a single text column. Each entry:

    {"action": "SCHEDULE_MEETING", "timestamp": "<iso>", "performedBy": "iRREF...",
     "performedByEmail": "...", "notes": "...", "meetingDetails": {...}, "meta": {...}}

`performedBy` is an iRREF, "applicant", or "founder".
"""

import json
import logging
from typing import List, Optional

from irefair.utils.timezone import utc_now_iso

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("action", "timestamp", "performedBy")


def _is_valid_entry(entry) -> bool:
    return isinstance(entry, dict) and all(isinstance(entry.get(field), str) for field in REQUIRED_FIELDS)


def parse_action_history(raw: Optional[str]) -> List[dict]:
    """Parse stored history. Anything unreadable yields an empty list."""
    if not raw or not isinstance(raw, str) or not raw.strip():
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable action history")
        return []
    if not isinstance(parsed, list):
        return []
    return [entry for entry in parsed if _is_valid_entry(entry)]


def append_action_history_entry(raw: Optional[str], entry: dict) -> str:
    """Return the serialised history with `entry` appended (None values dropped)."""
    history = parse_action_history(raw)
    history.append({key: value for key, value in entry.items() if value is not None})
    return json.dumps(history)


def make_entry(
    action: str,
    performed_by: str,
    performed_by_email: Optional[str] = None,
    notes: Optional[str] = None,
    meeting_details: Optional[dict] = None,
    meta: Optional[dict] = None,
) -> dict:
    return {
        "action": action,
        "timestamp": utc_now_iso(),
        "performedBy": performed_by,
        "performedByEmail": performed_by_email or None,
        "notes": notes or None,
        "meetingDetails": meeting_details,
        "meta": meta,
    }
