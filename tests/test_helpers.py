import json

import pytest

from irefair.services.action_history import append_action_history_entry, make_entry, parse_action_history
from irefair.services.applicant_service import is_ineligible
from irefair.services.application_service import normalize_status
from irefair.services.identifiers import generate_submission_id, is_ircrn, next_sequential_id
from irefair.utils.timezone import format_meeting_datetime, is_valid_timezone
from irefair.utils.validation import escape_html, normalize_http_url


# ============================================================
# IDENTIFIERS
# ============================================================

def test_next_sequential_id_starts_at_one():
    assert next_sequential_id("iRAIN", []) == "iRAIN0000000001"


def test_next_sequential_id_follows_highest():
    existing = ["iRREF0000000002", "iRREF0000000010", "legacy-7", "", None]
    assert next_sequential_id("iRREF", existing) == "iRREF0000000011"


def test_submission_id_format():
    app_id = generate_submission_id("APP")
    prefix, stamp, suffix = app_id.split("-")
    assert prefix == "APP"
    assert len(stamp) == 8 and stamp.isdigit()
    assert len(suffix) == 12 and suffix == suffix.upper()


def test_is_ircrn():
    assert is_ircrn("iRCRN0000000001")
    assert not is_ircrn("iRCRN1")


# ============================================================
# ELIGIBILITY AND STATUS
# ============================================================

@pytest.mark.parametrize("located, authorized, eligible_move, expected", [
    ("No", "", "No", True),
    ("Yes", "No", "", True),
    ("Yes", "Yes", "", False),
    ("No", "", "Yes", False),
    ("", "", "", False),
])
def test_is_ineligible(located, authorized, eligible_move, expected):
    assert is_ineligible(located, authorized, eligible_move) is expected


@pytest.mark.parametrize("raw, expected", [
    (None, "new"),
    ("", "new"),
    ("Wants to meet", "meeting requested"),
    ("He got the job", "hired"),
    ("Meeting Scheduled", "meeting scheduled"),
])
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


# ============================================================
# ACTION HISTORY
# ============================================================

def test_parse_action_history_drops_invalid_entries():
    raw = json.dumps([
        {"action": "REJECT", "timestamp": "2025-01-01T00:00:00.000+00:00", "performedBy": "iRREF0000000001"},
        {"action": "REJECT"},
        "junk",
    ])
    history = parse_action_history(raw)
    assert len(history) == 1
    assert history[0]["action"] == "REJECT"


@pytest.mark.parametrize("raw", [None, "", "not json", "{}"])
def test_parse_action_history_unreadable(raw):
    assert parse_action_history(raw) == []


def test_append_action_history_entry_drops_empty_values():
    entry = make_entry("SCHEDULE_MEETING", "iRREF0000000001", meeting_details={"date": "2025-01-03"})
    history = json.loads(append_action_history_entry(None, entry))
    assert history[0]["meetingDetails"] == {"date": "2025-01-03"}
    assert "notes" not in history[0]
    assert "performedByEmail" not in history[0]


# ============================================================
# TIMEZONES AND URLS
# ============================================================

def test_format_meeting_datetime():
    assert (
        format_meeting_datetime("2025-01-03", "14:30", "America/Toronto")
        == "Friday, January 3, 2025 at 2:30 PM (EST)"
    )


def test_format_meeting_datetime_accepts_12_hour_time():
    assert format_meeting_datetime("2025-07-01", "9:05 am", "America/Toronto").endswith("9:05 AM (EDT)")


def test_format_meeting_datetime_fallback():
    assert format_meeting_datetime("soon", "14:30", "America/Toronto") == "soon at 14:30 (America/Toronto)"
    assert format_meeting_datetime("", "14:30", "UTC") == ""


def test_is_valid_timezone():
    assert is_valid_timezone("Europe/Paris")
    assert not is_valid_timezone("Mars/Olympus")
    assert not is_valid_timezone(None)


@pytest.mark.parametrize("raw, expected", [
    ("example.com/jobs", "https://example.com/jobs"),
    ("http://example.com", "http://example.com/"),
    ("  ", None),
    ("javascript:alert(1)", None),
    ("mailto:a@b.com", None),
    ("ftp://example.com", None),
])
def test_normalize_http_url(raw, expected):
    assert normalize_http_url(raw) == expected


def test_escape_html():
    assert escape_html("<b>\"Tom's\"</b>") == "&lt;b&gt;&quot;Tom&#39;s&quot;&lt;/b&gt;"
