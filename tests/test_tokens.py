import time

import pytest
from jose import jwt

from irefair.core.config import get_settings
from irefair.core.tokens import (
    TokenError,
    create_applicant_update_token,
    create_opaque_token,
    create_referrer_token,
    hash_opaque_token,
    is_expired,
    normalize_portal_token_version,
    parse_iso,
    verify_applicant_update_token,
    verify_referrer_token,
    verify_referrer_token_allow_expired,
)
from irefair.utils.timezone import iso_in

settings = get_settings()


def test_opaque_token_is_hex_and_hash_is_stable():
    token = create_opaque_token()
    assert len(token) == 48
    int(token, 16)
    assert hash_opaque_token(token) == hash_opaque_token(token)
    assert hash_opaque_token(token) != hash_opaque_token(create_opaque_token())


def test_referrer_token_round_trip():
    payload = verify_referrer_token(create_referrer_token("iRREF0000000001", 3))
    assert payload["irref"] == "iRREF0000000001"
    assert payload["v"] == 3


def test_referrer_token_defaults_bad_version_to_one():
    token = jwt.encode(
        {"irref": "iRREF0000000001", "exp": int(time.time()) + 60, "v": "7"},
        settings.referrer_portal_token_secret,
        algorithm="HS256",
    )
    assert verify_referrer_token(token)["v"] == 1


def test_tampered_token_is_rejected():
    token = create_referrer_token("iRREF0000000001")
    header, payload, signature = token.split(".")
    swapped = "A" if signature[5] != "A" else "B"
    forged = ".".join([header, payload, signature[:5] + swapped + signature[6:]])
    with pytest.raises(TokenError):
        verify_referrer_token(forged)


def test_token_signed_with_another_secret_is_rejected():
    token = jwt.encode({"irref": "iRREF0000000001", "exp": int(time.time()) + 60}, "other-secret", algorithm="HS256")
    with pytest.raises(TokenError):
        verify_referrer_token(token)


def test_expired_token_only_accepted_when_allowed():
    token = jwt.encode(
        {"irref": "iRREF0000000001", "exp": int(time.time()) - 10, "v": 1},
        settings.referrer_portal_token_secret,
        algorithm="HS256",
    )
    with pytest.raises(TokenError):
        verify_referrer_token(token)
    assert verify_referrer_token_allow_expired(token)["irref"] == "iRREF0000000001"


def test_malformed_token_is_rejected():
    with pytest.raises(TokenError):
        verify_referrer_token("not-a-token")


def test_applicant_update_token_pins_expiry():
    exp = int(time.time()) + 3600
    payload = verify_applicant_update_token(create_applicant_update_token("a@b.com", "iRAIN0000000001", exp=exp))
    assert payload["exp"] == exp
    assert payload["email"] == "a@b.com"
    assert payload["locale"] == "en"


@pytest.mark.parametrize("value, expected", [(None, 1), ("", 1), ("0", 1), ("-3", 1), ("abc", 1), ("4", 4), (2, 2)])
def test_normalize_portal_token_version(value, expected):
    assert normalize_portal_token_version(value) == expected


def test_parse_iso_and_is_expired():
    assert parse_iso("2025-01-03T10:00:00Z").tzinfo is not None
    assert parse_iso("2025-01-03T10:00:00").tzinfo is not None
    assert parse_iso("garbage") is None
    assert is_expired(None)
    assert is_expired("garbage")
    assert is_expired(iso_in(seconds=-1))
    assert not is_expired(iso_in(hours=1))
