import fakeredis
from starlette.requests import Request

from irefair.core.config import get_settings
from irefair.core.rate_limit import check_rate_limit, get_client_ip, rate_limit_headers, rate_limits, set_redis_client


def _request(headers: dict) -> Request:
    raw = [(key.lower().encode(), value.encode()) for key, value in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def test_client_ip_prefers_cloudflare_header():
    request = _request({"cf-connecting-ip": "1.1.1.1", "x-forwarded-for": "2.2.2.2"})
    assert get_client_ip(request) == "1.1.1.1"


def test_client_ip_takes_first_forwarded_entry():
    assert get_client_ip(_request({"x-forwarded-for": " 3.3.3.3 , 4.4.4.4"})) == "3.3.3.3"


def test_client_ip_unknown_without_headers():
    assert get_client_ip(_request({})) == "unknown"


def test_limiter_fails_open_without_redis():
    result = check_rate_limit("ratelimit:test:1.1.1.1", 1, 60)
    assert result.allowed
    assert not result.enabled


def test_limiter_blocks_after_limit():
    set_redis_client(fakeredis.FakeRedis())
    results = [check_rate_limit("ratelimit:test:1.1.1.1", 2, 60) for _ in range(3)]

    assert [result.allowed for result in results] == [True, True, False]
    assert results[0].remaining == 1
    assert results[2].remaining == 0
    assert results[2].retry_after == 60

    headers = rate_limit_headers(results[2])
    assert headers["X-RateLimit-Limit"] == "2"
    assert headers["Retry-After"] == "60"


def test_limiter_keys_are_independent():
    set_redis_client(fakeredis.FakeRedis())
    assert check_rate_limit("ratelimit:a:ip", 1, 60).allowed
    assert check_rate_limit("ratelimit:b:ip", 1, 60).allowed
    assert not check_rate_limit("ratelimit:a:ip", 1, 60).allowed


def test_registration_endpoint_returns_429(client):
    set_redis_client(fakeredis.FakeRedis())
    for _ in range(10):
        client.post("/api/referrer", json={"website": "bot"})
    response = client.post("/api/referrer", json={"website": "bot"})

    assert response.status_code == 429
    assert response.json()["ok"] is False
    assert "Retry-After" in response.headers


def test_each_bucket_has_its_own_window(monkeypatch):
    monkeypatch.setattr(get_settings(), "rate_limit_founder_login_window_seconds", 900)

    limits = rate_limits()

    assert limits["founder_login"] == {"limit": 5, "window": 900}
    assert limits["applicant"] == {"limit": 10, "window": 60}


def test_blocked_request_retries_after_bucket_window(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "rate_limit_referrer", 1)
    monkeypatch.setattr(get_settings(), "rate_limit_referrer_window_seconds", 120)
    set_redis_client(fakeredis.FakeRedis())

    client.post("/api/referrer", json={"website": "bot"})
    response = client.post("/api/referrer", json={"website": "bot"})

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "120"
