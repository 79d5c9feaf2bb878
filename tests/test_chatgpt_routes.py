import pytest

from irefair.core.config import get_settings
from irefair.services.chatgpt_client import DEFAULT_SYSTEM_PROMPT, ChatGPTError, normalize_messages, set_chatgpt_client


class _FakeChatGPT:
    model = "gpt-test"

    def __init__(self, reply="Here is a draft.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, messages, max_tokens=800):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(get_settings(), "openai_api_key", "sk-test")


def test_requires_founder(client):
    assert client.post("/api/chatgpt", json={"prompt": "hi"}).status_code == 401


def test_status_only(founder_client, configured):
    response = founder_client.post("/api/chatgpt", params={"statusOnly": "true"}, json={})
    assert response.json() == {"ok": True, "configured": True}


def test_not_configured(founder_client):
    response = founder_client.post("/api/chatgpt", json={"prompt": "hi"})
    assert response.status_code == 503


def test_prompt_is_answered(founder_client, configured):
    fake = _FakeChatGPT()
    set_chatgpt_client(fake)

    response = founder_client.post("/api/chatgpt", json={"prompt": "Draft an intro"})

    assert response.json() == {"ok": True, "text": "Here is a draft.", "model": "gpt-test"}
    assert fake.calls[0] == [
        {"role": "system", "content": DEFAULT_SYSTEM_PROMPT},
        {"role": "user", "content": "Draft an intro"},
    ]


def test_empty_prompt(founder_client, configured):
    set_chatgpt_client(_FakeChatGPT())
    response = founder_client.post("/api/chatgpt", json={"prompt": "   "})
    assert response.status_code == 400


def test_upstream_failure(founder_client, configured):
    set_chatgpt_client(_FakeChatGPT(error=ChatGPTError("boom")))
    response = founder_client.post("/api/chatgpt", json={"prompt": "hi"})
    assert response.status_code == 500
    assert response.json()["error"] == "Unable to reach ChatGPT."


def test_normalize_messages():
    messages = normalize_messages(
        [{"role": "robot", "content": " hello "}, {"role": "assistant", "content": ""}],
        system="Be brief.",
    )
    assert messages == [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "hello"}]
    assert normalize_messages([], prompt="") is None
