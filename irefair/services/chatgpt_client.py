"""
OpenAI chat client used by the founder console assistant.

Messages are normalised before the call: empty messages are dropped,
unknown roles become "user", and a system prompt is prepended when the
conversation does not start with one.
"""

import logging
from typing import List, Optional

from openai import OpenAI, OpenAIError

from irefair.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant for iRefair. Keep responses concise and plain text."
ROLES = ("system", "user", "assistant")


class ChatGPTError(RuntimeError):
    """The OpenAI call failed or returned nothing usable."""


def openai_configured() -> bool:
    return bool(settings.openai_api_key)


def normalize_messages(messages=None, prompt: Optional[str] = None, system: Optional[str] = None) -> Optional[List[dict]]:
    """Build the message list from a messages array or a single prompt. None when there is no content."""
    system_prompt = system.strip() if isinstance(system, str) and system.strip() else DEFAULT_SYSTEM_PROMPT

    normalized = []
    for message in messages or []:
        if not isinstance(message, dict):
            continue
        content = message.get("content")
        content = content.strip() if isinstance(content, str) else ""
        if not content:
            continue
        role = message.get("role")
        normalized.append({"role": role if role in ROLES else "user", "content": content})

    if normalized:
        if normalized[0]["role"] != "system":
            normalized.insert(0, {"role": "system", "content": system_prompt})
        return normalized

    prompt = prompt.strip() if isinstance(prompt, str) else ""
    if not prompt:
        return None
    return [{"role": "system", "content": system_prompt}, {"role": "user", "content": prompt}]


class ChatGPTClient:
    """
    Thin wrapper around the OpenAI chat completions API.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.client = OpenAI(api_key=api_key or settings.openai_api_key)
        self.model = model or settings.openai_model

    def complete(self, messages: List[dict], max_tokens: int = 800) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.error("ChatGPT call failed: %s", e)
            raise ChatGPTError("Unable to reach ChatGPT.") from e

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            raise ChatGPTError("ChatGPT returned an empty response.")
        return text


_chatgpt_client: Optional[ChatGPTClient] = None


def get_chatgpt_client() -> ChatGPTClient:
    global _chatgpt_client
    if _chatgpt_client is None:
        _chatgpt_client = ChatGPTClient()
    return _chatgpt_client


def set_chatgpt_client(client: Optional[ChatGPTClient]) -> None:
    """Replace the shared client (used by tests)."""
    global _chatgpt_client
    _chatgpt_client = client
