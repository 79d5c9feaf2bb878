"""
ChatGPT Routes

POST /chatgpt - Founder assistant (messages or a single prompt)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from irefair.core.auth import require_founder
from irefair.core.rate_limit import rate_limited
from irefair.schemas.schemas import ChatRequest
from irefair.services.chatgpt_client import ChatGPTError, get_chatgpt_client, normalize_messages, openai_configured

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chatgpt", tags=["ChatGPT"])


@router.post("", dependencies=[Depends(rate_limited("chatgpt"))])
async def chat(data: ChatRequest, statusOnly: bool = False, founder: dict = Depends(require_founder)):
    if statusOnly:
        return {"ok": True, "configured": openai_configured()}

    if not openai_configured():
        raise HTTPException(status_code=503, detail="ChatGPT API key is not configured.")

    raw_messages = [message.model_dump() for message in data.messages] if data.messages else None
    messages = normalize_messages(raw_messages, prompt=data.prompt, system=data.system)
    if not messages:
        raise HTTPException(status_code=400, detail="Please provide a prompt or messages.")

    client = get_chatgpt_client()
    try:
        text = client.complete(messages)
    except ChatGPTError as e:
        logger.error("ChatGPT request failed: %s", e)
        raise HTTPException(status_code=500, detail="Unable to reach ChatGPT.")

    return {"ok": True, "text": text, "model": client.model}
