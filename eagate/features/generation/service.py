"""
Expert Advisor generation via Groq chat completions.

The call is bounded by OUTBOUND_TIMEOUT_SECONDS with no client retries so
a slow provider surfaces as an error instead of stalling the gate.
"""
import logging
import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

import groq
from pydantic import BaseModel, ConfigDict, Field

from eagate.core.config import settings
from eagate.core.errors import UpstreamError, UpstreamTimeoutError
from eagate.features.generation.prompts import system_prompt

logger = logging.getLogger("eagate")

MAX_MESSAGES = 50
MAX_MESSAGE_CHARS = 20000
DEFAULT_LANGUAGE = "mql4"

_FENCE_RE = re.compile(r"```(?:mql4|mql5|mql|mq4|mq5)?", re.IGNORECASE)
_COPYRIGHT_RE = re.compile(r"Copyright \d{4}")


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)


def build_messages(messages: List[ChatMessage], language: str) -> List[dict]:
    """Prepend our system prompt; caller-supplied system messages are dropped."""
    conversation = [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.role != "system"
    ]
    return [{"role": "system", "content": system_prompt(language)}] + conversation


def clean_ea_code(text: str, now: Optional[datetime] = None) -> str:
    """Strip markdown fences and roll copyright lines forward to the current year."""
    code = (text or "").strip()
    if "```" in code:
        code = _FENCE_RE.sub("", code).strip()
    year = (now or datetime.now(timezone.utc)).year
    return _COPYRIGHT_RE.sub(f"Copyright {year}", code)


_client: Optional[groq.AsyncGroq] = None


def get_client() -> groq.AsyncGroq:
    """Process-wide Groq client, built on first use and closed by close_client()."""
    global _client
    if _client is None:
        _client = groq.AsyncGroq(
            api_key=settings.GROQ_API_KEY,
            timeout=settings.OUTBOUND_TIMEOUT_SECONDS,
            max_retries=0,
        )
    return _client


async def close_client() -> None:
    global _client
    if _client is not None:
        client, _client = _client, None
        await client.close()


async def generate_ea(messages: List[ChatMessage], language: str = DEFAULT_LANGUAGE) -> str:
    """
    Generate EA code for a conversation.

    Raises:
        UpstreamTimeoutError: Groq did not answer in time
        UpstreamError: Groq failed or returned nothing
    """
    if not settings.GROQ_API_KEY:
        raise UpstreamError("GROQ_API_KEY not configured")

    client = get_client()
    try:
        completion = await client.chat.completions.create(
            messages=build_messages(messages, language),
            model=settings.GROQ_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
        )
    except groq.APITimeoutError:
        logger.error("generation.timeout", extra={"reason": settings.GROQ_MODEL})
        raise UpstreamTimeoutError("Code generation timed out")
    except groq.APIError as e:
        logger.error(f"generation.failed: {e}", extra={"error_code": "upstream_error"})
        raise UpstreamError("Failed to generate EA code")

    content = completion.choices[0].message.content if completion.choices else None
    if not content or not content.strip():
        raise UpstreamError("Model returned an empty response")

    return clean_ea_code(content)
