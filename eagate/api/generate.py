"""
EA generation route.

POST /generate runs the gate, calls the LLM only when allowed, and counts
the request only after the LLM returned code.
"""
from typing import List, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from starlette.concurrency import run_in_threadpool

from eagate.features.gate.service import authorize, record_success
from eagate.features.generation.service import DEFAULT_LANGUAGE, MAX_MESSAGES, ChatMessage, generate_ea
from eagate.features.identity.service import get_identity
from eagate.models.identity import Identity


router = APIRouter(tags=["generate"])


class GenerateRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1, max_length=MAX_MESSAGES)
    language: Literal["mql4", "mql5"] = DEFAULT_LANGUAGE

    @field_validator("messages")
    @classmethod
    def require_conversation_turn(cls, messages: List[ChatMessage]) -> List[ChatMessage]:
        # System messages are dropped before the LLM call
        if not any(m.role != "system" for m in messages):
            raise ValueError("at least one user or assistant message is required")
        return messages


class UsageView(BaseModel):
    count: int
    remaining_free: int
    has_paid: bool


class GenerateResponse(BaseModel):
    ea_code: str
    usage: UsageView


@router.post("/generate", response_model=GenerateResponse)
async def generate(request: GenerateRequest, identity: Identity = Depends(get_identity)):
    """
    Generate an Expert Advisor from a chat transcript.

    Errors:
        401: No identity
        402: Free requests used up and no payment on record
        502/504: LLM failed or timed out (usage not counted)
    """
    decision = await run_in_threadpool(authorize, identity)
    code = await generate_ea(request.messages, request.language)
    decision = await run_in_threadpool(record_success, identity, decision)

    return {
        "ea_code": code,
        "usage": {
            "count": decision.count,
            "remaining_free": decision.remaining_free,
            "has_paid": decision.has_paid,
        },
    }
