"""Chat endpoint — conversational turns over a session's record.

Available for session classes with a persona (records chat, undiagnosed
diseases, CBT coaching).  Unlike evaluations, a chat turn has no
conservative default, so an evaluator failure surfaces as 502.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from recordeval.models.session import ChatReply
from recordeval.pipeline import EvaluationPipeline

from recordeval_server.dependencies import get_pipeline

router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    """Body for POST /sessions/{session_id}/chat."""
    message: str | None = None
    is_first_message: bool = False


@router.post("/sessions/{session_id}/chat")
async def chat(
    session_id: str,
    body: ChatRequest,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> ChatReply:
    """Append the user's message, get the assistant's reply, record both."""
    return await pipeline.chat(
        session_id, body.message, is_first_message=body.is_first_message,
    )
