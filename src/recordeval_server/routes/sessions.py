"""Session management endpoints — create, fetch, delete sessions.

A session holds one submitted record plus its structured payload for a
bounded time set by its session class.  Fetching an expired session
returns 410 once; afterwards the id is unknown (404).
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from recordeval.models.session import Message, SessionCreated, SessionInfo, TrialCriteria
from recordeval.pipeline import EvaluationPipeline

from recordeval_server.dependencies import get_pipeline

router = APIRouter(tags=["sessions"])


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

class CreateSessionRequest(BaseModel):
    """Body for POST /sessions.

    ``record`` is optional here so that a missing record is reported as a
    400 validation error by the pipeline rather than a 422.
    """
    session_class: str = "trial-matcher"
    record: Any = None
    session_id: str | None = None
    context: dict[str, Any] | None = None
    criteria: TrialCriteria | None = None
    trial_info: dict[str, Any] | None = None
    categories: list[str] | None = None


class DeleteSessionResponse(BaseModel):
    """Confirmation body for DELETE /sessions/{session_id}."""
    message: str
    session_id: str


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/sessions")
async def create_session(
    body: CreateSessionRequest,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> SessionCreated:
    """Create a new session.

    Raises 400 if the record is missing or oversized, or the session class
    is unknown; 409 if ``session_id`` is already in use.
    """
    return await pipeline.create_session(
        body.session_class,
        record=body.record,
        session_id=body.session_id,
        context=body.context,
        criteria=body.criteria,
        trial_info=body.trial_info,
        categories=body.categories,
    )


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> SessionInfo:
    """Get the session's record, context, transcript, and last result."""
    return await pipeline.get_session(session_id)


@router.get("/sessions/{session_id}/transcript")
async def get_transcript(
    session_id: str,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> list[Message]:
    """Return the session's chat transcript in submission order."""
    return await pipeline.get_transcript(session_id)


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> DeleteSessionResponse:
    """Delete a session.  Returns 404 if nothing was stored under the id."""
    await pipeline.delete_session(session_id)
    return DeleteSessionResponse(
        message="Session deleted successfully", session_id=session_id,
    )
