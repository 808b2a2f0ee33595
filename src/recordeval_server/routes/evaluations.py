"""Evaluation endpoints — eligibility, checklist, and stateless matching.

Evaluations never fail because of a single bad evaluator reply: affected
items degrade to ``needs-more-info`` / ``missing`` inside the result.
Only an unknown or expired session (404/410) or invalid input (400)
aborts a request.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from recordeval.models.evaluation import ChecklistResult, EligibilityResult, MatchResult
from recordeval.models.session import TrialCriteria
from recordeval.pipeline import EvaluationPipeline

from recordeval_server.dependencies import get_pipeline

router = APIRouter(tags=["evaluations"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class EligibilityRequest(BaseModel):
    """Body for POST /sessions/{session_id}/eligibility.

    ``criteria`` and ``trial_info`` override those stored with the session.
    """
    mode: str = "basic"
    criteria: TrialCriteria | None = None
    trial_info: dict[str, Any] | None = None


class ChecklistRequest(BaseModel):
    """Body for POST /sessions/{session_id}/checklist."""
    categories: list[str] | None = None
    include_recommendations: bool = True


class MatchRequest(BaseModel):
    """Body for POST /match."""
    record: Any = None
    criteria: TrialCriteria = Field(default_factory=TrialCriteria)
    mode: str = "basic"
    trial_info: dict[str, Any] | None = None


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/sessions/{session_id}/eligibility")
async def run_eligibility(
    session_id: str,
    body: EligibilityRequest | None = None,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> EligibilityResult:
    """Evaluate the session's record against inclusion/exclusion criteria."""
    body = body or EligibilityRequest()
    return await pipeline.run_eligibility(
        session_id,
        mode=body.mode,
        criteria=body.criteria,
        trial_info=body.trial_info,
    )


@router.post("/sessions/{session_id}/checklist")
async def run_checklist(
    session_id: str,
    body: ChecklistRequest | None = None,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> ChecklistResult:
    """Assess the session's record against the longevity checklist."""
    body = body or ChecklistRequest()
    return await pipeline.run_checklist(
        session_id,
        categories=body.categories,
        include_recommendations=body.include_recommendations,
    )


@router.post("/match")
async def match(
    body: MatchRequest,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> MatchResult:
    """One-shot eligibility match; nothing is stored."""
    return await pipeline.match_once(
        body.record,
        body.criteria,
        mode=body.mode,
        trial_info=body.trial_info,
    )
