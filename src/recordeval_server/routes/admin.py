"""Admin endpoints — session maintenance.

Protected by the ``ADMIN_API_KEY`` setting.  Every request must include
an ``X-Admin-Key`` header whose value matches the configured key.
Returns 401 if missing, 403 if wrong.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from recordeval.pipeline import EvaluationPipeline

from recordeval_server.dependencies import get_pipeline

router = APIRouter(prefix="/admin", tags=["admin"])


# ------------------------------------------------------------------
# Auth dependency
# ------------------------------------------------------------------

async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate the ``X-Admin-Key`` header against the configured key.

    Raises 401 if the header is missing, 403 if no key is configured
    or the key does not match.
    """
    expected: str | None = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    if not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_admin_key


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class SweepResult(BaseModel):
    """Response body for the sweep operation."""
    removed: int


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/sweep")
async def sweep_sessions(
    pipeline: EvaluationPipeline = Depends(get_pipeline),
    _admin: str = Depends(require_admin_key),
) -> SweepResult:
    """Remove every expired session now instead of waiting for the next create."""
    removed = await pipeline.sweep_expired()
    return SweepResult(removed=removed)
