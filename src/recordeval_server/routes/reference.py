"""Reference data endpoints — app info, session classes, checklist.

These are read-only endpoints that expose the catalog loaded from the
packaged YAML files.  They don't require authentication since the data
is public reference information.
"""

from fastapi import APIRouter, Depends, Request

from recordeval.catalog import CatalogStore
from recordeval.pipeline import EvaluationPipeline

from recordeval_server.dependencies import get_catalog, get_pipeline

router = APIRouter(tags=["reference"])


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/info")
async def info(
    request: Request,
    pipeline: EvaluationPipeline = Depends(get_pipeline),
) -> dict:
    """Return app name/version, configured session classes, and load."""
    return {
        "name": request.app.title,
        "version": request.app.version,
        **await pipeline.info(),
    }


@router.get("/reference/session-classes")
def list_session_classes(
    catalog: CatalogStore = Depends(get_catalog),
) -> list[dict]:
    """Return every session class with its TTL and record ceiling."""
    return [
        {
            "name": policy.name,
            "description": policy.description,
            "ttl_seconds": policy.ttl_seconds,
            "max_record_size": policy.max_record_size,
            "require_compliant_evaluator": policy.require_compliant_evaluator,
            "record_required": policy.record_required,
            "supports_chat": policy.persona is not None,
        }
        for policy in catalog.policies.values()
    ]


@router.get("/reference/checklist")
def get_checklist(
    catalog: CatalogStore = Depends(get_catalog),
) -> dict:
    """Return the checklist categories, tests, and priority keywords."""
    return {
        "categories": [
            {
                "name": category.name,
                "items": [
                    {"test": t.test, "rationale": t.rationale} for t in category.items
                ],
            }
            for category in catalog.categories
        ],
        "priority_keywords": catalog.priority_lexicon.model_dump(),
    }
