"""FastAPI dependency injection — provides the pipeline and catalog.

Both are built once in the lifespan handler and stashed on ``app.state``.
"""

from fastapi import Request

from recordeval.catalog import CatalogStore
from recordeval.pipeline import EvaluationPipeline


def get_pipeline(request: Request) -> EvaluationPipeline:
    """Return the pipeline singleton from ``app.state``."""
    return request.app.state.pipeline


def get_catalog(request: Request) -> CatalogStore:
    """Return the CatalogStore singleton from ``app.state``."""
    return request.app.state.catalog
