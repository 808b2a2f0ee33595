"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that loads the catalog and initialises the pipeline once
  - CORS middleware
  - Global exception handlers (SDK errors → 400/404/409/410/502, else 500)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness probes

The ``cli()`` function is the ``recordeval-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recordeval.catalog import CatalogStore
from recordeval.errors import RecordEvalError
from recordeval.interfaces import Evaluator
from recordeval.llm import HttpEvaluator
from recordeval.pipeline import EvaluationPipeline
from recordeval.session_store import InMemorySessionStore, SessionStore

from recordeval_server.config import ServerSettings, load_settings
from recordeval_server.errors import generic_error_handler, sdk_error_handler
from recordeval_server.routes import register_routes

logger = logging.getLogger(__name__)

APP_NAME = "Record Evaluation API"
APP_VERSION = "0.1.0"


# ------------------------------------------------------------------
# Lifespan — runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Load session-class policies and the checklist into a ``CatalogStore``
      2. Build the evaluator (unless one was injected) and the session store
      3. Build ``EvaluationPipeline`` and stash everything on ``app.state``

    Shutdown:
      1. Close the evaluator's HTTP connection pool, if we opened one
    """
    settings: ServerSettings = app.state.settings

    # --- Load catalog ---
    catalog = CatalogStore(data_dir=settings.catalog_dir)
    catalog.load()
    logger.info("CatalogStore loaded successfully")

    # --- Evaluator ---
    client: httpx.AsyncClient | None = None
    evaluator: Evaluator | None = app.state.evaluator_override
    if evaluator is None:
        client = httpx.AsyncClient(timeout=settings.evaluator_timeout_seconds)
        evaluator = HttpEvaluator(
            settings.evaluator_base_url,
            settings.evaluator_model,
            api_key=settings.evaluator_api_key,
            timeout=settings.evaluator_timeout_seconds,
            client=client,
        )
    logger.info("Evaluator model: %s", evaluator.model_name)

    # --- Build pipeline ---
    store: SessionStore = app.state.store_override or InMemorySessionStore()
    pipeline = EvaluationPipeline(
        store,
        catalog,
        evaluator,
        max_concurrency=settings.max_concurrency,
        request_timeout=settings.request_timeout_seconds,
    )

    app.state.catalog = catalog
    app.state.session_store = store
    app.state.pipeline = pipeline

    yield

    # --- Shutdown ---
    if client is not None:
        await client.aclose()
        logger.info("Evaluator client closed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(
    settings: ServerSettings | None = None,
    *,
    evaluator: Evaluator | None = None,
    store: SessionStore | None = None,
) -> FastAPI:
    """Build and return the configured FastAPI application.

    ``evaluator`` and ``store`` replace the HTTP evaluator and the
    in-memory store; tests use them to run without a live model.
    """
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=APP_NAME,
        description="Evaluate medical records against trial criteria and health checklists",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # Store settings and overrides so the lifespan handler can read them
    app.state.settings = settings
    app.state.evaluator_override = evaluator
    app.state.store_override = store

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(RecordEvalError, sdk_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness probe — reports the number of stored sessions."""
        count = await app.state.session_store.count()
        return {"status": "ok", "sessions": count}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn recordeval_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``recordeval-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "recordeval_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
