"""Server configuration for the record evaluation API.

Every field has a local-development default.  Deployments override them
through environment variables; the evaluator endpoint and model are the
usual ones to set.
"""

import os
from dataclasses import dataclass, field

from recordeval.constants import DEFAULT_MAX_CONCURRENCY


@dataclass(frozen=True)
class ServerSettings:
    """Frozen settings snapshot taken once when the app is built."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # Allowed CORS origins; SERVER_CORS_ORIGINS is comma-separated
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Catalog directory (None → the YAML packaged with recordeval)
    catalog_dir: str | None = None

    # Logging
    log_level: str = "INFO"

    # Shared secret for /admin routes; None disables them
    admin_api_key: str | None = None

    # Evaluator: any OpenAI-compatible chat completions endpoint.
    # Session classes that require compliance only accept "hipaa:" models.
    evaluator_base_url: str = "http://localhost:4000/v1"
    evaluator_api_key: str | None = None
    evaluator_model: str = "hipaa:gpt-4.1"
    evaluator_timeout_seconds: float = 120.0

    # Evaluation fan-out and overall deadline (None = no deadline)
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    request_timeout_seconds: float | None = None


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` / ``EVALUATOR_*`` environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    raw_deadline = os.getenv("EVALUATION_REQUEST_TIMEOUT_SECONDS")

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        catalog_dir=os.getenv("SERVER_CATALOG_DIR") or None,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        evaluator_base_url=os.getenv("EVALUATOR_BASE_URL", "http://localhost:4000/v1"),
        evaluator_api_key=os.getenv("EVALUATOR_API_KEY") or None,
        evaluator_model=os.getenv("EVALUATOR_MODEL", "hipaa:gpt-4.1"),
        evaluator_timeout_seconds=float(os.getenv("EVALUATOR_TIMEOUT_SECONDS", "120")),
        max_concurrency=int(
            os.getenv("EVALUATION_MAX_CONCURRENCY", str(DEFAULT_MAX_CONCURRENCY)),
        ),
        request_timeout_seconds=float(raw_deadline) if raw_deadline else None,
    )
