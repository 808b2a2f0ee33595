"""Evaluation constants shared across the SDK.

These values are referenced by the evaluators, aggregator, and pipeline.
Status vocabularies mirror the JSON formats requested in the prompt
templates under ``prompt/template/``.

Several constants can be overridden via environment variables so that
deployments can tune evaluator load and fallback behaviour without code
changes.
"""

import os

# --- Eligibility (per-criterion) tri-state ---
STATUS_MATCHED = "matched"
STATUS_NON_MATCHED = "non-matched"
STATUS_NEEDS_MORE_INFO = "needs-more-info"

ELIGIBILITY_STATUSES: tuple[str, ...] = (
    STATUS_MATCHED,
    STATUS_NON_MATCHED,
    STATUS_NEEDS_MORE_INFO,
)

# Spellings the evaluator has been seen to use for the third state.
# Anything mapping here is normalised to ``needs-more-info``.
NEEDS_MORE_INFO_ALIASES: set[str] = {
    "needs-more-info",
    "more-information-needed",
    "insufficient-data",
    "needs-review",
    "unknown",
}

# --- Checklist tri-state ---
CHECKLIST_FOUND = "found"
CHECKLIST_MISSING = "missing"
CHECKLIST_PARTIAL = "partial"

CHECKLIST_STATUSES: tuple[str, ...] = (
    CHECKLIST_FOUND,
    CHECKLIST_MISSING,
    CHECKLIST_PARTIAL,
)

# Qualitative category status; the fallback is "needs-attention".
CATEGORY_STATUSES: tuple[str, ...] = ("excellent", "good", "needs-attention", "poor")
DEFAULT_CATEGORY_STATUS = "needs-attention"

# --- Overall verdicts ---
VERDICT_ELIGIBLE = "eligible"
VERDICT_INELIGIBLE = "ineligible"
VERDICT_NEEDS_REVIEW = "needs-review"

# --- Item types ---
ITEM_INCLUSION = "inclusion"
ITEM_EXCLUSION = "exclusion"

# --- Priorities for missing tests and recommendations ---
PRIORITIES: tuple[str, ...] = ("high", "medium", "low")
DEFAULT_PRIORITY = "low"
# Priority assigned to every item of a category whose evaluation failed.
FAILED_CATEGORY_PRIORITY = "medium"

# Confidence reported when the evaluator answered but the answer could not
# be parsed.  Transport failures always report 0.0.
# Overridable via PARSE_FAILURE_CONFIDENCE env var.
PARSE_FAILURE_CONFIDENCE = float(os.getenv("PARSE_FAILURE_CONFIDENCE", "0.1"))

# Upper bound on concurrent evaluator calls per request.
# Overridable via DEFAULT_MAX_CONCURRENCY env var.
DEFAULT_MAX_CONCURRENCY = int(os.getenv("DEFAULT_MAX_CONCURRENCY", "4"))

# How many missing tests are summarised in the recommendation prompt.
RECOMMENDATION_TOP_MISSING = int(os.getenv("RECOMMENDATION_TOP_MISSING", "10"))

# Evaluator model names carrying this prefix satisfy session classes that
# require a compliant evaluator.
COMPLIANT_MODEL_PREFIX = "hipaa:"

# Characters of raw evaluator output kept in warning logs.
LOG_PREVIEW_CHARS = 200
