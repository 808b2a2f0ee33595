"""recordeval — evaluate medical records against criteria and checklists.

Public API:
    EvaluationPipeline   — orchestrates sessions, evaluation, aggregation, chat
    CatalogStore         — loads session-class policies and the checklist YAML
    InMemorySessionStore — process-local, TTL-bounded session storage
    SessionStore         — storage interface the pipeline depends on
    PromptManager        — renders records and items into evaluator prompts
    ResponseParser       — extracts JSON from evaluator output
    HttpEvaluator        — OpenAI-compatible evaluator client

Collaborator interfaces:
    Evaluator            — ABC for the external natural-language model
    PriorityPolicy       — ABC for ranking missing checklist tests
    KeywordPriorityPolicy — the shipped keyword heuristic

Aggregation:
    determine_overall_eligibility — fixed-precedence eligibility verdict
    aggregate_checklist           — checklist totals and missing tests
"""

from recordeval.aggregator import (
    KeywordPriorityPolicy,
    aggregate_checklist,
    determine_overall_eligibility,
)
from recordeval.catalog import CatalogStore
from recordeval.interfaces import Evaluator, PriorityPolicy
from recordeval.llm import HttpEvaluator
from recordeval.parser import ResponseParser
from recordeval.pipeline import EvaluationPipeline
from recordeval.prompt import PromptManager
from recordeval.session_store import InMemorySessionStore, SessionStore

__all__ = [
    # Pipeline & stores
    "EvaluationPipeline",
    "CatalogStore",
    "InMemorySessionStore",
    "SessionStore",
    "PromptManager",
    "ResponseParser",
    "HttpEvaluator",
    # Interfaces
    "Evaluator",
    "PriorityPolicy",
    "KeywordPriorityPolicy",
    # Aggregation
    "determine_overall_eligibility",
    "aggregate_checklist",
]
