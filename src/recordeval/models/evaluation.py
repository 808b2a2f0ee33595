"""Evaluation models — items in, per-item results and aggregates out.

All result models are frozen value objects: an evaluation creates them
fresh and a later evaluation replaces them wholesale.

Status fields are ``Literal`` types so that a result can never carry a
status outside the fixed vocabulary, whatever the evaluator returned.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EligibilityStatus = Literal["matched", "non-matched", "needs-more-info"]
ChecklistStatus = Literal["found", "missing", "partial"]
CategoryStatus = Literal["excellent", "good", "needs-attention", "poor"]
Verdict = Literal["eligible", "ineligible", "needs-review"]
Priority = Literal["high", "medium", "low"]
ItemType = Literal["inclusion", "exclusion", "checklist"]


class EvaluationItem(BaseModel):
    """One atomic question put to the evaluator.

    ``metadata`` carries domain context through to the output (for
    checklist tests, the ``rationale`` explaining why the test matters).
    """

    model_config = ConfigDict(frozen=True)

    text: str
    item_type: ItemType
    category: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ------------------------------------------------------------------
# Eligibility
# ------------------------------------------------------------------

class CriterionResult(BaseModel):
    """Result of evaluating one inclusion/exclusion criterion."""

    model_config = ConfigDict(frozen=True)

    criterion: str
    type: Literal["inclusion", "exclusion"]
    status: EligibilityStatus
    reasoning: str
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: str | None = None
    missing_information: str | None = None


class OverallAssessment(BaseModel):
    """Holistic summary produced in comprehensive mode."""

    model_config = ConfigDict(frozen=True)

    eligibility: Verdict
    confidence: float = Field(ge=0.0, le=1.0)
    clinical_summary: str
    safety_assessment: str


class ClinicalRecommendations(BaseModel):
    """Next-step guidance attached to an eligibility result."""

    model_config = ConfigDict(frozen=True)

    next_steps: str
    additional_tests: str
    risk_factors: str
    alternative_trials: str


class EligibilityResult(BaseModel):
    """Aggregate of all criterion results for one trial."""

    model_config = ConfigDict(frozen=True)

    type: Literal["eligibility"] = "eligibility"
    mode: Literal["basic", "comprehensive"] = "basic"
    overall_eligibility: Verdict
    results: list[CriterionResult]
    assessment: OverallAssessment | None = None
    recommendations: ClinicalRecommendations | None = None
    # True when the request timed out and results were degraded
    degraded: bool = False
    completed_at: datetime


# ------------------------------------------------------------------
# Checklist
# ------------------------------------------------------------------

class ChecklistItemResult(BaseModel):
    """Status of one checklist test within a category."""

    model_config = ConfigDict(frozen=True)

    test_name: str
    status: ChecklistStatus
    evidence: str = ""
    details: str = ""
    last_date: str | None = None
    values: str | None = None


class MissingTest(BaseModel):
    """A checklist test with no evidence in the record, tagged with priority."""

    model_config = ConfigDict(frozen=True)

    test_name: str
    category: str
    rationale: str = ""
    priority: Priority


class CategoryResult(BaseModel):
    """Per-category sub-aggregate with status counts."""

    model_config = ConfigDict(frozen=True)

    category_name: str
    category_status: CategoryStatus
    category_notes: str = ""
    total_items: int
    items_found: int
    items_missing: int
    items_partial: int
    items: list[ChecklistItemResult]
    missing_tests: list[MissingTest]


class ChecklistOverall(BaseModel):
    """Totals across all assessed categories."""

    model_config = ConfigDict(frozen=True)

    total_items: int
    items_found: int
    items_missing: int
    items_partial: int
    completion_percentage: int


class Recommendation(BaseModel):
    """One prioritised, human-readable next step."""

    model_config = ConfigDict(frozen=True)

    priority: Priority
    category: str
    title: str
    description: str
    timeframe: str
    rationale: str


class ChecklistResult(BaseModel):
    """Full checklist assessment: totals, categories, gaps, next steps."""

    model_config = ConfigDict(frozen=True)

    type: Literal["checklist"] = "checklist"
    overall: ChecklistOverall
    categories: dict[str, CategoryResult]
    missing_tests: list[MissingTest]
    recommendations: list[Recommendation] = Field(default_factory=list)
    degraded: bool = False
    completed_at: datetime


class MatchResult(EligibilityResult):
    """Stateless one-shot eligibility match; no session is kept."""

    patient_id: str
