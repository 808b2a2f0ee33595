"""Schemas for the JSON the evaluator is asked to return.

Evaluator output is loosely typed.  Every parsed value is validated
against one of these models before it reaches a result object, and any
status outside the fixed vocabulary is converted to the conservative
default for its domain rather than trusted.

Field aliases match the camelCase keys requested in the prompt templates.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from recordeval.constants import (
    CATEGORY_STATUSES,
    CHECKLIST_MISSING,
    CHECKLIST_STATUSES,
    DEFAULT_CATEGORY_STATUS,
    DEFAULT_PRIORITY,
    ELIGIBILITY_STATUSES,
    NEEDS_MORE_INFO_ALIASES,
    PRIORITIES,
    STATUS_NEEDS_MORE_INFO,
    STATUS_NON_MATCHED,
    VERDICT_NEEDS_REVIEW,
)
from recordeval.models.evaluation import (
    CategoryStatus,
    ChecklistStatus,
    EligibilityStatus,
    Priority,
    Verdict,
)


# ------------------------------------------------------------------
# Normalisation helpers
# ------------------------------------------------------------------

def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower().replace("_", "-").replace(" ", "-")


def normalize_eligibility_status(value: Any) -> str:
    """Map evaluator spelling onto the eligibility tri-state."""
    status = _clean(value)
    if status in ELIGIBILITY_STATUSES:
        return status
    if status in ("not-matched", "nonmatched", "unmatched"):
        return STATUS_NON_MATCHED
    if status in NEEDS_MORE_INFO_ALIASES:
        return STATUS_NEEDS_MORE_INFO
    return STATUS_NEEDS_MORE_INFO


def normalize_checklist_status(value: Any) -> str:
    """Map evaluator spelling onto found/missing/partial."""
    status = _clean(value)
    return status if status in CHECKLIST_STATUSES else CHECKLIST_MISSING


def normalize_category_status(value: Any) -> str:
    status = _clean(value)
    return status if status in CATEGORY_STATUSES else DEFAULT_CATEGORY_STATUS


def normalize_priority(value: Any) -> str:
    priority = _clean(value)
    return priority if priority in PRIORITIES else DEFAULT_PRIORITY


def normalize_verdict(value: Any) -> str:
    verdict = _clean(value)
    if verdict in ("eligible", "ineligible", "needs-review"):
        return verdict
    return VERDICT_NEEDS_REVIEW


def normalize_confidence(value: Any) -> float:
    """Coerce to float and clamp into [0, 1]; garbage becomes 0.0."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(1.0, max(0.0, confidence))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return None if value.strip().lower() == "null" else value
    return str(value)


# --- Annotated field types ---
StatusField = Annotated[EligibilityStatus, BeforeValidator(normalize_eligibility_status)]
ChecklistStatusField = Annotated[ChecklistStatus, BeforeValidator(normalize_checklist_status)]
CategoryStatusField = Annotated[CategoryStatus, BeforeValidator(normalize_category_status)]
PriorityField = Annotated[Priority, BeforeValidator(normalize_priority)]
VerdictField = Annotated[Verdict, BeforeValidator(normalize_verdict)]
ConfidenceField = Annotated[float, BeforeValidator(normalize_confidence)]
Text = Annotated[str, BeforeValidator(_text)]
OptionalText = Annotated[str | None, BeforeValidator(_optional_text)]


class _Lenient(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ------------------------------------------------------------------
# Single criterion
# ------------------------------------------------------------------

class CriterionResponse(_Lenient):
    """``{status, reasoning, confidence}`` for one criterion."""

    status: StatusField
    reasoning: Text = ""
    confidence: ConfidenceField = 0.0


# ------------------------------------------------------------------
# Checklist category
# ------------------------------------------------------------------

class CategoryItemResponse(_Lenient):
    test_name: Text = Field(alias="testName")
    status: ChecklistStatusField = CHECKLIST_MISSING
    evidence: Text = ""
    details: Text = ""
    last_date: OptionalText = Field(default=None, alias="lastDate")
    values: OptionalText = None


class CategoryResponse(_Lenient):
    """Per-item statuses plus a qualitative status for one category."""

    category_name: OptionalText = Field(default=None, alias="categoryName")
    items: list[CategoryItemResponse]
    category_status: CategoryStatusField = Field(
        default=DEFAULT_CATEGORY_STATUS, alias="categoryStatus",
    )
    category_notes: Text = Field(default="", alias="categoryNotes")


# ------------------------------------------------------------------
# Recommendations
# ------------------------------------------------------------------

class RecommendationResponse(_Lenient):
    priority: PriorityField = DEFAULT_PRIORITY
    category: Text = "General"
    title: Text
    description: Text = ""
    timeframe: Text = ""
    rationale: Text = ""


class RecommendationsResponse(_Lenient):
    recommendations: list[RecommendationResponse]


# ------------------------------------------------------------------
# Comprehensive eligibility
# ------------------------------------------------------------------

class OverallAssessmentResponse(_Lenient):
    eligibility: VerdictField = VERDICT_NEEDS_REVIEW
    confidence: ConfidenceField = 0.0
    clinical_summary: Text = Field(default="", alias="clinicalSummary")
    safety_assessment: Text = Field(default="", alias="safetyAssessment")


class CriterionAnalysisResponse(_Lenient):
    criterion: Text
    type: Text = ""
    status: StatusField
    confidence: ConfidenceField = 0.0
    clinical_reasoning: Text = Field(default="", alias="clinicalReasoning")
    evidence_from_record: OptionalText = Field(default=None, alias="evidenceFromRecord")
    missing_information: OptionalText = Field(default=None, alias="missingInformation")


class ClinicalRecommendationsResponse(_Lenient):
    next_steps: Text = Field(default="", alias="nextSteps")
    additional_tests: Text = Field(default="", alias="additionalTests")
    risk_factors: Text = Field(default="", alias="riskFactors")
    alternative_trials: Text = Field(default="", alias="alternativeTrials")


class ComprehensiveResponse(_Lenient):
    overall_assessment: OverallAssessmentResponse = Field(
        default_factory=OverallAssessmentResponse, alias="overallAssessment",
    )
    criteria_analysis: list[CriterionAnalysisResponse] = Field(alias="criteriaAnalysis")
    clinical_recommendations: ClinicalRecommendationsResponse = Field(
        default_factory=ClinicalRecommendationsResponse,
        alias="clinicalRecommendations",
    )
