"""Aggregation — turns per-item results into overall verdicts and totals.

Every function here is pure and order-independent: permuting the input
never changes the output (apart from the order of collected lists).

Eligibility precedence, highest first:

  1. any inclusion ``non-matched`` or any exclusion ``matched``
     → ``ineligible``
  2. any ``needs-more-info`` → ``needs-review``
  3. all inclusions ``matched`` and all exclusions ``non-matched``
     → ``eligible``
  4. anything else → ``needs-review``
"""

from __future__ import annotations

from typing import Iterable, Sequence

from recordeval.constants import (
    DEFAULT_PRIORITY,
    ITEM_EXCLUSION,
    ITEM_INCLUSION,
    STATUS_MATCHED,
    STATUS_NEEDS_MORE_INFO,
    STATUS_NON_MATCHED,
    VERDICT_ELIGIBLE,
    VERDICT_INELIGIBLE,
    VERDICT_NEEDS_REVIEW,
)
from recordeval.interfaces import PriorityPolicy
from recordeval.models.catalog import PriorityLexicon
from recordeval.models.evaluation import (
    CategoryResult,
    ChecklistOverall,
    ClinicalRecommendations,
    CriterionResult,
    MissingTest,
    OverallAssessment,
    Priority,
    Verdict,
)


# ------------------------------------------------------------------
# Eligibility
# ------------------------------------------------------------------

def determine_overall_eligibility(results: Iterable[CriterionResult]) -> Verdict:
    """Classify a set of criterion results as eligible/ineligible/needs-review."""
    results = list(results)
    inclusion = [r for r in results if r.type == ITEM_INCLUSION]
    exclusion = [r for r in results if r.type == ITEM_EXCLUSION]

    if any(r.status == STATUS_NON_MATCHED for r in inclusion) or any(
        r.status == STATUS_MATCHED for r in exclusion
    ):
        return VERDICT_INELIGIBLE

    if any(r.status == STATUS_NEEDS_MORE_INFO for r in results):
        return VERDICT_NEEDS_REVIEW

    if all(r.status == STATUS_MATCHED for r in inclusion) and all(
        r.status == STATUS_NON_MATCHED for r in exclusion
    ):
        return VERDICT_ELIGIBLE

    return VERDICT_NEEDS_REVIEW


def summarize_basic(
    results: Sequence[CriterionResult], verdict: Verdict,
) -> tuple[OverallAssessment, ClinicalRecommendations]:
    """Build the comprehensive envelope from per-criterion results.

    Used when a comprehensive call fails and the criteria were evaluated
    one by one instead.  Overall confidence is the weakest item's.
    """
    confidence = min((r.confidence for r in results), default=0.0)
    assessment = OverallAssessment(
        eligibility=verdict,
        confidence=confidence,
        clinical_summary="Basic criterion-by-criterion evaluation performed",
        safety_assessment="Individual criteria evaluated for safety",
    )
    recommendations = ClinicalRecommendations(
        next_steps=(
            "Proceed with detailed screening"
            if verdict == VERDICT_ELIGIBLE
            else "Review with medical team"
        ),
        additional_tests="Standard trial screening procedures",
        risk_factors="Monitor per protocol",
        alternative_trials="Consider trials with modified eligibility criteria",
    )
    return assessment, recommendations


# ------------------------------------------------------------------
# Checklist
# ------------------------------------------------------------------

def completion_percentage(found: int, total: int) -> int:
    """``round(100 * found / total)`` with half-up rounding; 0 when empty."""
    if total <= 0:
        return 0
    # Integer half-up rounding; round() would use banker's rounding
    return (200 * found + total) // (2 * total)


def aggregate_checklist(
    categories: Iterable[CategoryResult],
) -> tuple[ChecklistOverall, list[MissingTest]]:
    """Sum per-category counts and collect every missing test."""
    categories = list(categories)
    total = sum(c.total_items for c in categories)
    found = sum(c.items_found for c in categories)
    missing_tests = [t for c in categories for t in c.missing_tests]

    overall = ChecklistOverall(
        total_items=total,
        items_found=found,
        items_missing=sum(c.items_missing for c in categories),
        items_partial=sum(c.items_partial for c in categories),
        completion_percentage=completion_percentage(found, total),
    )
    return overall, missing_tests


class KeywordPriorityPolicy(PriorityPolicy):
    """Ranks a missing test by case-sensitive substring match on its name.

    High keywords win over medium ones; no match yields ``low``.  This is
    a heuristic carried over from the checklist's authors and has not been
    validated against a clinical risk model.
    """

    def __init__(self, lexicon: PriorityLexicon) -> None:
        self._lexicon = lexicon

    def priority_for(self, test_name: str, category: str) -> Priority:
        if any(keyword in test_name for keyword in self._lexicon.high):
            return "high"
        if any(keyword in test_name for keyword in self._lexicon.medium):
            return "medium"
        return DEFAULT_PRIORITY
