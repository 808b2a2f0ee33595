"""Item evaluators — one evaluator call per question, never an exception.

Three evaluators share the same contract: build a prompt, call the
``Evaluator``, validate the reply, and on any transport or parse failure
return a conservative result instead of raising.

  - **CriterionEvaluator**: one inclusion/exclusion criterion per call.
    Failures become ``needs-more-info`` with confidence 0.0 (transport)
    or ``PARSE_FAILURE_CONFIDENCE`` (unparseable reply).
  - **CategoryEvaluator**: one checklist category per call.  A failed
    call marks every test in the category ``missing`` at ``medium``
    priority.
  - **ComprehensiveEvaluator**: every criterion in a single call.  A
    failed call returns ``None`` so the caller can fall back to
    per-criterion evaluation.

Usage::

    criterion_eval = CriterionEvaluator(evaluator, PromptManager(), ResponseParser())
    result = await criterion_eval.evaluate(record, EvaluationItem(
        text="Age 18-65", item_type="inclusion",
    ))
    # result.status in {"matched", "non-matched", "needs-more-info"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from recordeval.constants import (
    CHECKLIST_FOUND,
    CHECKLIST_MISSING,
    CHECKLIST_PARTIAL,
    DEFAULT_CATEGORY_STATUS,
    FAILED_CATEGORY_PRIORITY,
    PARSE_FAILURE_CONFIDENCE,
    STATUS_NEEDS_MORE_INFO,
)
from recordeval.errors import EvaluatorError, ParseError
from recordeval.interfaces import Evaluator, PriorityPolicy
from recordeval.models.evaluation import (
    CategoryResult,
    ChecklistItemResult,
    ClinicalRecommendations,
    CriterionResult,
    EvaluationItem,
    MissingTest,
    OverallAssessment,
)
from recordeval.models.responses import (
    CategoryItemResponse,
    CategoryResponse,
    ComprehensiveResponse,
    CriterionAnalysisResponse,
    CriterionResponse,
)
from recordeval.parser import ResponseParser, preview
from recordeval.prompt.manager import PromptManager

logger = logging.getLogger(__name__)


def _key(text: str) -> str:
    """Comparison key for matching evaluator echoes to submitted text."""
    return " ".join(text.split()).casefold()


def _pair(item_texts: Sequence[str], entry_texts: Sequence[str]) -> list[int | None]:
    """Index of the reply entry answering each item, or ``None``.

    Entries are claimed by normalised text first; each entry answers at
    most one item.  When the items left unclaimed and the entries left
    unclaimed are equally many, the leftovers are paired in order.
    Otherwise the leftovers stay unanswered.
    """
    by_key: dict[str, int] = {}
    for index, text in enumerate(entry_texts):
        by_key.setdefault(_key(text), index)

    pairs: list[int | None] = [by_key.pop(_key(text), None) for text in item_texts]

    claimed = {index for index in pairs if index is not None}
    open_items = [i for i, index in enumerate(pairs) if index is None]
    open_entries = [j for j in range(len(entry_texts)) if j not in claimed]
    if open_items and len(open_items) == len(open_entries):
        for i, j in zip(open_items, open_entries):
            pairs[i] = j
    return pairs


# ======================================================================
# Eligibility: one criterion per call
# ======================================================================

class CriterionEvaluator:
    """Evaluates a single eligibility criterion against a record.

    Args:
        evaluator: the external model
        prompts: renders the ``criterion`` template
        parser: extracts the JSON reply
    """

    def __init__(
        self,
        evaluator: Evaluator,
        prompts: PromptManager,
        parser: ResponseParser,
    ) -> None:
        self._evaluator = evaluator
        self._prompts = prompts
        self._parser = parser

    async def evaluate(self, record: str, item: EvaluationItem) -> CriterionResult:
        """Return the criterion's status; never raises on evaluator trouble."""
        prompt = self._prompts.render_criterion(record, item)

        try:
            raw = await self._evaluator.reply(prompt)
        except EvaluatorError as exc:
            logger.warning(
                "Evaluator failed on %s criterion %r: %s", item.item_type, item.text, exc,
            )
            return self.fallback(item, f"Error during evaluation: {exc}", 0.0)

        try:
            response = self._parser.parse_model(raw, CriterionResponse)
        except ParseError as exc:
            logger.warning(
                "Unparseable reply for criterion %r: %s | raw=%s",
                item.text, exc, preview(exc.raw_text),
            )
            return self.fallback(
                item, "Unable to parse model response properly", PARSE_FAILURE_CONFIDENCE,
            )

        return CriterionResult(
            criterion=item.text,
            type=item.item_type,
            status=response.status,
            reasoning=response.reasoning,
            confidence=response.confidence,
        )

    @staticmethod
    def fallback(item: EvaluationItem, reasoning: str, confidence: float) -> CriterionResult:
        """Conservative ``needs-more-info`` result for a failed criterion."""
        return CriterionResult(
            criterion=item.text,
            type=item.item_type,
            status=STATUS_NEEDS_MORE_INFO,
            reasoning=reasoning,
            confidence=confidence,
        )


# ======================================================================
# Eligibility: all criteria in one call
# ======================================================================

@dataclass(frozen=True)
class BatchAssessment:
    """What a successful comprehensive call yields, before aggregation."""

    results: list[CriterionResult]
    assessment: OverallAssessment
    recommendations: ClinicalRecommendations


class ComprehensiveEvaluator:
    """Evaluates every criterion of a trial in a single evaluator call.

    The evaluator's own overall verdict is kept only as advisory text; the
    caller recomputes the verdict from the per-criterion statuses.
    """

    def __init__(
        self,
        evaluator: Evaluator,
        prompts: PromptManager,
        parser: ResponseParser,
    ) -> None:
        self._evaluator = evaluator
        self._prompts = prompts
        self._parser = parser

    async def evaluate(
        self,
        record: str,
        items: Sequence[EvaluationItem],
        *,
        trial_info: dict[str, Any] | None = None,
    ) -> BatchAssessment | None:
        """Return the batch assessment, or ``None`` if the call failed."""
        prompt = self._prompts.render_comprehensive(record, items, trial_info=trial_info)

        try:
            raw = await self._evaluator.reply(prompt)
        except EvaluatorError as exc:
            logger.warning("Comprehensive evaluation failed, falling back: %s", exc)
            return None

        try:
            response = self._parser.parse_model(raw, ComprehensiveResponse)
        except ParseError as exc:
            logger.warning(
                "Unparseable comprehensive reply, falling back: %s | raw=%s",
                exc, preview(exc.raw_text),
            )
            return None

        results = self._match(items, response.criteria_analysis)
        overall = response.overall_assessment
        recs = response.clinical_recommendations
        return BatchAssessment(
            results=results,
            assessment=OverallAssessment(
                eligibility=overall.eligibility,
                confidence=overall.confidence,
                clinical_summary=overall.clinical_summary,
                safety_assessment=overall.safety_assessment,
            ),
            recommendations=ClinicalRecommendations(
                next_steps=recs.next_steps,
                additional_tests=recs.additional_tests,
                risk_factors=recs.risk_factors,
                alternative_trials=recs.alternative_trials,
            ),
        )

    def _match(
        self,
        items: Sequence[EvaluationItem],
        analysis: list[CriterionAnalysisResponse],
    ) -> list[CriterionResult]:
        """Pair each submitted criterion with the evaluator's entry for it.

        Entries are matched by criterion text first; leftovers are paired
        by position only among themselves (see :func:`_pair`).  A
        criterion the evaluator skipped becomes ``needs-more-info``.
        """
        pairs = _pair([item.text for item in items], [e.criterion for e in analysis])

        results: list[CriterionResult] = []
        for item, index in zip(items, pairs):
            if index is None:
                logger.warning("Criterion missing from comprehensive reply: %r", item.text)
                results.append(CriterionEvaluator.fallback(
                    item, "Criterion was not assessed by the evaluator", 0.0,
                ))
                continue
            entry = analysis[index]
            results.append(CriterionResult(
                criterion=item.text,
                type=item.item_type,
                status=entry.status,
                reasoning=entry.clinical_reasoning,
                confidence=entry.confidence,
                evidence=entry.evidence_from_record,
                missing_information=entry.missing_information,
            ))
        return results


# ======================================================================
# Checklist: one category per call
# ======================================================================

class CategoryEvaluator:
    """Evaluates every test of one checklist category in a single call.

    Args:
        evaluator: the external model
        prompts: renders the ``checklist_category`` template
        parser: extracts the JSON reply
        priority_policy: ranks tests reported ``missing``
    """

    def __init__(
        self,
        evaluator: Evaluator,
        prompts: PromptManager,
        parser: ResponseParser,
        priority_policy: PriorityPolicy,
    ) -> None:
        self._evaluator = evaluator
        self._prompts = prompts
        self._parser = parser
        self._priority = priority_policy

    async def evaluate(
        self,
        record: str,
        category: str,
        items: Sequence[EvaluationItem],
        *,
        patient_context: dict[str, Any] | None = None,
    ) -> CategoryResult:
        """Return per-test statuses and counts for ``category``."""
        prompt = self._prompts.render_category(
            record, category, items, patient_context=patient_context,
        )

        try:
            raw = await self._evaluator.reply(prompt)
        except EvaluatorError as exc:
            logger.warning("Evaluator failed on category %r: %s", category, exc)
            return self.fallback(category, items)

        try:
            response = self._parser.parse_model(raw, CategoryResponse)
        except ParseError as exc:
            logger.warning(
                "Unparseable reply for category %r: %s | raw=%s",
                category, exc, preview(exc.raw_text),
            )
            return self.fallback(category, items)

        item_results = self._match(category, items, response.items)
        missing = [
            MissingTest(
                test_name=r.test_name,
                category=category,
                rationale=item.metadata.get("rationale", ""),
                priority=self._priority.priority_for(r.test_name, category),
            )
            for item, r in zip(items, item_results)
            if r.status == CHECKLIST_MISSING
        ]
        return CategoryResult(
            category_name=category,
            category_status=response.category_status,
            category_notes=response.category_notes,
            total_items=len(items),
            items_found=sum(1 for r in item_results if r.status == CHECKLIST_FOUND),
            items_missing=len(missing),
            items_partial=sum(1 for r in item_results if r.status == CHECKLIST_PARTIAL),
            items=item_results,
            missing_tests=missing,
        )

    def _match(
        self,
        category: str,
        items: Sequence[EvaluationItem],
        reported: list[CategoryItemResponse],
    ) -> list[ChecklistItemResult]:
        """One result per catalog test, in catalog order.

        Reported names are matched to catalog tests by text, then the
        leftovers by position (see :func:`_pair`).  Tests still unanswered
        are treated as ``missing``; reported entries nothing claimed are
        dropped.
        """
        pairs = _pair([item.text for item in items], [e.test_name for e in reported])

        results: list[ChecklistItemResult] = []
        for item, index in zip(items, pairs):
            if index is None:
                results.append(ChecklistItemResult(
                    test_name=item.text,
                    status=CHECKLIST_MISSING,
                    evidence="Not reported by evaluator",
                ))
                continue
            entry = reported[index]
            results.append(ChecklistItemResult(
                test_name=item.text,
                status=entry.status,
                evidence=entry.evidence,
                details=entry.details,
                last_date=entry.last_date,
                values=entry.values,
            ))
        answered = set(pairs)
        dropped = [e.test_name for j, e in enumerate(reported) if j not in answered]
        if dropped:
            logger.warning(
                "Ignoring %d unmatched tests reported for category %r: %s",
                len(dropped), category, dropped,
            )
        return results

    @staticmethod
    def fallback(category: str, items: Sequence[EvaluationItem]) -> CategoryResult:
        """Every test ``missing`` at medium priority for a failed category."""
        return CategoryResult(
            category_name=category,
            category_status=DEFAULT_CATEGORY_STATUS,
            category_notes="Error occurred during assessment",
            total_items=len(items),
            items_found=0,
            items_missing=len(items),
            items_partial=0,
            items=[
                ChecklistItemResult(
                    test_name=item.text,
                    status=CHECKLIST_MISSING,
                    evidence="Assessment error",
                    details="Unable to complete assessment",
                )
                for item in items
            ],
            missing_tests=[
                MissingTest(
                    test_name=item.text,
                    category=category,
                    rationale=item.metadata.get("rationale", ""),
                    priority=FAILED_CATEGORY_PRIORITY,
                )
                for item in items
            ],
        )
