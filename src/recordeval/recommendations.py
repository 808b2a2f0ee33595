"""RecommendationGenerator — second-pass evaluator call over a checklist.

Summarises the aggregate (completion, counts, top missing tests) into one
prompt and asks for a ranked list of next steps.  Any failure yields the
single static fallback below, so callers always get a non-empty list.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from recordeval.constants import RECOMMENDATION_TOP_MISSING
from recordeval.errors import EvaluatorError, ParseError
from recordeval.interfaces import Evaluator
from recordeval.models.evaluation import ChecklistOverall, MissingTest, Recommendation
from recordeval.models.responses import RecommendationsResponse
from recordeval.parser import ResponseParser, preview
from recordeval.prompt.manager import PromptManager

logger = logging.getLogger(__name__)

FALLBACK_RECOMMENDATION = Recommendation(
    priority="high",
    category="General",
    title="Consult with Healthcare Provider",
    description=(
        "Review these assessment results with your healthcare provider to create "
        "a personalized testing and prevention plan."
    ),
    timeframe="Within 1 month",
    rationale=(
        "Professional medical guidance is essential for implementing longevity "
        "strategies safely and effectively."
    ),
)


class RecommendationGenerator:
    """Produces prioritised recommendations from a checklist aggregate.

    Args:
        evaluator: the external model
        prompts: renders the ``recommendations`` template
        parser: extracts the JSON reply
        top_missing: how many missing tests to include in the prompt
    """

    def __init__(
        self,
        evaluator: Evaluator,
        prompts: PromptManager,
        parser: ResponseParser,
        top_missing: int = RECOMMENDATION_TOP_MISSING,
    ) -> None:
        self._evaluator = evaluator
        self._prompts = prompts
        self._parser = parser
        self._top_missing = top_missing

    async def generate(
        self,
        overall: ChecklistOverall,
        missing_tests: Sequence[MissingTest],
        *,
        patient_context: dict[str, Any] | None = None,
    ) -> list[Recommendation]:
        """Return at least one recommendation; never raises on evaluator trouble."""
        prompt = self._prompts.render_recommendations(
            overall,
            list(missing_tests)[: self._top_missing],
            patient_context=patient_context,
        )

        try:
            raw = await self._evaluator.reply(prompt)
        except EvaluatorError as exc:
            logger.warning("Recommendation call failed, using fallback: %s", exc)
            return [FALLBACK_RECOMMENDATION]

        try:
            response = self._parser.parse_model(raw, RecommendationsResponse)
        except ParseError as exc:
            logger.warning(
                "Unparseable recommendations, using fallback: %s | raw=%s",
                exc, preview(exc.raw_text),
            )
            return [FALLBACK_RECOMMENDATION]

        recommendations = [
            Recommendation(
                priority=r.priority,
                category=r.category or "General",
                title=r.title,
                description=r.description,
                timeframe=r.timeframe,
                rationale=r.rationale,
            )
            for r in response.recommendations
            if r.title.strip()
        ]
        if not recommendations:
            logger.warning("Evaluator returned no usable recommendations, using fallback")
            return [FALLBACK_RECOMMENDATION]
        return recommendations
