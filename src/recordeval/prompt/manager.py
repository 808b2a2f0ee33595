"""PromptManager — Jinja2-based prompt renderer for the evaluator.

Loads templates from the ``template/`` directory and renders records,
evaluation items, and transcripts into single prompt strings with JSON
response instructions.

Each template id is a fixed instructional preamble followed by the
verbatim record and then either one item (per-criterion mode) or the full
item list with the required output schema (batch / category mode).  The
record is never truncated here; size limits are enforced when the session
is created.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

import jinja2

from recordeval.constants import ITEM_EXCLUSION, ITEM_INCLUSION
from recordeval.models.evaluation import ChecklistOverall, EvaluationItem, MissingTest
from recordeval.models.session import Message


# --- Template id to file mapping ---
TEMPLATES: dict[str, str] = {
    "criterion": "criterion.jinja2",
    "comprehensive": "comprehensive.jinja2",
    "checklist_category": "checklist_category.jinja2",
    "recommendations": "recommendations.jinja2",
    "records_chat": "records_chat_system.jinja2",
    "cbt_coach": "cbt_coach_system.jinja2",
    "chat": "chat.jinja2",
}


class PromptManager:
    """Jinja2-based prompt renderer.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            # Keep whitespace control simple; templates use explicit trim
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["tojson"] = lambda v: json.dumps(v, ensure_ascii=False)
        self._env.filters["tojson_pretty"] = lambda v: json.dumps(
            v, ensure_ascii=False, indent=2,
        )

    def build(
        self,
        template_id: str,
        record: str,
        items: Sequence[EvaluationItem] = (),
        context: dict[str, Any] | None = None,
    ) -> str:
        """Render ``template_id`` over a record, its items, and context.

        Raises:
            KeyError: if ``template_id`` is unknown.
        """
        context = context or {}
        if template_id == "criterion":
            if len(items) != 1:
                raise ValueError("criterion prompts take exactly one item")
            return self.render_criterion(record, items[0])
        if template_id == "comprehensive":
            return self.render_comprehensive(
                record, items, trial_info=context.get("trial_info"),
            )
        if template_id == "checklist_category":
            return self.render_category(
                record, context["category"], items,
                patient_context=context.get("patient_context"),
            )
        if template_id in ("records_chat", "cbt_coach"):
            return self.render_system_prompt(template_id, record, context)
        if template_id == "recommendations":
            return self.render_recommendations(
                context["overall"], context.get("missing_tests", []),
                patient_context=context.get("patient_context"),
            )
        if template_id == "chat":
            return self.render_chat(
                context.get("system_prompt", ""), context.get("transcript", []),
            )
        raise KeyError(f"Unknown template id: {template_id}")

    def render(self, template_name: str, **context: Any) -> str:
        """Render a named template with arbitrary context."""
        template = self._env.get_template(template_name)
        return template.render(**context)

    # --- Eligibility ---

    def render_criterion(self, record: str, item: EvaluationItem) -> str:
        """Single-criterion prompt expecting ``{status, reasoning, confidence}``."""
        return self.render(TEMPLATES["criterion"], record=record, item=item)

    def render_comprehensive(
        self,
        record: str,
        items: Sequence[EvaluationItem],
        *,
        trial_info: dict[str, Any] | None = None,
    ) -> str:
        """Batch prompt carrying every inclusion and exclusion criterion."""
        inclusion = [i for i in items if i.item_type == ITEM_INCLUSION]
        exclusion = [i for i in items if i.item_type == ITEM_EXCLUSION]
        return self.render(
            TEMPLATES["comprehensive"],
            record=record,
            inclusion=inclusion,
            exclusion=exclusion,
            trial_info=trial_info or {},
        )

    # --- Checklist ---

    def render_category(
        self,
        record: str,
        category: str,
        items: Sequence[EvaluationItem],
        *,
        patient_context: dict[str, Any] | None = None,
    ) -> str:
        """One prompt per checklist category, listing every test in it."""
        return self.render(
            TEMPLATES["checklist_category"],
            record=record,
            category=category,
            items=items,
            context=patient_context or {},
        )

    def render_recommendations(
        self,
        overall: ChecklistOverall,
        missing_tests: Sequence[MissingTest],
        *,
        patient_context: dict[str, Any] | None = None,
    ) -> str:
        """Second-pass prompt summarising the aggregate."""
        return self.render(
            TEMPLATES["recommendations"],
            overall=overall,
            missing_tests=missing_tests,
            context=patient_context or {},
        )

    # --- Chat ---

    def render_system_prompt(
        self, persona: str, record: str, context: dict[str, Any] | None = None,
    ) -> str:
        """Persona preamble with the record embedded."""
        return self.render(TEMPLATES[persona], record=record, context=context or {})

    def render_chat(self, system_prompt: str, transcript: Sequence[Message]) -> str:
        """Render the persona plus the full transcript, ending on ``ASSISTANT:``.

        The transcript is rendered as-is; the caller appends the new user
        message to it before rendering.
        """
        return self.render(
            TEMPLATES["chat"], system_prompt=system_prompt, transcript=transcript,
        )
