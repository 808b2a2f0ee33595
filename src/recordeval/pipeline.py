"""EvaluationPipeline — sequences store, prompts, evaluators, and aggregation.

One pipeline instance serves every request type.  For each evaluation
request it walks the same stages:

    created ──► evaluating ──► aggregating ──► (recommending) ──► completed

No stage is skipped on partial failure.  Individual items degrade to
conservative results inside the evaluators; the pipeline itself only
aborts when the session is missing or expired, or when the input fails
validation up front (record size, required fields, evaluator compliance).

Independent items (criteria or checklist categories) are evaluated
concurrently, bounded by ``max_concurrency``.  When ``request_timeout``
is set and elapses, in-flight calls are cancelled and the whole result
degrades to ``needs-review`` instead of never completing.

Usage::

    catalog = CatalogStore()
    catalog.load()
    pipeline = EvaluationPipeline(InMemorySessionStore(), catalog, evaluator)

    created = await pipeline.create_session(
        "outlive-checklist", record=record, context={"age": 52},
    )
    result = await pipeline.run_checklist(created.session_id)
    # result.overall.completion_percentage, result.missing_tests, ...

    chat = await pipeline.create_session("records-chat", record=record)
    reply = await pipeline.chat(chat.session_id, "When was my last lipid panel?")
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from enum import Enum
from functools import partial
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence, TypeVar

from recordeval.aggregator import (
    KeywordPriorityPolicy,
    aggregate_checklist,
    determine_overall_eligibility,
    summarize_basic,
)
from recordeval.catalog import CatalogStore
from recordeval.constants import (
    COMPLIANT_MODEL_PREFIX,
    DEFAULT_MAX_CONCURRENCY,
    ITEM_EXCLUSION,
    ITEM_INCLUSION,
    VERDICT_NEEDS_REVIEW,
)
from recordeval.errors import ComplianceError, SessionNotFoundError, ValidationError
from recordeval.evaluators import CategoryEvaluator, ComprehensiveEvaluator, CriterionEvaluator
from recordeval.ids import IdGenerator, generate_id
from recordeval.interfaces import Evaluator, PriorityPolicy
from recordeval.models.catalog import ChecklistCategory, SessionClassPolicy
from recordeval.models.evaluation import (
    CategoryResult,
    ChecklistResult,
    ClinicalRecommendations,
    CriterionResult,
    EligibilityResult,
    EvaluationItem,
    MatchResult,
    OverallAssessment,
    Recommendation,
)
from recordeval.models.session import (
    ChatReply,
    Message,
    SessionCreated,
    SessionInfo,
    SessionPayload,
    TrialCriteria,
)
from recordeval.parser import ResponseParser
from recordeval.prompt.manager import PromptManager
from recordeval.recommendations import FALLBACK_RECOMMENDATION, RecommendationGenerator
from recordeval.session_store import Clock, SessionStore, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVALUATION_MODES = ("basic", "comprehensive")

# Session class whose policy governs stateless one-shot matching
MATCH_SESSION_CLASS = "trial-matcher"
MATCH_ID_PREFIX = "pt"

URGENT_PREFIX = "I'm experiencing a craving and need immediate help. "


class Stage(str, Enum):
    """Orchestration stages of one evaluation request."""

    CREATED = "created"
    EVALUATING = "evaluating"
    AGGREGATING = "aggregating"
    RECOMMENDING = "recommending"
    COMPLETED = "completed"


class _TurnLock:
    """A session's chat lock and how many turns hold or await it."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


def criteria_items(criteria: TrialCriteria) -> list[EvaluationItem]:
    """Flatten trial criteria into items, inclusions first; blanks dropped."""
    items = [
        EvaluationItem(text=text.strip(), item_type=ITEM_INCLUSION)
        for text in criteria.inclusion_criteria
        if text and text.strip()
    ]
    items.extend(
        EvaluationItem(text=text.strip(), item_type=ITEM_EXCLUSION)
        for text in criteria.exclusion_criteria
        if text and text.strip()
    )
    return items


def category_items(category: ChecklistCategory) -> list[EvaluationItem]:
    """One checklist item per catalog test, carrying its rationale."""
    return [
        EvaluationItem(
            text=test.test,
            item_type="checklist",
            category=category.name,
            metadata={"rationale": test.rationale},
        )
        for test in category.items
    ]


class EvaluationPipeline:
    """Orchestrates sessions, item evaluation, aggregation, and chat.

    Args:
        store: session storage shared across requests
        catalog: a loaded :class:`CatalogStore` (policies and checklist)
        evaluator: the external natural-language model
        prompts: prompt renderer; defaults to the packaged templates
        parser: evaluator-output parser
        priority_policy: ranks missing checklist tests; defaults to the
            catalog's keyword lexicon
        max_concurrency: upper bound on in-flight evaluator calls per request
        request_timeout: seconds before an evaluation degrades to
            ``needs-review``; ``None`` waits indefinitely
        clock: current-time source, shared with the store in tests
        id_generator: builds ids for stateless matches
    """

    def __init__(
        self,
        store: SessionStore,
        catalog: CatalogStore,
        evaluator: Evaluator,
        *,
        prompts: PromptManager | None = None,
        parser: ResponseParser | None = None,
        priority_policy: PriorityPolicy | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        request_timeout: float | None = None,
        clock: Clock = utc_now,
        id_generator: IdGenerator = generate_id,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self._store = store
        self._catalog = catalog
        self._evaluator = evaluator
        self._prompts = prompts or PromptManager()
        self._parser = parser or ResponseParser()
        self._max_concurrency = max_concurrency
        self._request_timeout = request_timeout
        self._clock = clock
        self._id_generator = id_generator
        self._chat_turns: dict[str, _TurnLock] = {}

        policy = priority_policy or KeywordPriorityPolicy(catalog.priority_lexicon)
        self._criterion_eval = CriterionEvaluator(evaluator, self._prompts, self._parser)
        self._comprehensive_eval = ComprehensiveEvaluator(evaluator, self._prompts, self._parser)
        self._category_eval = CategoryEvaluator(
            evaluator, self._prompts, self._parser, policy,
        )
        self._recommender = RecommendationGenerator(evaluator, self._prompts, self._parser)

    # ==================================================================
    # Session lifecycle
    # ==================================================================

    async def create_session(
        self,
        session_class: str,
        *,
        record: Any,
        session_id: str | None = None,
        context: dict[str, Any] | None = None,
        criteria: TrialCriteria | None = None,
        trial_info: dict[str, Any] | None = None,
        categories: list[str] | None = None,
    ) -> SessionCreated:
        """Validate input against the session-class policy and store it.

        Raises:
            ValidationError: unknown class, missing/oversized record,
                unknown checklist category
            ComplianceError: evaluator not allowed for this class
            DuplicateSessionIdError: ``session_id`` already live
        """
        policy = self._policy(session_class)
        record = self._validate_record(policy, record)
        self._check_compliance(policy)
        if categories:
            self._select_categories(categories)

        payload = SessionPayload(
            context={**policy.default_context, **(context or {})},
            criteria=criteria,
            trial_info=trial_info,
            categories=categories or None,
        )
        session = await self._store.create(
            session_class=policy.name,
            record=record,
            ttl=policy.ttl,
            payload=payload,
            session_id=session_id,
            id_prefix=policy.id_prefix,
        )
        logger.info(
            "[%s] stage=%s class=%s record_chars=%d",
            session.session_id, Stage.CREATED.value, policy.name, len(record),
        )
        return SessionCreated(
            session_id=session.session_id,
            session_class=session.session_class,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )

    async def get_session(self, session_id: str) -> SessionInfo:
        """Return the public view of a live session.

        Raises:
            SessionNotFoundError / SessionExpiredError
        """
        session = await self._store.get(session_id)
        remaining = session.expires_at - self._clock()
        return SessionInfo(
            session_id=session.session_id,
            session_class=session.session_class,
            record=session.record,
            context=session.payload.context,
            criteria=session.payload.criteria,
            trial_info=session.payload.trial_info,
            transcript=session.transcript,
            result=session.result,
            created_at=session.created_at,
            expires_at=session.expires_at,
            time_remaining=max(0, int(remaining.total_seconds() * 1000)),
        )

    async def get_transcript(self, session_id: str) -> list[Message]:
        """Return the session's messages in submission order."""
        session = await self._store.get(session_id)
        return session.transcript

    async def delete_session(self, session_id: str) -> None:
        """Remove a session.

        Raises:
            SessionNotFoundError: if nothing was stored under ``session_id``
        """
        if not await self._store.delete(session_id):
            raise SessionNotFoundError(session_id)

    async def sweep_expired(self) -> int:
        """Purge every expired session; return how many were removed."""
        return await self._store.sweep_expired()

    async def info(self) -> dict[str, Any]:
        """Describe the configured session classes, checklist, and load."""
        return {
            "model": self._evaluator.model_name,
            "session_classes": [
                policy.model_dump(exclude={"default_context"})
                for policy in self._catalog.policies.values()
            ],
            "checklist_categories": [
                {"name": c.name, "items": len(c.items)} for c in self._catalog.categories
            ],
            "active_sessions": await self._store.count(),
        }

    # ==================================================================
    # Eligibility
    # ==================================================================

    async def run_eligibility(
        self,
        session_id: str,
        *,
        mode: str = "basic",
        criteria: TrialCriteria | None = None,
        trial_info: dict[str, Any] | None = None,
    ) -> EligibilityResult:
        """Evaluate the session's record against trial criteria.

        ``criteria`` and ``trial_info`` override what was stored at
        creation.  The result is written back into the session.
        """
        self._check_mode(mode)
        session = await self._store.get(session_id)
        items = self._require_criteria(criteria or session.payload.criteria)

        result = await self._evaluate_eligibility(
            session_id,
            session.record,
            items,
            mode=mode,
            trial_info=trial_info or session.payload.trial_info,
        )
        await self._store.store_result(session_id, result.model_dump(mode="json"))
        self._enter(session_id, Stage.COMPLETED, f"verdict={result.overall_eligibility}")
        return result

    async def match_once(
        self,
        record: Any,
        criteria: TrialCriteria,
        *,
        mode: str = "basic",
        trial_info: dict[str, Any] | None = None,
    ) -> MatchResult:
        """Evaluate a record against criteria without creating a session."""
        self._check_mode(mode)
        policy = self._policy(MATCH_SESSION_CLASS)
        record = self._validate_record(policy, record)
        self._check_compliance(policy)
        items = self._require_criteria(criteria)

        patient_id = self._id_generator(MATCH_ID_PREFIX)
        self._enter(patient_id, Stage.CREATED, "stateless match")
        result = await self._evaluate_eligibility(
            patient_id, record, items, mode=mode, trial_info=trial_info,
        )
        self._enter(patient_id, Stage.COMPLETED, f"verdict={result.overall_eligibility}")
        return MatchResult(patient_id=patient_id, **dict(result))

    async def _evaluate_eligibility(
        self,
        label: str,
        record: str,
        items: list[EvaluationItem],
        *,
        mode: str,
        trial_info: dict[str, Any] | None,
    ) -> EligibilityResult:
        self._enter(label, Stage.EVALUATING, f"{len(items)} criteria, mode={mode}")
        assessment: OverallAssessment | None = None
        recommendations: ClinicalRecommendations | None = None
        degraded = False

        try:
            if mode == "comprehensive":
                results, assessment, recommendations = await self._within_deadline(
                    self._comprehensive(record, items, trial_info),
                )
            else:
                results = await self._within_deadline(self._basic(record, items))
        except asyncio.TimeoutError:
            logger.warning(
                "[%s] evaluation timed out after %ss, degrading to %s",
                label, self._request_timeout, VERDICT_NEEDS_REVIEW,
            )
            results = [
                CriterionEvaluator.fallback(item, "Evaluation timed out", 0.0)
                for item in items
            ]
            degraded = True

        self._enter(label, Stage.AGGREGATING)
        verdict = VERDICT_NEEDS_REVIEW if degraded else determine_overall_eligibility(results)
        if mode == "comprehensive":
            if assessment is None:
                assessment, recommendations = summarize_basic(results, verdict)
            else:
                # The evaluator's own verdict is advisory only
                assessment = assessment.model_copy(update={"eligibility": verdict})

        return EligibilityResult(
            mode=mode,
            overall_eligibility=verdict,
            results=results,
            assessment=assessment,
            recommendations=recommendations,
            degraded=degraded,
            completed_at=self._clock(),
        )

    async def _basic(
        self, record: str, items: Sequence[EvaluationItem],
    ) -> list[CriterionResult]:
        return await self._bounded([
            partial(self._criterion_eval.evaluate, record, item) for item in items
        ])

    async def _comprehensive(
        self,
        record: str,
        items: Sequence[EvaluationItem],
        trial_info: dict[str, Any] | None,
    ) -> tuple[
        list[CriterionResult], OverallAssessment | None, ClinicalRecommendations | None
    ]:
        batch = await self._comprehensive_eval.evaluate(record, items, trial_info=trial_info)
        if batch is None:
            return await self._basic(record, items), None, None
        return batch.results, batch.assessment, batch.recommendations

    # ==================================================================
    # Checklist
    # ==================================================================

    async def run_checklist(
        self,
        session_id: str,
        *,
        categories: list[str] | None = None,
        include_recommendations: bool = True,
    ) -> ChecklistResult:
        """Assess the session's record against the checklist.

        ``categories`` overrides the selection stored at creation; with
        neither, every catalog category is assessed.
        """
        session = await self._store.get(session_id)
        selected = self._select_categories(categories or session.payload.categories)
        context = session.payload.context

        groups = [(category.name, category_items(category)) for category in selected]
        self._enter(session_id, Stage.EVALUATING, f"{len(groups)} categories")
        degraded = False
        try:
            category_results: list[CategoryResult] = await self._within_deadline(
                self._bounded([
                    partial(
                        self._category_eval.evaluate,
                        session.record, name, items, patient_context=context,
                    )
                    for name, items in groups
                ]),
            )
        except asyncio.TimeoutError:
            logger.warning(
                "[%s] checklist timed out after %ss, marking all tests missing",
                session_id, self._request_timeout,
            )
            category_results = [CategoryEvaluator.fallback(name, items) for name, items in groups]
            degraded = True

        self._enter(session_id, Stage.AGGREGATING)
        overall, missing_tests = aggregate_checklist(category_results)

        recommendations: list[Recommendation] = []
        if include_recommendations:
            self._enter(session_id, Stage.RECOMMENDING)
            if degraded:
                recommendations = [FALLBACK_RECOMMENDATION]
            else:
                recommendations = await self._recommender.generate(
                    overall, missing_tests, patient_context=context,
                )

        result = ChecklistResult(
            overall=overall,
            categories={c.category_name: c for c in category_results},
            missing_tests=missing_tests,
            recommendations=recommendations,
            degraded=degraded,
            completed_at=self._clock(),
        )
        await self._store.store_result(session_id, result.model_dump(mode="json"))
        self._enter(
            session_id, Stage.COMPLETED, f"completion={overall.completion_percentage}%",
        )
        return result

    # ==================================================================
    # Chat
    # ==================================================================

    async def chat(
        self,
        session_id: str,
        message: str,
        *,
        is_first_message: bool = False,
    ) -> ChatReply:
        """Send one user turn and record the assistant's reply.

        The new user message, any first-turn context message, and the
        reply are appended together once the evaluator has answered, so a
        failed call leaves the transcript untouched.

        Turns on one session run one at a time in submission order, so each
        prompt sees every earlier turn.

        Raises:
            ValidationError: empty message, or a class without a persona
            EvaluatorError: the evaluator failed; there is no conservative
                default for a free-text reply
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")

        async with self._serialized(session_id):
            return await self._take_turn(session_id, message, is_first_message)

    async def _take_turn(
        self, session_id: str, message: str, is_first_message: bool,
    ) -> ChatReply:
        session = await self._store.get(session_id)
        policy = self._policy(session.session_class)
        if policy.persona is None:
            raise ValidationError(f"Session class {policy.name} does not support chat")
        context = session.payload.context

        new_messages: list[Message] = []
        user_text = message
        if is_first_message and policy.persona == "cbt_coach":
            new_messages.append(Message(
                role="system",
                content=json.dumps(self._coaching_context(session.session_id, context), indent=2),
            ))
            if context.get("urgent_context"):
                user_text = URGENT_PREFIX + message
        new_messages.append(Message(role="user", content=user_text))

        system_prompt = self._prompts.render_system_prompt(
            policy.persona, session.record, context,
        )
        prompt = self._prompts.render_chat(
            system_prompt, [*session.transcript, *new_messages],
        )
        reply = await self._evaluator.reply(prompt)
        new_messages.append(Message(role="assistant", content=reply))

        updated = await self._store.update(
            session_id, lambda s: s.transcript.extend(new_messages),
        )
        logger.info(
            "[%s] chat turn recorded, %d messages", session_id, len(updated.transcript),
        )
        return ChatReply(
            session_id=session_id,
            session_class=session.session_class,
            response=reply,
            message_count=len(updated.transcript),
            timestamp=self._clock(),
        )

    @asynccontextmanager
    async def _serialized(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's chat lock; the entry goes once nobody uses it."""
        turn = self._chat_turns.get(session_id)
        if turn is None:
            turn = self._chat_turns[session_id] = _TurnLock()
        turn.users += 1
        try:
            async with turn.lock:
                yield
        finally:
            turn.users -= 1
            if turn.users == 0:
                del self._chat_turns[session_id]

    @staticmethod
    def _coaching_context(session_id: str, context: dict[str, Any]) -> dict[str, Any]:
        """Structured profile handed to the coach on the first turn."""
        return {
            "user_id": session_id,
            "session_type": context.get("session_type", "long_term"),
            "session_history": {
                "total_sessions_completed": context.get("session_count", 0),
                "last_session_date": context.get("last_session_date"),
                "summary_of_last_session": (
                    context.get("last_session_summary") or "No previous session"
                ),
            },
            "user_profile": {
                "identified_high_risk_situations": context.get("high_risk_situations", []),
                "reported_strengths": context.get("reported_strengths", []),
                "significant_other_involvement": context.get(
                    "significant_other_involvement", False,
                ),
            },
            "completed_objectives": context.get("completed_objectives", []),
            "current_objectives": context.get("current_objectives"),
        }

    # ==================================================================
    # Internal helpers
    # ==================================================================

    async def _bounded(self, calls: Sequence[Callable[[], Awaitable[T]]]) -> list[T]:
        """Run ``calls`` concurrently, at most ``max_concurrency`` at a time.

        Results come back in the order of ``calls``.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(call: Callable[[], Awaitable[T]]) -> T:
            async with semaphore:
                return await call()

        return list(await asyncio.gather(*(run(call) for call in calls)))

    async def _within_deadline(self, coro: Awaitable[T]) -> T:
        if self._request_timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self._request_timeout)

    def _enter(self, label: str, stage: Stage, detail: str = "") -> None:
        if detail:
            logger.info("[%s] stage=%s %s", label, stage.value, detail)
        else:
            logger.info("[%s] stage=%s", label, stage.value)

    def _policy(self, session_class: str) -> SessionClassPolicy:
        try:
            return self._catalog.get_policy(session_class)
        except KeyError:
            raise ValidationError(f"Unknown session class: {session_class}") from None

    @staticmethod
    def _validate_record(policy: SessionClassPolicy, record: Any) -> str:
        if record is None and not policy.record_required:
            return ""
        if not isinstance(record, str):
            raise ValidationError("Medical record is required")
        if not record.strip():
            if policy.record_required:
                raise ValidationError("Medical record is required")
            return ""
        if len(record) > policy.max_record_size:
            raise ValidationError(
                f"Medical record too large: {len(record)} characters exceeds the "
                f"{policy.max_record_size} limit for {policy.name}"
            )
        return record

    def _check_compliance(self, policy: SessionClassPolicy) -> None:
        if not policy.require_compliant_evaluator:
            return
        model = self._evaluator.model_name
        if not model.startswith(COMPLIANT_MODEL_PREFIX):
            raise ComplianceError(
                f"Session class {policy.name} requires a compliant evaluator; "
                f"model {model!r} lacks the {COMPLIANT_MODEL_PREFIX!r} prefix"
            )

    @staticmethod
    def _check_mode(mode: str) -> None:
        if mode not in EVALUATION_MODES:
            raise ValidationError(
                f"Unknown evaluation mode {mode!r}; expected one of {EVALUATION_MODES}"
            )

    @staticmethod
    def _require_criteria(criteria: TrialCriteria | None) -> list[EvaluationItem]:
        items = criteria_items(criteria) if criteria is not None else []
        if not items:
            raise ValidationError("At least one inclusion or exclusion criterion is required")
        return items

    def _select_categories(self, names: list[str] | None) -> list[ChecklistCategory]:
        try:
            return self._catalog.get_categories(names)
        except KeyError as exc:
            raise ValidationError(str(exc.args[0])) from None
