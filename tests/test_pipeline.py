"""EvaluationPipeline tests with scripted evaluators and a fake clock.

Test scenarios:
  - Session creation: validation, size ceilings, compliance, default context
  - Session fetch: time remaining, expired then not-found, delete
  - Eligibility (basic): eligible and exclusion-triggered ineligible records
  - Eligibility (comprehensive): one call, verdict recomputed, basic fallback
  - Degradation: evaluator down → needs-review; deadline → degraded result
  - Concurrency: in-flight calls bounded, results in input order
  - Checklist: 2 found / 3 missing / 1 partial → 33% and 3 missing tests
  - Stateless match: ``pt-`` id, nothing stored
  - Chat: transcript growth, CBT first-turn context, failures leave no trace
  - Chat: concurrent turns on one session recorded in submission order
  - Coaching sessions start without a record
"""

import asyncio
import json

import pytest

from helpers.fakes import (
    FailingEvaluator,
    ScriptedEvaluator,
    category_line,
    category_reply,
    criterion_line,
    criterion_reply,
)
from recordeval.errors import (
    ComplianceError,
    EvaluatorUnavailable,
    SessionExpiredError,
    SessionNotFoundError,
    ValidationError,
)
from recordeval.models.session import TrialCriteria

RECORD = "Patient age 45, on metformin"


def keyed(replies: dict[str, str], default: str = "needs-more-info"):
    """Responder answering single-criterion prompts by criterion text."""

    def _respond(prompt: str) -> str:
        return criterion_reply(replies.get(criterion_line(prompt), default))

    return _respond


# =====================================================================
# Session lifecycle
# =====================================================================


class TestCreateSession:
    """Upfront validation against the session-class policy."""

    @pytest.mark.asyncio
    async def test_create_and_fetch(self, make_pipeline, clock):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session(
            "outlive-checklist", record=RECORD, context={"age": 45},
        )

        assert created.session_id == "outlive-session-1"
        assert created.session_class == "outlive-checklist"
        assert (created.expires_at - created.created_at).total_seconds() == 86400

        clock.advance(hours=1)
        info = await pipeline.get_session(created.session_id)
        assert info.record == RECORD
        assert info.context == {"age": 45}
        assert info.time_remaining == 23 * 3600 * 1000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("record", [None, "", "   ", 42])
    async def test_missing_record(self, make_pipeline, record):
        pipeline = make_pipeline(ScriptedEvaluator())
        with pytest.raises(ValidationError, match="required"):
            await pipeline.create_session("trial-matcher", record=record)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("record", [None, "", "   "])
    async def test_coaching_record_optional(self, make_pipeline, record):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("cbt-urgent", record=record)
        assert (await pipeline.get_session(created.session_id)).record == ""

    @pytest.mark.asyncio
    async def test_coaching_record_must_be_text(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        with pytest.raises(ValidationError, match="required"):
            await pipeline.create_session("cbt-urgent", record=42)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_class, limit", [
        ("records-chat", 50_000),
        ("trial-matcher", 100_000),
        ("undiagnosed-diseases", 500_000),
    ])
    async def test_size_ceiling(self, make_pipeline, session_class, limit):
        pipeline = make_pipeline(ScriptedEvaluator())
        await pipeline.create_session(session_class, record="x" * limit)
        with pytest.raises(ValidationError, match="too large"):
            await pipeline.create_session(session_class, record="x" * (limit + 1))

    @pytest.mark.asyncio
    async def test_unknown_session_class(self, make_pipeline):
        with pytest.raises(ValidationError):
            await make_pipeline(ScriptedEvaluator()).create_session("nope", record=RECORD)

    @pytest.mark.asyncio
    async def test_compliance_required(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator(model="gpt-4.1"))
        with pytest.raises(ComplianceError):
            await pipeline.create_session("trial-matcher", record=RECORD)
        # Coaching sessions do not require a compliant evaluator
        created = await pipeline.create_session("cbt-coach", record=RECORD)
        assert created.session_id.startswith("cbt-coach-")

    @pytest.mark.asyncio
    async def test_default_context_merged(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session(
            "cbt-urgent", record=RECORD, context={"session_count": 3},
        )
        info = await pipeline.get_session(created.session_id)
        assert info.context["session_type"] == "urgent"
        assert info.context["session_count"] == 3
        assert "urgent_context" in info.context

    @pytest.mark.asyncio
    async def test_unknown_category_rejected(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        with pytest.raises(ValidationError, match="Unknown checklist categories"):
            await pipeline.create_session(
                "outlive-checklist", record=RECORD, categories=["Dental Health"],
            )


class TestSessionLifecycle:
    """Fetch, expiry, delete, sweep, info."""

    @pytest.mark.asyncio
    async def test_expired_then_not_found(self, make_pipeline, clock):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("cbt-coach", record=RECORD)
        clock.advance(hours=1, seconds=1)

        with pytest.raises(SessionExpiredError):
            await pipeline.get_session(created.session_id)
        with pytest.raises(SessionNotFoundError):
            await pipeline.get_session(created.session_id)

    @pytest.mark.asyncio
    async def test_delete(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("records-chat", record=RECORD)
        await pipeline.delete_session(created.session_id)
        with pytest.raises(SessionNotFoundError):
            await pipeline.delete_session(created.session_id)

    @pytest.mark.asyncio
    async def test_sweep_and_info(self, make_pipeline, clock):
        pipeline = make_pipeline(ScriptedEvaluator())
        await pipeline.create_session("cbt-coach", record=RECORD)
        await pipeline.create_session("records-chat", record=RECORD)

        info = await pipeline.info()
        assert info["active_sessions"] == 2
        assert info["model"] == "hipaa:test-model"
        assert {p["name"] for p in info["session_classes"]} >= {"trial-matcher", "cbt-urgent"}
        assert len(info["checklist_categories"]) == 5

        clock.advance(hours=2)
        assert await pipeline.sweep_expired() == 1


# =====================================================================
# Eligibility
# =====================================================================


class TestEligibilityBasic:
    """Per-criterion evaluation and verdict aggregation."""

    @pytest.mark.asyncio
    async def test_eligible_record(self, make_pipeline):
        evaluator = ScriptedEvaluator(keyed({"Age 18-65": "matched", "Pregnancy": "non-matched"}))
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session(
            "trial-matcher", record=RECORD,
            criteria=TrialCriteria(inclusion_criteria=["Age 18-65"], exclusion_criteria=["Pregnancy"]),
        )

        result = await pipeline.run_eligibility(created.session_id)

        assert [(r.criterion, r.type, r.status) for r in result.results] == [
            ("Age 18-65", "inclusion", "matched"),
            ("Pregnancy", "exclusion", "non-matched"),
        ]
        assert result.overall_eligibility == "eligible"
        assert result.mode == "basic"
        assert result.assessment is None

        stored = await pipeline.get_session(created.session_id)
        assert stored.result["overall_eligibility"] == "eligible", "Result is written back"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("inclusion_status", ["matched", "non-matched", "needs-more-info"])
    async def test_exclusion_triggered(self, make_pipeline, inclusion_status):
        evaluator = ScriptedEvaluator(keyed({
            "Age 18-65": inclusion_status, "Age > 40": "matched",
        }))
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("trial-matcher", record=RECORD)

        result = await pipeline.run_eligibility(
            created.session_id,
            criteria=TrialCriteria(inclusion_criteria=["Age 18-65"], exclusion_criteria=["Age > 40"]),
        )
        assert result.overall_eligibility == "ineligible"

    @pytest.mark.asyncio
    async def test_requires_criteria(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("trial-matcher", record=RECORD)
        with pytest.raises(ValidationError, match="criterion"):
            await pipeline.run_eligibility(created.session_id)
        with pytest.raises(ValidationError):
            await pipeline.run_eligibility(
                created.session_id, criteria=TrialCriteria(inclusion_criteria=["  "]),
            )

    @pytest.mark.asyncio
    async def test_unknown_mode(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("trial-matcher", record=RECORD)
        with pytest.raises(ValidationError, match="mode"):
            await pipeline.run_eligibility(created.session_id, mode="turbo")

    @pytest.mark.asyncio
    async def test_evaluator_down_degrades(self, make_pipeline):
        pipeline = make_pipeline(FailingEvaluator())
        created = await pipeline.create_session(
            "trial-matcher", record=RECORD,
            criteria=TrialCriteria(inclusion_criteria=["Age 18-65"], exclusion_criteria=["Pregnancy"]),
        )

        result = await pipeline.run_eligibility(created.session_id)

        assert result.overall_eligibility == "needs-review"
        assert all(r.status == "needs-more-info" and r.confidence == 0.0 for r in result.results)
        assert result.degraded is False, "Per-item fallbacks are not a request-level degradation"

    @pytest.mark.asyncio
    async def test_expired_session_aborts(self, make_pipeline, clock):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("trial-matcher", record=RECORD)
        clock.advance(days=2)
        with pytest.raises(SessionExpiredError):
            await pipeline.run_eligibility(
                created.session_id, criteria=TrialCriteria(inclusion_criteria=["A"]),
            )


def _comprehensive(entries, eligibility="eligible"):
    return json.dumps({
        "overallAssessment": {"eligibility": eligibility, "confidence": 0.9,
                              "clinicalSummary": "s", "safetyAssessment": "a"},
        "criteriaAnalysis": entries,
        "clinicalRecommendations": {"nextSteps": "n"},
    })


class TestEligibilityComprehensive:
    """Batch evaluation with fallback to per-criterion calls."""

    CRITERIA = TrialCriteria(inclusion_criteria=["Age 18-65"], exclusion_criteria=["Pregnancy"])

    @pytest.mark.asyncio
    async def test_single_call_and_recomputed_verdict(self, make_pipeline):
        reply = _comprehensive([
            {"criterion": "Age 18-65", "status": "matched", "confidence": 0.9},
            {"criterion": "Pregnancy", "status": "matched", "confidence": 0.8},
        ], eligibility="eligible")
        evaluator = ScriptedEvaluator(lambda p: reply)
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("trial-matcher", record=RECORD, criteria=self.CRITERIA)

        result = await pipeline.run_eligibility(created.session_id, mode="comprehensive")

        assert len(evaluator.prompts) == 1
        assert result.mode == "comprehensive"
        assert result.overall_eligibility == "ineligible", "Evaluator's verdict is not trusted"
        assert result.assessment.eligibility == "ineligible"
        assert result.recommendations.next_steps == "n"

    @pytest.mark.asyncio
    async def test_fallback_to_basic(self, make_pipeline):
        def respond(prompt):
            if "criteriaAnalysis" in prompt:
                return "Sorry, I cannot produce JSON today."
            return keyed({"Age 18-65": "matched", "Pregnancy": "non-matched"})(prompt)

        evaluator = ScriptedEvaluator(respond)
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("trial-matcher", record=RECORD, criteria=self.CRITERIA)

        result = await pipeline.run_eligibility(created.session_id, mode="comprehensive")

        assert len(evaluator.prompts) == 3, "One batch call plus one per criterion"
        assert result.overall_eligibility == "eligible"
        assert result.assessment.clinical_summary == "Basic criterion-by-criterion evaluation performed"
        assert result.assessment.confidence == 0.9
        assert result.recommendations.next_steps == "Proceed with detailed screening"


class TestConcurrencyAndDeadline:
    """Bounded fan-out and request-level timeout."""

    @pytest.mark.asyncio
    async def test_in_flight_bounded_and_ordered(self, make_pipeline):
        names = [f"Criterion {i}" for i in range(8)]
        evaluator = ScriptedEvaluator(keyed({n: "matched" for n in names}), delay=0.01)
        pipeline = make_pipeline(evaluator, max_concurrency=2)

        result = await pipeline.match_once(RECORD, TrialCriteria(inclusion_criteria=names))

        assert evaluator.max_in_flight <= 2
        assert evaluator.max_in_flight == 2, "Calls should actually overlap"
        assert [r.criterion for r in result.results] == names
        assert result.overall_eligibility == "eligible"

    @pytest.mark.asyncio
    async def test_deadline_degrades(self, make_pipeline):
        evaluator = ScriptedEvaluator(keyed({}), delay=1.0)
        pipeline = make_pipeline(evaluator, request_timeout=0.05)

        result = await pipeline.match_once(
            RECORD, TrialCriteria(inclusion_criteria=["A", "B"], exclusion_criteria=["C"]),
        )

        assert result.degraded is True
        assert result.overall_eligibility == "needs-review"
        assert [r.status for r in result.results] == ["needs-more-info"] * 3

    def test_invalid_concurrency(self, store, catalog):
        from recordeval.pipeline import EvaluationPipeline

        with pytest.raises(ValueError):
            EvaluationPipeline(store, catalog, ScriptedEvaluator(), max_concurrency=0)


# =====================================================================
# Checklist
# =====================================================================


class TestChecklist:
    """Per-category evaluation, aggregation, and recommendations."""

    @pytest.mark.asyncio
    async def test_metabolic_scenario(self, make_pipeline, catalog):
        tests = [t.test for t in catalog.get_categories(["Metabolic Health"])[0].items]
        statuses = dict(zip(tests, ["found", "found", "missing", "missing", "missing", "partial"]))
        recs = json.dumps({"recommendations": [{"priority": "high", "title": "Order labs"}]})

        def respond(prompt):
            if "ASSESSMENT RESULTS SUMMARY" in prompt:
                return recs
            return category_reply(category_line(prompt), statuses)

        pipeline = make_pipeline(ScriptedEvaluator(respond))
        created = await pipeline.create_session(
            "outlive-checklist", record=RECORD, categories=["Metabolic Health"],
        )

        result = await pipeline.run_checklist(created.session_id)

        assert result.overall.total_items == 6
        assert result.overall.completion_percentage == 33
        assert len(result.missing_tests) == 3
        assert list(result.categories) == ["Metabolic Health"]
        assert [r.title for r in result.recommendations] == ["Order labs"]

        stored = await pipeline.get_session(created.session_id)
        assert stored.result["type"] == "checklist"
        assert stored.result["overall"]["completion_percentage"] == 33

    @pytest.mark.asyncio
    async def test_evaluator_down(self, make_pipeline, catalog):
        pipeline = make_pipeline(FailingEvaluator())
        created = await pipeline.create_session("outlive-checklist", record=RECORD)

        result = await pipeline.run_checklist(created.session_id)

        total = sum(len(c.items) for c in catalog.categories)
        assert result.overall.total_items == total
        assert result.overall.items_missing == total
        assert result.overall.completion_percentage == 0
        assert list(result.categories) == [c.name for c in catalog.categories]
        assert all(m.priority == "medium" for m in result.missing_tests)
        assert result.recommendations[0].title == "Consult with Healthcare Provider"

    @pytest.mark.asyncio
    async def test_without_recommendations(self, make_pipeline):
        evaluator = ScriptedEvaluator(lambda p: category_reply(category_line(p), {}))
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("outlive-checklist", record=RECORD)

        result = await pipeline.run_checklist(
            created.session_id,
            categories=["Cardiovascular Health", "Metabolic Health"],
            include_recommendations=False,
        )

        assert result.recommendations == []
        assert len(evaluator.prompts) == 2
        assert list(result.categories) == ["Metabolic Health", "Cardiovascular Health"], (
            "Categories follow catalog order"
        )

    @pytest.mark.asyncio
    async def test_deadline_marks_all_missing(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator(delay=1.0), request_timeout=0.05)
        created = await pipeline.create_session("outlive-checklist", record=RECORD)

        result = await pipeline.run_checklist(created.session_id, categories=["Metabolic Health"])

        assert result.degraded is True
        assert result.overall.items_missing == 6
        assert result.recommendations[0].title == "Consult with Healthcare Provider"


# =====================================================================
# Stateless match
# =====================================================================


class TestMatchOnce:
    """One-shot matching without a session."""

    @pytest.mark.asyncio
    async def test_match(self, make_pipeline, store):
        evaluator = ScriptedEvaluator(keyed({"Age 18-65": "matched", "Pregnancy": "non-matched"}))
        pipeline = make_pipeline(evaluator)

        result = await pipeline.match_once(
            RECORD,
            TrialCriteria(inclusion_criteria=["Age 18-65"], exclusion_criteria=["Pregnancy"]),
        )

        assert result.patient_id == "pt-1"
        assert result.overall_eligibility == "eligible"
        assert await store.count() == 0, "Nothing is stored"

    @pytest.mark.asyncio
    async def test_match_validates_record(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        criteria = TrialCriteria(inclusion_criteria=["A"])
        with pytest.raises(ValidationError):
            await pipeline.match_once("", criteria)
        with pytest.raises(ValidationError):
            await pipeline.match_once("x" * 100_001, criteria)


# =====================================================================
# Chat
# =====================================================================


class TestChat:
    """Conversational turns over a record."""

    @pytest.mark.asyncio
    async def test_records_chat(self, make_pipeline):
        evaluator = ScriptedEvaluator(lambda p: "Your last HbA1c was 6.1%.")
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session(
            "records-chat", record=RECORD, context={"patient_name": "Alex"},
        )

        reply = await pipeline.chat(created.session_id, "What is my HbA1c?")
        assert reply.response == "Your last HbA1c was 6.1%."
        assert reply.message_count == 2

        await pipeline.chat(created.session_id, "And before that?")
        transcript = await pipeline.get_transcript(created.session_id)
        assert [m.role for m in transcript] == ["user", "assistant", "user", "assistant"]

        prompt = evaluator.prompts[-1]
        assert "Alex's complete health records" in prompt
        assert "USER: What is my HbA1c?\n\nASSISTANT: Your last HbA1c was 6.1%." in prompt
        assert prompt.rstrip().endswith("USER: And before that?\n\nASSISTANT:")

    @pytest.mark.asyncio
    async def test_cbt_urgent_first_message(self, make_pipeline):
        evaluator = ScriptedEvaluator(lambda p: "Let's breathe together.", model="gpt-4.1")
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("cbt-urgent", record=RECORD)

        reply = await pipeline.chat(created.session_id, "I want a drink.", is_first_message=True)

        transcript = await pipeline.get_transcript(created.session_id)
        assert reply.message_count == 3
        assert [m.role for m in transcript] == ["system", "user", "assistant"]
        context = json.loads(transcript[0].content)
        assert context["session_type"] == "urgent"
        assert context["user_id"] == created.session_id
        assert context["current_objectives"]["session_name"] == "Urgent Craving Management"
        assert transcript[1].content == (
            "I'm experiencing a craving and need immediate help. I want a drink."
        )

    @pytest.mark.asyncio
    async def test_cbt_long_term_no_prefix(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator(lambda p: "Welcome."))
        created = await pipeline.create_session("cbt-coach", record=RECORD)
        await pipeline.chat(created.session_id, "Hello", is_first_message=True)
        transcript = await pipeline.get_transcript(created.session_id)
        assert transcript[1].content == "Hello"

    @pytest.mark.asyncio
    async def test_chat_not_supported(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("trial-matcher", record=RECORD)
        with pytest.raises(ValidationError, match="does not support chat"):
            await pipeline.chat(created.session_id, "hi")

    @pytest.mark.asyncio
    async def test_empty_message(self, make_pipeline):
        pipeline = make_pipeline(ScriptedEvaluator())
        created = await pipeline.create_session("records-chat", record=RECORD)
        with pytest.raises(ValidationError):
            await pipeline.chat(created.session_id, "  ")

    @pytest.mark.asyncio
    async def test_evaluator_failure_leaves_transcript(self, make_pipeline):
        pipeline = make_pipeline(FailingEvaluator())
        created = await pipeline.create_session("records-chat", record=RECORD)
        with pytest.raises(EvaluatorUnavailable):
            await pipeline.chat(created.session_id, "hi")
        assert await pipeline.get_transcript(created.session_id) == []

    @pytest.mark.asyncio
    async def test_concurrent_turns_keep_submission_order(self, make_pipeline):
        evaluator = ScriptedEvaluator(lambda p: "noted", delay=0.05)
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("records-chat", record=RECORD)

        first = asyncio.create_task(pipeline.chat(created.session_id, "first"))
        await asyncio.sleep(0)
        second = asyncio.create_task(pipeline.chat(created.session_id, "second"))
        replies = await asyncio.gather(first, second)

        transcript = await pipeline.get_transcript(created.session_id)
        assert [m.content for m in transcript if m.role == "user"] == ["first", "second"]
        assert [r.message_count for r in replies] == [2, 4]
        assert "USER: first" in evaluator.prompts[1], "Second turn sees the first"
        assert evaluator.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_turns_on_different_sessions_overlap(self, make_pipeline):
        evaluator = ScriptedEvaluator(lambda p: "noted", delay=0.05)
        pipeline = make_pipeline(evaluator)
        a = await pipeline.create_session("records-chat", record=RECORD)
        b = await pipeline.create_session("records-chat", record=RECORD)

        await asyncio.gather(
            pipeline.chat(a.session_id, "hi"), pipeline.chat(b.session_id, "hi"),
        )
        assert evaluator.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_coaching_without_record(self, make_pipeline):
        evaluator = ScriptedEvaluator(lambda p: "Welcome.")
        pipeline = make_pipeline(evaluator)
        created = await pipeline.create_session("cbt-coach", record=None)

        assert (await pipeline.get_session(created.session_id)).record == ""
        await pipeline.chat(created.session_id, "Hello", is_first_message=True)
        assert "No medical records provided" in evaluator.prompts[0]
