"""HTTP API tests against the FastAPI app with a scripted evaluator.

Test scenarios:
  - Session routes: create/fetch/transcript/delete, 400/404/409/410 mapping
  - Evaluation routes: eligibility, checklist, stateless match
  - Chat route: reply recorded, evaluator failure → 502 with a safe message
  - Reference routes: /info, session classes, checklist, /health
  - Admin guard: disabled, missing key, wrong key, valid key
"""

import pytest
from fastapi.testclient import TestClient

from helpers.fakes import FailingEvaluator, ScriptedEvaluator, criterion_line, criterion_reply
from recordeval.session_store import InMemorySessionStore
from recordeval_server.app import create_app
from recordeval_server.config import ServerSettings

API = "/api/v1"
RECORD = "Patient age 45, on metformin"
ADMIN_KEY = "test-admin-key"


def _respond(prompt: str) -> str:
    if "CRITERION TO EVALUATE:" in prompt:
        status = {"Age 18-65": "matched"}.get(criterion_line(prompt), "non-matched")
        return criterion_reply(status)
    return "Happy to help."


def _client(evaluator=None, *, clock=None, admin_api_key=ADMIN_KEY):
    settings = ServerSettings(admin_api_key=admin_api_key)
    store = InMemorySessionStore(clock=clock) if clock is not None else None
    app = create_app(settings, evaluator=evaluator or ScriptedEvaluator(_respond), store=store)
    return TestClient(app)


@pytest.fixture
def client():
    with _client() as c:
        yield c


def _create(client, **body):
    body.setdefault("record", RECORD)
    resp = client.post(f"{API}/sessions", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["session_id"]


# =====================================================================
# Sessions
# =====================================================================


class TestSessionRoutes:
    """Create, fetch, transcript, delete, and error mapping."""

    def test_create_and_fetch(self, client):
        session_id = _create(client, session_class="records-chat", context={"patient_name": "Alex"})
        assert session_id.startswith("chat-session-")

        data = client.get(f"{API}/sessions/{session_id}").json()
        assert data["record"] == RECORD
        assert data["context"] == {"patient_name": "Alex"}
        assert data["time_remaining"] > 0

        assert client.get(f"{API}/sessions/{session_id}/transcript").json() == []

    def test_missing_record_is_400(self, client):
        resp = client.post(f"{API}/sessions", json={"session_class": "trial-matcher"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Medical record is required"

    def test_coaching_without_record(self, client):
        resp = client.post(f"{API}/sessions", json={"session_class": "cbt-coach"})
        assert resp.status_code == 200
        assert resp.json()["session_id"].startswith("cbt-coach-")

    def test_oversized_record_is_400(self, client):
        resp = client.post(
            f"{API}/sessions", json={"session_class": "records-chat", "record": "x" * 50_001},
        )
        assert resp.status_code == 400
        assert "too large" in resp.json()["detail"]

    def test_unknown_class_is_400(self, client):
        resp = client.post(f"{API}/sessions", json={"session_class": "nope", "record": RECORD})
        assert resp.status_code == 400

    def test_duplicate_id_is_409(self, client):
        _create(client, session_id="fixed-id")
        resp = client.post(f"{API}/sessions", json={"record": RECORD, "session_id": "fixed-id"})
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Session already exists"

    def test_unknown_session_is_404(self, client):
        resp = client.get(f"{API}/sessions/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Session not found"
        assert "does-not-exist" not in resp.text

    def test_expired_is_410_then_404(self, clock):
        with _client(clock=clock) as client:
            session_id = _create(client, session_class="cbt-coach")
            clock.advance(hours=2)
            assert client.get(f"{API}/sessions/{session_id}").status_code == 410
            assert client.get(f"{API}/sessions/{session_id}").status_code == 404

    def test_delete(self, client):
        session_id = _create(client)
        resp = client.delete(f"{API}/sessions/{session_id}")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Session deleted successfully", "session_id": session_id}
        assert client.delete(f"{API}/sessions/{session_id}").status_code == 404


# =====================================================================
# Evaluations
# =====================================================================


class TestEvaluationRoutes:
    """Eligibility, checklist, and stateless match over HTTP."""

    CRITERIA = {"inclusion_criteria": ["Age 18-65"], "exclusion_criteria": ["Pregnancy"]}

    def test_eligibility(self, client):
        session_id = _create(client, criteria=self.CRITERIA)
        resp = client.post(f"{API}/sessions/{session_id}/eligibility")
        assert resp.status_code == 200
        data = resp.json()
        assert data["overall_eligibility"] == "eligible"
        assert [r["status"] for r in data["results"]] == ["matched", "non-matched"]

    def test_eligibility_without_criteria_is_400(self, client):
        session_id = _create(client)
        resp = client.post(f"{API}/sessions/{session_id}/eligibility", json={})
        assert resp.status_code == 400

    def test_eligibility_unknown_session_is_404(self, client):
        resp = client.post(f"{API}/sessions/missing/eligibility", json={"criteria": self.CRITERIA})
        assert resp.status_code == 404

    def test_checklist_with_evaluator_down(self):
        with _client(FailingEvaluator()) as client:
            session_id = _create(client, session_class="outlive-checklist")
            resp = client.post(
                f"{API}/sessions/{session_id}/checklist",
                json={"categories": ["Metabolic Health"]},
            )
        assert resp.status_code == 200
        data = resp.json()
        assert data["overall"]["completion_percentage"] == 0
        assert len(data["missing_tests"]) == 6
        assert data["recommendations"][0]["title"] == "Consult with Healthcare Provider"

    def test_match(self, client):
        resp = client.post(f"{API}/match", json={"record": RECORD, "criteria": self.CRITERIA})
        assert resp.status_code == 200
        data = resp.json()
        assert data["patient_id"].startswith("pt-")
        assert data["overall_eligibility"] == "eligible"
        assert client.get("/health").json()["sessions"] == 0

    def test_match_requires_record(self, client):
        resp = client.post(f"{API}/match", json={"criteria": self.CRITERIA})
        assert resp.status_code == 400

    def test_non_compliant_evaluator_is_400(self):
        with _client(ScriptedEvaluator(_respond, model="gpt-4.1")) as client:
            resp = client.post(f"{API}/sessions", json={"record": RECORD})
        assert resp.status_code == 400
        assert "compliant" in resp.json()["detail"]


# =====================================================================
# Chat
# =====================================================================


class TestChatRoute:
    """Chat turns and evaluator failures."""

    def test_chat(self, client):
        session_id = _create(client, session_class="records-chat")
        resp = client.post(f"{API}/sessions/{session_id}/chat", json={"message": "Hi"})
        assert resp.status_code == 200
        assert resp.json()["response"] == "Happy to help."
        assert resp.json()["message_count"] == 2

        transcript = client.get(f"{API}/sessions/{session_id}/transcript").json()
        assert [m["role"] for m in transcript] == ["user", "assistant"]

    def test_empty_message_is_400(self, client):
        session_id = _create(client, session_class="records-chat")
        resp = client.post(f"{API}/sessions/{session_id}/chat", json={})
        assert resp.status_code == 400

    def test_evaluator_failure_is_502(self):
        with _client(FailingEvaluator()) as client:
            session_id = _create(client, session_class="records-chat")
            resp = client.post(f"{API}/sessions/{session_id}/chat", json={"message": "Hi"})
            transcript = client.get(f"{API}/sessions/{session_id}/transcript").json()
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Evaluator unavailable"
        assert transcript == []


# =====================================================================
# Reference and health
# =====================================================================


class TestReferenceRoutes:
    """Read-only catalog endpoints."""

    def test_info(self, client):
        _create(client)
        data = client.get(f"{API}/info").json()
        assert data["name"] == "Record Evaluation API"
        assert data["model"] == "hipaa:test-model"
        assert data["active_sessions"] == 1

    def test_session_classes(self, client):
        classes = {c["name"]: c for c in client.get(f"{API}/reference/session-classes").json()}
        assert classes["records-chat"]["max_record_size"] == 50_000
        assert classes["records-chat"]["supports_chat"] is True
        assert classes["trial-matcher"]["supports_chat"] is False
        assert classes["cbt-coach"]["record_required"] is False
        assert classes["trial-matcher"]["record_required"] is True
        assert classes["cbt-coach"]["ttl_seconds"] == 3600

    def test_checklist(self, client):
        data = client.get(f"{API}/reference/checklist").json()
        assert data["categories"][0]["name"] == "Metabolic Health"
        assert data["priority_keywords"]["high"]

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "sessions": 0}


# =====================================================================
# Admin
# =====================================================================


class TestAdminRoutes:
    """X-Admin-Key guard on maintenance endpoints."""

    def test_disabled_without_configured_key(self):
        with _client(admin_api_key=None) as client:
            resp = client.post(f"{API}/admin/sweep", headers={"X-Admin-Key": "anything"})
        assert resp.status_code == 403

    def test_missing_key(self, client):
        assert client.post(f"{API}/admin/sweep").status_code == 401

    def test_wrong_key(self, client):
        resp = client.post(f"{API}/admin/sweep", headers={"X-Admin-Key": "wrong"})
        assert resp.status_code == 403

    def test_sweep(self, clock):
        with _client(clock=clock) as client:
            _create(client, session_class="cbt-coach")
            _create(client, session_class="records-chat")
            clock.advance(hours=2)
            resp = client.post(f"{API}/admin/sweep", headers={"X-Admin-Key": ADMIN_KEY})
        assert resp.status_code == 200
        assert resp.json() == {"removed": 1}
