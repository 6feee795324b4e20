# InsightGen API Test Suite
# =========================
"""Tests for the InsightGen FastAPI service."""

import pytest
from fastapi.testclient import TestClient

from docker.api.main import create_app
from core.engine.generation import GeneratedClarifications, MockSemanticGenerator
from core.engine.models import ClarificationOption, ClarificationRequest, FreeformSpec


# ============================================
# Test Fixtures and Helpers
# ============================================

@pytest.fixture
def generator():
    return MockSemanticGenerator()


@pytest.fixture
def orchestrator(make_orchestrator, generator):
    return make_orchestrator(generator=generator)


@pytest.fixture
def client(orchestrator, audit_service):
    app = create_app(orchestrator=orchestrator, clarification_audit=audit_service)
    with TestClient(app) as test_client:
        yield test_client
    app.state.clarification_engine.shutdown()


def ask(client, question, customer_id="C1", **extra):
    return client.post("/api/v1/insights/ask", json={"question": question, "customer_id": customer_id, **extra})


# ============================================
# Root Endpoint Tests
# ============================================

class TestRootEndpoints:
    """Test root-level API endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "InsightGen API"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


# ============================================
# Insights Endpoint Tests
# ============================================

class TestInsightsEndpoints:
    """Question resolution over HTTP."""

    def test_direct_result(self, client):
        response = ask(client, "show me patients with PI")
        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "direct"
        assert data["terminology"]["pi"][0] == "Pressure Injury"
        assert data["results"]["rows"] == [{"count": 42}]
        assert [step["id"] for step in data["thinking"]][-1] == "execute_sql"

    def test_template_result(self, client, catalog, wound_count_template):
        catalog.save_template(wound_count_template)
        data = ask(client, "count of PI wounds by type").json()
        assert data["mode"] == "template"
        assert data["template"]["name"] == "Wound Count by Type"
        assert "'pressure ulcer'" in data["sql"]

    def test_funnel_then_answer(self, client, catalog, wound_count_template):
        catalog.save_template(wound_count_template)
        funnel = ask(client, "how many wounds by type").json()
        assert funnel["mode"] == "funnel"
        assert funnel["clarifications"][0]["placeholder_id"] == "wound_type"
        assert funnel["template_name"] == "Wound Count by Type"

        answered = ask(client, "how many wounds by type", clarifications={"wound_type": "DFU"}).json()
        assert answered["mode"] == "template"
        assert answered["placeholders"] == {"wound_type": "DFU"}

    def test_generator_clarifications(self, client, generator):
        generator.responses = [GeneratedClarifications(clarifications=[
            ClarificationRequest(placeholder_id="clinic", prompt_text="Which clinic?",
                                 freeform=FreeformSpec(allowed=True, min_chars=1)),
        ])]
        data = ask(client, "count of wounds at clinic").json()
        assert data["mode"] == "funnel"
        assert data["clarifications"][0]["freeform"]["min_chars"] == 1

    def test_error_result_is_200(self, client, generator):
        generator.responses = [RuntimeError("generator offline")]
        response = ask(client, "count of active wounds")
        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "error"
        assert data["failed_step"] == "generate_sql"

    @pytest.mark.parametrize("question,customer_id,field_name", [
        ("   ", "C1", "question"),
        ("count of active wounds", "", "customer_id"),
    ])
    def test_empty_input_rejected(self, client, generator, question, customer_id, field_name):
        response = ask(client, question, customer_id)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_REQUEST"
        assert body["error"]["details"]["field"] == field_name
        assert generator.call_count == 0

    def test_cache_hit_reported(self, client, generator):
        ask(client, "count of active wounds", model_id="m1")
        data = ask(client, "count of active wounds", model_id="m1").json()
        assert data["cache_hit"]["hit_count"] == 1
        assert generator.call_count == 1

    def test_cache_stats_and_invalidate(self, client):
        ask(client, "count of active wounds", customer_id="C1")
        ask(client, "count of active wounds", customer_id="C2")
        assert client.get("/api/v1/insights/cache/stats").json()["size"] == 2

        response = client.post("/api/v1/insights/cache/invalidate", json={"customer_id": "C1"})
        assert response.json()["removed"] == 1
        assert client.get("/api/v1/insights/cache/stats").json()["size"] == 1

    @pytest.mark.parametrize("answers", [{"wound_type": ""}, {"wound_type": "  "}, {"wound_type": None}])
    def test_empty_clarification_answer_rejected(self, client, generator, answers):
        response = ask(client, "how many wounds by type", clarifications=answers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "INVALID_REQUEST"
        assert body["error"]["details"]["field"] == "clarifications"
        assert generator.call_count == 0


# ============================================
# Clarification Session Tests
# ============================================

def submit(client, session_id, **body):
    return client.post(f"/api/v1/insights/sessions/{session_id}/submit", json=body)


class TestClarificationSessions:
    """Funnel answers validated by the clarification engine before re-entry."""

    @pytest.fixture
    def funnel(self, client, catalog, wound_count_template):
        catalog.save_template(wound_count_template)
        data = ask(client, "how many wounds by type").json()
        assert data["mode"] == "funnel"
        return data

    def test_funnel_opens_session(self, client, funnel):
        assert funnel["state"] == "clarification"
        session = client.get(f"/api/v1/insights/sessions/{funnel['session_id']}").json()
        assert session["missing_required"] == ["wound_type"]
        assert session["question"] == "how many wounds by type"

    def test_submit_resumes_resolution(self, client, funnel):
        response = submit(client, funnel["session_id"], answers={"wound_type": "DFU"})
        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "template"
        assert data["placeholders"] == {"wound_type": "DFU"}
        assert "'Diabetic Foot Ulcer'" in data["sql"]

        assert submit(client, funnel["session_id"], answers={"wound_type": "DFU"}).status_code == 404

    def test_incomplete_submission_keeps_session(self, client, funnel):
        response = submit(client, funnel["session_id"], answers={"wound_type": "   "})
        assert response.status_code == 400
        assert response.json()["detail"]["errors"] == {"wound_type": "An answer is required"}

        session = client.get(f"/api/v1/insights/sessions/{funnel['session_id']}").json()
        assert session["state"] == "clarification"

    def test_free_text_bounds_enforced(self, client, funnel):
        response = submit(client, funnel["session_id"], answers={"wound_type": "x" * 201})
        assert response.status_code == 400
        assert response.json()["detail"]["errors"] == {"wound_type": "Must be at most 200 characters"}

    def test_unknown_placeholder(self, client, funnel):
        response = submit(client, funnel["session_id"], answers={"clinic": "North"})
        assert response.status_code == 400

    def test_unknown_session(self, client):
        assert client.get("/api/v1/insights/sessions/missing").status_code == 404
        assert submit(client, "missing", answers={}).status_code == 404

    def test_session_audited(self, client, funnel):
        submit(client, funnel["session_id"], answers={"wound_type": "DFU"})
        client.app.state.clarification_engine.dispatcher.flush()

        stats = client.get("/api/v1/clarifications/statistics", params={"customer_id": "C1"}).json()
        assert stats["total"] == 1
        assert stats["custom"] == 1
        assert stats["abandoned"] == 0

    def test_option_selection(self, client, generator):
        """Offered options are chosen by id; free text is refused when not allowed."""
        generator.responses = [GeneratedClarifications(clarifications=[
            ClarificationRequest(placeholder_id="wound_type", prompt_text="Which wound type?",
                                 options=[ClarificationOption(id="pi", label="Pressure Injury", value="PI")],
                                 freeform=FreeformSpec(allowed=False)),
        ])]
        funnel = ask(client, "count of wounds").json()

        refused = submit(client, funnel["session_id"], answers={"wound_type": "venous ulcer"})
        assert refused.json()["detail"]["errors"] == {"wound_type": "Choose one of the offered options"}

        response = submit(client, funnel["session_id"], selections={"wound_type": "pi"})
        assert response.status_code == 200
        assert generator.calls[-1].clarifications == {"wound_type": "PI"}


# ============================================
# Ontology Endpoint Tests
# ============================================

class TestOntologyEndpoints:
    """Synonym lookup over HTTP."""

    def test_synonyms(self, client):
        response = client.get("/api/v1/ontology/synonyms", params={"term": "PI", "customer_id": "C1"})
        assert response.status_code == 200
        data = response.json()
        assert data["synonyms"] == ["Pressure Injury", "pressure injury", "pressure ulcer", "bedsore"]
        assert data["count"] == 4

    def test_synonym_options(self, client):
        response = client.get("/api/v1/ontology/synonyms", params={
            "term": "PI", "customer_id": "C1", "include_informal": "false", "max_results": 2,
        })
        assert response.json()["synonyms"] == ["Pressure Injury", "pressure injury"]

    def test_unknown_term(self, client):
        response = client.get("/api/v1/ontology/synonyms", params={"term": "xyz", "customer_id": "C1"})
        assert response.json()["synonyms"] == []

    def test_empty_term(self, client):
        response = client.get("/api/v1/ontology/synonyms", params={"term": " ", "customer_id": "C1"})
        assert response.status_code == 400

    def test_cache_stats(self, client):
        client.get("/api/v1/ontology/synonyms", params={"term": "PI", "customer_id": "C1"})
        assert client.get("/api/v1/ontology/cache/stats").json()["size"] >= 1


# ============================================
# Template Endpoint Tests
# ============================================

TEMPLATE_BODY = {
    "name": "Wound Count by Type",
    "intent": "aggregation_by_category",
    "keywords": ["wound", "count", "type"],
    "sql_pattern": "SELECT COUNT(*) FROM wound_assessments WHERE wound_type IN ({wound_type})",
    "placeholders": [{"name": "wound_type", "semantic": "clinical_term"}],
}


class TestTemplateEndpoints:
    """Template catalog over HTTP."""

    def test_create_is_draft(self, client):
        response = client.post("/api/v1/templates", json=TEMPLATE_BODY)
        assert response.status_code == 201
        data = response.json()
        assert data["template"]["status"] == "Draft"
        assert data["similar"] == []

    def test_create_reports_similar(self, client):
        client.post("/api/v1/templates", json=TEMPLATE_BODY)
        data = client.post("/api/v1/templates", json=TEMPLATE_BODY).json()
        assert len(data["similar"]) == 1
        assert data["similar"][0]["similarity"] == 1.0

    def test_create_validation(self, client):
        response = client.post("/api/v1/templates", json={"name": "", "intent": "x", "sql_pattern": "SELECT 1"})
        assert response.status_code == 422

    def test_status_workflow(self, client):
        created = client.post("/api/v1/templates", json=TEMPLATE_BODY).json()["template"]
        template_id = created["id"]

        response = client.patch(f"/api/v1/templates/{template_id}/status", json={"status": "Approved"})
        assert response.json()["status"] == "Approved"

        listed = client.get("/api/v1/templates", params={"status": "Approved"}).json()
        assert listed["total"] == 1
        assert client.get(f"/api/v1/templates/{template_id}").json()["name"] == "Wound Count by Type"

    def test_missing_template(self, client):
        assert client.get("/api/v1/templates/missing").status_code == 404
        response = client.patch("/api/v1/templates/missing/status", json={"status": "Approved"})
        assert response.status_code == 404

    def test_check_duplicates(self, client):
        created = client.post("/api/v1/templates", json=TEMPLATE_BODY).json()["template"]
        body = {k: TEMPLATE_BODY[k] for k in ("name", "intent", "keywords")}

        data = client.post("/api/v1/templates/check-duplicates", json=body).json()
        assert data["count"] == 1
        assert data["similar"][0]["template_id"] == created["id"]

        body["exclude_id"] = created["id"]
        assert client.post("/api/v1/templates/check-duplicates", json=body).json()["count"] == 0


# ============================================
# Clarification Endpoint Tests
# ============================================

class TestClarificationEndpoints:
    """Clarification audit over HTTP."""

    def test_audit_batch_and_statistics(self, client):
        event = {
            "session_id": "s1",
            "customer_id": "C1",
            "question": "how many wounds by type",
            "placeholder_id": "wound_type",
            "placeholder_semantic": "clinical_term",
            "response_type": "accepted",
            "accepted_value": "Pressure Injury",
            "time_spent_ms": 1200,
        }
        response = client.post("/api/v1/clarifications/audit", json={"events": [event]})
        assert response.json() == {"received": 1, "logged": 1}

        stats = client.get("/api/v1/clarifications/statistics", params={"customer_id": "C1"}).json()
        assert stats["total"] == 1
        assert stats["accepted"] == 1

    def test_invalid_response_type(self, client):
        response = client.post("/api/v1/clarifications/audit", json={"events": [{
            "session_id": "s1", "customer_id": "C1", "question": "q",
            "placeholder_id": "p", "response_type": "skipped",
        }]})
        assert response.status_code == 422
