# Tests for SQL execution and the semantic generator interface
"""
Test suite for DuckDBExecutor, MockExecutor and the generator wire format.
"""

import duckdb
import httpx
import pytest

from core.engine.executor import DuckDBExecutor, ExecutionError, MockExecutor
from core.engine.generation import (
    GeneratedClarifications,
    GeneratedSQL,
    GenerationError,
    GenerationFailure,
    GenerationRequest,
    MockSemanticGenerator,
    RemoteSemanticGenerator,
    outcome_from_dict,
)
from core.engine.terminology import FilterSource


@pytest.fixture
def clinical_connection():
    conn = duckdb.connect(":memory:")
    conn.execute("CREATE TABLE wound_assessments (patient_id INTEGER, wound_type VARCHAR)")
    conn.execute("""
        INSERT INTO wound_assessments VALUES
            (1, 'Pressure Injury'), (2, 'pressure ulcer'), (3, 'Diabetic Foot Ulcer')
    """)
    yield conn
    conn.close()


class TestDuckDBExecutor:
    """Execution against an in-memory DuckDB database."""

    def test_returns_rows(self, clinical_connection):
        executor = DuckDBExecutor(connection=clinical_connection)
        results = executor.execute(
            "SELECT COUNT(*) AS count FROM wound_assessments "
            "WHERE wound_type IN ('Pressure Injury', 'pressure ulcer')", "C1"
        )
        assert results.columns == ["count"]
        assert results.rows == [{"count": 2}]
        assert results.row_count == 1

    def test_missing_table(self, clinical_connection):
        executor = DuckDBExecutor(connection=clinical_connection)
        with pytest.raises(ExecutionError) as exc_info:
            executor.execute("SELECT * FROM no_such_table", "C1")
        assert exc_info.value.step == "execute_sql"
        assert "not found" in str(exc_info.value)

    def test_syntax_error(self, clinical_connection):
        executor = DuckDBExecutor(connection=clinical_connection)
        with pytest.raises(ExecutionError):
            executor.execute("SELEC wound_type FROM wound_assessments", "C1")

    def test_empty_sql(self, clinical_connection):
        with pytest.raises(ExecutionError):
            DuckDBExecutor(connection=clinical_connection).execute("  ", "C1")

    def test_file_database(self, tmp_path):
        path = str(tmp_path / "clinical.duckdb")
        conn = duckdb.connect(path)
        conn.execute("CREATE TABLE patients (id INTEGER)")
        conn.execute("INSERT INTO patients VALUES (1), (2)")
        conn.close()

        results = DuckDBExecutor(path).execute("SELECT id FROM patients ORDER BY id", "C1")
        assert [r["id"] for r in results.rows] == [1, 2]


class TestMockExecutor:
    def test_records_sql(self):
        executor = MockExecutor(rows=[{"n": 1}])
        results = executor.execute("SELECT 1 AS n", "C1")
        assert executor.executed == ["SELECT 1 AS n"]
        assert results.rows == [{"n": 1}]

    def test_conditional_error(self):
        executor = MockExecutor(error=lambda sql: ExecutionError("bad") if "bad" in sql else None)
        assert executor.execute("SELECT good", "C1").row_count == 1
        with pytest.raises(ExecutionError):
            executor.execute("SELECT bad", "C1")


class TestOutcomeParsing:
    """Generator response payloads."""

    def test_sql_payload(self):
        outcome = outcome_from_dict({
            "sql": "SELECT 1",
            "filters": [{"field": "wound_type", "value": "PI", "confidence": 0.8, "source": "semantic_mapping"}],
            "assumptions": ["Counted open wounds only"],
            "model_used": "m1",
        })
        assert isinstance(outcome, GeneratedSQL)
        assert outcome.filters[0].source == FilterSource.SEMANTIC_MAPPING
        assert outcome.filters[0].confidence == 0.8
        assert outcome.assumptions == ["Counted open wounds only"]

    def test_clarification_payload(self):
        outcome = outcome_from_dict({
            "clarifications": [{
                "placeholder_id": "clinic",
                "prompt_text": "Which clinic?",
                "freeform": {"allowed": True, "min_chars": 1},
            }],
            "confirmations": [{"placeholder_id": "window", "prompt_text": "Last 30 days?", "value": "30"}],
        })
        assert isinstance(outcome, GeneratedClarifications)
        assert outcome.clarifications[0].freeform.min_chars == 1
        assert outcome.clarifications[0].options == []
        assert outcome.confirmations[0].value == "30"

    def test_error_payload(self):
        outcome = outcome_from_dict({"error": "no schema", "step": "load_schema"})
        assert isinstance(outcome, GenerationFailure)
        assert outcome.step == "load_schema"

    def test_unrecognized_payload(self):
        with pytest.raises(GenerationError):
            outcome_from_dict({"message": "hello"})


class TestGenerators:
    def test_mock_builds_sql_from_terminology(self):
        generator = MockSemanticGenerator()
        outcome = generator.generate(GenerationRequest(
            question="patients with PI", customer_id="C1",
            terminology={"pi": ["Pressure Injury", "pressure ulcer"]},
        ))
        assert outcome.sql == ("SELECT COUNT(*) AS count FROM wound_assessments "
                               "WHERE wound_type IN ('Pressure Injury', 'pressure ulcer')")
        assert generator.call_count == 1

    def test_mock_scripted_last_repeats(self):
        generator = MockSemanticGenerator(responses=[GenerationFailure("first"), GeneratedSQL(sql="SELECT 2")])
        request = GenerationRequest(question="q", customer_id="C1")
        assert isinstance(generator.generate(request), GenerationFailure)
        assert generator.generate(request).sql == "SELECT 2"
        assert generator.generate(request).sql == "SELECT 2"

    def test_remote_generator(self, monkeypatch):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"sql": "SELECT 1", "model_used": "remote"})

        real_client = httpx.Client
        monkeypatch.setattr(httpx, "Client",
                            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs))

        generator = RemoteSemanticGenerator("http://generator.local/", api_key="secret")
        outcome = generator.generate(GenerationRequest(question="q", customer_id="C1"))

        assert isinstance(outcome, GeneratedSQL)
        assert outcome.model_used == "remote"
        assert seen["url"] == "http://generator.local/generate"
        assert seen["auth"] == "Bearer secret"

    def test_remote_http_error(self, monkeypatch):
        real_client = httpx.Client
        monkeypatch.setattr(httpx, "Client", lambda **kwargs: real_client(
            transport=httpx.MockTransport(lambda request: httpx.Response(503)), **kwargs))

        generator = RemoteSemanticGenerator("http://generator.local")
        with pytest.raises(GenerationError):
            generator.generate(GenerationRequest(question="q", customer_id="C1"))
