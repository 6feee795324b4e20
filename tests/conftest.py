# Pytest configuration for InsightGen tests
"""
Shared fixtures: a controllable clock, a small clinical ontology, SQLite-backed
template catalog and audit store in tmp_path, and recording sinks.
"""

import pytest
import sys
from pathlib import Path
from typing import List

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables from .env file
from dotenv import load_dotenv
env_path = project_root / '.env'
if env_path.exists():
    load_dotenv(env_path)

from core.audit import AuditService, AuditSink, MetricsSink
from core.engine.cache import SessionResultCache
from core.engine.executor import MockExecutor
from core.engine.generation import MockSemanticGenerator
from core.engine.orchestrator import OrchestratorConfig, QueryOrchestrator
from core.engine.terminology import TerminologyResolver
from core.ontology import (
    Abbreviation,
    Formality,
    InMemoryOntologyStore,
    OntologyEntry,
    OntologyLookup,
    Synonym,
)
from core.templates import (
    PlaceholderSemantic,
    PlaceholderSpec,
    QueryTemplate,
    TemplateCatalogService,
    TemplateDB,
    TemplateStatus,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMetricsSink(MetricsSink):
    def __init__(self):
        self.records = []

    def record(self, metrics):
        self.records.append(metrics)


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.batches: List[list] = []

    def log_batch(self, events):
        self.batches.append(list(events))
        return len(events)

    @property
    def events(self):
        return [e for batch in self.batches for e in batch]


class FailingSink(AuditSink, MetricsSink):
    """Sink whose every write raises."""

    def __init__(self):
        self.attempts = 0

    def log_batch(self, events):
        self.attempts += 1
        raise RuntimeError("audit store unavailable")

    def record(self, metrics):
        self.attempts += 1
        raise RuntimeError("metrics store unavailable")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pressure_injury_entry():
    """PI -> Pressure Injury with exactly three synonyms."""
    return OntologyEntry(
        preferred_term="Pressure Injury",
        category="diagnosis",
        synonyms=[
            Synonym("pressure injury"),
            Synonym("pressure ulcer"),
            Synonym("bedsore", formality=Formality.INFORMAL),
        ],
        abbreviations=[Abbreviation("PI", ["wound", "stage"], 0.9, "wound_care")],
    )


@pytest.fixture
def ontology_entries(pressure_injury_entry):
    return [
        pressure_injury_entry,
        OntologyEntry(
            preferred_term="Diabetic Foot Ulcer",
            category="diagnosis",
            synonyms=[Synonym("diabetic foot ulcer"), Synonym("diabetic ulcer"),
                      Synonym("foot ulcer", formality=Formality.INFORMAL)],
            abbreviations=[Abbreviation("DFU")],
        ),
        OntologyEntry(
            preferred_term="Principal Investigator",
            category="study_role",
            synonyms=[Synonym("principal investigator")],
            abbreviations=[Abbreviation("PI")],
        ),
    ]


@pytest.fixture
def ontology_store(ontology_entries):
    return InMemoryOntologyStore(ontology_entries)


@pytest.fixture
def ontology_lookup(ontology_store, clock):
    return OntologyLookup(ontology_store, clock=clock)


@pytest.fixture
def terminology(ontology_lookup):
    return TerminologyResolver(ontology_lookup)


@pytest.fixture
def template_db(tmp_path):
    return TemplateDB(str(tmp_path / "templates.db"))


@pytest.fixture
def catalog(template_db):
    return TemplateCatalogService(template_db)


@pytest.fixture
def wound_count_template():
    """Approved aggregate template with one clinical-term placeholder."""
    return QueryTemplate(
        name="Wound Count by Type",
        description="Count wound assessments for a wound type",
        intent="aggregation_by_category",
        status=TemplateStatus.APPROVED,
        keywords=["wound", "count", "type"],
        tags=["wounds"],
        sql_pattern="SELECT COUNT(*) AS count FROM wound_assessments WHERE wound_type IN ({wound_type})",
        placeholders=[
            PlaceholderSpec(name="wound_type", semantic=PlaceholderSemantic.CLINICAL_TERM,
                            column="wound_type", prompt="Which wound type?"),
        ],
    )


@pytest.fixture
def audit_service(tmp_path):
    return AuditService(str(tmp_path / "audit.db"))


@pytest.fixture
def metrics_sink():
    return RecordingMetricsSink()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def make_orchestrator(catalog, terminology, metrics_sink, clock):
    """Factory building an orchestrator around injectable collaborators."""
    created = []

    def _make(generator=None, executor=None, cache=None, templates=catalog, sink=metrics_sink,
              config=None):
        orchestrator = QueryOrchestrator(
            cache=cache if cache is not None else SessionResultCache(clock=clock),
            templates=templates,
            terminology=terminology,
            generator=generator or MockSemanticGenerator(),
            executor=executor or MockExecutor(),
            metrics_sink=sink,
            config=config or OrchestratorConfig(),
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.shutdown()


@pytest.fixture
def failing_sink():
    return FailingSink()
