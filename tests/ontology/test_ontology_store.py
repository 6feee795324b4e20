# Tests for ontology stores
"""
Test suite for DuckDBOntologyStore and the built-in ontology.
"""

import duckdb
import pytest

from core.ontology import (
    DEFAULT_ONTOLOGY,
    DuckDBOntologyStore,
    Formality,
    OntologyEntry,
    OntologyLookup,
    Synonym,
    SynonymLookupOptions,
)


@pytest.fixture
def duckdb_store():
    store = DuckDBOntologyStore(connection=duckdb.connect(":memory:"))
    store.load_entries(DEFAULT_ONTOLOGY)
    yield store
    store.close()


class TestDuckDBOntologyStore:
    """DuckDB-backed lookups."""

    def test_load_counts(self, duckdb_store):
        assert duckdb_store.count() == len(DEFAULT_ONTOLOGY)

    def test_reload_replaces(self, duckdb_store):
        duckdb_store.load_entries(DEFAULT_ONTOLOGY[:2])
        assert duckdb_store.count() == len(DEFAULT_ONTOLOGY)
        entry = duckdb_store.find_by_preferred_term("pressure injury")
        assert len(entry.synonyms) == len(DEFAULT_ONTOLOGY[0].synonyms)

    def test_preferred_term_round_trip(self, duckdb_store):
        entry = duckdb_store.find_by_preferred_term("PRESSURE INJURY")
        assert entry.preferred_term == "Pressure Injury"
        assert entry.category == "diagnosis"
        assert [s.value for s in entry.synonyms] == [
            "pressure injury", "pressure ulcer", "bedsore", "decubitus ulcer", "pressure sore"
        ]
        assert entry.synonyms[2].formality == Formality.INFORMAL
        assert entry.synonyms[4].region == "UK"
        assert entry.abbreviations[0].context_keywords[0] == "wound"
        assert entry.related_terms == ["Deep Tissue Injury"]

    def test_synonym(self, duckdb_store):
        assert duckdb_store.find_by_synonym("Pressure Sore").preferred_term == "Pressure Injury"
        assert duckdb_store.find_by_synonym("pressure") is None

    def test_abbreviation_first_by_category(self, duckdb_store):
        assert duckdb_store.find_by_abbreviation("pi").preferred_term == "Pressure Injury"
        assert duckdb_store.find_by_abbreviation("NPWT").preferred_term == "Negative Pressure Wound Therapy"
        assert duckdb_store.find_by_abbreviation("XYZ") is None

    def test_deprecated_entries(self, duckdb_store):
        duckdb_store.load_entries([
            OntologyEntry(preferred_term="Decubitus", category="diagnosis",
                          synonyms=[Synonym("decubitus")], is_deprecated=True)
        ])
        assert duckdb_store.find_by_synonym("decubitus") is None
        assert duckdb_store.find_by_synonym("decubitus", include_deprecated=True).is_deprecated

    def test_file_backed(self, tmp_path):
        path = tmp_path / "ontology.duckdb"
        store = DuckDBOntologyStore(path)
        store.load_entries(DEFAULT_ONTOLOGY)
        store.close()

        reopened = DuckDBOntologyStore(path)
        try:
            assert reopened.count() == len(DEFAULT_ONTOLOGY)
        finally:
            reopened.close()


class TestDefaultOntology:
    """Lookups over the built-in ontology."""

    def test_pi_expansion(self, duckdb_store):
        lookup = OntologyLookup(duckdb_store)
        assert lookup.lookup_synonyms("PI", "C1") == [
            "Pressure Injury", "pressure injury", "pressure ulcer", "bedsore", "pressure sore"
        ]

    def test_regional_spelling(self, duckdb_store):
        lookup = OntologyLookup(duckdb_store)
        options = SynonymLookupOptions(preferred_region="US")
        assert lookup.lookup_synonyms("oedema", "C1", options)[:2] == ["Oedema", "edema"]

    def test_abbreviations_unique_per_category(self):
        seen = set()
        for entry in DEFAULT_ONTOLOGY:
            for abbr in entry.abbreviations:
                key = (abbr.value, entry.category)
                assert key not in seen
                seen.add(key)
