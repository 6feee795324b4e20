# InsightGen - Ontology Store
# ============================
"""
Read-only access to the clinical ontology.

Three lookups are supported, each returning at most one entry:
- by preferred term (case-insensitive equality)
- by synonym (case-insensitive membership in the synonym list)
- by abbreviation (upper-cased membership; first entry ordered by category)

DuckDBOntologyStore keeps the ontology in three tables. InMemoryOntologyStore
holds entries in a list and is used for tests and small embedded deployments.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Iterable, List, Optional, Union

import duckdb

from .models import Abbreviation, Formality, OntologyEntry, Synonym

logger = logging.getLogger(__name__)


class OntologyStore(ABC):
    """Query interface the lookup service depends on."""

    @abstractmethod
    def find_by_preferred_term(self, term: str, include_deprecated: bool = False) -> Optional[OntologyEntry]:
        """Return the entry whose preferred term equals term (case-insensitive)."""

    @abstractmethod
    def find_by_synonym(self, term: str, include_deprecated: bool = False) -> Optional[OntologyEntry]:
        """Return the first entry listing term among its synonyms."""

    @abstractmethod
    def find_by_abbreviation(self, abbreviation: str, include_deprecated: bool = False) -> Optional[OntologyEntry]:
        """Return the first entry, ordered by category, listing the abbreviation."""


class InMemoryOntologyStore(OntologyStore):
    """List-backed ontology store."""

    def __init__(self, entries: Optional[Iterable[OntologyEntry]] = None):
        self._entries: List[OntologyEntry] = list(entries or [])

    def add(self, entry: OntologyEntry) -> None:
        self._entries.append(entry)

    def _visible(self, include_deprecated: bool) -> List[OntologyEntry]:
        return [e for e in self._entries if include_deprecated or not e.is_deprecated]

    def find_by_preferred_term(self, term, include_deprecated=False):
        needle = term.strip().lower()
        for entry in self._visible(include_deprecated):
            if entry.preferred_term.strip().lower() == needle:
                return entry
        return None

    def find_by_synonym(self, term, include_deprecated=False):
        matches = [e for e in self._visible(include_deprecated) if e.has_synonym(term)]
        if not matches:
            return None
        return sorted(matches, key=lambda e: (e.category, e.preferred_term))[0]

    def find_by_abbreviation(self, abbreviation, include_deprecated=False):
        matches = [e for e in self._visible(include_deprecated) if e.has_abbreviation(abbreviation)]
        if not matches:
            return None
        return sorted(matches, key=lambda e: (e.category, e.preferred_term))[0]


class DuckDBOntologyStore(OntologyStore):
    """
    DuckDB-backed ontology store.

    Tables:
        clinical_ontology (id, preferred_term, category, related_terms, is_deprecated)
        ontology_synonyms (entry_id, position, value, region, specialty, formality, confidence)
        ontology_abbreviations (entry_id, position, value, context_keywords, frequency, domain)

    Pass a connection to share an existing (e.g. in-memory) database; otherwise
    a connection to db_path is opened per store.
    """

    def __init__(self, db_path: Union[str, Path, None] = None,
                 connection: Optional[duckdb.DuckDBPyConnection] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to a DuckDB file (":memory:" when omitted)
            connection: Existing connection to use instead of db_path
        """
        if connection is not None:
            self._conn = connection
        else:
            self._conn = duckdb.connect(str(db_path) if db_path else ":memory:")
        self._lock = Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS clinical_ontology (
                    id VARCHAR PRIMARY KEY,
                    preferred_term VARCHAR NOT NULL,
                    category VARCHAR NOT NULL,
                    related_terms VARCHAR,
                    is_deprecated BOOLEAN DEFAULT FALSE
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS ontology_synonyms (
                    entry_id VARCHAR NOT NULL,
                    position INTEGER NOT NULL,
                    value VARCHAR NOT NULL,
                    region VARCHAR,
                    specialty VARCHAR,
                    formality VARCHAR DEFAULT 'clinical',
                    confidence DOUBLE DEFAULT 1.0
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS ontology_abbreviations (
                    entry_id VARCHAR NOT NULL,
                    position INTEGER NOT NULL,
                    value VARCHAR NOT NULL,
                    context_keywords VARCHAR,
                    frequency DOUBLE DEFAULT 0.0,
                    domain VARCHAR
                )
            """)

    # =========================================================================
    # LOADING
    # =========================================================================

    def load_entries(self, entries: Iterable[OntologyEntry]) -> int:
        """
        Insert or replace ontology entries.

        Returns:
            Number of entries written
        """
        count = 0
        with self._lock:
            cursor = self._conn.cursor()
            try:
                for entry in entries:
                    entry_id = entry.id or entry.preferred_term.strip().lower()
                    cursor.execute("DELETE FROM ontology_synonyms WHERE entry_id = ?", [entry_id])
                    cursor.execute("DELETE FROM ontology_abbreviations WHERE entry_id = ?", [entry_id])
                    cursor.execute("DELETE FROM clinical_ontology WHERE id = ?", [entry_id])
                    cursor.execute(
                        "INSERT INTO clinical_ontology VALUES (?, ?, ?, ?, ?)",
                        [entry_id, entry.preferred_term, entry.category,
                         json.dumps(entry.related_terms), entry.is_deprecated]
                    )
                    for pos, syn in enumerate(entry.synonyms):
                        cursor.execute(
                            "INSERT INTO ontology_synonyms VALUES (?, ?, ?, ?, ?, ?, ?)",
                            [entry_id, pos, syn.value, syn.region, syn.specialty,
                             Formality(syn.formality).value, syn.confidence]
                        )
                    for pos, abbr in enumerate(entry.abbreviations):
                        cursor.execute(
                            "INSERT INTO ontology_abbreviations VALUES (?, ?, ?, ?, ?, ?)",
                            [entry_id, pos, abbr.value, json.dumps(abbr.context_keywords),
                             abbr.frequency, abbr.domain]
                        )
                    count += 1
            finally:
                cursor.close()
        logger.info(f"Loaded {count} ontology entries")
        return count

    # =========================================================================
    # QUERIES
    # =========================================================================

    def find_by_preferred_term(self, term, include_deprecated=False):
        sql = """
            SELECT id FROM clinical_ontology
            WHERE LOWER(preferred_term) = ?
        """ + ("" if include_deprecated else " AND is_deprecated = FALSE") + " LIMIT 1"
        return self._first_entry(sql, [term.strip().lower()])

    def find_by_synonym(self, term, include_deprecated=False):
        sql = """
            SELECT o.id FROM clinical_ontology o
            JOIN ontology_synonyms s ON s.entry_id = o.id
            WHERE LOWER(s.value) = ?
        """ + ("" if include_deprecated else " AND o.is_deprecated = FALSE") + \
            " ORDER BY o.category, o.preferred_term LIMIT 1"
        return self._first_entry(sql, [term.strip().lower()])

    def find_by_abbreviation(self, abbreviation, include_deprecated=False):
        sql = """
            SELECT o.id FROM clinical_ontology o
            JOIN ontology_abbreviations a ON a.entry_id = o.id
            WHERE a.value = ?
        """ + ("" if include_deprecated else " AND o.is_deprecated = FALSE") + \
            " ORDER BY o.category, o.preferred_term LIMIT 1"
        return self._first_entry(sql, [abbreviation.strip().upper()])

    def _first_entry(self, sql: str, params: list) -> Optional[OntologyEntry]:
        with self._lock:
            cursor = self._conn.cursor()
            try:
                row = cursor.execute(sql, params).fetchone()
                if row is None:
                    return None
                return self._load_entry(cursor, row[0])
            finally:
                cursor.close()

    def _load_entry(self, cursor, entry_id: str) -> OntologyEntry:
        row = cursor.execute(
            "SELECT id, preferred_term, category, related_terms, is_deprecated "
            "FROM clinical_ontology WHERE id = ?", [entry_id]
        ).fetchone()
        synonyms = [
            Synonym(value=r[0], region=r[1], specialty=r[2],
                    formality=Formality(r[3] or Formality.CLINICAL.value), confidence=r[4])
            for r in cursor.execute(
                "SELECT value, region, specialty, formality, confidence "
                "FROM ontology_synonyms WHERE entry_id = ? ORDER BY position", [entry_id]
            ).fetchall()
        ]
        abbreviations = [
            Abbreviation(value=r[0], context_keywords=json.loads(r[1]) if r[1] else [],
                         frequency=r[2], domain=r[3])
            for r in cursor.execute(
                "SELECT value, context_keywords, frequency, domain "
                "FROM ontology_abbreviations WHERE entry_id = ? ORDER BY position", [entry_id]
            ).fetchall()
        ]
        return OntologyEntry(
            id=row[0],
            preferred_term=row[1],
            category=row[2],
            related_terms=json.loads(row[3]) if row[3] else [],
            is_deprecated=bool(row[4]),
            synonyms=synonyms,
            abbreviations=abbreviations,
        )

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM clinical_ontology").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
