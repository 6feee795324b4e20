# InsightGen - Ontology Models
# =============================
"""
Clinical ontology data structures.

An OntologyEntry is one clinical concept: its preferred term, the synonyms
clinicians and patients use for it, and the abbreviations that expand to it.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class Formality(str, Enum):
    """Register of a synonym."""
    CLINICAL = "clinical"
    INFORMAL = "informal"
    DEPRECATED = "deprecated"


class MatchType(str, Enum):
    """How a lookup term matched an ontology entry."""
    PREFERRED_TERM = "preferred_term"
    SYNONYM = "synonym"
    ABBREVIATION = "abbreviation"


@dataclass
class Synonym:
    """Alternative name for a concept."""
    value: str
    region: Optional[str] = None  # e.g. "US", "UK", "AU"
    specialty: Optional[str] = None
    formality: Formality = Formality.CLINICAL
    confidence: float = 1.0


@dataclass
class Abbreviation:
    """Abbreviation that expands to a concept (stored upper-cased)."""
    value: str
    context_keywords: List[str] = field(default_factory=list)
    frequency: float = 0.0
    domain: Optional[str] = None

    def __post_init__(self):
        self.value = self.value.strip().upper()


@dataclass
class OntologyEntry:
    """A clinical concept with its preferred term, synonyms and abbreviations."""
    preferred_term: str
    category: str
    synonyms: List[Synonym] = field(default_factory=list)
    abbreviations: List[Abbreviation] = field(default_factory=list)
    related_terms: List[str] = field(default_factory=list)
    is_deprecated: bool = False
    id: Optional[str] = None

    def has_synonym(self, term: str) -> bool:
        """Case-insensitive exact membership in the synonym list."""
        needle = term.strip().lower()
        return any(s.value.strip().lower() == needle for s in self.synonyms)

    def has_abbreviation(self, abbreviation: str) -> bool:
        needle = abbreviation.strip().upper()
        return any(a.value == needle for a in self.abbreviations)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SynonymLookupOptions:
    """Options for OntologyLookup.lookup_synonyms."""
    max_levels: int = 1
    preferred_region: Optional[str] = None
    include_deprecated: bool = False
    include_informal: bool = True
    max_results: int = 20

    def cache_key_parts(self) -> tuple:
        """Everything that changes the assembled list; max_results is applied after the cache."""
        return (
            self.max_levels,
            (self.preferred_region or "").upper(),
            self.include_deprecated,
            self.include_informal,
        )


@dataclass
class EntryMatch:
    """An ontology entry together with how it was found."""
    entry: OntologyEntry
    match_type: MatchType
    query: str
