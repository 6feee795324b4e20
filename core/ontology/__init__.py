# InsightGen Ontology Package
"""
Clinical Ontology
=================
Preferred terms, synonyms and abbreviations used to expand user terminology
into the values stored in customer data.
"""

from .models import (
    Formality,
    MatchType,
    Synonym,
    Abbreviation,
    OntologyEntry,
    SynonymLookupOptions,
    EntryMatch,
)
from .store import OntologyStore, InMemoryOntologyStore, DuckDBOntologyStore
from .lookup import OntologyLookup, ONTOLOGY_CACHE_TTL, ONTOLOGY_CACHE_SIZE
from .seed import DEFAULT_ONTOLOGY

__all__ = [
    'Formality',
    'MatchType',
    'Synonym',
    'Abbreviation',
    'OntologyEntry',
    'SynonymLookupOptions',
    'EntryMatch',
    'OntologyStore',
    'InMemoryOntologyStore',
    'DuckDBOntologyStore',
    'OntologyLookup',
    'ONTOLOGY_CACHE_TTL',
    'ONTOLOGY_CACHE_SIZE',
    'DEFAULT_ONTOLOGY',
]
