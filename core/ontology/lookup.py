# InsightGen - Ontology Lookup
# =============================
"""
Synonym and abbreviation expansion from the clinical ontology.

Resolution order for a term:
1. Preferred term (case-insensitive equality)
2. Synonym membership (case-insensitive)
3. Abbreviation membership (input upper-cased)

Abbreviations with several meanings (PI = Pressure Injury or Principal
Investigator) always resolve to the first entry ordered by category; the
question context is not consulted.

Results are cached per normalized term and options for five minutes.
"""

import logging
import time
from collections import deque
from typing import Callable, List, Optional, Tuple

from core.engine.cache import BoundedTTLCache
from core.engine.fingerprint import normalize_text

from .models import EntryMatch, Formality, MatchType, OntologyEntry, SynonymLookupOptions
from .store import OntologyStore

logger = logging.getLogger(__name__)

ONTOLOGY_CACHE_TTL = 5 * 60
ONTOLOGY_CACHE_SIZE = 500


class OntologyLookup:
    """
    Maps a user term to its preferred term and filtered synonyms.

    Example:
        lookup = OntologyLookup(store)
        lookup.lookup_synonyms("PI", "C1")
        # ['Pressure Injury', 'pressure injury', 'pressure ulcer', 'bedsore']
    """

    def __init__(self, store: OntologyStore,
                 cache: Optional[BoundedTTLCache] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the lookup service.

        Args:
            store: Ontology store to query on cache miss
            cache: Cache to use; a 5-minute, 500-entry cache is created if omitted
            clock: Time source for the default cache
        """
        self.store = store
        self.cache = cache or BoundedTTLCache(
            max_size=ONTOLOGY_CACHE_SIZE, ttl_seconds=ONTOLOGY_CACHE_TTL,
            clock=clock, name="Ontology cache"
        )

    def lookup_synonyms(self, term: str, customer_id: str,
                        options: Optional[SynonymLookupOptions] = None) -> List[str]:
        """
        Look up synonyms for a term.

        Args:
            term: User term, e.g. "foot ulcer", "DFU", "PI"
            customer_id: Customer scope of the lookup
            options: Lookup options (defaults when omitted)

        Returns:
            [preferred_term, *synonyms] deduplicated and truncated to
            options.max_results; empty when nothing matches or the store fails
        """
        options = options or SynonymLookupOptions()
        normalized = normalize_text(term)
        if not normalized:
            return []

        key = (normalize_text(customer_id), normalized) + options.cache_key_parts()
        cached = self._cache_get(key)
        if cached is not None:
            logger.debug(f"Ontology cache HIT for '{normalized}' ({len(cached)} synonyms)")
            return cached[:max(options.max_results, 0)]

        try:
            synonyms = self._expand(normalized, options)
        except Exception as e:
            logger.warning(f"Ontology lookup failed for '{normalized}', treating as no match: {e}")
            return []

        self._cache_set(key, synonyms)
        logger.debug(f"Ontology lookup '{normalized}' -> {len(synonyms)} synonym(s)")
        return synonyms[:max(options.max_results, 0)]

    def lookup_entry(self, term: str, include_deprecated: bool = False) -> Optional[EntryMatch]:
        """
        Find the ontology entry a term resolves to, with its match type.

        Raises whatever the store raises; callers that must fail open should
        use lookup_synonyms.
        """
        normalized = normalize_text(term)
        if not normalized:
            return None

        entry = self.store.find_by_preferred_term(normalized, include_deprecated)
        if entry is not None:
            return EntryMatch(entry=entry, match_type=MatchType.PREFERRED_TERM, query=normalized)

        entry = self.store.find_by_synonym(normalized, include_deprecated)
        if entry is not None:
            return EntryMatch(entry=entry, match_type=MatchType.SYNONYM, query=normalized)

        entry = self.store.find_by_abbreviation(normalized.upper(), include_deprecated)
        if entry is not None:
            logger.info(f"Expanded abbreviation '{normalized.upper()}' -> '{entry.preferred_term}'")
            return EntryMatch(entry=entry, match_type=MatchType.ABBREVIATION, query=normalized)

        return None

    def _expand(self, normalized: str, options: SynonymLookupOptions) -> List[str]:
        match = self.lookup_entry(normalized, options.include_deprecated)
        if match is None:
            return []

        collected: List[str] = []
        seen_entries = {match.entry.preferred_term.lower()}
        queue: deque = deque([(match.entry, 1)])

        while queue:
            entry, level = queue.popleft()
            collected.extend(self._entry_terms(entry, options))
            if level >= options.max_levels:
                continue
            for related in entry.related_terms:
                if related.lower() in seen_entries:
                    continue
                seen_entries.add(related.lower())
                related_entry = self.store.find_by_preferred_term(related, options.include_deprecated)
                if related_entry is not None:
                    queue.append((related_entry, level + 1))

        return _dedupe(collected)

    @staticmethod
    def _entry_terms(entry: OntologyEntry, options: SynonymLookupOptions) -> List[str]:
        """[preferred_term, region matches..., other synonyms...] honoring formality."""
        region = (options.preferred_region or "").upper()
        regional: List[str] = []
        others: List[str] = []

        for syn in entry.synonyms:
            formality = Formality(syn.formality)
            if formality == Formality.INFORMAL and not options.include_informal:
                continue
            if formality == Formality.DEPRECATED and not options.include_deprecated:
                continue
            if region and (syn.region or "").upper() == region:
                regional.append(syn.value)
            else:
                others.append(syn.value)

        return [entry.preferred_term] + regional + others

    def _cache_get(self, key: Tuple) -> Optional[List[str]]:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning(f"Ontology cache read failed: {e}")
            return None

    def _cache_set(self, key: Tuple, synonyms: List[str]) -> None:
        try:
            self.cache.set(key, list(synonyms))
        except Exception as e:
            logger.warning(f"Ontology cache write failed: {e}")

    def stats(self):
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()


def _dedupe(terms: List[str]) -> List[str]:
    """Drop exact duplicates, keeping first-occurrence order."""
    seen = set()
    unique = []
    for term in terms:
        value = term.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        unique.append(value)
    return unique
