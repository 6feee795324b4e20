# InsightGen - Terminology & Filter Resolver
# ===========================================
"""
Resolves user terminology into concrete filter values.

Responsibilities:
1. Expand clinical terms through the ontology ("PI" -> Pressure Injury and its
   synonyms) so SQL can match every spelling stored in customer data.
2. Merge filter assertions from several sources for the same field, choosing a
   winner by confidence and flagging near-ties for clarification.
3. Resolve template placeholders from clarification answers, the question text
   and declared defaults, and render them as SQL-safe literals.
4. Summarize mapping quality as FilterMetrics.

Ontology failures never block resolution: a term that cannot be expanded is
used as written.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from core.ontology.lookup import OntologyLookup
from core.ontology.models import SynonymLookupOptions
from core.templates.models import PlaceholderSemantic, PlaceholderSpec, QueryTemplate

from .fingerprint import normalize_text
from .models import ClarificationOption, ClarificationRequest, FilterMetrics, FreeformSpec

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7
CONFLICT_THRESHOLD = 0.1
HIGH_CONFIDENCE_THRESHOLD = 0.85

MAX_NGRAM = 3

# Words never looked up on their own
TERM_STOP_WORDS = {
    'a', 'an', 'the', 'of', 'for', 'in', 'on', 'at', 'by', 'to', 'with', 'and', 'or', 'not',
    'me', 'my', 'our', 'us', 'is', 'are', 'was', 'were', 'be', 'been', 'has', 'have', 'had',
    'show', 'list', 'get', 'find', 'give', 'what', 'which', 'who', 'how', 'many', 'much',
    'count', 'number', 'total', 'all', 'any', 'each', 'per', 'patients', 'patient',
    'last', 'past', 'over', 'during', 'than', 'more', 'less', 'top', 'by',
}

_WORD = re.compile(r"[a-z0-9][a-z0-9'\-]*")
_NUMBER = re.compile(r'\b(\d+(?:\.\d+)?)\b')
_TIME_WINDOW = re.compile(r'\b(\d+)\s*(day|week|month|year)s?\b')
_PLACEHOLDER = re.compile(r'\{(\w+)\}')

_DAYS_PER_UNIT = {'day': 1, 'week': 7, 'month': 30, 'year': 365}


class FilterSource(str, Enum):
    """Where a filter assertion came from, highest precedence first."""
    TEMPLATE_PARAM = "template_param"
    SEMANTIC_MAPPING = "semantic_mapping"
    PLACEHOLDER_EXTRACTION = "placeholder_extraction"
    RESIDUAL_EXTRACTION = "residual_extraction"


SOURCE_PRECEDENCE = {
    FilterSource.TEMPLATE_PARAM: 0,
    FilterSource.SEMANTIC_MAPPING: 1,
    FilterSource.PLACEHOLDER_EXTRACTION: 2,
    FilterSource.RESIDUAL_EXTRACTION: 3,
}


class ConflictResolution(str, Enum):
    HIGHEST_CONFIDENCE = "highest_confidence"
    REQUIRES_CLARIFICATION = "requires_clarification"
    AI_JUDGMENT = "ai_judgment"


@dataclass
class FilterMapping:
    """One source's claim about a filter value."""
    field: Optional[str]
    value: Any
    source: FilterSource = FilterSource.SEMANTIC_MAPPING
    confidence: float = 1.0
    original_text: str = ""
    operator: str = "="
    validation_error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class MergedFilter:
    """Result of merging every assertion for one field."""
    field: Optional[str]
    operator: str
    value: Any
    resolved: bool
    confidence: float
    original_text: str
    values: List[str] = field(default_factory=list)
    resolution: Optional[ConflictResolution] = None
    resolved_via: List[FilterSource] = field(default_factory=list)
    sources: List[FilterMapping] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    overridden: bool = False
    auto_corrected: bool = False
    validation_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'operator': self.operator,
            'value': self.value,
            'values': self.values,
            'resolved': self.resolved,
            'confidence': round(self.confidence, 3),
            'resolution': self.resolution.value if self.resolution else None,
            'overridden': self.overridden,
            'auto_corrected': self.auto_corrected,
            'warnings': self.warnings,
        }


@dataclass
class PlaceholderResolution:
    """Outcome of filling a template's placeholders."""
    values: Dict[str, Any] = field(default_factory=dict)
    rendered: Dict[str, str] = field(default_factory=dict)
    unresolved: List[PlaceholderSpec] = field(default_factory=list)
    filters: List[MergedFilter] = field(default_factory=list)
    metrics: FilterMetrics = field(default_factory=FilterMetrics)

    @property
    def complete(self) -> bool:
        return not self.unresolved


# =============================================================================
# SQL LITERALS
# =============================================================================

def quote_literal(value: Any) -> str:
    """Render a value as a SQL literal; strings are single-quoted with quotes doubled."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def build_in_clause(values: Sequence[Any]) -> str:
    """
    Build a SQL comparison for a set of values.

    Returns:
        "= 'X'" for one value, "IN ('X', 'Y')" for several
    """
    if not values:
        raise ValueError("build_in_clause requires at least one value")
    if len(values) == 1:
        return f"= {quote_literal(values[0])}"
    return f"IN ({', '.join(quote_literal(v) for v in values)})"


def fill_pattern(sql_pattern: str, rendered: Mapping[str, str]) -> str:
    """Substitute {name} tokens; unknown names are left untouched."""
    return _PLACEHOLDER.sub(lambda m: rendered.get(m.group(1), m.group(0)), sql_pattern)


def summarize_filters(filters: Sequence[MergedFilter]) -> FilterMetrics:
    """Aggregate mapping quality for a set of merged filters."""
    confidences = [f.confidence for f in filters if f.confidence is not None]
    return FilterMetrics(
        total_filters=len(filters),
        overrides=sum(1 for f in filters if f.overridden),
        auto_corrections=sum(1 for f in filters if f.auto_corrected),
        validation_errors=sum(1 for f in filters if f.validation_error),
        unresolved_warnings=sum(1 for f in filters if not f.resolved or f.value is None),
        avg_mapping_confidence=(sum(confidences) / len(confidences)) if confidences else None,
    )


class TerminologyResolver:
    """
    Expands terminology and merges filter assertions.

    Example:
        resolver = TerminologyResolver(OntologyLookup(store))
        resolver.expand_term("PI", "C1")
        # ['Pressure Injury', 'pressure injury', 'pressure ulcer', 'bedsore']
    """

    def __init__(self, ontology: Optional[OntologyLookup] = None,
                 lookup_options: Optional[SynonymLookupOptions] = None,
                 confidence_threshold: float = CONFIDENCE_THRESHOLD,
                 conflict_threshold: float = CONFLICT_THRESHOLD,
                 high_confidence_threshold: float = HIGH_CONFIDENCE_THRESHOLD):
        self.ontology = ontology
        self.lookup_options = lookup_options or SynonymLookupOptions()
        self.confidence_threshold = confidence_threshold
        self.conflict_threshold = conflict_threshold
        self.high_confidence_threshold = high_confidence_threshold

    # =========================================================================
    # TERM EXPANSION
    # =========================================================================

    def expand_term(self, term: str, customer_id: str) -> List[str]:
        """Ontology synonyms for a term, or [term] when there are none."""
        term = (term or "").strip()
        if not term:
            return []
        synonyms = self._lookup(term, customer_id)
        return synonyms or [term]

    def extract_terms(self, question: str, customer_id: str,
                      skip_tokens: Iterable[str] = ()) -> Dict[str, List[str]]:
        """
        Find clinical terms in a question.

        Scans 1..3-word phrases, longest first, without overlap. Stop words and
        skip_tokens are never looked up on their own.

        Returns:
            phrase -> expansions, in question order
        """
        tokens = _WORD.findall(normalize_text(question))
        skip = {t.lower() for t in skip_tokens} | TERM_STOP_WORDS
        used = [False] * len(tokens)
        found: List[Tuple[int, str, List[str]]] = []

        for size in range(min(MAX_NGRAM, len(tokens)), 0, -1):
            for start in range(0, len(tokens) - size + 1):
                if any(used[start:start + size]):
                    continue
                words = tokens[start:start + size]
                if words[0] in skip or words[-1] in skip:
                    continue
                if size == 1 and (len(words[0]) < 2 or words[0].isdigit()):
                    continue
                phrase = ' '.join(words)
                synonyms = self._lookup(phrase, customer_id)
                if synonyms:
                    found.append((start, phrase, synonyms))
                    for i in range(start, start + size):
                        used[i] = True

        found.sort(key=lambda f: f[0])
        terms = {phrase: synonyms for _, phrase, synonyms in found}
        if terms:
            logger.debug(f"Extracted terms: {list(terms)}")
        return terms

    def _lookup(self, term: str, customer_id: str) -> List[str]:
        if self.ontology is None:
            return []
        try:
            return self.ontology.lookup_synonyms(term, customer_id, self.lookup_options)
        except Exception as e:
            logger.warning(f"Ontology expansion failed for '{term}', using term as written: {e}")
            return []

    # =========================================================================
    # FILTER MERGING
    # =========================================================================

    def merge_filters(self, mappings: Iterable[FilterMapping]) -> List[MergedFilter]:
        """
        Merge assertions per field.

        For each field the highest-confidence assertion wins, with source
        precedence breaking exact ties. When two or more assertions above the
        confidence threshold disagree:
        - both >= 0.85            -> ai_judgment (unresolved)
        - gap <= 0.1              -> requires_clarification (unresolved)
        - otherwise               -> highest_confidence (winner kept, marked overridden)
        """
        groups: Dict[str, List[FilterMapping]] = {}
        for mapping in mappings:
            groups.setdefault(self._group_key(mapping), []).append(mapping)
        return [self._merge_group(g) for g in groups.values()]

    @staticmethod
    def _group_key(mapping: FilterMapping) -> str:
        if mapping.field:
            return f"field:{mapping.field.strip().lower()}"
        text = normalize_text(mapping.original_text)
        if text:
            return f"text:{text}"
        return f"value:{normalize_text(str(mapping.value))}"

    def _merge_group(self, sources: List[FilterMapping]) -> MergedFilter:
        ordered = sorted(sources, key=lambda s: (-s.confidence, SOURCE_PRECEDENCE[FilterSource(s.source)]))
        top = ordered[0]

        confident = [s for s in ordered if s.confidence >= self.confidence_threshold]
        distinct = _distinct_values(confident)
        resolution = None
        if len(distinct) > 1:
            second = next(s for s in confident if _value_key(s.value) != _value_key(top.value))
            if top.confidence >= self.high_confidence_threshold and second.confidence >= self.high_confidence_threshold:
                resolution = ConflictResolution.AI_JUDGMENT
            elif top.confidence - second.confidence <= self.conflict_threshold:
                resolution = ConflictResolution.REQUIRES_CLARIFICATION
            else:
                resolution = ConflictResolution.HIGHEST_CONFIDENCE

        blocking = resolution in (ConflictResolution.AI_JUDGMENT, ConflictResolution.REQUIRES_CLARIFICATION)
        resolved = top.confidence >= self.confidence_threshold and not blocking and top.value is not None

        warnings: List[str] = []
        for source in ordered:
            for w in ([source.validation_error] if source.validation_error else []) + list(source.warnings):
                if w not in warnings:
                    warnings.append(w)
        if resolved:
            warnings = [w for w in warnings if 'clarification' not in w.lower()]
        elif blocking:
            warnings.append(f"Conflicting values for '{top.field or top.original_text}' ({resolution.value})")

        merged = MergedFilter(
            field=top.field or next((s.field for s in ordered if s.field), None),
            operator=top.operator,
            value=top.value if resolved else None,
            resolved=resolved,
            confidence=top.confidence,
            original_text=next((s.original_text for s in ordered if s.original_text), ""),
            resolution=resolution,
            resolved_via=[FilterSource(s.source) for s in ordered
                          if resolved and s.confidence >= self.confidence_threshold
                          and _value_key(s.value) == _value_key(top.value)],
            sources=ordered,
            warnings=warnings,
            overridden=resolved and resolution == ConflictResolution.HIGHEST_CONFIDENCE,
            validation_error=top.validation_error,
        )
        logger.debug(f"Merged {len(sources)} source(s) for '{merged.field or merged.original_text}' "
                     f"-> resolved={resolved} confidence={top.confidence:.2f}")
        return merged

    def resolve_filters(self, mappings: Iterable[FilterMapping],
                        customer_id: str) -> Tuple[List[MergedFilter], FilterMetrics]:
        """
        Merge assertions, expand resolved string values through the ontology
        and summarize the result.
        """
        merged = self.merge_filters(mappings)
        for f in merged:
            if f.resolved and isinstance(f.value, str):
                f.values = self.expand_term(f.value, customer_id)
                f.auto_corrected = bool(f.values) and f.values[0].casefold() != f.value.strip().casefold()
            elif f.resolved and f.value is not None:
                f.values = [f.value] if not isinstance(f.value, list) else list(f.value)
        return merged, summarize_filters(merged)

    # =========================================================================
    # TEMPLATE PLACEHOLDERS
    # =========================================================================

    def resolve_placeholders(self, template: QueryTemplate, question: str, customer_id: str,
                             answers: Optional[Mapping[str, Any]] = None) -> PlaceholderResolution:
        """
        Fill a template's placeholders.

        Clarification answers take precedence over values found in the
        question; declared defaults fill what remains. Required placeholders
        with no value are reported as unresolved.
        """
        answers = {normalize_text(k): v for k, v in (answers or {}).items()}
        keyword_tokens = {t for kw in template.keywords for t in _WORD.findall(kw.lower())}
        question_terms: Optional[Dict[str, List[str]]] = None
        claimed_terms: set = set()

        mappings: List[FilterMapping] = []
        unresolved: List[PlaceholderSpec] = []

        for spec in template.placeholders:
            key = normalize_text(spec.name)
            answer = answer_value(answers.get(key))
            if answer not in (None, ""):
                value = _coerce_answer(spec, answer)
                if value is not None:
                    mappings.append(FilterMapping(field=spec.name, value=value, source=FilterSource.TEMPLATE_PARAM,
                                                  confidence=1.0, original_text=str(answer)))
                    continue
                logger.warning(f"Answer {answer!r} for '{spec.name}' is not a valid {spec.semantic} value")
                if spec.required:
                    unresolved.append(spec)
                continue

            extracted: Optional[Any] = None
            if spec.semantic == PlaceholderSemantic.CLINICAL_TERM:
                if question_terms is None:
                    question_terms = self.extract_terms(question, customer_id, skip_tokens=keyword_tokens)
                for phrase in question_terms:
                    if phrase not in claimed_terms:
                        claimed_terms.add(phrase)
                        extracted = phrase
                        break
            else:
                extracted = _extract_scalar(spec, question)

            if extracted is not None:
                mappings.append(FilterMapping(field=spec.name, value=extracted,
                                              source=FilterSource.PLACEHOLDER_EXTRACTION,
                                              confidence=0.9, original_text=str(extracted)))
            elif spec.default not in (None, ""):
                mappings.append(FilterMapping(field=spec.name, value=spec.default,
                                              source=FilterSource.TEMPLATE_PARAM,
                                              confidence=CONFIDENCE_THRESHOLD, original_text=spec.default))
            elif spec.required:
                unresolved.append(spec)

        merged, _ = self.resolve_filters(mappings, customer_id)
        resolution = PlaceholderResolution(unresolved=unresolved, filters=merged)

        by_field = {f.field: f for f in merged}
        for spec in template.placeholders:
            merged_filter = by_field.get(spec.name)
            rendered = None
            if merged_filter is not None and merged_filter.resolved:
                rendered = _render(spec, merged_filter)
            if rendered is None:
                if merged_filter is not None and spec.required and spec not in unresolved:
                    unresolved.append(spec)
                if not spec.required:
                    resolution.rendered[spec.name] = "NULL"
                continue
            resolution.values[spec.name] = merged_filter.value
            resolution.rendered[spec.name] = rendered

        # Unresolved required placeholders count against the mapping summary
        resolution.metrics = summarize_filters(merged)
        resolution.metrics.total_filters += len([u for u in unresolved if u.name not in by_field])
        resolution.metrics.unresolved_warnings += len([u for u in unresolved if u.name not in by_field])
        return resolution

    @staticmethod
    def clarification_for(spec: PlaceholderSpec, template: Optional[QueryTemplate] = None) -> ClarificationRequest:
        """Build the clarification asked when a required placeholder has no value."""
        label = spec.name.replace('_', ' ')
        semantic = PlaceholderSemantic(spec.semantic)
        hints = {
            PlaceholderSemantic.NUMBER: "Enter a number",
            PlaceholderSemantic.TIME_WINDOW: "e.g. 30 days, 12 weeks",
            PlaceholderSemantic.CLINICAL_TERM: "Use a clinical term or abbreviation",
        }
        return ClarificationRequest(
            placeholder_id=spec.name,
            prompt_text=spec.prompt or f"Which {label} should be used?",
            options=[ClarificationOption(id=o, label=o, value=o) for o in spec.options],
            freeform=FreeformSpec(allowed=True, placeholder=label, hint=hints.get(semantic),
                                  min_chars=1, max_chars=200),
            template_name=template.name if template else None,
            template_summary=template.summary if template else None,
            semantic=semantic.value,
            required=spec.required,
        )


# =============================================================================
# HELPERS
# =============================================================================

def _value_key(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return '|'.join(sorted(normalize_text(str(v)) for v in value))
    return normalize_text(str(value)) if value is not None else ""


def _distinct_values(sources: Sequence[FilterMapping]) -> List[str]:
    seen: List[str] = []
    for s in sources:
        key = _value_key(s.value)
        if key not in seen:
            seen.append(key)
    return seen


def answer_value(answer: Any) -> Any:
    """Clarification answers may be plain values or {option_id, custom_value} dicts."""
    if isinstance(answer, Mapping):
        return answer.get('custom_value') or answer.get('value') or answer.get('option_id')
    return answer


def _parse_number(value: Any) -> Optional[Union[int, float]]:
    """Finite number from a numeric value or the first number in a string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        match = _NUMBER.search(normalize_text(str(value)))
        if not match:
            return None
        text = match.group(1)
        number = float(text) if '.' in text else int(text)
    if not math.isfinite(number):
        return None
    return int(number) if float(number).is_integer() else number


def _parse_time_window(value: Any) -> Optional[int]:
    """Day count from "3 months", "12 weeks" or a bare number of days."""
    if isinstance(value, str):
        match = _TIME_WINDOW.search(normalize_text(value))
        if match:
            return int(match.group(1)) * _DAYS_PER_UNIT[match.group(2)]
    number = _parse_number(value)
    return int(number) if number is not None else None


def _coerce_answer(spec: PlaceholderSpec, answer: Any) -> Optional[Any]:
    """
    Normalize a clarification answer to the placeholder's semantic.

    Numbers and time windows must parse (windows become day counts); None
    means the answer is unusable. Other semantics pass through.
    """
    semantic = PlaceholderSemantic(spec.semantic)
    if semantic == PlaceholderSemantic.NUMBER:
        return _parse_number(answer)
    if semantic == PlaceholderSemantic.TIME_WINDOW:
        return _parse_time_window(answer)
    return answer


def _extract_scalar(spec: PlaceholderSpec, question: str) -> Optional[Any]:
    text = normalize_text(question)
    semantic = PlaceholderSemantic(spec.semantic)
    if semantic == PlaceholderSemantic.TIME_WINDOW:
        match = _TIME_WINDOW.search(text)
        if match:
            return int(match.group(1)) * _DAYS_PER_UNIT[match.group(2)]
        return None
    if semantic == PlaceholderSemantic.NUMBER:
        match = _NUMBER.search(text)
        if match:
            number = match.group(1)
            return float(number) if '.' in number else int(number)
        return None
    for option in spec.options:
        if re.search(rf'\b{re.escape(option.lower())}\b', text):
            return option
    return None


def _render(spec: PlaceholderSpec, merged: MergedFilter) -> Optional[str]:
    """SQL literal for a resolved placeholder; None when a numeric value is unusable."""
    semantic = PlaceholderSemantic(spec.semantic)
    if semantic == PlaceholderSemantic.CLINICAL_TERM:
        values = merged.values or [merged.value]
        return ', '.join(quote_literal(v) for v in values)
    if semantic in (PlaceholderSemantic.NUMBER, PlaceholderSemantic.TIME_WINDOW):
        number = _coerce_answer(spec, merged.value)
        return repr(number) if number is not None else None
    return quote_literal(merged.value)
