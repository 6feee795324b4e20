# InsightGen - Template Matcher
# ==============================
"""
Fast-path matching of questions against approved query templates.

Scoring (capped at 1.0):
- 0.5 x fraction of template keywords present in the question
- 0.3 x fraction of name/tag tokens present in the question
- 0.2 when the template's intent falls in the question's intent bucket
- raised to the best question-example similarity when that is >= 0.7

Templates whose intent maps to a different bucket than the question's are
not scored at all. When no bucket can be inferred from the question, every
approved template is considered.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from rapidfuzz import fuzz

from core.templates.models import QueryTemplate, TemplateStatus

from .fingerprint import normalize_question

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.7
EXAMPLE_SIMILARITY_FLOOR = 0.7

KEYWORD_WEIGHT = 0.5
NAME_TAG_WEIGHT = 0.3
INTENT_WEIGHT = 0.2

# Bucket -> phrases that signal it in a question
INTENT_KEYWORDS: Dict[str, List[str]] = {
    'ranking': ['top', 'bottom', 'best', 'worst', 'highest', 'lowest', 'most', 'least'],
    'comparison': ['compare', 'versus', 'vs', 'difference', 'between'],
    'trend': ['trend', 'over time', 'timeline', 'history', 'per month', 'monthly', 'weekly'],
    'aggregate': ['count', 'how many', 'number of', 'total', 'average', 'sum', 'mean'],
    'query': ['show', 'list', 'get', 'find', 'which', 'what'],
}

# Checked in this order; earlier buckets are more specific
BUCKET_PRIORITY = ['ranking', 'comparison', 'trend', 'aggregate', 'query']

# Template intent token -> bucket
INTENT_TOKEN_BUCKETS: Dict[str, str] = {
    'ranking': 'ranking', 'rank': 'ranking', 'top': 'ranking',
    'comparison': 'comparison', 'compare': 'comparison',
    'trend': 'trend', 'temporal': 'trend', 'timeseries': 'trend',
    'aggregation': 'aggregate', 'aggregate': 'aggregate', 'count': 'aggregate',
    'distribution': 'aggregate', 'summary': 'aggregate',
    'query': 'query', 'list': 'query', 'lookup': 'query', 'filter': 'query',
}

STOP_WORDS: Set[str] = {
    'a', 'an', 'the', 'of', 'for', 'in', 'on', 'by', 'to', 'with', 'and', 'or',
    'me', 'my', 'is', 'are', 'was', 'were', 'all', 'any', 'show', 'list', 'what',
}

_WORD = re.compile(r'[a-z0-9_]+')


def _stem(token: str) -> str:
    if len(token) > 3 and token.endswith('s') and not token.endswith(('ss', 'us', 'is')):
        return token[:-1]
    return token


def question_tokens(text: Optional[str]) -> Set[str]:
    """Lowercased, lightly stemmed word tokens."""
    return {_stem(t) for t in _WORD.findall((text or "").lower())}


def _contains_phrase(normalized_question: str, phrase: str) -> bool:
    return re.search(rf'\b{re.escape(phrase)}\b', normalized_question) is not None


def infer_question_bucket(question: str) -> Optional[str]:
    """Intent bucket signalled by the question, or None."""
    normalized = normalize_question(question)
    best_bucket = None
    best_hits = 0
    for bucket in BUCKET_PRIORITY:
        hits = sum(1 for kw in INTENT_KEYWORDS[bucket] if _contains_phrase(normalized, kw))
        if hits > best_hits:
            best_bucket, best_hits = bucket, hits
    return best_bucket


def template_bucket(intent: Optional[str]) -> Optional[str]:
    """Map a template intent such as 'aggregation_by_category' to a bucket."""
    if not intent:
        return None
    intent = intent.lower()
    if intent in INTENT_KEYWORDS:
        return intent
    for token in re.split(r'[^a-z]+', intent):
        if token in INTENT_TOKEN_BUCKETS:
            return INTENT_TOKEN_BUCKETS[token]
    return None


@dataclass
class TemplateMatch:
    """Best-scoring template for a question."""
    template: QueryTemplate
    confidence: float
    bucket: Optional[str] = None
    matched_keywords: List[str] = field(default_factory=list)
    example_similarity: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'template_id': self.template.id,
            'template_name': self.template.name,
            'confidence': round(self.confidence, 3),
            'bucket': self.bucket,
            'matched_keywords': self.matched_keywords,
            'example_similarity': round(self.example_similarity, 3),
        }


def score_template(question: str, template: QueryTemplate,
                   question_bucket: Optional[str] = None) -> TemplateMatch:
    """Score one template against a question (no bucket filtering)."""
    q_tokens = question_tokens(question)
    normalized = normalize_question(question)
    score = 0.0

    matched_keywords = []
    for keyword in template.keywords:
        kw_tokens = question_tokens(keyword)
        if kw_tokens and kw_tokens <= q_tokens:
            matched_keywords.append(keyword)
    if template.keywords:
        score += KEYWORD_WEIGHT * len(matched_keywords) / len(template.keywords)

    name_tag = question_tokens(' '.join([template.name] + list(template.tags))) - STOP_WORDS
    if name_tag:
        score += NAME_TAG_WEIGHT * len(name_tag & q_tokens) / len(name_tag)

    bucket = template_bucket(template.intent)
    if bucket is not None and bucket == question_bucket:
        score += INTENT_WEIGHT

    example_similarity = 0.0
    for example in template.question_examples:
        similarity = fuzz.ratio(normalized, normalize_question(example)) / 100
        example_similarity = max(example_similarity, similarity)
    if example_similarity >= EXAMPLE_SIMILARITY_FLOOR:
        score = max(score, example_similarity)

    return TemplateMatch(
        template=template,
        confidence=min(score, 1.0),
        bucket=bucket,
        matched_keywords=matched_keywords,
        example_similarity=example_similarity,
    )


def match_template(question: str, templates: Iterable[QueryTemplate],
                   threshold: float = MATCH_THRESHOLD) -> Optional[TemplateMatch]:
    """
    Find the approved template that best answers a question.

    Args:
        question: Natural-language question
        templates: Candidate templates; anything not Approved is ignored
        threshold: Minimum confidence for a match

    Returns:
        TemplateMatch for the top scorer at or above threshold, else None
    """
    question_bucket = infer_question_bucket(question)

    scored = []
    for template in templates:
        if template.status != TemplateStatus.APPROVED:
            continue
        bucket = template_bucket(template.intent)
        if question_bucket and bucket and bucket != question_bucket:
            continue
        match = score_template(question, template, question_bucket)
        if match.confidence > 0:
            scored.append(match)

    if not scored:
        logger.debug(f"No template candidates (bucket={question_bucket})")
        return None

    scored.sort(key=lambda m: (m.confidence, m.template.success_rate), reverse=True)
    best = scored[0]

    if best.confidence < threshold:
        logger.info(f"Best template '{best.template.name}' below threshold "
                    f"({best.confidence:.2f} < {threshold})")
        return None

    logger.info(f"Template match: '{best.template.name}' (confidence={best.confidence:.2f}, bucket={question_bucket})")
    return best
