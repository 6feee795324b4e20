# InsightGen - Template Duplicate Detection
# ==========================================
"""
Near-duplicate detection for draft query templates.

A draft is compared against every non-deprecated template sharing its intent
using Jaccard similarity over the tokens of name, description, keywords and
tags. Matches at or above the threshold are returned with an advisory message
so authors can review an existing template instead of adding another.
"""

import logging
import re
from typing import Iterable, List, Optional, Set

from core.templates.models import QueryTemplate, SimilarTemplate, TemplateDraft, TemplateStatus

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7

_TOKEN_SPLIT = re.compile(r'[^a-z0-9_]+')


def tokenize(text: Optional[str]) -> Set[str]:
    """Lowercase and split on anything that is not [a-z0-9_]."""
    return {t for t in _TOKEN_SPLIT.split((text or "").lower()) if t}


def metadata_tokens(name: Optional[str], description: Optional[str] = None,
                    keywords: Iterable[str] = (), tags: Iterable[str] = ()) -> Set[str]:
    """Token set for a template's descriptive metadata."""
    parts = [name or "", description or ""]
    parts.extend(keywords or [])
    parts.extend(tags or [])
    return tokenize(" ".join(parts))


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    """
    |a ∩ b| / |a ∪ b|.

    Either set empty gives 0.0.
    """
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def find_similar(draft: TemplateDraft, templates: Iterable[QueryTemplate],
                 threshold: float = SIMILARITY_THRESHOLD,
                 exclude_id: Optional[str] = None) -> List[SimilarTemplate]:
    """
    Find catalog templates that look like duplicates of a draft.

    Args:
        draft: Draft metadata; needs at least a name and an intent
        templates: Existing templates to compare against
        threshold: Minimum similarity kept
        exclude_id: Template id to skip (the draft itself when re-checking)

    Returns:
        Similar templates, most similar first; ties by success rate
    """
    if not draft.name or not draft.intent:
        return []

    draft_tokens = metadata_tokens(draft.name, draft.description, draft.keywords, draft.tags)

    candidates = []
    for tpl in templates:
        if tpl.intent != draft.intent or tpl.status == TemplateStatus.DEPRECATED:
            continue
        if exclude_id and tpl.id == exclude_id:
            continue
        tokens = metadata_tokens(tpl.name, tpl.description, tpl.keywords, tpl.tags)
        similarity = jaccard_similarity(draft_tokens, tokens)
        if similarity >= threshold:
            candidates.append((tpl, similarity))

    candidates.sort(key=lambda c: (-round(c[1], 3), -c[0].success_rate))

    similar = [
        SimilarTemplate(
            template_id=tpl.id,
            name=tpl.name,
            similarity=similarity,
            success_rate=tpl.success_rate,
            usage_count=tpl.usage_count,
            message=(
                f'Template "{tpl.name}" is {round(similarity * 100)}% similar '
                f'({round(tpl.success_rate * 100)}% success rate) with {tpl.usage_count} uses. '
                f'Consider reviewing before creating a duplicate.'
            ),
        )
        for tpl, similarity in candidates
    ]

    if similar:
        logger.info(f"Draft '{draft.name}' has {len(similar)} similar template(s); "
                    f"top={similar[0].name} ({similar[0].similarity:.2f})")
    return similar
