# Tests for draft template duplicate detection
"""
Jaccard similarity of template metadata within an intent.
"""

import pytest

from core.engine.template_similarity import find_similar, jaccard_similarity, metadata_tokens, tokenize
from core.templates import QueryTemplate, TemplateDraft, TemplateStatus


def existing(name, intent="aggregation_by_category", description=None, keywords=(), tags=(),
             status=TemplateStatus.APPROVED, usage=0, success=0, template_id=None):
    return QueryTemplate(
        id=template_id or name.lower().replace(' ', '_'),
        name=name,
        description=description,
        intent=intent,
        status=status,
        keywords=list(keywords),
        tags=list(tags),
        sql_pattern="SELECT 1",
        usage_count=usage,
        success_count=success,
    )


SCENARIO_DRAFT = TemplateDraft(
    name="Wound Count by Type",
    intent="aggregation_by_category",
    keywords=["wound", "count", "type"],
)


class TestTokens:
    def test_tokenize(self):
        assert tokenize("Wound-Count by_type!") == {"wound", "count", "by_type"}
        assert tokenize(None) == set()

    def test_metadata_tokens(self):
        tokens = metadata_tokens("Wound Count", "per clinic", ["wound"], ["Clinic"])
        assert tokens == {"wound", "count", "per", "clinic"}


class TestJaccard:
    def test_empty_sets_zero(self):
        """Empty token sets give 0, never a division error."""
        assert jaccard_similarity(set(), set()) == 0.0
        assert jaccard_similarity({"a"}, set()) == 0.0

    @pytest.mark.parametrize("a,b", [
        ({"a", "b", "c"}, {"b", "c", "d"}),
        ({"wound"}, {"wound", "count"}),
        ({"x"}, {"y"}),
    ])
    def test_symmetric_and_bounded(self, a, b):
        """Order-independent and within [0, 1]."""
        assert jaccard_similarity(a, b) == jaccard_similarity(b, a)
        assert 0.0 <= jaccard_similarity(a, b) <= 1.0

    def test_identical(self):
        assert jaccard_similarity({"a", "b"}, {"a", "b"}) == 1.0


class TestFindSimilar:
    """Near-duplicate search for drafts."""

    def test_eighty_percent_overlap(self):
        """4 shared tokens out of 5 gives 0.80 with usage and success reported."""
        approved = existing("Wound Count by Type", description="category", usage=20, success=18)
        similar = find_similar(SCENARIO_DRAFT, [approved])
        assert len(similar) == 1
        assert similar[0].similarity == pytest.approx(0.8)
        assert similar[0].usage_count == 20
        assert similar[0].success_rate == pytest.approx(0.9)
        assert similar[0].message == (
            'Template "Wound Count by Type" is 80% similar (90% success rate) with 20 uses. '
            'Consider reviewing before creating a duplicate.'
        )

    def test_deprecated_excluded(self):
        """An identical-token Deprecated template is not reported."""
        deprecated = existing("Wound Count by Type", keywords=["wound", "count", "type"],
                              status=TemplateStatus.DEPRECATED)
        assert find_similar(SCENARIO_DRAFT, [deprecated]) == []

    def test_other_intent_never_compared(self):
        other = existing("Wound Count by Type", intent="temporal_trend")
        assert find_similar(SCENARIO_DRAFT, [other]) == []

    def test_below_threshold_dropped(self):
        loose = existing("Wound Area by Clinic", keywords=["area", "clinic"])
        assert find_similar(SCENARIO_DRAFT, [loose]) == []

    def test_draft_without_metadata(self):
        """A draft with only a name and intent compares without error."""
        draft = TemplateDraft(name="zzz", intent="aggregation_by_category")
        assert find_similar(draft, [existing("Wound Count by Type")]) == []

    def test_draft_without_name_or_intent(self):
        assert find_similar(TemplateDraft(intent="aggregation_by_category"), [existing("x")]) == []
        assert find_similar(TemplateDraft(name="x"), [existing("x")]) == []

    def test_sorted_by_similarity_then_success(self):
        exact_low = existing("Wound Count by Type", template_id="exact_low", usage=10, success=1)
        exact_high = existing("Wound Count by Type", template_id="exact_high", usage=10, success=9)
        close = existing("Wound Count by Type", description="category", template_id="close", usage=10, success=10)
        similar = find_similar(SCENARIO_DRAFT, [close, exact_low, exact_high])
        assert [s.template_id for s in similar] == ["exact_high", "exact_low", "close"]

    def test_exclude_id(self):
        tpl = existing("Wound Count by Type", template_id="self")
        assert find_similar(SCENARIO_DRAFT, [tpl], exclude_id="self") == []
