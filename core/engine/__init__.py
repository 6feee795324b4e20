# InsightGen Engine Package
"""
Query Resolution Engine
=======================
Routes natural-language questions to an answer.

Resolution order:
1. Session cache - fingerprinted results within TTL
2. Template match - approved, parameterized SQL patterns
3. Semantic generation - external generator returns SQL or clarifications
4. Funnel - clarification dialogue, re-entering resolution with answers

The orchestrator, terminology resolver and clarification engine live in their
own modules (core.engine.orchestrator, core.engine.terminology,
core.engine.clarification); only leaf modules are re-exported here.
"""

# Models
from .models import (
    ResultMode,
    StepStatus,
    ThinkingStep,
    ThinkingLog,
    QueryResults,
    FilterMetrics,
    ClarificationOption,
    FreeformSpec,
    ClarificationRequest,
    ConfirmationPrompt,
    CacheHitTelemetry,
    OrchestrationResult,
    TemplateResult,
    DirectResult,
    FunnelResult,
    ErrorResult,
)

# Fingerprint and caches
from .fingerprint import QuestionFingerprint, normalize_text, normalize_question
from .cache import BoundedTTLCache, CacheEntry, SessionResultCache

# Template catalog scoring
from .template_matcher import TemplateMatch, match_template, score_template, infer_question_bucket
from .template_similarity import find_similar, jaccard_similarity

__all__ = [
    # Models
    'ResultMode',
    'StepStatus',
    'ThinkingStep',
    'ThinkingLog',
    'QueryResults',
    'FilterMetrics',
    'ClarificationOption',
    'FreeformSpec',
    'ClarificationRequest',
    'ConfirmationPrompt',
    'CacheHitTelemetry',
    'OrchestrationResult',
    'TemplateResult',
    'DirectResult',
    'FunnelResult',
    'ErrorResult',
    # Fingerprint and caches
    'QuestionFingerprint',
    'normalize_text',
    'normalize_question',
    'BoundedTTLCache',
    'CacheEntry',
    'SessionResultCache',
    # Templates
    'TemplateMatch',
    'match_template',
    'score_template',
    'infer_question_bucket',
    'find_similar',
    'jaccard_similarity',
]
