# InsightGen - Question Fingerprint
# ==================================
"""
Cache key derived from a question and its full resolution context.

Two requests share a fingerprint only when customer, normalized question,
model, schema version, prompt version and every clarification answer are
equal after normalization. Clarification answers are part of the key, so a
follow-up carrying answers never collides with the attempt that asked for them.
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

DEFAULT_MODEL_ID = "model_auto"
DEFAULT_SCHEMA_VERSION = "schema_unknown"
DEFAULT_PROMPT_VERSION = "prompt_v1"

_TRAILING_PUNCTUATION = '?!.,;:'


def normalize_text(value: Optional[str]) -> str:
    """Trim, case-fold and collapse internal whitespace."""
    if not value:
        return ""
    return ' '.join(str(value).casefold().split())


def normalize_question(question: Optional[str]) -> str:
    """
    Normalize a question for keying.

    Same as normalize_text, and additionally drops trailing punctuation so
    "How many wounds?" and "how many wounds" share a key.
    """
    normalized = normalize_text(question)
    while normalized and normalized[-1] in _TRAILING_PUNCTUATION:
        normalized = normalized[:-1].rstrip()
    return normalized


def _normalize_answer(value: Any) -> str:
    if isinstance(value, Mapping):
        # {"option_id": ..., "custom_value": ...} style answers
        parts = [f"{k}={normalize_text(str(v))}" for k, v in sorted(value.items()) if v not in (None, "")]
        return ','.join(parts)
    if isinstance(value, (list, tuple)):
        return ','.join(normalize_text(str(v)) for v in value)
    return normalize_text(str(value)) if value is not None else ""


@dataclass(frozen=True)
class QuestionFingerprint:
    """Immutable, normalized resolution context used as a cache key."""
    customer_id: str
    question: str
    model_id: str = DEFAULT_MODEL_ID
    schema_version: str = DEFAULT_SCHEMA_VERSION
    prompt_version: str = DEFAULT_PROMPT_VERSION
    clarifications: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def create(
        cls,
        question: str,
        customer_id: str,
        model_id: Optional[str] = None,
        clarifications: Optional[Mapping[str, Any]] = None,
        schema_version: Optional[str] = None,
        prompt_version: Optional[str] = None,
    ) -> 'QuestionFingerprint':
        """
        Build a fingerprint from raw request values.

        Args:
            question: Natural-language question
            customer_id: Customer the question is asked against
            model_id: Generation model, or None for automatic selection
            clarifications: placeholder id -> answer
            schema_version: Customer schema version
            prompt_version: Prompt set version

        Returns:
            QuestionFingerprint with every component normalized
        """
        answers = tuple(sorted(
            (normalize_text(str(k)), _normalize_answer(v))
            for k, v in (clarifications or {}).items()
        ))
        return cls(
            customer_id=normalize_text(customer_id),
            question=normalize_question(question),
            model_id=normalize_text(model_id) or DEFAULT_MODEL_ID,
            schema_version=normalize_text(schema_version) or DEFAULT_SCHEMA_VERSION,
            prompt_version=normalize_text(prompt_version) or DEFAULT_PROMPT_VERSION,
            clarifications=answers,
        )

    @property
    def clarification_hash(self) -> str:
        """Short hash of the sorted clarification answers."""
        if not self.clarifications:
            return "no_clarifications"
        serialized = '|'.join(f"{k}:{v}" for k, v in self.clarifications)
        return hashlib.sha256(serialized.encode()).hexdigest()[:8]

    @property
    def key(self) -> str:
        """Readable composite key; prefix fields allow invalidation by customer/schema."""
        return ':'.join([
            self.customer_id,
            self.schema_version,
            self.model_id,
            self.prompt_version,
            self.clarification_hash,
            self.question,
        ])

    @property
    def digest(self) -> str:
        """16-character hash of the composite key, for logging."""
        return hashlib.sha256(self.key.encode()).hexdigest()[:16]

    def with_clarifications(self, clarifications: Mapping[str, Any]) -> 'QuestionFingerprint':
        """Return a new fingerprint for the same request with different answers."""
        answers = tuple(sorted(
            (normalize_text(str(k)), _normalize_answer(v))
            for k, v in clarifications.items()
        ))
        return QuestionFingerprint(
            customer_id=self.customer_id,
            question=self.question,
            model_id=self.model_id,
            schema_version=self.schema_version,
            prompt_version=self.prompt_version,
            clarifications=answers,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'customer_id': self.customer_id,
            'question': self.question,
            'model_id': self.model_id,
            'schema_version': self.schema_version,
            'prompt_version': self.prompt_version,
            'clarifications': dict(self.clarifications),
            'digest': self.digest,
        }
