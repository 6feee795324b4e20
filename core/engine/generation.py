# InsightGen - Semantic Generation Interface
# ===========================================
"""
Interface to the semantic SQL generator.

The generator turns a question (plus prior clarification answers and expanded
terminology) into one of three outcomes:

    GeneratedSQL             - SQL ready to execute
    GeneratedClarifications  - placeholders it could not resolve confidently
    GenerationFailure        - it could not produce anything usable

Natural-language understanding lives behind this interface; the engine only
routes on the outcome.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx

from .models import ClarificationOption, ClarificationRequest, ConfirmationPrompt, FreeformSpec
from .terminology import FilterMapping, FilterSource, build_in_clause

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class InvalidRequestError(ValueError):
    """Request rejected before any resolution work (empty question or customer)."""

    def __init__(self, field_name: str, message: Optional[str] = None):
        self.field_name = field_name
        super().__init__(message or f"'{field_name}' must be a non-empty string")


class ResolutionError(Exception):
    """Base exception for collaborator failures during resolution."""

    step: str = "resolve"


class GenerationError(ResolutionError):
    """Raised when the semantic generator cannot be reached or answers badly."""

    step = "generate_sql"


# =============================================================================
# REQUEST / OUTCOMES
# =============================================================================

@dataclass
class GenerationRequest:
    """Everything the generator receives for one attempt."""
    question: str
    customer_id: str
    model_id: Optional[str] = None
    clarifications: Dict[str, Any] = field(default_factory=dict)
    terminology: Dict[str, List[str]] = field(default_factory=dict)
    schema_version: Optional[str] = None
    prompt_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GeneratedSQL:
    """Generator produced executable SQL."""
    sql: str
    filters: List[FilterMapping] = field(default_factory=list)
    assumptions: List[str] = field(default_factory=list)
    model_used: Optional[str] = None
    generation_time_ms: float = 0.0


@dataclass
class GeneratedClarifications:
    """Generator needs user input before it can produce SQL."""
    clarifications: List[ClarificationRequest] = field(default_factory=list)
    confirmations: List[ConfirmationPrompt] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class GenerationFailure:
    """Generator ran but could not produce SQL or clarifications."""
    error: str
    step: str = "generate_sql"


GenerationOutcome = Union[GeneratedSQL, GeneratedClarifications, GenerationFailure]


class SemanticGenerator(ABC):
    """Collaborator turning questions into SQL or clarification requests."""

    @abstractmethod
    def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Produce an outcome for one question; may raise GenerationError."""


# =============================================================================
# WIRE FORMAT
# =============================================================================

def _clarification_from_dict(data: Dict[str, Any]) -> ClarificationRequest:
    freeform = data.get('freeform')
    return ClarificationRequest(
        placeholder_id=data['placeholder_id'],
        prompt_text=data.get('prompt_text', ''),
        options=[ClarificationOption(**o) for o in data.get('options') or []],
        freeform=FreeformSpec(**freeform) if freeform else None,
        examples=list(data.get('examples') or []),
        template_name=data.get('template_name'),
        template_summary=data.get('template_summary'),
        semantic=data.get('semantic'),
        required=data.get('required', True),
    )


def outcome_from_dict(data: Dict[str, Any]) -> GenerationOutcome:
    """
    Parse a generator response payload.

    Accepts {"sql": ...}, {"clarifications": [...], "confirmations": [...]}
    or {"error": ...}.

    Raises:
        GenerationError: payload matches none of the shapes
    """
    if data.get('error'):
        return GenerationFailure(error=str(data['error']), step=data.get('step', 'generate_sql'))

    if data.get('sql'):
        filters = [
            FilterMapping(
                field=f.get('field'),
                value=f.get('value'),
                source=FilterSource(f.get('source', FilterSource.SEMANTIC_MAPPING.value)),
                confidence=float(f.get('confidence', 1.0)),
                original_text=f.get('original_text', ''),
                operator=f.get('operator', '='),
                validation_error=f.get('validation_error'),
                warnings=list(f.get('warnings') or []),
            )
            for f in data.get('filters') or []
        ]
        return GeneratedSQL(
            sql=data['sql'],
            filters=filters,
            assumptions=list(data.get('assumptions') or []),
            model_used=data.get('model_used'),
            generation_time_ms=float(data.get('generation_time_ms', 0.0)),
        )

    if data.get('clarifications') or data.get('confirmations'):
        return GeneratedClarifications(
            clarifications=[_clarification_from_dict(c) for c in data.get('clarifications') or []],
            confirmations=[ConfirmationPrompt(**c) for c in data.get('confirmations') or []],
            message=data.get('message'),
        )

    raise GenerationError("Generator response contained neither SQL, clarifications nor an error")


# =============================================================================
# IMPLEMENTATIONS
# =============================================================================

class RemoteSemanticGenerator(SemanticGenerator):
    """
    Calls a generation service over HTTP.

    POST {base_url}/generate with the GenerationRequest as JSON; the response
    body is parsed with outcome_from_dict.
    """

    def __init__(self, base_url: str, timeout: float = 120.0, api_key: Optional[str] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.api_key = api_key

    def generate(self, request: GenerationRequest) -> GenerationOutcome:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        start_time = time.time()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(f"{self.base_url}/generate", json=request.to_dict(), headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            raise GenerationError(f"Generation service timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Generation service error: {e}") from e

        outcome = outcome_from_dict(payload)
        if isinstance(outcome, GeneratedSQL) and not outcome.generation_time_ms:
            outcome.generation_time_ms = (time.time() - start_time) * 1000
        return outcome


class MockSemanticGenerator(SemanticGenerator):
    """
    Mock generator for testing without a generation service.

    With no scripted responses it builds a simple SELECT over the expanded
    terminology. Scripted responses (outcomes, or callables taking the request)
    are returned in order, the last one repeating.
    """

    def __init__(self, responses: Optional[Sequence[Union[GenerationOutcome, Callable]]] = None,
                 table: str = "wound_assessments", column: str = "wound_type"):
        self.responses = list(responses or [])
        self.table = table
        self.column = column
        self.calls: List[GenerationRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def generate(self, request: GenerationRequest) -> GenerationOutcome:
        self.calls.append(request)

        if self.responses:
            index = min(len(self.calls) - 1, len(self.responses) - 1)
            response = self.responses[index]
            if callable(response):
                response = response(request)
            if isinstance(response, Exception):
                raise response
            return response

        where = ""
        filters = []
        if request.terminology:
            phrase, values = next(iter(request.terminology.items()))
            where = f" WHERE {self.column} {build_in_clause(values)}"
            filters.append(FilterMapping(field=self.column, value=values[0], confidence=0.9,
                                         original_text=phrase))
        return GeneratedSQL(
            sql=f"SELECT COUNT(*) AS count FROM {self.table}{where}",
            filters=filters,
            model_used=request.model_id or "mock",
        )
