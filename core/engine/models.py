# InsightGen - Resolution Models
# ===============================
"""
Data models for the query resolution engine.

OrchestrationResult is a tagged union over four modes:

    TemplateResult  - answered from an approved query template
    DirectResult    - answered from SQL produced by the semantic generator
    FunnelResult    - clarification/confirmation needed before SQL can be built
    ErrorResult     - a step failed; carries the failing step and the thinking log

Every variant carries the original question and the ordered thinking steps.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional


class ResultMode(str, Enum):
    """Resolution strategy that produced a result."""
    TEMPLATE = "template"
    DIRECT = "direct"
    FUNNEL = "funnel"
    ERROR = "error"


class StepStatus(str, Enum):
    """Status of a thinking step."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


# =============================================================================
# THINKING LOG
# =============================================================================

@dataclass
class ThinkingStep:
    """A single entry in the resolution thinking log."""
    id: str
    status: StepStatus
    message: str
    duration_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'status': self.status.value,
            'message': self.message,
        }
        if self.duration_ms is not None:
            data['duration_ms'] = round(self.duration_ms, 1)
        if self.details:
            data['details'] = self.details
        return data


class ThinkingLog:
    """
    Ordered, append-only record of resolution steps.

    Steps are started as RUNNING and later completed or failed in place, so a
    failure midway still leaves every earlier step visible.
    """

    def __init__(self):
        self.steps: List[ThinkingStep] = []
        self._started: Dict[str, float] = {}

    def start(self, step_id: str, message: str) -> ThinkingStep:
        step = ThinkingStep(id=step_id, status=StepStatus.RUNNING, message=message)
        self.steps.append(step)
        self._started[step_id] = time.time()
        return step

    def complete(self, step_id: str, message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        self._finish(step_id, StepStatus.COMPLETE, message, details)

    def fail(self, step_id: str, message: str,
             details: Optional[Dict[str, Any]] = None) -> None:
        self._finish(step_id, StepStatus.ERROR, message, details)

    def current(self) -> Optional[str]:
        """Return the id of the most recent step still running."""
        for step in reversed(self.steps):
            if step.status == StepStatus.RUNNING:
                return step.id
        return None

    def _finish(self, step_id: str, status: StepStatus, message: Optional[str],
                details: Optional[Dict[str, Any]]) -> None:
        for step in reversed(self.steps):
            if step.id == step_id:
                step.status = status
                if message:
                    step.message = message
                if details:
                    step.details = details
                started = self._started.pop(step_id, None)
                if started is not None:
                    step.duration_ms = (time.time() - started) * 1000
                return


# =============================================================================
# QUERY RESULTS AND FILTER METRICS
# =============================================================================

@dataclass
class QueryResults:
    """Tabular result returned by SQL execution."""
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'columns': list(self.columns),
            'rows': [dict(r) for r in self.rows],
            'row_count': self.row_count,
            'execution_time_ms': round(self.execution_time_ms, 1),
        }


@dataclass
class FilterMetrics:
    """Summary of how filter values were mapped for one resolution."""
    total_filters: int = 0
    overrides: int = 0
    auto_corrections: int = 0
    validation_errors: int = 0
    unresolved_warnings: int = 0
    avg_mapping_confidence: Optional[float] = None

    @property
    def override_rate(self) -> float:
        return self.overrides / self.total_filters if self.total_filters else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# CLARIFICATION ITEMS
# =============================================================================

@dataclass
class ClarificationOption:
    """A discrete answer offered for a clarification."""
    id: str
    label: str
    value: str
    description: Optional[str] = None


@dataclass
class FreeformSpec:
    """Whether and how a free-text answer is accepted."""
    allowed: bool = True
    placeholder: Optional[str] = None
    hint: Optional[str] = None
    min_chars: Optional[int] = None
    max_chars: Optional[int] = None


@dataclass
class ClarificationRequest:
    """A request for user input on a placeholder that could not be resolved."""
    placeholder_id: str
    prompt_text: str
    options: List[ClarificationOption] = field(default_factory=list)
    freeform: Optional[FreeformSpec] = None
    examples: List[str] = field(default_factory=list)
    template_name: Optional[str] = None
    template_summary: Optional[str] = None
    semantic: Optional[str] = None
    required: bool = True

    def option_for_value(self, value: str) -> Optional[ClarificationOption]:
        """Return the offered option matching a submitted value, if any."""
        for option in self.options:
            if value in (option.id, option.value):
                return option
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConfirmationPrompt:
    """Accept/change prompt for a value inferred with moderate confidence."""
    placeholder_id: str
    prompt_text: str
    value: str
    display_label: Optional[str] = None
    confidence: float = 0.0
    semantic: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CacheHitTelemetry:
    """Attached to results served from the session cache."""
    latency_ms: float
    estimated_saved_ms: float
    hit_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'latency_ms': round(self.latency_ms, 2),
            'estimated_saved_ms': round(self.estimated_saved_ms, 1),
            'hit_count': self.hit_count,
        }


# =============================================================================
# ORCHESTRATION RESULT VARIANTS
# =============================================================================

@dataclass
class OrchestrationResult:
    """Common fields of every resolution result."""
    mode: ClassVar[ResultMode]

    question: str
    thinking: List[ThinkingStep] = field(default_factory=list)
    total_duration_ms: float = 0.0
    cache_hit: Optional[CacheHitTelemetry] = None

    @property
    def sql(self) -> Optional[str]:
        return None

    @property
    def has_error(self) -> bool:
        return False

    def is_cacheable(self) -> bool:
        """Only error-free template/direct results with SQL may be cached."""
        return (
            self.mode in (ResultMode.TEMPLATE, ResultMode.DIRECT)
            and not self.has_error
            and bool(self.sql)
        )

    def _base_dict(self) -> Dict[str, Any]:
        data = {
            'mode': self.mode.value,
            'question': self.question,
            'thinking': [s.to_dict() for s in self.thinking],
            'total_duration_ms': round(self.total_duration_ms, 1),
        }
        if self.cache_hit is not None:
            data['cache_hit'] = self.cache_hit.to_dict()
        return data

    def to_dict(self) -> Dict[str, Any]:
        return self._base_dict()


@dataclass
class TemplateResult(OrchestrationResult):
    """Result answered from an approved query template."""
    mode: ClassVar[ResultMode] = ResultMode.TEMPLATE

    sql_text: str = ""
    results: QueryResults = field(default_factory=QueryResults)
    filter_metrics: FilterMetrics = field(default_factory=FilterMetrics)
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    confidence: float = 0.0
    placeholders: Dict[str, Any] = field(default_factory=dict)

    @property
    def sql(self) -> Optional[str]:
        return self.sql_text

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'sql': self.sql_text,
            'results': self.results.to_dict(),
            'filter_metrics': self.filter_metrics.to_dict(),
            'template': {
                'id': self.template_id,
                'name': self.template_name,
                'confidence': round(self.confidence, 3),
            },
            'placeholders': self.placeholders,
        })
        return data


@dataclass
class DirectResult(OrchestrationResult):
    """Result answered from SQL produced by the semantic generator."""
    mode: ClassVar[ResultMode] = ResultMode.DIRECT

    sql_text: str = ""
    results: QueryResults = field(default_factory=QueryResults)
    filter_metrics: FilterMetrics = field(default_factory=FilterMetrics)
    assumptions: List[str] = field(default_factory=list)
    terminology: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def sql(self) -> Optional[str]:
        return self.sql_text

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'sql': self.sql_text,
            'results': self.results.to_dict(),
            'filter_metrics': self.filter_metrics.to_dict(),
            'assumptions': list(self.assumptions),
            'terminology': self.terminology,
        })
        return data


@dataclass
class FunnelResult(OrchestrationResult):
    """Clarification dialogue required; carries no SQL."""
    mode: ClassVar[ResultMode] = ResultMode.FUNNEL

    clarifications: List[ClarificationRequest] = field(default_factory=list)
    confirmations: List[ConfirmationPrompt] = field(default_factory=list)
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'clarifications': [c.to_dict() for c in self.clarifications],
            'confirmations': [c.to_dict() for c in self.confirmations],
            'template_id': self.template_id,
            'template_name': self.template_name,
            'message': self.message,
        })
        return data


@dataclass
class ErrorResult(OrchestrationResult):
    """A resolution step failed."""
    mode: ClassVar[ResultMode] = ResultMode.ERROR

    error: str = ""
    failed_step: str = ""

    @property
    def has_error(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'error': self.error,
            'failed_step': self.failed_step,
        })
        return data
