"""
Audit Models
============

Pydantic models for clarification audit events and query performance metrics.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ClarificationResponseType(str, Enum):
    """How the user responded to a clarification."""
    ACCEPTED = "accepted"    # picked an offered option
    CUSTOM = "custom"        # typed their own value
    ABANDONED = "abandoned"  # presented, never answered


class ClarificationAuditEvent(BaseModel):
    """One clarification presentation or response."""
    session_id: str
    customer_id: str
    question: str
    placeholder_id: str
    placeholder_semantic: Optional[str] = None
    prompt_text: str = ""
    options_presented: List[str] = Field(default_factory=list)
    response_type: ClarificationResponseType = ClarificationResponseType.ABANDONED
    accepted_value: Optional[str] = None
    time_spent_ms: Optional[int] = None
    presented_at: datetime = Field(default_factory=datetime.now)
    responded_at: Optional[datetime] = None
    template_name: Optional[str] = None
    template_summary: Optional[str] = None


class ClarificationAuditRecord(ClarificationAuditEvent):
    """Clarification audit event as stored."""
    id: int
    checksum: str
    created_at: datetime


class ClarificationStatistics(BaseModel):
    """Response-type breakdown of clarification events."""
    total: int = 0
    accepted: int = 0
    custom: int = 0
    abandoned: int = 0
    acceptance_rate: float = 0.0
    avg_time_spent_ms: Optional[float] = None
    by_semantic: Dict[str, int] = Field(default_factory=dict)


class QueryPerformanceMetrics(BaseModel):
    """Emitted after every terminal resolution, cache hits included."""
    question: str
    customer_id: str
    mode: str
    total_duration_ms: float
    filter_metrics: Optional[Dict[str, Any]] = None
    clarification_requested: bool = False
    cache_hit: bool = False
    estimated_saved_ms: Optional[float] = None
    failed_step: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class PerformanceSummary(BaseModel):
    """Aggregates over recorded query metrics."""
    total_queries: int = 0
    by_mode: Dict[str, int] = Field(default_factory=dict)
    avg_duration_ms_by_mode: Dict[str, float] = Field(default_factory=dict)
    cache_hit_rate: float = 0.0
    clarification_rate: float = 0.0
    override_rate: float = 0.0
