"""
InsightGen Audit Module
=======================

Clarification audit trail and query performance metrics.

This module provides:
- Persistent SQLite-based storage with integrity checksums
- Batch logging of clarification presentations and responses
- Per-resolution performance metrics and summaries
- Fire-and-forget dispatch so audit writes never delay a request
"""

from .models import (
    ClarificationResponseType,
    ClarificationAuditEvent,
    ClarificationAuditRecord,
    ClarificationStatistics,
    QueryPerformanceMetrics,
    PerformanceSummary,
)
from .database import AuditDB
from .dispatch import BackgroundDispatcher
from .service import AuditSink, MetricsSink, AuditService

__all__ = [
    # Models
    "ClarificationResponseType",
    "ClarificationAuditEvent",
    "ClarificationAuditRecord",
    "ClarificationStatistics",
    "QueryPerformanceMetrics",
    "PerformanceSummary",
    # Database
    "AuditDB",
    # Dispatch
    "BackgroundDispatcher",
    # Service
    "AuditSink",
    "MetricsSink",
    "AuditService",
]
