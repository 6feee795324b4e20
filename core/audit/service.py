"""
Audit Service Module
====================

Sinks for clarification audit events and query performance metrics.

AuditSink and MetricsSink are the interfaces the resolution engine writes to.
AuditService persists both to SQLite. Every write path swallows and logs its
own failures so a broken audit store can never fail a user request.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .database import AuditDB
from .models import (
    ClarificationAuditEvent,
    ClarificationAuditRecord,
    ClarificationStatistics,
    PerformanceSummary,
    QueryPerformanceMetrics,
)

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Accepts batches of clarification audit events."""

    @abstractmethod
    def log_batch(self, events: Sequence[ClarificationAuditEvent]) -> int:
        """Record events; returns the number recorded (0 on failure)."""


class MetricsSink(ABC):
    """Accepts query performance metrics."""

    @abstractmethod
    def record(self, metrics: QueryPerformanceMetrics) -> None:
        """Record one resolution's metrics."""


class AuditService(AuditSink, MetricsSink):
    """
    SQLite-backed audit and metrics sink.

    Usage:
        service = AuditService("data/audit.db")
        service.log_batch([event])
        service.record(metrics)
    """

    def __init__(self, db_path: Optional[str] = None, db: Optional[AuditDB] = None):
        """Initialize the audit service."""
        self._db = db or AuditDB(db_path)

    # ==================== CLARIFICATION AUDIT ====================

    def log_batch(self, events: Sequence[ClarificationAuditEvent]) -> int:
        if not events:
            return 0
        try:
            count = self._db.insert_clarification_events(events)
            logger.debug(f"Logged {count} clarification audit event(s)")
            return count
        except Exception as e:
            logger.warning(f"Clarification audit write failed (ignored): {e}")
            return 0

    def get_clarification_events(self, session_id: Optional[str] = None,
                                 customer_id: Optional[str] = None,
                                 limit: int = 100) -> List[ClarificationAuditRecord]:
        return self._db.get_clarification_events(session_id=session_id, customer_id=customer_id, limit=limit)

    def get_clarification_statistics(self, customer_id: Optional[str] = None) -> ClarificationStatistics:
        return self._db.get_clarification_statistics(customer_id)

    def verify_clarification_record(self, record: ClarificationAuditRecord) -> bool:
        return self._db.verify_clarification_record(record)

    # ==================== QUERY METRICS ====================

    def record(self, metrics: QueryPerformanceMetrics) -> None:
        try:
            self._db.insert_query_metrics(metrics)
        except Exception as e:
            logger.warning(f"Query metrics write failed (ignored): {e}")

    def get_query_metrics(self, customer_id: Optional[str] = None, limit: int = 100) -> List[QueryPerformanceMetrics]:
        return self._db.get_query_metrics(customer_id=customer_id, limit=limit)

    def get_performance_summary(self, customer_id: Optional[str] = None) -> PerformanceSummary:
        return self._db.get_performance_summary(customer_id)
