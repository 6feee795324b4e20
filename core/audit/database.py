"""
Audit Database Module
=====================

SQLite storage for clarification audit events and query performance metrics.
Clarification rows are append-only and carry a SHA-256 checksum of their
identifying fields for tamper detection.
"""

import hashlib
import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    ClarificationAuditEvent,
    ClarificationAuditRecord,
    ClarificationResponseType,
    ClarificationStatistics,
    PerformanceSummary,
    QueryPerformanceMetrics,
)


class AuditDB:
    """Database manager for clarification audit and query metrics."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the AuditDB.

        Args:
            db_path: Path to SQLite database file. If None, uses AUDIT_DB_PATH
                or $DATA_DIR/audit.db.
        """
        if db_path is None:
            db_path = os.getenv("AUDIT_DB_PATH", None)
            if db_path is None:
                db_path = Path(os.getenv("DATA_DIR", "data")) / "audit.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS clarification_audit (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    customer_id TEXT NOT NULL,
                    question TEXT NOT NULL,
                    placeholder_id TEXT NOT NULL,
                    placeholder_semantic TEXT,
                    prompt_text TEXT,
                    options_presented TEXT,
                    response_type TEXT NOT NULL,
                    accepted_value TEXT,
                    time_spent_ms INTEGER,
                    presented_at TEXT NOT NULL,
                    responded_at TEXT,
                    template_name TEXT,
                    template_summary TEXT,
                    checksum TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS query_performance_metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    customer_id TEXT NOT NULL,
                    question TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    total_duration_ms REAL NOT NULL,
                    filter_metrics TEXT,
                    clarification_requested INTEGER DEFAULT 0,
                    cache_hit INTEGER DEFAULT 0,
                    estimated_saved_ms REAL,
                    failed_step TEXT
                )
            ''')

            cursor.execute('CREATE INDEX IF NOT EXISTS idx_clar_session ON clarification_audit(session_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_clar_customer ON clarification_audit(customer_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_metrics_customer ON query_performance_metrics(customer_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_metrics_mode ON query_performance_metrics(mode)')

    @staticmethod
    def _compute_checksum(data: Dict[str, Any]) -> str:
        """Compute SHA-256 checksum for record integrity."""
        serialized = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode('utf-8')).hexdigest()

    def _event_checksum(self, event: ClarificationAuditEvent) -> str:
        return self._compute_checksum({
            'session_id': event.session_id,
            'customer_id': event.customer_id,
            'placeholder_id': event.placeholder_id,
            'response_type': ClarificationResponseType(event.response_type).value,
            'accepted_value': event.accepted_value,
            'presented_at': event.presented_at.isoformat(),
        })

    # ==================== CLARIFICATION AUDIT ====================

    def insert_clarification_events(self, events: Sequence[ClarificationAuditEvent]) -> int:
        """
        Insert a batch of clarification events in one transaction.

        Returns:
            Number of rows inserted
        """
        rows = [
            (
                e.session_id,
                e.customer_id,
                e.question,
                e.placeholder_id,
                e.placeholder_semantic,
                e.prompt_text,
                json.dumps(e.options_presented),
                ClarificationResponseType(e.response_type).value,
                e.accepted_value,
                e.time_spent_ms,
                e.presented_at.isoformat(),
                e.responded_at.isoformat() if e.responded_at else None,
                e.template_name,
                e.template_summary,
                self._event_checksum(e),
            )
            for e in events
        ]
        if not rows:
            return 0
        with self._get_connection() as conn:
            conn.executemany('''
                INSERT INTO clarification_audit (
                    session_id, customer_id, question, placeholder_id, placeholder_semantic,
                    prompt_text, options_presented, response_type, accepted_value, time_spent_ms,
                    presented_at, responded_at, template_name, template_summary, checksum
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', rows)
        return len(rows)

    def get_clarification_events(self, session_id: Optional[str] = None,
                                 customer_id: Optional[str] = None,
                                 limit: int = 100) -> List[ClarificationAuditRecord]:
        where, params = [], []
        if session_id:
            where.append("session_id = ?")
            params.append(session_id)
        if customer_id:
            where.append("customer_id = ?")
            params.append(customer_id)
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM clarification_audit {clause} ORDER BY id LIMIT ?",
                params + [limit]
            ).fetchall()

        return [
            ClarificationAuditRecord(
                id=row['id'],
                session_id=row['session_id'],
                customer_id=row['customer_id'],
                question=row['question'],
                placeholder_id=row['placeholder_id'],
                placeholder_semantic=row['placeholder_semantic'],
                prompt_text=row['prompt_text'] or "",
                options_presented=json.loads(row['options_presented'] or "[]"),
                response_type=ClarificationResponseType(row['response_type']),
                accepted_value=row['accepted_value'],
                time_spent_ms=row['time_spent_ms'],
                presented_at=datetime.fromisoformat(row['presented_at']),
                responded_at=datetime.fromisoformat(row['responded_at']) if row['responded_at'] else None,
                template_name=row['template_name'],
                template_summary=row['template_summary'],
                checksum=row['checksum'],
                created_at=datetime.fromisoformat(row['created_at']),
            )
            for row in rows
        ]

    def verify_clarification_record(self, record: ClarificationAuditRecord) -> bool:
        """Check a stored record against its checksum."""
        return self._event_checksum(record) == record.checksum

    def get_clarification_statistics(self, customer_id: Optional[str] = None) -> ClarificationStatistics:
        """
        Response-type breakdown. Each placeholder presentation is counted once
        by its final logged outcome.
        """
        clause, params = ("WHERE customer_id = ?", [customer_id]) if customer_id else ("", [])
        with self._get_connection() as conn:
            rows = conn.execute(f'''
                SELECT c.response_type, c.placeholder_semantic, c.time_spent_ms
                FROM clarification_audit c
                JOIN (
                    SELECT MAX(id) AS id FROM clarification_audit {clause}
                    GROUP BY session_id, placeholder_id
                ) latest ON latest.id = c.id
            ''', params).fetchall()

        stats = ClarificationStatistics(total=len(rows))
        times = []
        for row in rows:
            response = row['response_type']
            if response == ClarificationResponseType.ACCEPTED.value:
                stats.accepted += 1
            elif response == ClarificationResponseType.CUSTOM.value:
                stats.custom += 1
            else:
                stats.abandoned += 1
            semantic = row['placeholder_semantic'] or 'unknown'
            stats.by_semantic[semantic] = stats.by_semantic.get(semantic, 0) + 1
            if row['time_spent_ms'] is not None:
                times.append(row['time_spent_ms'])

        answered = stats.accepted + stats.custom
        stats.acceptance_rate = round(stats.accepted / answered, 3) if answered else 0.0
        stats.avg_time_spent_ms = round(sum(times) / len(times), 1) if times else None
        return stats

    # ==================== QUERY METRICS ====================

    def insert_query_metrics(self, metrics: QueryPerformanceMetrics) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute('''
                INSERT INTO query_performance_metrics (
                    timestamp, customer_id, question, mode, total_duration_ms, filter_metrics,
                    clarification_requested, cache_hit, estimated_saved_ms, failed_step
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                metrics.timestamp.isoformat(),
                metrics.customer_id,
                metrics.question,
                metrics.mode,
                metrics.total_duration_ms,
                json.dumps(metrics.filter_metrics) if metrics.filter_metrics else None,
                1 if metrics.clarification_requested else 0,
                1 if metrics.cache_hit else 0,
                metrics.estimated_saved_ms,
                metrics.failed_step,
            ))
            return cursor.lastrowid

    def get_query_metrics(self, customer_id: Optional[str] = None, limit: int = 100) -> List[QueryPerformanceMetrics]:
        clause, params = ("WHERE customer_id = ?", [customer_id]) if customer_id else ("", [])
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM query_performance_metrics {clause} ORDER BY id DESC LIMIT ?",
                params + [limit]
            ).fetchall()
        return [
            QueryPerformanceMetrics(
                timestamp=datetime.fromisoformat(row['timestamp']),
                customer_id=row['customer_id'],
                question=row['question'],
                mode=row['mode'],
                total_duration_ms=row['total_duration_ms'],
                filter_metrics=json.loads(row['filter_metrics']) if row['filter_metrics'] else None,
                clarification_requested=bool(row['clarification_requested']),
                cache_hit=bool(row['cache_hit']),
                estimated_saved_ms=row['estimated_saved_ms'],
                failed_step=row['failed_step'],
            )
            for row in rows
        ]

    def get_performance_summary(self, customer_id: Optional[str] = None) -> PerformanceSummary:
        metrics = self.get_query_metrics(customer_id=customer_id, limit=1_000_000)
        summary = PerformanceSummary(total_queries=len(metrics))
        if not metrics:
            return summary

        durations: Dict[str, List[float]] = {}
        total_filters = 0
        overrides = 0
        for m in metrics:
            summary.by_mode[m.mode] = summary.by_mode.get(m.mode, 0) + 1
            durations.setdefault(m.mode, []).append(m.total_duration_ms)
            if m.filter_metrics:
                total_filters += m.filter_metrics.get('total_filters', 0)
                overrides += m.filter_metrics.get('overrides', 0)

        summary.avg_duration_ms_by_mode = {
            mode: round(sum(values) / len(values), 1) for mode, values in durations.items()
        }
        summary.cache_hit_rate = round(sum(1 for m in metrics if m.cache_hit) / len(metrics), 3)
        summary.clarification_rate = round(sum(1 for m in metrics if m.clarification_requested) / len(metrics), 3)
        summary.override_rate = round(overrides / total_filters, 3) if total_filters else 0.0
        return summary
