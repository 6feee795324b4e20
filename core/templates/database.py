"""
Template Database
=================

SQLite storage for the query template catalog.
"""

import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from .models import PlaceholderSpec, QueryTemplate, TemplateFilters, TemplateStatus


class TemplateDB:
    """SQLite database for query templates."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the template database.

        Args:
            db_path: Path to SQLite database. Defaults to $DATA_DIR/templates.db
        """
        if db_path is None:
            db_path = os.getenv("TEMPLATE_DB_PATH")
            if db_path is None:
                data_dir = Path(os.getenv("DATA_DIR", "data"))
                db_path = str(data_dir / "templates.db")

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(db_path)
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
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
            conn.execute("""
                CREATE TABLE IF NOT EXISTS query_templates (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    intent TEXT NOT NULL,
                    status TEXT NOT NULL,
                    keywords TEXT,
                    tags TEXT,
                    sql_pattern TEXT NOT NULL,
                    placeholders TEXT,
                    question_examples TEXT,
                    customer_id TEXT,
                    usage_count INTEGER DEFAULT 0,
                    success_count INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_templates_status ON query_templates(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_templates_intent ON query_templates(intent)")

    # ==================== WRITES ====================

    def save(self, template: QueryTemplate) -> QueryTemplate:
        """Insert or update a template; assigns an id on first save."""
        now = datetime.now()
        template_id = template.id or uuid.uuid4().hex
        created_at = template.created_at or now
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO query_templates (
                    id, name, description, intent, status, keywords, tags, sql_pattern,
                    placeholders, question_examples, customer_id, usage_count, success_count,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    intent = excluded.intent,
                    status = excluded.status,
                    keywords = excluded.keywords,
                    tags = excluded.tags,
                    sql_pattern = excluded.sql_pattern,
                    placeholders = excluded.placeholders,
                    question_examples = excluded.question_examples,
                    customer_id = excluded.customer_id,
                    updated_at = excluded.updated_at
            """, (
                template_id,
                template.name,
                template.description,
                template.intent,
                TemplateStatus(template.status).value,
                json.dumps(template.keywords),
                json.dumps(template.tags),
                template.sql_pattern,
                json.dumps([p.model_dump(mode='json') for p in template.placeholders]),
                json.dumps(template.question_examples),
                template.customer_id,
                template.usage_count,
                template.success_count,
                created_at.isoformat(),
                now.isoformat(),
            ))
        return self.get(template_id)

    def update_status(self, template_id: str, status: TemplateStatus) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE query_templates SET status = ?, updated_at = ? WHERE id = ?",
                (TemplateStatus(status).value, datetime.now().isoformat(), template_id)
            )
            return cursor.rowcount > 0

    def record_usage(self, template_id: str, success: bool) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                UPDATE query_templates
                SET usage_count = usage_count + 1,
                    success_count = success_count + ?
                WHERE id = ?
            """, (1 if success else 0, template_id))

    # ==================== READS ====================

    def get(self, template_id: str) -> Optional[QueryTemplate]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM query_templates WHERE id = ?", (template_id,)).fetchone()
            return self._row_to_template(row) if row else None

    def list(self, filters: TemplateFilters) -> Tuple[List[QueryTemplate], int]:
        """
        List templates matching filters.

        Returns:
            (page of templates, total matching count)
        """
        where = []
        params: list = []

        if filters.status is not None:
            where.append("status = ?")
            params.append(TemplateStatus(filters.status).value)
        if filters.intent:
            where.append("intent = ?")
            params.append(filters.intent)
        if filters.customer_id:
            where.append("(customer_id IS NULL OR customer_id = ?)")
            params.append(filters.customer_id)
        if filters.tag:
            where.append("EXISTS (SELECT 1 FROM json_each(query_templates.tags) WHERE LOWER(json_each.value) = ?)")
            params.append(filters.tag.lower())
        if filters.search:
            where.append("(LOWER(name) LIKE ? OR LOWER(COALESCE(description, '')) LIKE ? OR LOWER(keywords) LIKE ?)")
            pattern = f"%{filters.search.lower()}%"
            params.extend([pattern, pattern, pattern])

        clause = f"WHERE {' AND '.join(where)}" if where else ""

        with self._get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM query_templates {clause}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM query_templates {clause} ORDER BY name, id LIMIT ? OFFSET ?",
                params + [filters.limit, filters.offset]
            ).fetchall()

        return [self._row_to_template(r) for r in rows], total

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> QueryTemplate:
        return QueryTemplate(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            intent=row["intent"],
            status=TemplateStatus(row["status"]),
            keywords=json.loads(row["keywords"] or "[]"),
            tags=json.loads(row["tags"] or "[]"),
            sql_pattern=row["sql_pattern"],
            placeholders=[PlaceholderSpec(**p) for p in json.loads(row["placeholders"] or "[]")],
            question_examples=json.loads(row["question_examples"] or "[]"),
            customer_id=row["customer_id"],
            usage_count=row["usage_count"],
            success_count=row["success_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
