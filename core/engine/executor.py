# InsightGen - SQL Executor
# ==========================
"""
SQL Executor
============
Runs resolved SQL and returns tabular results.

QueryExecutor is the interface the orchestrator depends on; failures are
raised as ExecutionError so the orchestrator can record the failing step.
DuckDBExecutor runs against a DuckDB database (read-only by default);
MockExecutor returns canned rows for tests.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import duckdb

from .generation import ResolutionError
from .models import QueryResults

logger = logging.getLogger(__name__)


class ExecutionError(ResolutionError):
    """Raised when SQL execution fails."""

    step = "execute_sql"

    def __init__(self, message: str, sql: Optional[str] = None):
        self.sql = sql
        super().__init__(message)


@dataclass
class ExecutorConfig:
    """Configuration for SQL execution."""
    # Maximum rows to return
    max_rows: int = 10000

    # Read-only mode (should always be True for safety)
    read_only: bool = True


class QueryExecutor(ABC):
    """Collaborator that executes SQL for a customer."""

    @abstractmethod
    def execute(self, sql: str, customer_id: str) -> QueryResults:
        """Execute SQL; raise ExecutionError on failure."""


class DuckDBExecutor(QueryExecutor):
    """
    Executes SQL against DuckDB.

    Example:
        executor = DuckDBExecutor("data/clinical.duckdb")
        results = executor.execute("SELECT COUNT(*) AS n FROM wound_assessments", "C1")
    """

    def __init__(self, db_path: Optional[str] = None, config: Optional[ExecutorConfig] = None,
                 connection: Optional[duckdb.DuckDBPyConnection] = None):
        """
        Initialize executor.

        Args:
            db_path: Path to DuckDB database
            config: Executor configuration
            connection: Optional shared DuckDB connection
        """
        self.db_path = db_path
        self.config = config or ExecutorConfig()
        self._shared_connection = connection

    def execute(self, sql: str, customer_id: str) -> QueryResults:
        if not sql or not sql.strip():
            raise ExecutionError("Empty SQL query", sql)

        start_time = time.time()
        if self._shared_connection is not None:
            conn = self._shared_connection.cursor()
        else:
            conn = duckdb.connect(self.db_path or ":memory:", read_only=self.config.read_only and bool(self.db_path))

        try:
            result = conn.execute(sql)
            columns = [desc[0] for desc in result.description] if result.description else []
            rows = result.fetchmany(self.config.max_rows) if columns else []
            data = [dict(zip(columns, row)) for row in rows]
        except duckdb.CatalogException as e:
            logger.error(f"SQL catalog error for customer {customer_id}: {e}")
            raise ExecutionError(f"Table or column not found: {e}", sql) from e
        except duckdb.ParserException as e:
            logger.error(f"SQL parser error for customer {customer_id}: {e}")
            raise ExecutionError(f"SQL syntax error: {e}", sql) from e
        except duckdb.Error as e:
            logger.error(f"SQL execution error for customer {customer_id}: {e}")
            raise ExecutionError(str(e), sql) from e
        finally:
            conn.close()

        execution_time = (time.time() - start_time) * 1000
        logger.debug(f"Executed SQL for {customer_id}: {len(data)} rows in {execution_time:.1f}ms")
        return QueryResults(columns=columns, rows=data, execution_time_ms=execution_time)


class MockExecutor(QueryExecutor):
    """
    Mock executor for testing.

    Returns the configured rows for every query, or raises the configured
    error. Executed SQL is recorded in `executed`.
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None,
                 error: Optional[Union[Exception, Callable[[str], Optional[Exception]]]] = None):
        self.rows = rows if rows is not None else [{'count': 42}]
        self.error = error
        self.executed: List[str] = []

    def execute(self, sql: str, customer_id: str) -> QueryResults:
        self.executed.append(sql)
        error = self.error(sql) if callable(self.error) and not isinstance(self.error, Exception) else self.error
        if error is not None:
            raise error
        columns = list(self.rows[0].keys()) if self.rows else []
        return QueryResults(columns=columns, rows=[dict(r) for r in self.rows], execution_time_ms=1.0)
