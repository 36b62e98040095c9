# ============================================================
# DBSage - Database AI Assistant
# database/base.py - Database Capability Interface
# ============================================================

import threading
import time
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Tuple

from loguru import logger

from core.errors import QueryError, DatabaseConnectionError
from core.models import ConnectionConfig, QueryResult, TableInfo, ColumnInfo, IndexInfo
from utils.helpers import format_duration

DUPLICATE_LIMIT = 100


def normalize_value(value: Any) -> Any:
    """Driver values -> JSON-friendly values (bytes become text)."""
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


def split_table_name(name: str) -> Tuple[Optional[str], str]:
    """'schema.table' -> ('schema', 'table'); 'table' -> (None, 'table')."""
    name = name.strip()
    if "." in name:
        schema, table = name.split(".", 1)
        return schema or None, table
    return None, name


class DatabaseInterface(ABC):
    """
    Operations the assistant may invoke on a live database.
    Every dialect implements the same set; fields a dialect cannot
    populate come back empty or zero instead of raising.
    """

    @abstractmethod
    def execute_sql(self, sql: str) -> QueryResult: ...

    @abstractmethod
    def explain_query(self, sql: str) -> QueryResult: ...

    @abstractmethod
    def get_all_tables(self) -> List[TableInfo]: ...

    @abstractmethod
    def get_table_schema(self, table_name: str) -> List[ColumnInfo]: ...

    @abstractmethod
    def get_table_indexes(self, table_name: str) -> List[IndexInfo]: ...

    @abstractmethod
    def get_table_stats(self, table_name: str) -> Dict[str, Any]: ...

    @abstractmethod
    def get_table_sizes(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def find_duplicate_data(self, table_name: str, columns: List[str]) -> QueryResult: ...

    @abstractmethod
    def get_slow_queries(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_database_size(self) -> Dict[str, Any]: ...

    @abstractmethod
    def get_active_connections(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def close(self): ...

    @abstractmethod
    def is_healthy(self) -> bool: ...

    def check(self):
        """Raise DatabaseConnectionError when the handle is not usable."""
        if not self.is_healthy():
            raise DatabaseConnectionError("database connection is not healthy")


class DatabaseProvider(ABC):
    """Opens handles for one database type."""

    db_type: str = ""

    @abstractmethod
    def validate_config(self, cfg: ConnectionConfig): ...

    @abstractmethod
    def connection_params(self, cfg: ConnectionConfig) -> Dict[str, Any]: ...

    @abstractmethod
    def create_connection(self, cfg: ConnectionConfig) -> DatabaseInterface: ...


# ════════════════════════════════════════════════════════════
# DB-API BACKED IMPLEMENTATION
# ════════════════════════════════════════════════════════════

class DBAPIDatabase(DatabaseInterface):
    """
    Shared plumbing for DB-API 2.0 drivers.
    Calls on one handle are serialized; the drivers' connection
    objects are not safe for concurrent cursors.
    """

    driver_errors: Tuple[type, ...] = (Exception,)

    def __init__(self, connection, cfg: ConnectionConfig):
        self._conn = connection
        self._cfg = cfg
        self._lock = threading.Lock()
        self._closed = False

    @property
    def config(self) -> ConnectionConfig:
        return self._cfg

    # ── Hooks ─────────────────────────────────────────────────

    @abstractmethod
    def quote_identifier(self, name: str) -> str: ...

    def _new_cursor(self):
        return self._conn.cursor()

    # ── Query Plumbing ────────────────────────────────────────

    def _fetch(self, sql: str, params: Optional[Any] = None) -> Tuple[List[str], List[List[Any]]]:
        if self._closed:
            raise QueryError("connection is closed", sql)
        with self._lock:
            cursor = self._new_cursor()
            try:
                if params is None:
                    cursor.execute(sql)
                else:
                    cursor.execute(sql, params)
                if cursor.description is None:
                    return [], []
                columns = [d[0] for d in cursor.description]
                rows = [[normalize_value(v) for v in row] for row in cursor.fetchall()]
                return columns, rows
            except self.driver_errors as e:
                raise QueryError(str(e).strip(), sql) from e
            finally:
                try:
                    cursor.close()
                except self.driver_errors as e:
                    logger.debug(f"Cursor close failed: {e}")

    def _fetch_dicts(self, sql: str, params: Optional[Any] = None) -> List[Dict[str, Any]]:
        columns, rows = self._fetch(sql, params)
        return [dict(zip(columns, row)) for row in rows]

    def _fetch_one(self, sql: str, params: Optional[Any] = None) -> Optional[Dict[str, Any]]:
        rows = self._fetch_dicts(sql, params)
        return rows[0] if rows else None

    # ── Capabilities ──────────────────────────────────────────

    def execute_sql(self, sql: str) -> QueryResult:
        start = time.perf_counter()
        columns, rows = self._fetch(sql)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Query returned {len(rows)} rows in {elapsed_ms:.1f}ms")
        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            duration=format_duration(elapsed_ms),
        )

    def find_duplicate_data(self, table_name: str, columns: List[str]) -> QueryResult:
        if not columns:
            raise QueryError("at least one column is required")
        schema, table = split_table_name(table_name)
        target = self.quote_identifier(table)
        if schema:
            target = f"{self.quote_identifier(schema)}.{target}"
        col_list = ", ".join(self.quote_identifier(c) for c in columns)
        sql = (
            f"SELECT {col_list}, COUNT(*) AS duplicate_count "
            f"FROM {target} "
            f"GROUP BY {col_list} "
            f"HAVING COUNT(*) > 1 "
            f"ORDER BY COUNT(*) DESC "
            f"LIMIT {DUPLICATE_LIMIT}"
        )
        return self.execute_sql(sql)

    def close(self):
        if self._closed:
            return
        self._closed = True
        with self._lock:
            try:
                self._conn.close()
                logger.info(f"Closed connection to {self._cfg.address}")
            except self.driver_errors as e:
                logger.warning(f"Error during close of {self._cfg.name}: {e}")
