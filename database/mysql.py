# ============================================================
# DBSage - Database AI Assistant
# database/mysql.py - MySQL Provider & Handle
# ============================================================

from typing import List, Dict, Any

import mysql.connector
from mysql.connector import Error as MySQLError
from loguru import logger

from core.errors import QueryError, DatabaseConnectionError
from core.models import ConnectionConfig, DatabaseType, TableInfo, ColumnInfo, IndexInfo, QueryResult
from database.base import DBAPIDatabase, DatabaseProvider, split_table_name

DEFAULT_CHARSET = "utf8mb4"
DEFAULT_COLLATION = "utf8mb4_unicode_ci"
DEFAULT_TIMEOUT = "30s"


# ── Introspection SQL ─────────────────────────────────────────

ALL_TABLES_SQL = """
    SELECT
        table_name AS table_name,
        table_schema AS table_schema,
        table_type AS table_type,
        COALESCE(table_comment, '') AS table_comment
    FROM information_schema.tables
    WHERE table_schema = DATABASE()
    ORDER BY table_schema, table_name
"""

TABLE_SCHEMA_SQL = """
    SELECT
        column_name AS column_name,
        data_type AS data_type,
        is_nullable AS is_nullable,
        column_default AS column_default,
        character_maximum_length AS character_maximum_length,
        numeric_precision AS numeric_precision,
        numeric_scale AS numeric_scale,
        CASE WHEN column_key = 'PRI' THEN 1 ELSE 0 END AS is_primary_key,
        CASE WHEN column_key = 'MUL' THEN 1 ELSE 0 END AS is_foreign_key,
        COALESCE(column_comment, '') AS description
    FROM information_schema.columns
    WHERE table_schema = COALESCE(%s, DATABASE()) AND table_name = %s
    ORDER BY ordinal_position
"""

TABLE_INDEXES_SQL = """
    SELECT
        index_name AS index_name,
        CASE WHEN non_unique = 0 THEN 1 ELSE 0 END AS is_unique,
        CASE WHEN index_name = 'PRIMARY' THEN 1 ELSE 0 END AS is_primary,
        GROUP_CONCAT(column_name ORDER BY seq_in_index) AS columns,
        index_type AS index_type,
        COALESCE(index_comment, '') AS description
    FROM information_schema.statistics
    WHERE table_schema = COALESCE(%s, DATABASE()) AND table_name = %s
    GROUP BY index_name, non_unique, index_type, index_comment
    ORDER BY index_name
"""

TABLE_STATS_SQL = """
    SELECT
        CONCAT(table_schema, '.', table_name) AS table_name,
        table_rows AS row_count,
        ROUND(((data_length + index_length) / 1024 / 1024), 2) AS total_size_mb,
        ROUND((data_length / 1024 / 1024), 2) AS data_size_mb,
        ROUND((index_length / 1024 / 1024), 2) AS index_size_mb,
        engine AS engine,
        create_time AS create_time,
        update_time AS update_time
    FROM information_schema.tables
    WHERE table_schema = COALESCE(%s, DATABASE()) AND table_name = %s
"""

TABLE_SIZES_SQL = """
    SELECT
        table_schema AS `schema`,
        table_name AS table_name,
        ROUND(((data_length + index_length) / 1024 / 1024), 2) AS size_mb,
        (data_length + index_length) AS size_bytes
    FROM information_schema.tables
    WHERE table_schema = DATABASE()
    ORDER BY (data_length + index_length) DESC
"""

SLOW_QUERIES_SQL = """
    SELECT
        digest_text AS query,
        count_star AS calls,
        sum_timer_wait / 1000000000 AS total_time,
        avg_timer_wait / 1000000000 AS mean_time,
        min_timer_wait / 1000000000 AS min_time,
        max_timer_wait / 1000000000 AS max_time,
        sum_rows_examined AS rows_examined
    FROM performance_schema.events_statements_summary_by_digest
    WHERE digest_text IS NOT NULL
    ORDER BY sum_timer_wait DESC
    LIMIT 20
"""

DATABASE_SIZE_SQL = """
    SELECT
        DATABASE() AS database_name,
        ROUND(COALESCE(SUM(data_length + index_length), 0) / 1024 / 1024, 2) AS size_mb,
        COALESCE(SUM(data_length + index_length), 0) AS size_bytes
    FROM information_schema.tables
    WHERE table_schema = DATABASE()
"""

ACTIVE_CONNECTIONS_SQL = """
    SELECT
        id AS pid,
        user AS username,
        db AS database_name,
        host AS client_addr,
        command AS state,
        COALESCE(info, '') AS query,
        time AS duration_seconds
    FROM information_schema.processlist
    WHERE command != 'Sleep' AND id != CONNECTION_ID()
    ORDER BY time DESC
"""


class MySQLDatabase(DBAPIDatabase):
    """mysql-connector backed handle (buffered cursors, autocommit)."""

    driver_errors = (MySQLError,)

    def _new_cursor(self):
        return self._conn.cursor(buffered=True)

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    def explain_query(self, sql: str) -> QueryResult:
        return self.execute_sql(f"EXPLAIN FORMAT=JSON {sql}")

    def get_all_tables(self) -> List[TableInfo]:
        return [
            TableInfo(
                name=r["table_name"],
                schema=r["table_schema"] or "",
                type=r["table_type"] or "",
                comment=r["table_comment"] or "",
            )
            for r in self._fetch_dicts(ALL_TABLES_SQL)
        ]

    def get_table_schema(self, table_name: str) -> List[ColumnInfo]:
        schema, table = split_table_name(table_name)
        rows = self._fetch_dicts(TABLE_SCHEMA_SQL, (schema, table))
        return [
            ColumnInfo(
                column_name=r["column_name"],
                data_type=r["data_type"] or "",
                is_nullable=r["is_nullable"] or "",
                default_value=None if r["column_default"] is None else str(r["column_default"]),
                character_maximum_length=r["character_maximum_length"],
                numeric_precision=r["numeric_precision"],
                numeric_scale=r["numeric_scale"],
                is_primary_key=bool(r["is_primary_key"]),
                is_foreign_key=bool(r["is_foreign_key"]),
                description=r["description"] or "",
            )
            for r in rows
        ]

    def get_table_indexes(self, table_name: str) -> List[IndexInfo]:
        schema, table = split_table_name(table_name)
        rows = self._fetch_dicts(TABLE_INDEXES_SQL, (schema, table))
        return [
            IndexInfo(
                index_name=r["index_name"],
                is_unique=bool(r["is_unique"]),
                is_primary=bool(r["is_primary"]),
                columns=[c for c in (r["columns"] or "").split(",") if c],
                index_type=r["index_type"] or "",
                definition=r["description"] or "",
            )
            for r in rows
        ]

    def get_table_stats(self, table_name: str) -> Dict[str, Any]:
        schema, table = split_table_name(table_name)
        row = self._fetch_one(TABLE_STATS_SQL, (schema, table))
        if row is None:
            raise QueryError(f"table '{table_name}' not found")
        return row

    def get_table_sizes(self) -> List[Dict[str, Any]]:
        return self._fetch_dicts(TABLE_SIZES_SQL)

    def get_slow_queries(self) -> List[Dict[str, Any]]:
        # performance_schema is often disabled or not granted
        try:
            return self._fetch_dicts(SLOW_QUERIES_SQL)
        except QueryError as e:
            logger.warning(f"Slow query statistics unavailable on {self._cfg.name}: {e}")
            return []

    def get_database_size(self) -> Dict[str, Any]:
        return self._fetch_one(DATABASE_SIZE_SQL) or {}

    def get_active_connections(self) -> List[Dict[str, Any]]:
        return self._fetch_dicts(ACTIVE_CONNECTIONS_SQL)

    def is_healthy(self) -> bool:
        if self._closed:
            return False
        try:
            with self._lock:
                self._conn.ping(reconnect=False)
            return True
        except MySQLError as e:
            logger.warning(f"Health check failed for {self._cfg.name}: {e}")
            return False


def _timeout_seconds(value: str) -> int:
    """'30s' / '2m' / '45' -> seconds."""
    text = (value or DEFAULT_TIMEOUT).strip().lower()
    try:
        if text.endswith("ms"):
            return max(1, int(float(text[:-2]) / 1000))
        if text.endswith("s"):
            return int(float(text[:-1]))
        if text.endswith("m"):
            return int(float(text[:-1]) * 60)
        return int(float(text))
    except ValueError:
        raise DatabaseConnectionError(f"invalid timeout: {value}")


class MySQLProvider(DatabaseProvider):
    db_type = DatabaseType.MYSQL.value

    def validate_config(self, cfg: ConnectionConfig):
        if cfg.type != DatabaseType.MYSQL:
            raise DatabaseConnectionError(f"connection '{cfg.name}' is not a MySQL configuration")
        if not cfg.host:
            raise DatabaseConnectionError("host is required")
        if not (0 < cfg.port < 65536):
            raise DatabaseConnectionError(f"invalid port: {cfg.port}")
        if not cfg.username:
            raise DatabaseConnectionError("username is required")
        if not cfg.database:
            raise DatabaseConnectionError("database name is required")
        _timeout_seconds(cfg.timeout)

    def connection_params(self, cfg: ConnectionConfig) -> Dict[str, Any]:
        return {
            "host": cfg.host,
            "port": cfg.port,
            "database": cfg.database,
            "user": cfg.username,
            "password": cfg.password,
            "charset": cfg.charset or DEFAULT_CHARSET,
            "collation": cfg.collation or DEFAULT_COLLATION,
            "connection_timeout": _timeout_seconds(cfg.timeout),
            "autocommit": True,
        }

    def create_connection(self, cfg: ConnectionConfig) -> MySQLDatabase:
        self.validate_config(cfg)
        try:
            conn = mysql.connector.connect(**self.connection_params(cfg))
        except MySQLError as e:
            raise DatabaseConnectionError(f"failed to connect to {cfg.address}: {e}") from e
        logger.info(f"Connected to MySQL at {cfg.address}")
        return MySQLDatabase(conn, cfg)
