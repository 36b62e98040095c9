# ============================================================
# DBSage - Database AI Assistant
# database/postgres.py - PostgreSQL Provider & Handle
# ============================================================

import re
from typing import List, Dict, Any

import psycopg2
import psycopg2.extensions
from loguru import logger

from core.errors import QueryError, DatabaseConnectionError
from core.models import ConnectionConfig, DatabaseType, TableInfo, ColumnInfo, IndexInfo, QueryResult
from database.base import DBAPIDatabase, DatabaseProvider, split_table_name

_READ_ONLY_STATEMENT = re.compile(r"^\s*(\(\s*)*(select|with|values|table)\b", re.IGNORECASE)
_WRITE_KEYWORD = re.compile(r"\b(insert|update|delete|merge|create|drop|alter|truncate|grant|revoke)\b", re.IGNORECASE)


# ── Introspection SQL ─────────────────────────────────────────

ALL_TABLES_SQL = """
    SELECT
        t.table_name,
        t.table_schema,
        t.table_type,
        COALESCE(obj_description(c.oid), '') AS table_comment
    FROM information_schema.tables t
    LEFT JOIN pg_namespace n ON n.nspname = t.table_schema
    LEFT JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
    WHERE t.table_schema NOT IN ('information_schema', 'pg_catalog')
    ORDER BY t.table_schema, t.table_name
"""

TABLE_SCHEMA_SQL = """
    SELECT
        isc.column_name,
        isc.data_type,
        isc.is_nullable,
        isc.column_default,
        isc.character_maximum_length,
        isc.numeric_precision,
        isc.numeric_scale,
        (pk.column_name IS NOT NULL) AS is_primary_key,
        (fk.column_name IS NOT NULL) AS is_foreign_key,
        COALESCE(col_description(c.oid, a.attnum), '') AS description
    FROM information_schema.columns isc
    LEFT JOIN pg_namespace n ON n.nspname = isc.table_schema
    LEFT JOIN pg_class c ON c.relname = isc.table_name AND c.relnamespace = n.oid
    LEFT JOIN pg_attribute a ON a.attrelid = c.oid AND a.attname = isc.column_name
    LEFT JOIN (
        SELECT DISTINCT ku.column_name, ku.table_schema
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage ku
          ON tc.constraint_name = ku.constraint_name AND tc.table_schema = ku.table_schema
        WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_name = %(table)s
    ) pk ON pk.column_name = isc.column_name AND pk.table_schema = isc.table_schema
    LEFT JOIN (
        SELECT DISTINCT ku.column_name, ku.table_schema
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage ku
          ON tc.constraint_name = ku.constraint_name AND tc.table_schema = ku.table_schema
        WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_name = %(table)s
    ) fk ON fk.column_name = isc.column_name AND fk.table_schema = isc.table_schema
    WHERE isc.table_name = %(table)s
      AND (%(schema)s IS NULL OR isc.table_schema = %(schema)s)
    ORDER BY isc.ordinal_position
"""

TABLE_INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        idx.indisunique AS is_unique,
        idx.indisprimary AS is_primary,
        array_agg(a.attname ORDER BY a.attnum) AS columns,
        am.amname AS index_type,
        COALESCE(ts.spcname, '') AS tablespace,
        pg_get_indexdef(idx.indexrelid) AS definition
    FROM pg_index idx
    JOIN pg_class i ON i.oid = idx.indexrelid
    JOIN pg_class t ON t.oid = idx.indrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(idx.indkey)
    JOIN pg_am am ON am.oid = i.relam
    LEFT JOIN pg_tablespace ts ON ts.oid = i.reltablespace
    WHERE t.relname = %(table)s
      AND (%(schema)s IS NULL OR n.nspname = %(schema)s)
    GROUP BY i.relname, idx.indisunique, idx.indisprimary, am.amname, ts.spcname, idx.indexrelid
    ORDER BY i.relname
"""

TABLE_STATS_SQL = """
    SELECT
        schemaname || '.' || relname AS table_name,
        n_live_tup AS row_count,
        n_dead_tup AS dead_tuples,
        n_tup_ins AS inserts,
        n_tup_upd AS updates,
        n_tup_del AS deletes,
        n_tup_hot_upd AS hot_updates,
        seq_scan,
        seq_tup_read,
        idx_scan,
        idx_tup_fetch,
        last_vacuum,
        last_autovacuum,
        last_analyze,
        last_autoanalyze,
        vacuum_count,
        autovacuum_count,
        analyze_count,
        autoanalyze_count,
        pg_size_pretty(pg_total_relation_size(relid)) AS total_size,
        pg_size_pretty(pg_relation_size(relid)) AS table_size,
        pg_size_pretty(pg_total_relation_size(relid) - pg_relation_size(relid)) AS index_size
    FROM pg_stat_user_tables
    WHERE relname = %(table)s
      AND (%(schema)s IS NULL OR schemaname = %(schema)s)
    LIMIT 1
"""

TABLE_SIZES_SQL = """
    SELECT
        schemaname AS schema,
        tablename AS table_name,
        pg_size_pretty(pg_total_relation_size(quote_ident(schemaname) || '.' || quote_ident(tablename))) AS size,
        pg_total_relation_size(quote_ident(schemaname) || '.' || quote_ident(tablename)) AS size_bytes
    FROM pg_tables
    WHERE schemaname NOT IN ('information_schema', 'pg_catalog')
    ORDER BY size_bytes DESC
"""

SLOW_QUERIES_SQL = """
    SELECT
        query,
        calls,
        total_exec_time AS total_time,
        mean_exec_time AS mean_time,
        min_exec_time AS min_time,
        max_exec_time AS max_time,
        stddev_exec_time AS stddev_time,
        rows
    FROM pg_stat_statements
    ORDER BY total_exec_time DESC
    LIMIT 20
"""

DATABASE_SIZE_SQL = """
    SELECT
        current_database() AS database_name,
        pg_size_pretty(pg_database_size(current_database())) AS size,
        pg_database_size(current_database()) AS size_bytes
"""

ACTIVE_CONNECTIONS_SQL = """
    SELECT
        pid,
        usename AS username,
        datname AS database_name,
        COALESCE(client_addr::text, '') AS client_addr,
        state,
        query,
        COALESCE((now() - query_start)::text, '') AS duration
    FROM pg_stat_activity
    WHERE state = 'active' AND pid != pg_backend_pid()
    ORDER BY query_start DESC
"""


class PostgreSQLDatabase(DBAPIDatabase):
    """psycopg2-backed handle (autocommit, one statement per call)."""

    driver_errors = (psycopg2.Error,)

    def quote_identifier(self, name: str) -> str:
        return psycopg2.extensions.quote_ident(name, self._conn)

    def explain_query(self, sql: str) -> QueryResult:
        # ANALYZE runs the statement; only do that for reads
        if _READ_ONLY_STATEMENT.match(sql) and not _WRITE_KEYWORD.search(sql):
            return self.execute_sql(f"EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) {sql}")
        return self.execute_sql(f"EXPLAIN (FORMAT JSON) {sql}")

    def get_all_tables(self) -> List[TableInfo]:
        rows = self._fetch_dicts(ALL_TABLES_SQL)
        return [
            TableInfo(
                name=r["table_name"],
                schema=r["table_schema"] or "",
                type=r["table_type"] or "",
                comment=r["table_comment"] or "",
            )
            for r in rows
        ]

    def get_table_schema(self, table_name: str) -> List[ColumnInfo]:
        schema, table = split_table_name(table_name)
        rows = self._fetch_dicts(TABLE_SCHEMA_SQL, {"table": table, "schema": schema})
        return [
            ColumnInfo(
                column_name=r["column_name"],
                data_type=r["data_type"] or "",
                is_nullable=r["is_nullable"] or "",
                default_value=r["column_default"],
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
        rows = self._fetch_dicts(TABLE_INDEXES_SQL, {"table": table, "schema": schema})
        indexes = []
        for r in rows:
            columns = r["columns"]
            if isinstance(columns, str):
                # name[] may come back unparsed as '{a,b}'
                columns = [c for c in columns.strip("{}").split(",") if c]
            indexes.append(IndexInfo(
                index_name=r["index_name"],
                is_unique=bool(r["is_unique"]),
                is_primary=bool(r["is_primary"]),
                columns=list(columns or []),
                index_type=r["index_type"] or "",
                tablespace=r["tablespace"] or "",
                definition=r["definition"] or "",
            ))
        return indexes

    def get_table_stats(self, table_name: str) -> Dict[str, Any]:
        schema, table = split_table_name(table_name)
        row = self._fetch_one(TABLE_STATS_SQL, {"table": table, "schema": schema})
        if row is None:
            raise QueryError(f"table '{table_name}' not found in pg_stat_user_tables")
        return row

    def get_table_sizes(self) -> List[Dict[str, Any]]:
        return self._fetch_dicts(TABLE_SIZES_SQL)

    def get_slow_queries(self) -> List[Dict[str, Any]]:
        try:
            return self._fetch_dicts(SLOW_QUERIES_SQL)
        except QueryError as e:
            raise QueryError(
                f"pg_stat_statements is not available ({e}); "
                "enable the extension with CREATE EXTENSION pg_stat_statements",
                SLOW_QUERIES_SQL,
            ) from e

    def get_database_size(self) -> Dict[str, Any]:
        return self._fetch_one(DATABASE_SIZE_SQL) or {}

    def get_active_connections(self) -> List[Dict[str, Any]]:
        return self._fetch_dicts(ACTIVE_CONNECTIONS_SQL)

    def is_healthy(self) -> bool:
        if self._closed or self._conn.closed:
            return False
        try:
            self._fetch("SELECT 1")
            return True
        except QueryError as e:
            logger.warning(f"Health check failed for {self._cfg.name}: {e}")
            return False


class PostgreSQLProvider(DatabaseProvider):
    db_type = DatabaseType.POSTGRESQL.value

    def validate_config(self, cfg: ConnectionConfig):
        if cfg.type != DatabaseType.POSTGRESQL:
            raise DatabaseConnectionError(f"connection '{cfg.name}' is not a PostgreSQL configuration")
        if not cfg.host:
            raise DatabaseConnectionError("host is required")
        if not (0 < cfg.port < 65536):
            raise DatabaseConnectionError(f"invalid port: {cfg.port}")
        if not cfg.username:
            raise DatabaseConnectionError("username is required")

    def connection_params(self, cfg: ConnectionConfig) -> Dict[str, Any]:
        return {
            "host": cfg.host,
            "port": cfg.port,
            "dbname": cfg.database or "postgres",
            "user": cfg.username,
            "password": cfg.password,
            "sslmode": cfg.sslmode or "disable",
            "application_name": "dbsage",
        }

    def create_connection(self, cfg: ConnectionConfig) -> PostgreSQLDatabase:
        self.validate_config(cfg)
        try:
            conn = psycopg2.connect(**self.connection_params(cfg))
            conn.autocommit = True
        except psycopg2.Error as e:
            raise DatabaseConnectionError(f"failed to connect to {cfg.address}: {str(e).strip()}") from e
        logger.info(f"Connected to PostgreSQL at {cfg.address}")
        return PostgreSQLDatabase(conn, cfg)
