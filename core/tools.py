# ============================================================
# DBSage - Database AI Assistant
# core/tools.py - Tool Catalog & Dispatcher
# ============================================================

import dataclasses
import datetime
import decimal
import json
import uuid
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable

from loguru import logger

from core.errors import QueryError, UnknownToolError, MalformedToolArgsError
from core.models import RiskLevel, ToolCall
from database.base import DatabaseInterface

NO_CONNECTION_MESSAGE = (
    "No database connection available. Please add and switch to a database "
    "connection first using the /add command."
)

_JSON_TYPES = {
    "string": str,
    "array": list,
    "object": dict,
    "boolean": bool,
}


@dataclass
class ToolDescriptor:
    name: str
    description: str
    invoke: Callable[[DatabaseInterface, Dict[str, Any]], Any]
    properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)
    risk: RiskLevel = RiskLevel.LOW
    requires_confirmation: bool = False
    confirm_description: str = ""

    def schema(self) -> Dict[str, Any]:
        """Function declaration in the chat-completions `tools` format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.properties,
                    "required": list(self.required),
                },
            },
        }


# ── Argument Schemas ──────────────────────────────────────────

_SQL = {"sql": {"type": "string", "description": "The SQL query to execute"}}
_EXPLAIN_SQL = {"sql": {"type": "string", "description": "The SQL query to analyze"}}
_TABLE = {"tableName": {"type": "string", "description": "The name of the table"}}
_DUPLICATES = {
    **_TABLE,
    "columns": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Array of column names to check for duplicates",
    },
}


def default_tools() -> List[ToolDescriptor]:
    return [
        ToolDescriptor(
            name="execute_sql",
            description="Execute a SQL query",
            properties=_SQL,
            required=["sql"],
            risk=RiskLevel.HIGH,
            requires_confirmation=True,
            confirm_description="Execute SQL query on the database",
            invoke=lambda db, a: db.execute_sql(a["sql"]),
        ),
        ToolDescriptor(
            name="explain_query",
            description="Analyze query performance with EXPLAIN (ANALYZE is used for read-only queries)",
            properties=_EXPLAIN_SQL,
            required=["sql"],
            confirm_description="Analyze query execution plan",
            invoke=lambda db, a: db.explain_query(a["sql"]),
        ),
        ToolDescriptor(
            name="get_all_tables",
            description="Get all tables in the database",
            confirm_description="Get list of all tables",
            invoke=lambda db, a: db.get_all_tables(),
        ),
        ToolDescriptor(
            name="get_table_schema",
            description="Get detailed schema of a table including columns, types, nullability, defaults",
            properties=_TABLE,
            required=["tableName"],
            confirm_description="Get table schema information",
            invoke=lambda db, a: db.get_table_schema(a["tableName"]),
        ),
        ToolDescriptor(
            name="get_table_indexes",
            description="Get all indexes for a specific table",
            properties=_TABLE,
            required=["tableName"],
            confirm_description="Get table index information",
            invoke=lambda db, a: db.get_table_indexes(a["tableName"]),
        ),
        ToolDescriptor(
            name="get_table_stats",
            description="Get statistical information about a table (row counts, scans, vacuum/analyze, sizes)",
            properties=_TABLE,
            required=["tableName"],
            confirm_description="Get table statistics",
            invoke=lambda db, a: db.get_table_stats(a["tableName"]),
        ),
        ToolDescriptor(
            name="find_duplicate_data",
            description="Find duplicate records in a table based on specified columns",
            properties=_DUPLICATES,
            required=["tableName", "columns"],
            risk=RiskLevel.MEDIUM,
            requires_confirmation=True,
            confirm_description="Find duplicate data in table",
            invoke=lambda db, a: db.find_duplicate_data(a["tableName"], a["columns"]),
        ),
        ToolDescriptor(
            name="get_slow_queries",
            description="Get the slowest queries recorded by the database statistics views",
            confirm_description="Get slow query information",
            invoke=lambda db, a: db.get_slow_queries(),
        ),
        ToolDescriptor(
            name="get_database_size",
            description="Get the size of the current database",
            confirm_description="Get database size information",
            invoke=lambda db, a: db.get_database_size(),
        ),
        ToolDescriptor(
            name="get_table_sizes",
            description="Get sizes of all tables including table and index sizes",
            confirm_description="Get table size information",
            invoke=lambda db, a: db.get_table_sizes(),
        ),
        ToolDescriptor(
            name="get_active_connections",
            description="Get information about active database connections",
            confirm_description="Get active database connections",
            invoke=lambda db, a: db.get_active_connections(),
        ),
    ]


# ── JSON Encoding ─────────────────────────────────────────────

def _json_default(value: Any):
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(value)


def to_json(value: Any) -> str:
    return json.dumps(value, default=_json_default, ensure_ascii=False)


def error_body(message: str) -> str:
    return to_json({"error": message})


def parse_arguments(call: ToolCall) -> Dict[str, Any]:
    """Decode the assembled argument string; an empty string means no arguments."""
    raw = (call.function.arguments or "").strip()
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedToolArgsError(call.function.name, f"{e.msg} at position {e.pos}") from e
    if not isinstance(args, dict):
        raise MalformedToolArgsError(call.function.name, "arguments must be a JSON object")
    return args


# ════════════════════════════════════════════════════════════
# CATALOG
# ════════════════════════════════════════════════════════════

class ToolCatalog:
    """Static set of tools offered to the model, with risk metadata and dispatch."""

    def __init__(self, tools: Optional[List[ToolDescriptor]] = None):
        self._tools: Dict[str, ToolDescriptor] = {}
        for tool in tools if tools is not None else default_tools():
            self._tools[tool.name] = tool

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDescriptor:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def describe_all(self) -> List[Dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    def requires_confirmation(self, name: str) -> bool:
        return self.get(name).requires_confirmation

    def risk(self, name: str) -> RiskLevel:
        return self.get(name).risk

    def describe(self, name: str, args: Dict[str, Any]) -> str:
        """Text shown on the confirmation prompt."""
        tool = self.get(name)
        base = tool.confirm_description or f"Execute {name}"
        if name == "execute_sql" and args.get("sql"):
            detail = f"Execute SQL: {args['sql']}"
        elif name == "find_duplicate_data":
            cols = ", ".join(str(c) for c in args.get("columns") or [])
            detail = f"{base}: {args.get('tableName', '?')} ({cols})"
        else:
            detail = base
        return f"[{tool.risk.value.upper()} RISK] {detail}"

    def _validate(self, tool: ToolDescriptor, args: Dict[str, Any]) -> Optional[str]:
        missing = [key for key in tool.required if key not in args]
        if missing:
            return f"missing required argument(s) for {tool.name}: {', '.join(missing)}"
        for key in tool.required:
            expected = _JSON_TYPES.get(tool.properties.get(key, {}).get("type", ""))
            if expected is not None and not isinstance(args[key], expected):
                return f"argument '{key}' for {tool.name} must be of type {tool.properties[key]['type']}"
        if tool.name == "find_duplicate_data" and not args["columns"]:
            return "argument 'columns' for find_duplicate_data must not be empty"
        extra = sorted(set(args) - set(tool.properties))
        if extra:
            logger.warning(f"Ignoring unknown argument(s) for {tool.name}: {', '.join(extra)}")
        return None

    def dispatch(self, handle: Optional[DatabaseInterface], call: ToolCall) -> str:
        """
        Run one tool call against `handle` and return the JSON tool response.
        Capability failures become {"error": ...} bodies; only an unknown
        tool name or undecodable arguments raise.
        """
        tool = self.get(call.function.name)
        args = parse_arguments(call)

        if handle is None:
            logger.info(f"Tool {tool.name} requested without an active connection")
            return error_body(NO_CONNECTION_MESSAGE)

        problem = self._validate(tool, args)
        if problem:
            logger.warning(problem)
            return error_body(problem)

        logger.info(f"Dispatching tool {tool.name} (call {call.id})")
        logger.debug(f"Tool {tool.name} arguments: {args}")
        try:
            result = tool.invoke(handle, args)
        except QueryError as e:
            logger.warning(f"Tool {tool.name} failed: {e}")
            return error_body(str(e))
        return to_json(result)
