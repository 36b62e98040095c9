"""Shared fakes: a scripted LLM, an in-memory database handle and provider."""

import copy
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pytest

from core.confirmation import ConfirmationMediator
from core.errors import DatabaseConnectionError
from core.models import ConnectionConfig, QueryResult, TableInfo, ColumnInfo, IndexInfo
from core.orchestrator import Orchestrator
from core.registry import ConnectionRegistry
from core.tools import ToolCatalog
from database.base import DatabaseInterface, DatabaseProvider
from database.providers import ProviderManager


# ---------------------------------------------------------------------------
# Stream chunk builders
# ---------------------------------------------------------------------------

def text_chunk(text: str) -> Dict[str, Any]:
    return {"choices": [{"delta": {"content": text}}]}


def tool_chunks(name: str, arguments: str, call_id: str = "call_1", index: int = 0) -> List[Dict[str, Any]]:
    """One tool call split the way providers stream it: header first, then argument pieces."""
    chunks = [{
        "choices": [{"delta": {"tool_calls": [{
            "index": index,
            "id": call_id,
            "type": "function",
            "function": {"name": name, "arguments": ""},
        }]}}]
    }]
    middle = len(arguments) // 2
    for piece in (arguments[:middle], arguments[middle:]):
        if piece:
            chunks.append({
                "choices": [{"delta": {"tool_calls": [{"index": index, "function": {"arguments": piece}}]}}]
            })
    return chunks


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeLLM:
    """
    Replays scripted responses. Each script entry is a list of chunks;
    an Exception inside the list is raised at that point of the stream.
    """

    def __init__(self, scripts: Optional[List[List[Any]]] = None):
        self.scripts = list(scripts or [])
        self.requests: List[List[Dict[str, Any]]] = []
        self.tools_seen: List[Any] = []
        self.model = "fake-model"

    def add(self, *chunks: Any):
        self.scripts.append(list(chunks))

    def stream_chat(self, messages, tools=None) -> Iterator[Any]:
        self.requests.append(copy.deepcopy(messages))
        self.tools_seen.append(tools)
        script = self.scripts.pop(0) if self.scripts else [text_chunk("")]
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item


class FakeDatabase(DatabaseInterface):
    def __init__(self, cfg: Optional[ConnectionConfig] = None):
        self.cfg = cfg
        self.calls: List[tuple] = []
        self.healthy = True
        self.closed = False
        self.fail_with: Optional[Exception] = None

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    def execute_sql(self, sql):
        self._record("execute_sql", sql)
        return QueryResult(columns=["n"], rows=[[1]], row_count=1, duration="1.0ms")

    def explain_query(self, sql):
        self._record("explain_query", sql)
        return QueryResult(columns=["QUERY PLAN"], rows=[["Seq Scan"]], row_count=1, duration="1.0ms")

    def get_all_tables(self):
        self._record("get_all_tables")
        return [TableInfo(name="users", schema="public", type="BASE TABLE")]

    def get_table_schema(self, table_name):
        self._record("get_table_schema", table_name)
        return [ColumnInfo(column_name="id", data_type="integer", is_nullable="NO", is_primary_key=True)]

    def get_table_indexes(self, table_name):
        self._record("get_table_indexes", table_name)
        return [IndexInfo(index_name="users_pkey", is_unique=True, is_primary=True, columns=["id"])]

    def get_table_stats(self, table_name):
        self._record("get_table_stats", table_name)
        return {"table_name": table_name, "row_count": 3}

    def get_table_sizes(self):
        self._record("get_table_sizes")
        return [{"table_name": "users", "total_size": "16 kB"}]

    def find_duplicate_data(self, table_name, columns):
        self._record("find_duplicate_data", table_name, list(columns))
        return QueryResult(columns=list(columns) + ["duplicate_count"], rows=[], row_count=0, duration="1.0ms")

    def get_slow_queries(self):
        self._record("get_slow_queries")
        return []

    def get_database_size(self):
        self._record("get_database_size")
        return {"database_name": "app", "size": "8 MB"}

    def get_active_connections(self):
        self._record("get_active_connections")
        return []

    def close(self):
        self.closed = True

    def is_healthy(self):
        return self.healthy and not self.closed


class FakeProvider(DatabaseProvider):
    def __init__(self, db_type: str):
        self.db_type = db_type
        self.opened: List[FakeDatabase] = []
        self.fail = False

    def validate_config(self, cfg):
        pass

    def connection_params(self, cfg):
        return {"host": cfg.host, "port": cfg.port}

    def create_connection(self, cfg):
        if self.fail:
            raise DatabaseConnectionError(f"failed to connect to {cfg.address}: refused")
        db = FakeDatabase(cfg)
        self.opened.append(db)
        return db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def pg_provider() -> FakeProvider:
    return FakeProvider("postgresql")


@pytest.fixture
def mysql_provider() -> FakeProvider:
    return FakeProvider("mysql")


@pytest.fixture
def providers(pg_provider, mysql_provider) -> ProviderManager:
    return ProviderManager([pg_provider, mysql_provider])


@pytest.fixture
def connections_file(tmp_path: Path) -> Path:
    return tmp_path / "home" / "connections.json"


@pytest.fixture
def registry(connections_file, providers) -> ConnectionRegistry:
    return ConnectionRegistry(connections_file, providers=providers)


def pg_config(name: str = "main", **overrides) -> ConnectionConfig:
    fields = dict(name=name, type="postgresql", host="db.local", database="app", username="alice", password="s3cret")
    fields.update(overrides)
    return ConnectionConfig(**fields)


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase(pg_config())


@pytest.fixture
def catalog() -> ToolCatalog:
    return ToolCatalog()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def mediator(catalog) -> ConfirmationMediator:
    return ConfirmationMediator(catalog)


@pytest.fixture
def orchestrator(llm, catalog, mediator, fake_db) -> Orchestrator:
    return Orchestrator(
        llm=llm,
        catalog=catalog,
        handle_provider=lambda: fake_db,
        mediator=mediator,
        system_prompt="You are a test assistant.",
    )
