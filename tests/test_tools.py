"""Tests for the tool catalog and dispatcher."""

import datetime
import decimal
import json

import pytest

from core.errors import MalformedToolArgsError, QueryError, UnknownToolError
from core.models import FunctionCall, RiskLevel, ToolCall
from core.tools import NO_CONNECTION_MESSAGE, ToolCatalog, parse_arguments, to_json

EXPECTED_TOOLS = {
    "execute_sql",
    "explain_query",
    "get_all_tables",
    "get_table_schema",
    "get_table_indexes",
    "get_table_stats",
    "find_duplicate_data",
    "get_slow_queries",
    "get_database_size",
    "get_table_sizes",
    "get_active_connections",
}


def make_call(name: str, arguments: str = "{}", call_id: str = "call_1") -> ToolCall:
    return ToolCall(id=call_id, function=FunctionCall(name=name, arguments=arguments))


class TestCatalog:
    def test_offers_every_tool(self, catalog: ToolCatalog):
        assert set(catalog.names()) == EXPECTED_TOOLS

    def test_schemas_use_function_format(self, catalog: ToolCatalog):
        schemas = {s["function"]["name"]: s for s in catalog.describe_all()}
        assert set(schemas) == EXPECTED_TOOLS
        dup = schemas["find_duplicate_data"]
        assert dup["type"] == "function"
        params = dup["function"]["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["tableName", "columns"]
        assert params["properties"]["columns"]["items"] == {"type": "string"}
        assert schemas["get_all_tables"]["function"]["parameters"]["required"] == []

    def test_risk_and_confirmation_flags(self, catalog: ToolCatalog):
        assert catalog.risk("execute_sql") == RiskLevel.HIGH
        assert catalog.requires_confirmation("execute_sql")
        assert catalog.risk("find_duplicate_data") == RiskLevel.MEDIUM
        assert catalog.requires_confirmation("find_duplicate_data")
        for name in EXPECTED_TOOLS - {"execute_sql", "find_duplicate_data"}:
            assert catalog.risk(name) == RiskLevel.LOW
            assert not catalog.requires_confirmation(name)

    def test_unknown_tool_raises(self, catalog: ToolCatalog):
        with pytest.raises(UnknownToolError):
            catalog.get("drop_everything")
        assert "drop_everything" not in catalog

    def test_describe_includes_sql(self, catalog: ToolCatalog):
        text = catalog.describe("execute_sql", {"sql": "DELETE FROM users"})
        assert text == "[HIGH RISK] Execute SQL: DELETE FROM users"

    def test_describe_duplicates(self, catalog: ToolCatalog):
        text = catalog.describe("find_duplicate_data", {"tableName": "users", "columns": ["email", "name"]})
        assert text.startswith("[MEDIUM RISK]")
        assert "users (email, name)" in text


class TestParseArguments:
    def test_empty_string_means_no_arguments(self):
        assert parse_arguments(make_call("get_all_tables", "")) == {}
        assert parse_arguments(make_call("get_all_tables", "   ")) == {}

    def test_invalid_json_raises(self):
        with pytest.raises(MalformedToolArgsError):
            parse_arguments(make_call("execute_sql", '{"sql": '))

    def test_non_object_raises(self):
        with pytest.raises(MalformedToolArgsError):
            parse_arguments(make_call("execute_sql", '["SELECT 1"]'))


class TestDispatch:
    def test_no_handle_returns_guidance_body(self, catalog: ToolCatalog):
        body = json.loads(catalog.dispatch(None, make_call("get_all_tables")))
        assert body == {"error": NO_CONNECTION_MESSAGE}

    def test_invokes_capability_and_encodes_result(self, catalog, fake_db):
        body = json.loads(catalog.dispatch(fake_db, make_call("get_table_schema", '{"tableName": "users"}')))
        assert fake_db.calls == [("get_table_schema", "users")]
        assert body[0]["column_name"] == "id"
        assert body[0]["is_primary_key"] is True

    def test_execute_sql_returns_query_result(self, catalog, fake_db):
        body = json.loads(catalog.dispatch(fake_db, make_call("execute_sql", '{"sql": "SELECT 1"}')))
        assert body == {"columns": ["n"], "rows": [[1]], "row_count": 1, "duration": "1.0ms"}

    def test_query_error_becomes_error_body(self, catalog, fake_db):
        fake_db.fail_with = QueryError('relation "nope" does not exist')
        body = json.loads(catalog.dispatch(fake_db, make_call("execute_sql", '{"sql": "SELECT * FROM nope"}')))
        assert body == {"error": 'relation "nope" does not exist'}

    def test_missing_required_argument(self, catalog, fake_db):
        body = json.loads(catalog.dispatch(fake_db, make_call("get_table_stats", "{}")))
        assert "tableName" in body["error"]
        assert fake_db.calls == []

    def test_wrong_argument_type(self, catalog, fake_db):
        body = json.loads(catalog.dispatch(fake_db, make_call("find_duplicate_data", '{"tableName": "t", "columns": "email"}')))
        assert "columns" in body["error"]
        assert fake_db.calls == []

    def test_empty_column_list_is_rejected(self, catalog, fake_db):
        body = json.loads(catalog.dispatch(fake_db, make_call("find_duplicate_data", '{"tableName": "t", "columns": []}')))
        assert "must not be empty" in body["error"]

    def test_extra_arguments_are_ignored(self, catalog, fake_db):
        body = json.loads(catalog.dispatch(fake_db, make_call("get_all_tables", '{"verbose": true}')))
        assert body[0]["name"] == "users"

    def test_unknown_tool_raises(self, catalog, fake_db):
        with pytest.raises(UnknownToolError):
            catalog.dispatch(fake_db, make_call("rm_rf"))

    def test_malformed_arguments_raise(self, catalog, fake_db):
        with pytest.raises(MalformedToolArgsError):
            catalog.dispatch(fake_db, make_call("execute_sql", "{not json"))


class TestJsonEncoding:
    def test_driver_types_are_serialized(self):
        value = {
            "amount": decimal.Decimal("1.50"),
            "at": datetime.datetime(2024, 1, 2, 3, 4, 5),
            "day": datetime.date(2024, 1, 2),
            "age": datetime.timedelta(seconds=90),
            "blob": b"abc",
        }
        assert json.loads(to_json(value)) == {
            "amount": 1.5,
            "at": "2024-01-02T03:04:05",
            "day": "2024-01-02",
            "age": "0:01:30",
            "blob": "abc",
        }

    def test_non_ascii_is_kept(self):
        assert to_json({"name": "Zoë"}) == '{"name": "Zoë"}'
