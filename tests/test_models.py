"""Tests for the shared data model, guidance, prompts and small helpers."""

import threading
from datetime import timezone

import pytest
from pydantic import ValidationError

from core.guidance import GuidanceType, derive_guidance
from core.models import ChatMessage, ConnectionConfig, DatabaseType, FunctionCall, ToolCall
from core.prompts import build_system_prompt
from utils.helpers import format_duration, parse_rfc3339, truncate_string
from utils.locks import ReadWriteLock


class TestConnectionConfig:
    def test_type_aliases_and_default_ports(self):
        assert ConnectionConfig(name="a", type="postgres").port == 5432
        assert ConnectionConfig(name="b", type="PG").type == DatabaseType.POSTGRESQL
        assert ConnectionConfig(name="c", type="mysql").port == 3306

    def test_ssl_mode_alias(self):
        assert ConnectionConfig.model_validate({"name": "a", "ssl_mode": "require"}).sslmode == "require"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            ConnectionConfig(name="  ")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            ConnectionConfig(name="a", type="oracle")

    def test_password_not_in_repr(self):
        assert "hunter2" not in repr(ConnectionConfig(name="a", password="hunter2"))

    def test_json_dict_omits_unset_last_used(self):
        data = ConnectionConfig(name="a", host="h").to_json_dict()
        assert data["type"] == "postgresql"
        assert "last_used" not in data


class TestWireFormat:
    def test_assistant_with_tool_call_has_null_content(self):
        call = ToolCall(id="c1", function=FunctionCall(name="get_all_tables", arguments="{}"))
        wire = ChatMessage.assistant("", [call]).to_wire()
        assert wire == {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "get_all_tables", "arguments": "{}"}}],
        }

    def test_tool_message(self):
        assert ChatMessage.tool("c1", "[]").to_wire() == {"role": "tool", "content": "[]", "tool_call_id": "c1"}


class TestGuidance:
    def test_missing_key_wins(self):
        assert derive_guidance(False, False, True).type == GuidanceType.API_KEY_MISSING

    def test_no_database(self):
        guidance = derive_guidance(True, False, True)
        assert guidance.type == GuidanceType.NO_DATABASE
        assert any(line.startswith("/add") for line in guidance.instructions)

    def test_first_time(self):
        assert derive_guidance(True, True, True).type == GuidanceType.FIRST_TIME

    def test_nothing_once_chatting(self):
        assert derive_guidance(True, True, False) is None


class TestSystemPrompt:
    def test_connection_context_is_filled_in(self):
        prompt = build_system_prompt("shop", "mysql")
        assert "Active connection: shop" in prompt
        assert "Database type: mysql" in prompt
        assert '{"error": "..."}' in prompt

    def test_without_connection(self):
        assert "Active connection: None" in build_system_prompt()


class TestHelpers:
    def test_parse_rfc3339(self):
        parsed = parse_rfc3339("2024-05-01T10:00:00Z")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timezone.utc.utcoffset(None)
        assert parse_rfc3339("2024-05-01T10:00:00").tzinfo is not None
        assert parse_rfc3339("yesterday") is None
        assert parse_rfc3339(None) is None

    def test_format_duration(self):
        assert format_duration(12.5) == "12.500ms"
        assert format_duration(2500) == "2.50s"
        assert format_duration(125000) == "2m 5.0s"

    def test_truncate_string(self):
        assert truncate_string("short", 10) == "short"
        assert truncate_string("a" * 20, 10) == "aaaaaaa..."


class TestReadWriteLock:
    def test_readers_share_and_writer_excludes(self):
        lock = ReadWriteLock()
        inside = []
        with lock.read():
            with lock.read():
                inside.append("nested read")

        entered = threading.Event()
        release = threading.Event()

        def writer():
            with lock.write():
                entered.set()
                release.wait(2)

        t = threading.Thread(target=writer)
        t.start()
        assert entered.wait(2)

        got_read = threading.Event()

        def reader():
            with lock.read():
                got_read.set()

        r = threading.Thread(target=reader)
        r.start()
        assert not got_read.wait(0.1)
        release.set()
        t.join(2)
        r.join(2)
        assert got_read.is_set()
        assert inside == ["nested read"]
