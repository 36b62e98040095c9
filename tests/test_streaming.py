"""Tests for StreamAssembler."""

from types import SimpleNamespace

from conftest import text_chunk, tool_chunks
from core.models import Role
from core.streaming import StreamAssembler


class TestTextAssembly:
    def test_text_is_concatenated_and_forwarded_in_order(self):
        seen = []
        assembler = StreamAssembler(seen.append)
        message = assembler.consume([text_chunk("Hel"), text_chunk("lo"), text_chunk(" there")])

        assert seen == ["Hel", "lo", " there"]
        assert message.role == Role.ASSISTANT
        assert message.content == "Hello there"
        assert message.tool_calls == []

    def test_chunks_without_choices_or_delta_are_ignored(self):
        assembler = StreamAssembler()
        assembler.feed({"choices": []})
        assembler.feed({"choices": [{}]})
        assembler.feed({})
        assembler.feed(text_chunk("ok"))
        assert assembler.result().content == "ok"

    def test_sdk_objects_are_accepted(self):
        delta = SimpleNamespace(content="from sdk", tool_calls=None)
        chunk = SimpleNamespace(choices=[SimpleNamespace(delta=delta)])
        assert StreamAssembler().consume([chunk]).content == "from sdk"


class TestToolCallAssembly:
    def test_arguments_are_joined_across_fragments(self):
        chunks = tool_chunks("get_table_schema", '{"tableName": "users"}', call_id="call_a")
        message = StreamAssembler().consume(chunks)

        assert len(message.tool_calls) == 1
        call = message.tool_calls[0]
        assert call.id == "call_a"
        assert call.type == "function"
        assert call.function.name == "get_table_schema"
        assert call.function.arguments == '{"tableName": "users"}'

    def test_interleaved_calls_are_kept_apart_by_index(self):
        first = tool_chunks("get_table_schema", '{"tableName": "a"}', call_id="c0", index=0)
        second = tool_chunks("get_table_indexes", '{"tableName": "b"}', call_id="c1", index=1)
        interleaved = [first[0], second[0], first[1], second[1], first[2], second[2]]

        message = StreamAssembler().consume(interleaved)

        assert [c.function.name for c in message.tool_calls] == ["get_table_schema", "get_table_indexes"]
        assert message.tool_calls[0].function.arguments == '{"tableName": "a"}'
        assert message.tool_calls[1].function.arguments == '{"tableName": "b"}'

    def test_first_seen_id_and_name_win(self):
        chunks = tool_chunks("execute_sql", '{"sql": "SELECT 1"}', call_id="first")
        chunks.append({"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "second", "function": {"name": "other"}}
        ]}}]})
        call = StreamAssembler().consume(chunks).tool_calls[0]
        assert call.id == "first"
        assert call.function.name == "execute_sql"

    def test_sparse_index_leaves_no_phantom_call(self):
        chunks = tool_chunks("get_all_tables", "", call_id="only", index=2)
        message = StreamAssembler().consume(chunks)
        assert [c.id for c in message.tool_calls] == ["only"]
        assert message.tool_calls[0].index == 2

    def test_missing_type_defaults_to_function(self):
        chunk = {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "x", "function": {"name": "get_all_tables", "arguments": "{}"}}
        ]}}]}
        assert StreamAssembler().consume([chunk]).tool_calls[0].type == "function"

    def test_text_and_tool_call_in_one_message(self):
        chunks = [text_chunk("Let me look.")] + tool_chunks("get_all_tables", "{}")
        message = StreamAssembler().consume(chunks)
        assert message.content == "Let me look."
        assert message.tool_calls[0].function.name == "get_all_tables"


class TestSplitBoundaries:
    def test_argument_split_point_does_not_change_result(self):
        arguments = '{"tableName": "orders", "columns": ["email", "zip"]}'
        for cut in range(len(arguments) + 1):
            header = {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "c", "type": "function", "function": {"name": "find_duplicate_data"}}
            ]}}]}
            pieces = [arguments[:cut], arguments[cut:]]
            chunks = [header] + [
                {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": p}}]}}]}
                for p in pieces
            ]
            call = StreamAssembler().consume(chunks).tool_calls[0]
            assert call.function.arguments == arguments
            assert (call.id, call.function.name) == ("c", "find_duplicate_data")
