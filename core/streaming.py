# ============================================================
# DBSage - Database AI Assistant
# core/streaming.py - Streaming Delta Assembler
# ============================================================

from typing import Optional, List, Any, Callable, Iterable

from core.models import ChatMessage, ToolCall, FunctionCall

TextCallback = Callable[[str], None]


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Field access for both SDK objects and plain dict chunks."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class StreamAssembler:
    """
    Rebuilds one assistant message from chat-completion deltas.
    Text is forwarded to `on_text` as it arrives; tool-call fragments
    are merged by their `index`.
    """

    def __init__(self, on_text: Optional[TextCallback] = None):
        self._on_text = on_text
        self._text: List[str] = []
        self._calls: List[Optional[ToolCall]] = []

    def feed(self, chunk: Any):
        choices = _get(chunk, "choices") or []
        if not choices:
            return
        delta = _get(choices[0], "delta")
        if delta is None:
            return

        content = _get(delta, "content")
        if content:
            self._text.append(content)
            if self._on_text is not None:
                self._on_text(content)

        for fragment in _get(delta, "tool_calls") or []:
            self._merge(fragment)

    def _merge(self, fragment: Any):
        index = _get(fragment, "index")
        if index is None:
            index = len(self._calls) - 1 if self._calls else 0
        while len(self._calls) <= index:
            self._calls.append(None)

        call = self._calls[index]
        if call is None:
            call = ToolCall(index=index, id="", type="", function=FunctionCall())
            self._calls[index] = call

        frag_id = _get(fragment, "id")
        if frag_id and not call.id:
            call.id = frag_id
        frag_type = _get(fragment, "type")
        if frag_type and not call.type:
            call.type = frag_type

        function = _get(fragment, "function")
        if function is not None:
            name = _get(function, "name")
            if name and not call.function.name:
                call.function.name = name
            arguments = _get(function, "arguments")
            if arguments:
                call.function.arguments += arguments

    def consume(self, stream: Iterable[Any]) -> ChatMessage:
        for chunk in stream:
            self.feed(chunk)
        return self.result()

    @property
    def text(self) -> str:
        return "".join(self._text)

    def result(self) -> ChatMessage:
        calls = []
        for call in self._calls:
            if call is None or not call.function.name:
                continue
            if not call.type:
                call.type = "function"
            calls.append(call)
        return ChatMessage.assistant(self.text, calls)
