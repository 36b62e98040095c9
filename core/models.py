# ============================================================
# DBSage - Database AI Assistant
# core/models.py - Shared Data Model
# ============================================================

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, AliasChoices, field_validator, model_validator


# ════════════════════════════════════════════════════════════
# ENUMS
# ════════════════════════════════════════════════════════════

class DatabaseType(str, Enum):
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class ConnectionStatus(str, Enum):
    """Per-entry state reported by the registry snapshot."""
    ACTIVE = "active"
    CONNECTED = "connected"
    UNHEALTHY = "unhealthy"
    DISCONNECTED = "disconnected"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ════════════════════════════════════════════════════════════
# CONNECTION CONFIGURATION
# ════════════════════════════════════════════════════════════

DEFAULT_PORTS = {
    DatabaseType.POSTGRESQL: 5432,
    DatabaseType.MYSQL: 3306,
}


class ConnectionConfig(BaseModel):
    """A named database connection as persisted in connections.json."""
    name: str
    type: DatabaseType = DatabaseType.POSTGRESQL
    host: str = "localhost"
    port: int = 0
    database: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)
    sslmode: str = Field(default="", validation_alias=AliasChoices("sslmode", "ssl_mode"))
    charset: str = ""
    collation: str = ""
    timeout: str = ""
    description: str = ""
    last_used: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("postgres", "pg"):
                return DatabaseType.POSTGRESQL.value
        return value

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("connection name must not be empty")
        return value

    @model_validator(mode="after")
    def _default_port(self):
        if not self.port:
            self.port = DEFAULT_PORTS[self.type]
        return self

    @property
    def address(self) -> str:
        """host:port/database, safe to log."""
        return f"{self.host}:{self.port}/{self.database}"

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ════════════════════════════════════════════════════════════
# CAPABILITY RESULTS
# ════════════════════════════════════════════════════════════

@dataclass
class QueryResult:
    columns: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)
    row_count: int = 0
    duration: str = ""


@dataclass
class TableInfo:
    name: str
    schema: str = ""
    type: str = ""
    comment: str = ""


@dataclass
class ColumnInfo:
    column_name: str
    data_type: str = ""
    is_nullable: str = ""
    default_value: Optional[str] = None
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    description: str = ""


@dataclass
class IndexInfo:
    index_name: str
    is_unique: bool = False
    is_primary: bool = False
    columns: List[str] = field(default_factory=list)
    index_type: str = ""
    tablespace: str = ""
    definition: str = ""


# ════════════════════════════════════════════════════════════
# CONVERSATION
# ════════════════════════════════════════════════════════════

@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """One tool request; `index` orders streamed fragments during assembly."""
    index: int = 0
    id: str = ""
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type or "function",
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }


@dataclass
class ChatMessage:
    role: Role
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: Optional[List[ToolCall]] = None) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "ChatMessage":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the chat-completions message format."""
        msg: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role == Role.TOOL:
            msg["tool_call_id"] = self.tool_call_id
        if self.role == Role.ASSISTANT and self.tool_calls:
            msg["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
            if not self.content:
                msg["content"] = None
        return msg
