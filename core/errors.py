# ============================================================
# DBSage - Database AI Assistant
# core/errors.py - Exception Hierarchy
# ============================================================


class DBSageError(Exception):
    """Base class for every error raised by DBSage."""


# ── Database ──────────────────────────────────────────────────

class QueryError(DBSageError):
    """SQL was rejected by the server or the driver failed mid-query."""

    def __init__(self, message: str, sql: str = ""):
        super().__init__(message)
        self.sql = sql


class DatabaseConnectionError(DBSageError):
    """A live handle could not be opened or failed its health check."""


class UnhealthyConnectionError(DatabaseConnectionError):
    pass


# ── Registry ──────────────────────────────────────────────────

class NoActiveConnectionError(DBSageError):
    def __init__(self, message: str = "No active database connection"):
        super().__init__(message)


class ConnectionNotFoundError(DBSageError):
    def __init__(self, name: str):
        super().__init__(f"Connection '{name}' not found")
        self.name = name


class DuplicateConnectionError(DBSageError):
    def __init__(self, name: str):
        super().__init__(f"Connection '{name}' already exists")
        self.name = name


class PersistenceError(DBSageError):
    """connections.json could not be read or written."""


class InvalidDatabaseURLError(DBSageError):
    pass


# ── Tools & Conversation ──────────────────────────────────────

class UnknownToolError(DBSageError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class MalformedToolArgsError(DBSageError):
    def __init__(self, tool_name: str, detail: str):
        super().__init__(f"Invalid arguments for {tool_name}: {detail}")
        self.tool_name = tool_name
        self.detail = detail


class TransportError(DBSageError):
    """The LLM stream could not be opened or broke while being read."""


class TurnInProgressError(DBSageError):
    def __init__(self, message: str = "A request is already in progress"):
        super().__init__(message)


class ConfirmationBusyError(DBSageError):
    def __init__(self, message: str = "Another tool confirmation is already pending"):
        super().__init__(message)


class NoPendingConfirmationError(DBSageError):
    def __init__(self, message: str = "No tool confirmation is pending"):
        super().__init__(message)


class StartupError(DBSageError):
    pass
