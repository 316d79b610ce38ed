# Core module
# Note: modules that need python-oracledb or redis (logminer, dlq_manager)
# are imported lazily so the parser and models can be used on their own

from core.models import (
    ChangeRecord,
    OffsetState,
    Operation,
    SessionState,
)
from core.exceptions import (
    CDCException,
    ConfigurationError,
    DatabaseConnectionError,
    SessionStartError,
    SessionStoppedError,
    SessionCancelledError,
    UnparsableStatementError,
    RestoreAfterStartError,
    TeardownError,
)
from core.offsets import OffsetStore
from core.sql_parser import ParsedStatement, clean_string, parse

__all__ = [
    # Models
    "ChangeRecord",
    "OffsetState",
    "Operation",
    "SessionState",
    # Offsets
    "OffsetStore",
    # Parser
    "ParsedStatement",
    "clean_string",
    "parse",
    # Exceptions
    "CDCException",
    "ConfigurationError",
    "DatabaseConnectionError",
    "SessionStartError",
    "SessionStoppedError",
    "SessionCancelledError",
    "UnparsableStatementError",
    "RestoreAfterStartError",
    "TeardownError",
]


def __getattr__(name: str):
    """Lazy import for modules that require oracledb or redis."""
    if name == "MiningSessionManager":
        from core.logminer import MiningSessionManager
        return MiningSessionManager
    elif name == "DLQManager":
        from core.dlq_manager import DLQManager
        return DLQManager
    elif name == "StreamRunner":
        from core.engine import StreamRunner
        return StreamRunner
    elif name == "FileOffsetStorage":
        from core.checkpoint import FileOffsetStorage
        return FileOffsetStorage
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
