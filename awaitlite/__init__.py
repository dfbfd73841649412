"""Awaitable facade over a callback-based SQLite engine."""

from .config import EngineSettings
from .connection import Connection, ConnectionState, connect
from .driver import DISK, MEMORY
from .errors import SqliteError
from .results import OperationResult, Row
from .rows import RowStream
from .statement import PreparedStatement

__version__ = "0.1.0"

__all__ = [
    "Connection",
    "ConnectionState",
    "DISK",
    "EngineSettings",
    "MEMORY",
    "OperationResult",
    "PreparedStatement",
    "Row",
    "RowStream",
    "SqliteError",
    "connect",
]
