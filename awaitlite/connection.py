import asyncio
import enum
import logging
import os
from typing import Any, List, Optional

from .callbacks import completion
from .config import EngineSettings
from .driver import DISK, MEMORY, Database
from .results import OperationResult, Row
from .rows import RowStream
from .statement import PreparedStatement

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    OPENING = "opening"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class Connection:
    """Awaitable facade over one engine handle.

    ``database`` is a location (``MEMORY``, ``DISK`` or a file path), which
    opens a new handle, or an already-open handle object, which is used as-is.
    """

    def __init__(self, database: Any, *, settings: Optional[EngineSettings] = None):
        self._ready: Optional[asyncio.Future] = None
        if isinstance(database, (str, os.PathLike)):
            self.handle = Database(database, settings=settings)
            self.state = ConnectionState.OPENING
            self._ready = asyncio.get_running_loop().create_future()
            self.handle.once("open", self._on_open)
            self.handle.once("error", self._on_error)
        else:
            # No open event is guaranteed for a handle we did not create.
            self.handle = database
            self.state = ConnectionState.READY

    @classmethod
    def memory(cls, **kwargs) -> "Connection":
        return cls(MEMORY, **kwargs)

    @classmethod
    def disk(cls, **kwargs) -> "Connection":
        return cls(DISK, **kwargs)

    def __repr__(self):
        return f"<Connection handle={self.handle!r} state={self.state.value}>"

    async def __aenter__(self) -> "Connection":
        await self.connected()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _on_open(self):
        self.state = ConnectionState.READY
        if not self._ready.done():
            self._ready.set_result(None)

    def _on_error(self, error):
        logger.debug(f"Open failed for {self.handle!r}: {error}")
        self.state = ConnectionState.FAILED
        if not self._ready.done():
            self._ready.set_exception(error)

    async def connected(self) -> None:
        if self._ready is not None:
            await self._ready

    async def close(self) -> None:
        future, callback = completion()
        self.handle.close(callback)
        await future
        self.state = ConnectionState.CLOSED

    async def run(self, sql: Any, *params) -> OperationResult:
        future, callback = completion()
        self.handle.run(str(sql), params, callback)
        return OperationResult.from_context(await future)

    async def exec(self, sql: Any) -> None:
        future, callback = completion()
        self.handle.exec(str(sql), callback)
        await future

    async def get(self, sql: Any, *params) -> Optional[Row]:
        future, callback = completion()
        self.handle.get(str(sql), params, callback)
        return await future

    async def all(self, sql: Any, *params) -> List[Row]:
        future, callback = completion()
        self.handle.all(str(sql), params, callback)
        return list(await future or [])

    def each(self, sql: Any, *params) -> RowStream:
        sql = str(sql)
        return RowStream(lambda on_row, on_complete: self.handle.each(sql, params, on_row, on_complete))

    def prepare(self, sql: Any) -> PreparedStatement:
        return PreparedStatement(self, sql)


async def connect(database: Any, *, settings: Optional[EngineSettings] = None) -> Connection:
    """Open ``database`` and wait until it is usable."""
    connection = Connection(database, settings=settings)
    await connection.connected()
    return connection
