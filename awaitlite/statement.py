import logging
from typing import Any, List, Optional

from .callbacks import completion
from .results import OperationResult, Row
from .rows import RowStream

logger = logging.getLogger(__name__)


class PreparedStatement:
    """A statement compiled once by its connection and run with fresh parameters.

    Compilation is requested at construction and finishes in the background;
    a compile error is raised by the first run/get/all/each.
    """

    def __init__(self, connection, sql: Any):
        self.connection = connection
        self.sql = str(sql)
        self.compile_error = None
        self.handle = connection.handle.prepare(self.sql, self._on_compiled)

    def __repr__(self):
        return f"<PreparedStatement sql={self.sql!r}>"

    async def __aenter__(self) -> "PreparedStatement":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.finalize()

    def _on_compiled(self, error: Any = None, statement: Any = None):
        if error is not None:
            logger.debug(f"Compiling {self.sql!r} failed: {error}")
            self.compile_error = error

    async def run(self, *params) -> OperationResult:
        future, callback = completion()
        self.handle.run(params, callback)
        return OperationResult.from_context(await future)

    async def get(self, *params) -> Optional[Row]:
        future, callback = completion()
        self.handle.get(params, callback)
        return await future

    async def all(self, *params) -> List[Row]:
        future, callback = completion()
        self.handle.all(params, callback)
        return list(await future or [])

    def each(self, *params) -> RowStream:
        return RowStream(lambda on_row, on_complete: self.handle.each(params, on_row, on_complete))

    async def reset(self) -> None:
        future, callback = completion()
        self.handle.reset(callback)
        await future

    async def finalize(self) -> None:
        future, callback = completion()
        self.handle.finalize(callback)
        await future
