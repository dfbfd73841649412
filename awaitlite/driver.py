"""Callback-based SQLite engine.

Every operation returns immediately and reports through callbacks invoked on
the event loop that created the handle. Work is carried out by aiosqlite's
worker thread. Opening reports through "open"/"error" events.

Callback shapes:
    run       callback(err, RunContext)
    exec      callback(err)
    get       callback(err, row or None)
    all       callback(err, rows)
    each      row_callback(err, row) per row, then complete_callback(err, count)
    prepare   callback(err, statement)
    close / reset / finalize   callback(err)

A row_callback may return an awaitable; the next row is not fetched until it
resolves, and a result of False stops the iteration.

close() lets in-flight one-shot operations finish first; row iterations still
running afterwards fail with SQLITE_MISUSE.
"""

import asyncio
import inspect
import logging
import os
import re
import sqlite3
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

import aiosqlite

from .config import EngineSettings
from .errors import SqliteError, misuse
from .events import EventEmitter

logger = logging.getLogger(__name__)

MEMORY = ":memory:"
DISK = ""

Callback = Optional[Callable[..., Any]]

_EXPLAIN = re.compile(r"\s*explain\b", re.IGNORECASE)


class RunContext(NamedTuple):
    changes: int
    last_id: int


def first_statement(sql: str) -> str:
    """Return the first complete statement of ``sql`` (the whole text if none ends)."""
    end = sql.find(";")
    while end != -1:
        head = sql[: end + 1]
        if sqlite3.complete_statement(head):
            return head
        end = sql.find(";", end + 1)
    return sql


def _dict_row(cursor, row) -> Dict[str, Any]:
    return {column[0]: value for column, value in zip(cursor.description, row)}


def _bind(params: Any) -> Any:
    if params is None:
        return ()
    if isinstance(params, dict):
        return params
    params = tuple(params)
    if len(params) == 1 and isinstance(params[0], (dict, list, tuple)):
        return params[0]
    return params


async def _close_cursor(cursor) -> None:
    try:
        await cursor.close()
    except (sqlite3.Error, ValueError) as exc:
        # aiosqlite raises ValueError once its connection is gone.
        logger.debug(f"Cursor close failed: {exc}")


async def _run_context(cursor) -> RunContext:
    try:
        return RunContext(changes=max(cursor.rowcount, 0), last_id=cursor.lastrowid or 0)
    finally:
        await _close_cursor(cursor)


async def _fetch_one(cursor) -> Optional[Dict[str, Any]]:
    try:
        return await cursor.fetchone()
    finally:
        await _close_cursor(cursor)


async def _fetch_all(cursor) -> List[Dict[str, Any]]:
    try:
        return list(await cursor.fetchall())
    finally:
        await _close_cursor(cursor)


class Database(EventEmitter):
    def __init__(self, filename, *, settings: Optional[EngineSettings] = None):
        super().__init__()
        self.filename = os.fspath(filename)
        self.settings = settings or EngineSettings.from_env()
        self.open = False
        self._connection: Optional[aiosqlite.Connection] = None
        self._loop = asyncio.get_running_loop()
        self._pending = set()
        self._detached = set()
        self._closing: Optional[asyncio.Task] = None
        self._opening = self._loop.create_task(self._open())

    def __repr__(self):
        return f"<Database filename={self.filename!r} open={self.open}>"

    async def _open(self):
        logger.debug(f"Opening database {self.filename!r}")
        try:
            connection = await aiosqlite.connect(
                self.filename,
                timeout=self.settings.busy_timeout,
                cached_statements=self.settings.cached_statements,
                isolation_level=None,
            )
        except Exception as exc:
            error = SqliteError.from_exception(exc)
            logger.warning(f"Could not open database {self.filename!r}: {error}")
            self.emit("error", error)
            return
        connection.row_factory = _dict_row
        self._connection = connection
        self.open = True
        self.emit("open")

    async def _ready(self) -> aiosqlite.Connection:
        await self._opening
        if self._connection is None:
            raise misuse("Database is closed")
        return self._connection

    async def _shutdown(self):
        await self._opening
        # Row iterations may be parked on a consumer, so only one-shot work is awaited.
        if self._pending:
            await asyncio.wait(list(self._pending))
        connection, self._connection = self._connection, None
        if connection is None:
            return
        self.open = False
        await connection.close()
        logger.debug(f"Closed database {self.filename!r}")
        self.emit("close")

    def _track(self, coro) -> asyncio.Task:
        task = self._loop.create_task(coro)
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
        return task

    def _spawn(self, work, callback: Callback) -> asyncio.Task:
        task = self._loop.create_task(self._complete(work, callback))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _translate(self, exc: Exception) -> SqliteError:
        if isinstance(exc, ValueError) and self._connection is None:
            # aiosqlite refuses work once the database has been closed.
            return misuse("Database is closed")
        return SqliteError.from_exception(exc)

    async def _complete(self, work, callback: Callback):
        try:
            result = await work
        except Exception as exc:
            self._notify(callback, self._translate(exc))
        else:
            self._notify(callback, None, result)

    def _notify(self, callback: Callback, error: Optional[SqliteError], result: Any = None):
        if callback is None:
            if error is not None:
                self.emit("error", error)
            return
        if error is not None:
            callback(error)
        else:
            callback(None, result)

    async def _stream(self, open_cursor, row_callback: Callback, complete_callback: Callback):
        count = 0
        try:
            cursor = await open_cursor()
        except Exception as exc:
            self._fail_stream(self._translate(exc), count, row_callback, complete_callback)
            return

        error = None
        try:
            while True:
                row = await cursor.fetchone()
                if row is None:
                    break
                count += 1
                if row_callback is None:
                    continue
                ack = row_callback(None, row)
                if inspect.isawaitable(ack) and (await ack) is False:
                    logger.debug(f"Row iteration stopped by consumer after {count} rows")
                    break
        except Exception as exc:
            error = self._translate(exc)
        finally:
            await _close_cursor(cursor)

        if error is not None:
            self._fail_stream(error, count, row_callback, complete_callback)
        elif complete_callback is not None:
            complete_callback(None, count)

    def _fail_stream(self, error, count, row_callback: Callback, complete_callback: Callback):
        if row_callback is None and complete_callback is None:
            self.emit("error", error)
            return
        if row_callback is not None:
            row_callback(error)
        if complete_callback is not None:
            complete_callback(error, count)

    # --- Public API ---

    def run(self, sql: str, params: Sequence[Any] = (), callback: Callback = None) -> "Database":
        async def work():
            connection = await self._ready()
            return await _run_context(await connection.execute(first_statement(sql), _bind(params)))

        self._spawn(work(), callback)
        return self

    def exec(self, sql: str, callback: Callback = None) -> "Database":
        async def work():
            connection = await self._ready()
            await _close_cursor(await connection.executescript(sql))

        self._spawn(work(), callback)
        return self

    def get(self, sql: str, params: Sequence[Any] = (), callback: Callback = None) -> "Database":
        async def work():
            connection = await self._ready()
            return await _fetch_one(await connection.execute(first_statement(sql), _bind(params)))

        self._spawn(work(), callback)
        return self

    def all(self, sql: str, params: Sequence[Any] = (), callback: Callback = None) -> "Database":
        async def work():
            connection = await self._ready()
            return await _fetch_all(await connection.execute(first_statement(sql), _bind(params)))

        self._spawn(work(), callback)
        return self

    def each(
        self,
        sql: str,
        params: Sequence[Any] = (),
        row_callback: Callback = None,
        complete_callback: Callback = None,
    ) -> "Database":
        async def open_cursor():
            connection = await self._ready()
            return await connection.execute(first_statement(sql), _bind(params))

        self._track(self._stream(open_cursor, row_callback, complete_callback))
        return self

    def prepare(self, sql: str, callback: Callback = None) -> "Statement":
        return Statement(self, sql, callback)

    def close(self, callback: Callback = None) -> "Database":
        if self._closing is None:
            self._closing = self._loop.create_task(self._shutdown())
        self._track(self._complete(asyncio.shield(self._closing), callback))
        return self


class Statement:
    """Compiled statement bound to a Database.

    ``get`` without parameters continues the current result set, starting over
    once it is exhausted; any call with parameters, and every run/all/each,
    rebinds and restarts it.
    """

    def __init__(self, database: Database, sql: str, callback: Callback = None):
        self.database = database
        self.sql = first_statement(sql)
        self.error: Optional[SqliteError] = None
        self.finalized = False
        self._cursor = None
        self._bound: Sequence[Any] = ()
        self._compiled = database._spawn(self._compile(), callback)

    def __repr__(self):
        return f"<Statement sql={self.sql!r} finalized={self.finalized}>"

    async def _compile(self):
        # EXPLAIN compiles without running; an EXPLAIN statement is already inert.
        sql = self.sql if _EXPLAIN.match(self.sql) else "EXPLAIN " + self.sql
        try:
            connection = await self.database._ready()
            cursor = await connection.execute(sql)
        except sqlite3.ProgrammingError:
            # Wrong binding count: compilation itself succeeded.
            return self
        except Exception as exc:
            self.error = self.database._translate(exc)
            raise self.error
        await _close_cursor(cursor)
        logger.debug(f"Prepared {self.sql!r}")
        return self

    async def _ready(self) -> aiosqlite.Connection:
        await self._compiled
        if self.error is not None:
            raise self.error
        if self.finalized:
            raise misuse("Statement is already finalized")
        return await self.database._ready()

    async def _release(self):
        cursor, self._cursor = self._cursor, None
        if cursor is not None:
            await _close_cursor(cursor)

    async def _execute(self, params):
        connection = await self._ready()
        await self._release()
        return await connection.execute(self.sql, _bind(params))

    async def _get(self, params):
        await self._ready()
        if params:
            self._bound = params
        if params or self._cursor is None:
            self._cursor = await self._execute(self._bound)
        row = await self._cursor.fetchone()
        if row is None:
            # Past the last row the next get starts over with the same bindings.
            await self._release()
        return row

    async def _reset(self):
        await self._ready()
        await self._release()
        return self

    async def _finalize(self):
        await self._compiled
        self.finalized = True
        await self._release()
        logger.debug(f"Finalized {self.sql!r}")
        return self

    # --- Public API ---

    def run(self, params: Sequence[Any] = (), callback: Callback = None) -> "Statement":
        async def work():
            return await _run_context(await self._execute(params))

        self.database._spawn(work(), callback)
        return self

    def get(self, params: Sequence[Any] = (), callback: Callback = None) -> "Statement":
        self.database._spawn(self._get(params), callback)
        return self

    def all(self, params: Sequence[Any] = (), callback: Callback = None) -> "Statement":
        async def work():
            return await _fetch_all(await self._execute(params))

        self.database._spawn(work(), callback)
        return self

    def each(
        self,
        params: Sequence[Any] = (),
        row_callback: Callback = None,
        complete_callback: Callback = None,
    ) -> "Statement":
        self.database._track(self.database._stream(lambda: self._execute(params), row_callback, complete_callback))
        return self

    def reset(self, callback: Callback = None) -> "Statement":
        self.database._spawn(self._reset(), callback)
        return self

    def finalize(self, callback: Callback = None) -> "Statement":
        self.database._spawn(self._finalize(), callback)
        return self
