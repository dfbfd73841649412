import asyncio
import inspect

import pytest

from awaitlite import Connection, RowStream, SqliteError


class PacedEngine:
    """Fake engine that waits on each row's acknowledgement before the next."""

    def __init__(self, rows, fail_after=None):
        self.rows = rows
        self.fail_after = fail_after
        self.delivered = 0
        self.completed = None
        self.starts = 0

    def start(self, on_row, on_complete):
        self.starts += 1
        asyncio.ensure_future(self._produce(on_row, on_complete))

    async def _produce(self, on_row, on_complete):
        for row in self.rows:
            if self.fail_after is not None and self.delivered == self.fail_after:
                error = SqliteError("SQLITE_CORRUPT", "database disk image is malformed")
                on_row(error)
                on_complete(error, self.delivered)
                return
            self.delivered += 1
            ack = on_row(None, row)
            if inspect.isawaitable(ack) and (await ack) is False:
                break
        self.completed = self.delivered
        on_complete(None, self.delivered)


class EagerEngine:
    """Fake engine that pushes every row at once and ignores acknowledgements."""

    def __init__(self, rows):
        self.rows = rows

    def start(self, on_row, on_complete):
        for row in self.rows:
            on_row(None, row)
        on_complete(None, len(self.rows))


ROWS = [{"id": 1}, {"id": 2}, {"id": 3}]


def test_stream_is_lazy():
    async def scenario():
        engine = PacedEngine(ROWS)
        stream = RowStream(engine.start)
        await asyncio.sleep(0)
        assert engine.starts == 0
        assert [row async for row in stream] == ROWS
        assert engine.starts == 1

    asyncio.run(scenario())


def test_engine_waits_for_consumer():
    async def scenario():
        engine = PacedEngine(ROWS)
        stream = RowStream(engine.start)
        first = await stream.__anext__()
        for _ in range(5):
            await asyncio.sleep(0)
        assert first == {"id": 1}
        assert engine.delivered == 1
        second = await stream.__anext__()
        for _ in range(5):
            await asyncio.sleep(0)
        assert second == {"id": 2}
        assert engine.delivered == 2
        await stream.aclose()

    asyncio.run(scenario())


def test_eager_engine_rows_are_queued_in_order():
    async def scenario():
        stream = RowStream(EagerEngine(ROWS).start)
        return [row async for row in stream]

    assert asyncio.run(scenario()) == ROWS


def test_row_error_keeps_earlier_rows():
    async def scenario():
        stream = RowStream(PacedEngine(ROWS, fail_after=2).start)
        seen = []
        with pytest.raises(SqliteError) as exc:
            async for row in stream:
                seen.append(row)
        return seen, exc.value

    seen, error = asyncio.run(scenario())
    assert seen == ROWS[:2]
    assert error.code == "SQLITE_CORRUPT"


def test_early_close_stops_engine_and_waits_for_completion():
    async def scenario():
        engine = PacedEngine(ROWS)
        async with RowStream(engine.start) as stream:
            async for row in stream:
                break
        assert engine.completed == 1
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    asyncio.run(scenario())


def test_close_before_first_pull_never_starts():
    async def scenario():
        engine = PacedEngine(ROWS)
        stream = RowStream(engine.start)
        await stream.aclose()
        assert engine.starts == 0
        assert [row async for row in stream] == []

    asyncio.run(scenario())


def test_stream_is_not_restartable():
    async def scenario():
        engine = PacedEngine(ROWS)
        stream = RowStream(engine.start)
        first = [row async for row in stream]
        second = [row async for row in stream]
        return first, second, engine.starts

    first, second, starts = asyncio.run(scenario())
    assert first == ROWS
    assert second == []
    assert starts == 1


def test_early_close_releases_database_cursor():
    async def scenario():
        async with Connection.memory() as db:
            await db.exec("create table t (id int); insert into t values (1); insert into t values (2);")
            stream = db.each("select id from t order by id")
            async with stream:
                async for row in stream:
                    assert row == {"id": 1}
                    break
            assert stream.count == 1
            await db.run("drop table t")
            return await db.get("select count(*) c from sqlite_master")

    assert asyncio.run(scenario()) == {"c": 0}


def test_breaking_out_of_loop_stops_engine():
    async def scenario():
        engine = PacedEngine(ROWS)
        async for row in RowStream(engine.start):
            assert row == {"id": 1}
            break
        for _ in range(5):
            await asyncio.sleep(0)
        return engine

    engine = asyncio.run(scenario())
    assert engine.delivered == 1
    assert engine.completed == 1


def test_breaking_out_of_loop_releases_database_cursor():
    async def scenario():
        async with Connection.memory() as db:
            await db.exec("create table t (id int); insert into t values (1); insert into t values (2);")
            async for row in db.each("select id from t order by id"):
                break
            await db.run("drop table t")
            return await db.get("select count(*) c from sqlite_master")

    assert asyncio.run(scenario()) == {"c": 0}
