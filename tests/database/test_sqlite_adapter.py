import asyncio

import pytest

from podstream_backend.adapters.db import schema as schema_mod
from podstream_backend.adapters.db.schema import CURRENT_SCHEMA_VERSION, init_schema, migrate_schema, table_has_column
from podstream_backend.adapters.db.sqlite import Sqlite
from podstream_backend.features.ledger import CounterLedger
from podstream_backend.shared import ErrorCode


@pytest.mark.asyncio
async def test_schema_init_creates_tables_and_stats_row(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "schema.sqlite"), max_connections=2, timeout=1.0)
    try:
        assert (await init_schema(db)).ok
        for table in ("videos", "users", "user_favorites", "stats", "signup_history", "metadata"):
            assert await db.ahas_table(table), table
        assert await table_has_column(db, "videos", "filename")
        assert await table_has_column(db, "videos", "size")
        assert await db.aget_schema_version() == CURRENT_SCHEMA_VERSION

        rows = (await db.aquery("SELECT id, total_signups, total_views FROM stats")).data
        assert rows == [{"id": 1, "total_signups": 0, "total_views": 0}]
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_migrate_schema_is_idempotent(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "migrate.sqlite"))
    try:
        assert (await migrate_schema(db)).ok
        await db.aexecute("UPDATE stats SET total_views = 7 WHERE id = 1")
        assert (await migrate_schema(db)).ok
        row = (await db.aquery_one("SELECT total_views FROM stats WHERE id = 1")).data
        assert row["total_views"] == 7
        assert (await db.aquery("SELECT COUNT(*) AS n FROM stats")).data[0]["n"] == 1
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_migrate_adds_columns_registered_after_release(tmp_path, monkeypatch) -> None:
    db = Sqlite(str(tmp_path / "heal.sqlite"))
    try:
        assert (await init_schema(db)).ok
        assert not await table_has_column(db, "videos", "duration_ms")

        monkeypatch.setattr(
            schema_mod,
            "COLUMN_DEFINITIONS",
            {"videos": [("duration_ms", "duration_ms INTEGER NOT NULL DEFAULT 0")]},
        )
        assert (await migrate_schema(db)).ok
        assert await table_has_column(db, "videos", "duration_ms")
        assert (await migrate_schema(db)).ok
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_stats_singleton_rejects_second_row(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "singleton.sqlite"))
    try:
        assert (await init_schema(db)).ok
        res = await db.aexecute("INSERT INTO stats (id, total_signups, total_views) VALUES (2, 0, 0)")
        assert not res.ok
        assert res.code == ErrorCode.CONFLICT.value
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_transaction_rolls_back_when_a_statement_fails(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "tx.sqlite"))
    try:
        assert (await init_schema(db)).ok
        async with db.atransaction() as tx:
            assert tx.ok
            await db.aexecute("UPDATE stats SET total_views = total_views + 1 WHERE id = 1")
            # Duplicate primary key: marks the transaction rollback-only.
            await db.aexecute("INSERT INTO stats (id) VALUES (1)")
            after = await db.aexecute("UPDATE stats SET total_views = total_views + 1 WHERE id = 1")
            assert not after.ok
        assert not tx.ok
        assert tx.code == ErrorCode.CONFLICT.value

        row = (await db.aquery_one("SELECT total_views FROM stats WHERE id = 1")).data
        assert row["total_views"] == 0
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_exception(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "tx_exc.sqlite"))
    try:
        assert (await init_schema(db)).ok
        with pytest.raises(RuntimeError):
            async with db.atransaction():
                await db.aexecute("UPDATE stats SET total_signups = 5 WHERE id = 1")
                raise RuntimeError("boom")
        row = (await db.aquery_one("SELECT total_signups FROM stats WHERE id = 1")).data
        assert row["total_signups"] == 0

        # The write lock was released: a new transaction can start.
        async with db.atransaction() as tx:
            assert tx.ok
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_nested_transaction_joins_outer(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "nested.sqlite"))
    try:
        assert (await init_schema(db)).ok
        async with db.atransaction() as outer:
            await db.aexecute("UPDATE stats SET total_views = total_views + 1 WHERE id = 1")
            async with db.atransaction() as inner:
                assert inner is outer
                await db.aexecute("UPDATE stats SET total_signups = total_signups + 1 WHERE id = 1")
            db.fail_transaction(ErrorCode.INVALID_INPUT, "abandon")
        assert not outer.ok
        row = (await db.aquery_one("SELECT total_views, total_signups FROM stats WHERE id = 1")).data
        assert row == {"total_views": 0, "total_signups": 0}
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_locked_database_retries_are_bounded(tmp_path) -> None:
    path = str(tmp_path / "locked.sqlite")
    holder = Sqlite(path, timeout=1.0)
    db = Sqlite(path, timeout=0.05, lock_retries=1)
    db._lock_retry_base_seconds = 0.0
    db._lock_retry_max_seconds = 0.0
    try:
        assert (await init_schema(holder)).ok
        async with holder.atransaction("exclusive") as tx:
            assert tx.ok
            res = await db.aexecute("UPDATE stats SET total_views = total_views + 1 WHERE id = 1")
        assert not res.ok
        assert res.code == ErrorCode.CONFLICT_RETRY_EXHAUSTED.value
        assert db.get_diagnostics()["retry_exhausted"] >= 1
    finally:
        await db.aclose()
        await holder.aclose()


@pytest.mark.asyncio
async def test_lock_for_key_serializes_same_key(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "locks.sqlite"))
    order = []

    async def _worker(tag: str) -> None:
        async with db.lock_for_key("user:a"):
            order.append(f"{tag}-in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-out")

    try:
        await asyncio.gather(_worker("one"), _worker("two"))
        assert order in (
            ["one-in", "one-out", "two-in", "two-out"],
            ["two-in", "two-out", "one-in", "one-out"],
        )
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_closed_database_rejects_queries(tmp_path) -> None:
    db = Sqlite(str(tmp_path / "closed.sqlite"))
    assert (await db.aquery("SELECT 1 AS one")).ok
    await db.aclose()
    res = await db.aquery("SELECT 1 AS one")
    assert not res.ok
    assert res.code == ErrorCode.STORAGE_FAILURE.value


async def _cancel_after(task: asyncio.Task, spins: int) -> None:
    for _ in range(spins):
        await asyncio.sleep(0)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@pytest.mark.parametrize("spins", [1, 2, 3, 5, 8])
@pytest.mark.asyncio
async def test_cancelled_increment_releases_write_lock(tmp_path, spins) -> None:
    db = Sqlite(str(tmp_path / "cancel.sqlite"), max_connections=2)
    ledger = CounterLedger(db)
    try:
        assert (await init_schema(db)).ok
        await _cancel_after(asyncio.create_task(ledger.increment_global_views()), spins)

        res = await asyncio.wait_for(ledger.increment_global_views(), timeout=3)
        assert res.ok
        assert not db._get_write_lock().locked()
        assert db.get_runtime_status()["active_connections"] == 0
        row = (await db.aquery_one("SELECT total_views FROM stats WHERE id = 1")).data
        assert row["total_views"] == res.data
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_cancel_during_locked_begin_backoff_releases_write_lock(tmp_path) -> None:
    path = str(tmp_path / "cancel_locked.sqlite")
    holder = Sqlite(path, timeout=1.0)
    db = Sqlite(path, timeout=0.05, lock_retries=20)
    db._lock_retry_base_seconds = 0.01
    db._lock_retry_max_seconds = 0.02
    ledger = CounterLedger(db)
    try:
        assert (await init_schema(holder)).ok
        assert (await db.aquery("SELECT 1 AS one")).ok
        async with holder.atransaction("exclusive") as tx:
            assert tx.ok
            task = asyncio.create_task(ledger.increment_global_views())
            await asyncio.sleep(0.15)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        assert not db._get_write_lock().locked()

        res = await asyncio.wait_for(ledger.increment_global_views(), timeout=3)
        assert res.ok
        assert res.data == 1
    finally:
        await db.aclose()
        await holder.aclose()
