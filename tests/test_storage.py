"""Tests for tradeclient.storage — persisted account selection."""

import asyncio

import aiosqlite
import pytest

from tradeclient.storage import CHALLENGE_KEY, REGULAR_KEY, SelectionStore


def run_with_store(path, steps):
    async def run():
        store = SelectionStore(str(path))
        await store.connect()
        try:
            return await steps(store)
        finally:
            await store.disconnect()

    return asyncio.run(run())


class TestSelectionStore:
    def test_select_challenge_clears_regular(self, tmp_path):
        async def steps(store):
            await store.select_regular("acc1")
            await store.select_challenge("ch1")
            return await store.load_selection()

        assert run_with_store(tmp_path / "sel.db", steps) == (None, "ch1")

    def test_select_regular_clears_challenge(self, tmp_path):
        async def steps(store):
            await store.select_challenge("ch1")
            await store.select_regular("acc2")
            return await store.load_selection()

        assert run_with_store(tmp_path / "sel.db", steps) == ("acc2", None)

    def test_at_most_one_selected(self, tmp_path):
        async def steps(store):
            seen = []
            for op, value in [("r", "a"), ("c", "b"), ("c", "c"), ("r", "d"), ("r", "e")]:
                if op == "r":
                    await store.select_regular(value)
                else:
                    await store.select_challenge(value)
                seen.append(await store.load_selection())
            return seen

        for regular_id, challenge_id in run_with_store(tmp_path / "sel.db", steps):
            assert (regular_id is None) != (challenge_id is None)

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "sel.db"

        async def write(store):
            await store.select_challenge("ch9")

        async def read(store):
            return await store.get(CHALLENGE_KEY), await store.get(REGULAR_KEY)

        run_with_store(path, write)
        assert run_with_store(path, read) == ("ch9", None)

    def test_clear(self, tmp_path):
        async def steps(store):
            await store.select_regular("acc1")
            await store.clear()
            return await store.load_selection()

        assert run_with_store(tmp_path / "sel.db", steps) == (None, None)

    def test_set_overwrites(self, tmp_path):
        async def steps(store):
            await store.set("k", "1")
            await store.set("k", "2")
            return await store.get("k")

        assert run_with_store(tmp_path / "sel.db", steps) == "2"

    def test_failed_switch_keeps_previous_selection(self, tmp_path):
        class FailingDeletes:
            def __init__(self, db):
                self._db = db

            def __getattr__(self, name):
                return getattr(self._db, name)

            async def execute(self, sql, params=()):
                if sql.startswith("DELETE"):
                    raise aiosqlite.OperationalError("disk I/O error")
                return await self._db.execute(sql, params)

        async def steps(store):
            await store.select_regular("acc1")
            real = store._db
            store._db = FailingDeletes(real)
            with pytest.raises(aiosqlite.OperationalError):
                await store.select_challenge("ch1")
            store._db = real
            return await store.load_selection()

        assert run_with_store(tmp_path / "sel.db", steps) == ("acc1", None)
