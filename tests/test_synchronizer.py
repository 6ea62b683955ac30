"""Tests for tradeclient.synchronizer — startup restore, account transitions and actions."""

import asyncio

from tradeclient.models.account import AccountStatus
from tradeclient.price_stream import PriceStream
from tradeclient.storage import SelectionStore
from tradeclient.synchronizer import SyncState, TradingSynchronizer
from tests.conftest import (
    FakeApi,
    FakeSocketClient,
    make_account,
    make_challenge_account,
    make_trade,
)


def make_sync(tmp_path, api=None, client=None):
    api = api or FakeApi()
    api.accounts = api.accounts or [make_account(id="acc1"), make_account(id="acc2")]
    api.challenge_accounts = api.challenge_accounts or [make_challenge_account(id="ch1")]
    sync = TradingSynchronizer(
        user_id="user1",
        api=api,
        stream=PriceStream(url="http://stream.test", client=client or FakeSocketClient()),
        store=SelectionStore(str(tmp_path / "sel.db")),
        sltp_interval=60,
    )
    return sync


def run_started(sync, steps):
    async def run():
        await sync.start()
        await asyncio.sleep(0.01)
        try:
            return await steps(sync)
        finally:
            await sync.stop()

    return asyncio.run(run())


def save_selection(tmp_path, regular_id=None, challenge_id=None):
    async def run():
        store = SelectionStore(str(tmp_path / "sel.db"))
        await store.connect()
        if regular_id:
            await store.select_regular(regular_id)
        if challenge_id:
            await store.select_challenge(challenge_id)
        await store.disconnect()

    asyncio.run(run())


# ── Startup ─────────────────────────────────────────────────────────

class TestStartup:
    def test_defaults_to_first_regular_account(self, tmp_path):
        sync = make_sync(tmp_path)

        async def steps(sync):
            return sync.state, sync.active.id, await sync.store.load_selection()

        state, active_id, saved = run_started(sync, steps)
        assert state == SyncState.ACTIVE_REGULAR
        assert active_id == "acc1"
        assert saved == ("acc1", None)

    def test_restores_saved_challenge(self, tmp_path):
        save_selection(tmp_path, challenge_id="ch1")
        sync = make_sync(tmp_path)

        async def steps(sync):
            return sync.state, sync.active.id

        assert run_started(sync, steps) == (SyncState.ACTIVE_CHALLENGE, "ch1")

    def test_failed_challenge_not_restored(self, tmp_path):
        save_selection(tmp_path, challenge_id="ch1")
        api = FakeApi()
        api.challenge_accounts = [make_challenge_account(id="ch1", status=AccountStatus.FAILED)]
        sync = make_sync(tmp_path, api=api)

        async def steps(sync):
            return sync.state, sync.active.id

        assert run_started(sync, steps) == (SyncState.ACTIVE_REGULAR, "acc1")

    def test_restores_saved_regular(self, tmp_path):
        save_selection(tmp_path, regular_id="acc2")
        sync = make_sync(tmp_path)

        async def steps(sync):
            return sync.active.id

        assert run_started(sync, steps) == "acc2"

    def test_idle_without_accounts(self, tmp_path):
        api = FakeApi()
        sync = TradingSynchronizer(
            user_id="user1",
            api=api,
            stream=PriceStream(url="http://stream.test", client=FakeSocketClient()),
            store=SelectionStore(str(tmp_path / "sel.db")),
            sltp_interval=60,
        )

        async def steps(sync):
            return sync.state, sync.active_account_info()

        assert run_started(sync, steps) == (SyncState.IDLE, {})

    def test_no_user_id_skips_accounts(self, tmp_path):
        sync = make_sync(tmp_path)
        sync.user_id = ""

        async def steps(sync):
            return sync.accounts

        assert run_started(sync, steps) == []

    def test_instruments_starred_defaults(self, tmp_path):
        sync = make_sync(tmp_path)

        async def steps(sync):
            return [i.symbol for i in sync.watchlist]

        assert run_started(sync, steps) == ["EURUSD", "XAUUSD"]

    def test_stop_releases_everything(self, tmp_path):
        api = FakeApi()
        client = FakeSocketClient()
        sync = make_sync(tmp_path, api=api, client=client)

        async def steps(sync):
            return None

        run_started(sync, steps)
        assert api.closed
        assert not client.connected
        assert not sync.poller.running
        assert not sync.watchdog.running
        assert sync.state == SyncState.IDLE


# ── Transitions ─────────────────────────────────────────────────────

class TestTransitions:
    def test_switch_to_challenge_and_back(self, tmp_path):
        client = FakeSocketClient()
        sync = make_sync(tmp_path, client=client)

        async def steps(sync):
            seen = []
            assert await sync.select_challenge_account("ch1")
            seen.append((sync.state, await sync.store.load_selection()))
            assert await sync.select_account("acc2")
            seen.append((sync.state, await sync.store.load_selection()))
            return seen

        seen = run_started(sync, steps)
        assert seen == [
            (SyncState.ACTIVE_CHALLENGE, (None, "ch1")),
            (SyncState.ACTIVE_REGULAR, ("acc2", None)),
        ]
        assert ("subscribe", {"tradingAccountId": "ch1"}) in client.emitted
        assert ("unsubscribe", {"tradingAccountId": "ch1"}) in client.emitted

    def test_unknown_account_keeps_state(self, tmp_path):
        sync = make_sync(tmp_path)

        async def steps(sync):
            ok = await sync.select_account("nope")
            ok_challenge = await sync.select_challenge_account("nope")
            return ok, ok_challenge, sync.active.id

        assert run_started(sync, steps) == (False, False, "acc1")

    def test_deselect(self, tmp_path):
        sync = make_sync(tmp_path)

        async def steps(sync):
            await sync.deselect()
            return sync.state, sync.active, await sync.store.load_selection()

        assert run_started(sync, steps) == (SyncState.IDLE, None, (None, None))

    def test_account_push_triggers_refresh(self, tmp_path):
        client = FakeSocketClient()
        api = FakeApi()
        sync = make_sync(tmp_path, api=api, client=client)

        async def steps(sync):
            before = len(api.called("get_open_trades"))
            await client.fire("accountUpdate", {"tradingAccountId": "acc1"})
            await client.fire("accountUpdate", {"tradingAccountId": "acc2"})
            await asyncio.sleep(0.01)
            return before, len(api.called("get_open_trades"))

        before, after = run_started(sync, steps)
        assert after == before + 1

    def test_challenge_info(self, tmp_path):
        sync = make_sync(tmp_path)

        async def steps(sync):
            await sync.select_challenge_account("ch1")
            return sync.active_account_info()

        info = run_started(sync, steps)
        assert info["is_challenge"]
        assert info["challenge_name"] == "Two Step 5K"
        assert info["status"] == "ACTIVE"


# ── Prices and metrics ──────────────────────────────────────────────

class TestPricesAndMetrics:
    def test_prices_update_instruments(self, tmp_path):
        sync = make_sync(tmp_path)

        async def steps(sync):
            sync.stream.apply_snapshot({"EURUSD": {"bid": 1.1, "ask": 1.1002}, "XAUUSD": {"bid": 2000.0}})
            return {i.symbol: (i.bid, i.ask) for i in sync.instruments}

        quotes = run_started(sync, steps)
        assert quotes["EURUSD"] == (1.1, 1.1002)
        assert quotes["XAUUSD"] == (2000.0, 2000.0)
        assert quotes["USDJPY"] == (0.0, 0.0)

    def test_metrics_follow_prices(self, tmp_path):
        api = FakeApi()
        api.open_trades["acc1"] = [make_trade(id="t1", quantity=0.10, open_price=1.1)]
        sync = make_sync(tmp_path, api=api)

        async def steps(sync):
            await sync.poller.refresh()
            sync.stream.apply_snapshot({"EURUSD": {"bid": 1.105, "ask": 1.1052}})
            first = sync.metrics
            again = sync.metrics
            sync.stream.apply_update("EURUSD", {"bid": 1.106, "ask": 1.1062})
            return first, again, sync.metrics

        first, again, moved = run_started(sync, steps)
        assert first is again
        assert first.total_floating_pnl == 50.0
        assert first.real_time_equity == 10050.0
        assert moved.total_floating_pnl == 60.0
        assert moved.real_time_free_margin == first.real_time_free_margin


# ── Actions ─────────────────────────────────────────────────────────

class TestActions:
    def test_close_trade_uses_symbol_quote(self, tmp_path):
        api = FakeApi()
        api.open_trades["acc1"] = [make_trade(id="t1", symbol="XAUUSD")]
        sync = make_sync(tmp_path, api=api)

        async def steps(sync):
            await sync.poller.refresh()
            sync.stream.apply_snapshot({"XAUUSD": {"bid": 2000.0, "ask": 2000.5}})
            return await sync.close_trade("t1")

        outcome = run_started(sync, steps)
        assert outcome.success
        assert api.called("close_trade")[0] == ("close_trade", "t1", 2000.0, 2000.5)

    def test_unknown_trade_has_no_price(self, tmp_path):
        api = FakeApi()
        sync = make_sync(tmp_path, api=api)

        async def steps(sync):
            sync.stream.apply_snapshot({"XAUUSD": {"bid": 2000.0, "ask": 2000.5}})
            return await sync.modify_sl_tp("missing", sl=1990.0)

        outcome = run_started(sync, steps)
        assert outcome.kind.value == "no_price"
        assert not api.called("modify_trade")

    def test_kill_switch_uses_mirrored_lists(self, tmp_path):
        api = FakeApi()
        api.open_trades["acc1"] = [make_trade(id="t1")]
        api.pending_orders["acc1"] = [make_trade(id="p1", status="PENDING")]
        sync = make_sync(tmp_path, api=api)

        async def steps(sync):
            await sync.poller.refresh()
            sync.stream.apply_snapshot({"EURUSD": {"bid": 1.1, "ask": 1.1002}})
            return await sync.kill_switch()

        result = run_started(sync, steps)
        assert result.message == "Kill Switch: Closed 1 trades, cancelled 1 orders"
