"""Shared factories and in-memory fakes for the trading client tests."""

from datetime import datetime

import pytest
from socketio.exceptions import ConnectionError as StreamConnectionError

from tradeclient.models.account import (
    Account,
    AccountStatus,
    AccountSummary,
    ActiveAccount,
    Challenge,
    ChallengeAccount,
    ChallengeRules,
)
from tradeclient.models.market import Category, Instrument
from tradeclient.models.trade import Trade


def make_trade(
    id="t1",
    symbol="EURUSD",
    side="BUY",
    quantity=1.0,
    open_price=1.1000,
    contract_size=100000.0,
    margin_used=0.0,
    commission=0.0,
    swap=0.0,
    status="OPEN",
    trading_account_id="acc1",
    **kwargs,
) -> Trade:
    return Trade(
        id=id,
        symbol=symbol,
        side=side,
        quantity=quantity,
        open_price=open_price,
        contract_size=contract_size,
        margin_used=margin_used,
        commission=commission,
        swap=swap,
        status=status,
        trading_account_id=trading_account_id,
        **kwargs,
    )


def make_closed_trade(id="h1", realized_pnl=10.0, closed_at=None, **kwargs) -> Trade:
    return make_trade(
        id=id,
        status="CLOSED",
        realized_pnl=realized_pnl,
        closed_at=closed_at or datetime.now(),
        **kwargs,
    )


def make_account(id="acc1", balance=10000.0, credit=0.0, account_type="standard", **kwargs) -> Account:
    return Account(
        id=id,
        account_id=kwargs.pop("account_id", f"PX-{id}"),
        balance=balance,
        credit=credit,
        account_type=account_type,
        **kwargs,
    )


def make_challenge_account(
    id="ch1",
    initial_balance=5000.0,
    day_start_equity=5000.0,
    lowest_equity_overall=5000.0,
    current_balance=5000.0,
    current_equity=5000.0,
    stop_loss_mandatory=False,
    max_daily=5.0,
    max_overall=10.0,
    profit_target=8.0,
    status=AccountStatus.ACTIVE,
    **kwargs,
) -> ChallengeAccount:
    return ChallengeAccount(
        id=id,
        account_id=kwargs.pop("account_id", f"CH-{id}"),
        challenge=Challenge(
            id="c1",
            name="Two Step 5K",
            rules=ChallengeRules(
                max_daily_drawdown_percent=max_daily,
                max_overall_drawdown_percent=max_overall,
                profit_target_phase1_percent=profit_target,
                stop_loss_mandatory=stop_loss_mandatory,
            ),
        ),
        status=status,
        balance=current_balance,
        current_balance=current_balance,
        current_equity=current_equity,
        initial_balance=initial_balance,
        day_start_equity=day_start_equity,
        lowest_equity_overall=lowest_equity_overall,
        **kwargs,
    )


def regular(account=None, **kwargs) -> ActiveAccount:
    return ActiveAccount(account=account or make_account(**kwargs))


def challenge(account=None, **kwargs) -> ActiveAccount:
    return ActiveAccount(account=account or make_challenge_account(**kwargs))


class FakeApi:
    """Stands in for TradingApi. Records every call; canned responses per method.

    `responses[name]` may be a dict (always returned), a list (popped in order)
    or a callable receiving the call's arguments.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.responses: dict = {}
        self.accounts: list[Account] = []
        self.challenge_accounts: list[ChallengeAccount] = []
        self.open_trades: dict[str, list[Trade]] = {}
        self.pending_orders: dict[str, list[Trade]] = {}
        self.history: dict[str, list[Trade]] = {}
        self.summary = AccountSummary(balance=10000.0, equity=10000.0)
        self.instruments = [
            Instrument(symbol="EURUSD", name="Euro / US Dollar"),
            Instrument(symbol="XAUUSD", name="Gold", category=Category.METALS),
            Instrument(symbol="USDJPY", name="US Dollar / Yen"),
        ]
        self.closed = False

    def _next(self, name, default, *args):
        r = self.responses.get(name)
        if callable(r):
            return r(*args)
        if isinstance(r, list):
            return r.pop(0) if r else default
        if r is not None:
            return r
        return default

    def called(self, name) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def close(self):
        self.closed = True

    async def get_accounts(self, user_id):
        self.calls.append(("get_accounts", user_id))
        return list(self.accounts)

    async def get_challenge_accounts(self, user_id):
        self.calls.append(("get_challenge_accounts", user_id))
        return list(self.challenge_accounts)

    async def get_account_summary(self, account_id, prices=None):
        self.calls.append(("get_account_summary", account_id, prices))
        return self.summary

    async def get_open_trades(self, account_id):
        self.calls.append(("get_open_trades", account_id))
        return list(self.open_trades.get(account_id, []))

    async def get_pending_orders(self, account_id):
        self.calls.append(("get_pending_orders", account_id))
        return list(self.pending_orders.get(account_id, []))

    async def get_trade_history(self, account_id, limit=50):
        self.calls.append(("get_trade_history", account_id, limit))
        return list(self.history.get(account_id, []))

    async def open_trade(self, payload):
        self.calls.append(("open_trade", payload))
        return self._next("open_trade", {"success": True, "trade": {"_id": "new"}}, payload)

    async def close_trade(self, trade_id, bid, ask):
        self.calls.append(("close_trade", trade_id, bid, ask))
        return self._next("close_trade", {"success": True, "trade": {"realizedPnl": 12.5}}, trade_id)

    async def modify_trade(self, trade_id, sl, tp):
        self.calls.append(("modify_trade", trade_id, sl, tp))
        return self._next("modify_trade", {"success": True}, trade_id)

    async def cancel_order(self, trade_id):
        self.calls.append(("cancel_order", trade_id))
        return self._next("cancel_order", {"success": True}, trade_id)

    async def check_sltp(self, prices):
        self.calls.append(("check_sltp", prices))
        return self._next("check_sltp", {"success": True, "closedTrades": []}, prices)

    async def get_instruments(self):
        self.calls.append(("get_instruments",))
        return [i.model_copy() for i in self.instruments]


class FakeSocketClient:
    """Minimal socketio.AsyncClient double driven directly by the tests."""

    def __init__(self, fail_times=0):
        self.handlers: dict = {}
        self.connected = False
        self.emitted: list[tuple] = []
        self.connect_calls = 0
        self.fail_times = fail_times

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.connect_calls += 1
        if self.connect_calls <= self.fail_times:
            raise StreamConnectionError("Connection refused")
        self.connected = True
        await self.handlers["connect"]()

    async def disconnect(self):
        self.connected = False
        await self.handlers["disconnect"]()

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    async def fire(self, event, data=None):
        await self.handlers[event](data)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def prices():
    return {
        "EURUSD": {"bid": 1.1010, "ask": 1.1012},
        "XAUUSD": {"bid": 2000.0, "ask": 2000.5},
    }
