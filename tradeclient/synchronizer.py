"""Trading Synchronizer — owns the live mirror of one trading account.

Wires the price stream, the REST poller, the SL/TP watchdog and the order
gateway together behind an explicit state machine:

    IDLE  --select_account-->            ACTIVE_REGULAR(id)
    IDLE  --select_challenge_account-->  ACTIVE_CHALLENGE(id)
    ACTIVE_*  --select_*-->  ACTIVE_*     (old timers cancelled before new ones start)
    ACTIVE_*  --deselect-->  IDLE

Every transition goes through _transition(), which restarts the poller and
persists the selection so that only one of regular / challenge is ever live.
"""

import asyncio
from enum import Enum
from typing import Any, Callable

from loguru import logger

from tradeclient.api_client import TradingApi
from tradeclient.config import settings
from tradeclient.metrics import DerivedMetrics, MetricsMemo, compute_metrics, trade_pnl
from tradeclient.models.account import (
    Account,
    AccountStatus,
    ActiveAccount,
    ChallengeAccount,
)
from tradeclient.models.market import Instrument, PriceMap
from tradeclient.models.trade import OrderRequest, Trade
from tradeclient.notifications import NotificationCenter
from tradeclient.order_gateway import BatchResult, OrderGateway, OrderOutcome, StopLossPrompt
from tradeclient.poller import AccountPoller
from tradeclient.price_stream import PriceStream
from tradeclient.sltp_watchdog import SlTpWatchdog
from tradeclient.storage import SelectionStore


class SyncState(str, Enum):
    IDLE = "idle"
    ACTIVE_REGULAR = "active_regular"
    ACTIVE_CHALLENGE = "active_challenge"


class TradingSynchronizer:
    def __init__(
        self,
        user_id: str | None = None,
        api: TradingApi | None = None,
        stream: PriceStream | None = None,
        store: SelectionStore | None = None,
        notifications: NotificationCenter | None = None,
        poller: AccountPoller | None = None,
        sltp_interval: float | None = None,
    ):
        self.user_id = user_id if user_id is not None else settings.user_id
        self.api = api or TradingApi()
        self.stream = stream or PriceStream()
        self.store = store or SelectionStore()
        self.notifications = notifications or NotificationCenter()

        self.poller = poller or AccountPoller(self.api, self._get_prices, user_id=self.user_id)
        self.gateway = OrderGateway(
            self.api, self.poller, self._get_prices, self.notifications, user_id=self.user_id
        )
        self.watchdog = SlTpWatchdog(
            self.api, self.poller, self._get_prices, self.notifications, interval=sltp_interval
        )

        self.state = SyncState.IDLE
        self.accounts: list[Account] = []
        self.challenge_accounts: list[ChallengeAccount] = []
        self.instruments: list[Instrument] = []

        # Read-only snapshot of the stream's cache, replaced on every message
        self._prices: PriceMap = {}
        self._prices_version = 0
        self._selection_version = 0
        self._metrics_memo = MetricsMemo()

        self._unsubscribe_prices: Callable[[], None] | None = None
        self._unsubscribe_account: Callable[[], None] | None = None
        self._connect_task: asyncio.Task | None = None
        self._transition_lock = asyncio.Lock()
        self._started = False

    # --- Lifecycle ---

    async def start(self):
        """Open storage, connect the stream and restore the last selection."""
        if self._started:
            return
        self._started = True
        logger.info(f"Starting trading synchronizer for user {self.user_id or '<none>'}")

        await self.store.connect()
        self._connect_task = asyncio.create_task(self.stream.connect())
        self._unsubscribe_prices = self.stream.add_price_listener(self._on_prices)

        await self.load_instruments()
        await self.refresh_accounts()
        await self.restore_selection()
        self.watchdog.start()

    async def stop(self):
        if not self._started:
            return
        self._started = False
        await self.watchdog.stop()
        await self.poller.clear()
        if self._unsubscribe_account:
            self._unsubscribe_account()
            self._unsubscribe_account = None
        if self._unsubscribe_prices:
            self._unsubscribe_prices()
            self._unsubscribe_prices = None
        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        await self.stream.disconnect()
        await self.store.disconnect()
        await self.api.close()
        self.state = SyncState.IDLE
        logger.info("Trading synchronizer stopped")

    # --- Prices ---

    def _get_prices(self) -> PriceMap:
        return self._prices

    @property
    def prices(self) -> PriceMap:
        return self._prices

    def _on_prices(self, prices: PriceMap):
        self._prices = dict(prices)
        self._prices_version += 1
        for inst in self.instruments:
            quote = prices.get(inst.symbol)
            if quote and quote.get("bid"):
                inst.bid = quote["bid"]
                inst.ask = quote.get("ask") or quote["bid"]
                inst.spread = abs(inst.ask - inst.bid)

    # --- Instruments ---

    async def load_instruments(self) -> list[Instrument]:
        instruments = await self.api.get_instruments()
        if not instruments:
            logger.warning("Instrument catalog unavailable, keeping current list")
            return self.instruments
        starred = set(settings.starred_symbols)
        for inst in instruments:
            inst.starred = inst.symbol in starred
        self.instruments = instruments
        self._on_prices(self._prices)
        logger.info(f"Loaded {len(instruments)} instruments")
        return instruments

    def toggle_star(self, symbol: str) -> bool | None:
        """Flip the watchlist flag; returns the new value or None for unknown symbols."""
        for inst in self.instruments:
            if inst.symbol == symbol:
                inst.starred = not inst.starred
                return inst.starred
        return None

    @property
    def watchlist(self) -> list[Instrument]:
        return [i for i in self.instruments if i.starred]

    # --- Accounts ---

    async def refresh_accounts(self):
        if not self.user_id:
            logger.warning("No user id configured, skipping account load")
            return
        accounts, challenge_accounts = await asyncio.gather(
            self.api.get_accounts(self.user_id),
            self.api.get_challenge_accounts(self.user_id),
        )
        if accounts is not None:
            self.accounts = accounts
        if challenge_accounts is not None:
            self.challenge_accounts = challenge_accounts
        logger.info(
            f"Accounts: {len(self.accounts)} regular, {len(self.challenge_accounts)} challenge"
        )

    async def restore_selection(self):
        """Re-select the persisted account, falling back to the first regular one."""
        regular_id, challenge_id = await self.store.load_selection()

        if challenge_id:
            saved = self._find_challenge(challenge_id)
            if saved and saved.status == AccountStatus.ACTIVE:
                await self._transition(ActiveAccount(account=saved))
                return
        if regular_id:
            saved_regular = self._find_account(regular_id)
            if saved_regular:
                await self._transition(ActiveAccount(account=saved_regular))
                return
        if self.accounts:
            await self._transition(ActiveAccount(account=self.accounts[0]))
        else:
            logger.info("No trading account to select")

    def _find_account(self, account_id: str) -> Account | None:
        return next((a for a in self.accounts if a.id == account_id), None)

    def _find_challenge(self, account_id: str) -> ChallengeAccount | None:
        return next((a for a in self.challenge_accounts if a.id == account_id), None)

    async def select_account(self, account_id: str) -> bool:
        account = self._find_account(account_id)
        if account is None:
            logger.warning(f"Unknown trading account {account_id}")
            return False
        await self._transition(ActiveAccount(account=account))
        return True

    async def select_challenge_account(self, account_id: str) -> bool:
        account = self._find_challenge(account_id)
        if account is None:
            logger.warning(f"Unknown challenge account {account_id}")
            return False
        await self._transition(ActiveAccount(account=account))
        return True

    async def deselect(self):
        await self._transition(None)

    async def _transition(self, active: ActiveAccount | None):
        async with self._transition_lock:
            previous = self.poller.active
            if self._unsubscribe_account:
                self._unsubscribe_account()
                self._unsubscribe_account = None
            if previous is not None:
                await self.stream.unsubscribe_account(previous.id)

            if active is None:
                await self.poller.clear()
                await self.store.clear()
                self.state = SyncState.IDLE
            else:
                await self.poller.start(active)
                if active.is_challenge:
                    await self.store.select_challenge(active.id)
                    self.state = SyncState.ACTIVE_CHALLENGE
                else:
                    await self.store.select_regular(active.id)
                    self.state = SyncState.ACTIVE_REGULAR
                self._unsubscribe_account = self.stream.add_account_listener(
                    active.id, self._on_account_update
                )
                await self.stream.subscribe_account(active.id)

            self._selection_version += 1
            logger.info(f"State -> {self.state.value}" + (f" ({active.id})" if active else ""))

    def _on_account_update(self, data: dict[str, Any]):
        active = self.poller.active
        if active is None or data.get("tradingAccountId") != active.id:
            return
        return self.poller.refresh()

    @property
    def active(self) -> ActiveAccount | None:
        return self.poller.active

    def active_account_info(self) -> dict[str, Any]:
        """Display summary of the active account."""
        active = self.active
        if active is None:
            return {}
        account = active.account
        if isinstance(account, ChallengeAccount):
            return {
                "account_id": account.account_id,
                "balance": account.current_balance or 0,
                "equity": account.current_equity or 0,
                "is_challenge": True,
                "challenge_name": account.challenge.name or "Challenge",
                "step": account.current_step,
                "steps_count": account.challenge.steps_count,
                "status": account.status.value,
            }
        summary = self.poller.summary
        return {
            "account_id": account.account_id,
            "balance": summary.balance or account.balance or 0,
            "equity": self.metrics.real_time_equity or summary.equity or 0,
            "is_challenge": False,
        }

    # --- Mirrored data ---

    @property
    def open_trades(self) -> list[Trade]:
        return self.poller.open_trades

    @property
    def pending_orders(self) -> list[Trade]:
        return self.poller.pending_orders

    @property
    def trade_history(self) -> list[Trade]:
        return self.poller.trade_history

    @property
    def metrics(self) -> DerivedMetrics:
        key = (self._prices_version, self.poller.version, self._selection_version)
        return self._metrics_memo.get(
            key,
            lambda: compute_metrics(
                self.poller.active,
                self.poller.summary,
                self.poller.open_trades,
                self._prices,
                self.poller.trade_history,
            ),
        )

    def trade_pnl(self, trade: Trade) -> float:
        return trade_pnl(trade, self._prices)

    # --- Actions ---

    async def place_order(
        self, order: OrderRequest, stop_loss_prompt: StopLossPrompt | None = None
    ) -> OrderOutcome:
        return await self.gateway.place_order(order, stop_loss_prompt)

    async def close_trade(self, trade_id: str) -> OrderOutcome:
        trade = self._find_trade(trade_id)
        quote = self._prices.get(trade.symbol) if trade else None
        return await self.gateway.close_trade(trade_id, quote)

    async def modify_sl_tp(
        self, trade_id: str, sl: float | None = None, tp: float | None = None
    ) -> OrderOutcome:
        trade = self._find_trade(trade_id)
        quote = self._prices.get(trade.symbol) if trade else None
        return await self.gateway.modify_sl_tp(trade_id, sl, tp, quote)

    async def cancel_pending_order(self, order_id: str) -> OrderOutcome:
        return await self.gateway.cancel_pending_order(order_id)

    async def close_all(self, which: str = "all") -> BatchResult:
        return await self.gateway.close_all(list(self.open_trades), which)

    async def kill_switch(self) -> BatchResult:
        return await self.gateway.kill_switch(list(self.open_trades), list(self.pending_orders))

    def _find_trade(self, trade_id: str) -> Trade | None:
        trade = next((t for t in self.open_trades if t.id == trade_id), None)
        if trade is None:
            logger.warning(f"Trade {trade_id} is not among the open trades")
        return trade
