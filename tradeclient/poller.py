"""Account Poller — keeps open trades, pending orders, history and summary in sync over REST."""

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger

from tradeclient.api_client import TradingApi
from tradeclient.config import settings
from tradeclient.models.account import AccountSummary, ActiveAccount, ChallengeAccount
from tradeclient.models.market import PriceMap
from tradeclient.models.trade import Trade


class AccountPoller:
    def __init__(
        self,
        api: TradingApi,
        prices: Callable[[], PriceMap],
        user_id: str = "",
        trades_interval: float | None = None,
        history_interval: float | None = None,
        challenge_interval: float | None = None,
        history_limit: int | None = None,
    ):
        self.api = api
        self._prices = prices
        self.user_id = user_id
        self.trades_interval = trades_interval or settings.trades_poll_interval_s
        self.history_interval = history_interval or settings.history_poll_interval_s
        self.challenge_interval = challenge_interval or settings.challenge_stats_interval_s
        self.history_limit = history_limit or settings.history_limit

        self._active: ActiveAccount | None = None
        self._tasks: list[asyncio.Task] = []
        self._update_callbacks: list[Callable] = []

        # Mirrored state, owned by the poller
        self.open_trades: list[Trade] = []
        self.pending_orders: list[Trade] = []
        self.trade_history: list[Trade] = []
        self.summary = AccountSummary()
        self.version = 0

    @property
    def active(self) -> ActiveAccount | None:
        return self._active

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def on_update(self, callback: Callable[[str], Any]):
        """Register callback(kind) fired after each applied update."""
        self._update_callbacks.append(callback)

    # --- Lifecycle ---

    async def start(self, active: ActiveAccount):
        """Mirror `active`. Timers of the previous account are cancelled first."""
        await self.stop()
        self._active = active
        self._reset_state()
        self._tasks = [
            asyncio.create_task(self._loop("trades", self.trades_interval, self.refresh)),
            asyncio.create_task(
                self._loop("history", self.history_interval, self.fetch_trade_history)
            ),
        ]
        if active.is_challenge:
            self._tasks.append(
                asyncio.create_task(
                    self._loop("challenge", self.challenge_interval, self.refresh_challenge_stats)
                )
            )
        logger.info(
            f"Polling {'challenge' if active.is_challenge else 'regular'} account {active.id}"
        )

    async def stop(self):
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks and self._active:
            logger.info(f"Stopped polling account {self._active.id}")

    async def clear(self):
        """Stop polling and forget the active account."""
        await self.stop()
        self._active = None
        self._reset_state()

    def _reset_state(self):
        self.open_trades = []
        self.pending_orders = []
        self.trade_history = []
        self.summary = AccountSummary()
        self.version += 1

    async def _loop(self, name: str, interval: float, job: Callable[[], Awaitable[Any]]):
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Poll job '{name}' error: {e}")
            await asyncio.sleep(interval)

    # --- Fetches ---

    def _is_current(self, issued_for: ActiveAccount) -> bool:
        return self._active is not None and self._active.key == issued_for.key

    def _apply(self, issued_for: ActiveAccount, kind: str, setter: Callable[[], None]) -> bool:
        if not self._is_current(issued_for):
            logger.debug(f"Dropping stale {kind} response for account {issued_for.id}")
            return False
        setter()
        self.version += 1
        for cb in self._update_callbacks:
            try:
                cb(kind)
            except Exception as e:
                logger.error(f"Poller update callback error: {e}")
        return True

    async def fetch_open_trades(self) -> bool:
        active = self._active
        if active is None:
            return False
        trades = await self.api.get_open_trades(active.id)
        if trades is None:
            return False
        return self._apply(active, "open_trades", lambda: setattr(self, "open_trades", trades))

    async def fetch_pending_orders(self) -> bool:
        active = self._active
        if active is None:
            return False
        orders = await self.api.get_pending_orders(active.id)
        if orders is None:
            return False
        return self._apply(active, "pending_orders", lambda: setattr(self, "pending_orders", orders))

    async def fetch_trade_history(self, limit: int | None = None) -> bool:
        active = self._active
        if active is None:
            return False
        history = await self.api.get_trade_history(active.id, limit or self.history_limit)
        if history is None:
            return False
        return self._apply(active, "trade_history", lambda: setattr(self, "trade_history", history))

    async def fetch_account_summary(self) -> bool:
        active = self._active
        if active is None:
            return False

        account = active.account
        if isinstance(account, ChallengeAccount):
            # No summary endpoint for challenge accounts; build it from the account itself
            summary = AccountSummary(
                balance=account.current_balance or account.balance or 0,
                equity=account.current_equity or account.current_balance or 0,
                credit=account.credit or 0,
                used_margin=0,
                free_margin=account.current_balance or 0,
                floating_pnl=0,
            )
            return self._apply(active, "summary", lambda: setattr(self, "summary", summary))

        if not account.account_type or account.account_type == "challenge":
            return False

        summary = await self.api.get_account_summary(active.id, dict(self._prices()))
        if summary is None:
            return False
        return self._apply(active, "summary", lambda: setattr(self, "summary", summary))

    async def refresh_challenge_stats(self) -> bool:
        """Reload the active challenge account for fresh drawdown baselines."""
        active = self._active
        if active is None or not active.is_challenge or not self.user_id:
            return False
        accounts = await self.api.get_challenge_accounts(self.user_id)
        if not accounts:
            return False
        updated = next((a for a in accounts if a.id == active.id), None)
        if updated is None:
            return False

        def setter():
            self._active = ActiveAccount(account=updated)

        return self._apply(active, "challenge_account", setter)

    async def refresh(self):
        """Open trades, pending orders and summary; each independent of the others."""
        await self.gather(
            self.fetch_open_trades(),
            self.fetch_pending_orders(),
            self.fetch_account_summary(),
        )

    async def refresh_all(self):
        await self.gather(self.refresh(), self.fetch_trade_history())

    async def gather(self, *jobs: Awaitable[Any]):
        for result in await asyncio.gather(*jobs, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error(f"Refresh error: {result}")
