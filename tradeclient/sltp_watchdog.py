"""SL/TP Watchdog — asks the backend to evaluate stop-loss, take-profit and stop-out."""

import asyncio
from typing import Callable

from loguru import logger

from tradeclient.api_client import TradingApi, parse_closed_trade
from tradeclient.config import settings
from tradeclient.models.market import PriceMap
from tradeclient.models.trade import ClosedTradeEvent
from tradeclient.notifications import NotificationCenter, Severity
from tradeclient.poller import AccountPoller


def pnl_text(pnl: float) -> str:
    return f"+${pnl:.2f}" if pnl >= 0 else f"-${abs(pnl):.2f}"


def describe_closure(event: ClosedTradeEvent) -> tuple[str, str, Severity]:
    """Title, dialog message and toast severity for one closed trade."""
    pnl = pnl_text(event.pnl)
    severity = Severity.SUCCESS if event.pnl >= 0 else Severity.WARNING

    if event.trigger == "STOP_OUT":
        return (
            "Stop Out - Equity Zero",
            f"All trades closed due to equity reaching zero.\n\n{event.symbol}: {pnl}",
            Severity.ERROR,
        )
    if event.trigger == "SL":
        return "Stop Loss Hit", f"{event.symbol} closed by Stop Loss.\n\nPnL: {pnl}", severity
    if event.trigger == "TP":
        return "Take Profit Hit", f"{event.symbol} closed by Take Profit.\n\nPnL: {pnl}", severity
    return "Trade Closed", f"{event.symbol} closed. PnL: {pnl}", severity


class SlTpWatchdog:
    def __init__(
        self,
        api: TradingApi,
        poller: AccountPoller,
        prices: Callable[[], PriceMap],
        notifications: NotificationCenter,
        interval: float | None = None,
    ):
        self.api = api
        self.poller = poller
        self._prices = prices
        self.notifications = notifications
        self.interval = interval or settings.sltp_check_interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _loop(self):
        logger.info("SL/TP watchdog started")
        while True:
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"SL/TP check error: {e}")
            await asyncio.sleep(self.interval)

    async def check_once(self) -> list[ClosedTradeEvent]:
        """Run one evaluation; returns the closures notified for the active account."""
        prices = dict(self._prices())
        if not prices or not self.poller.open_trades:
            return []

        data = await self.api.check_sltp(prices)
        closed = data.get("closedTrades") or []
        if not data.get("success") or not closed:
            return []

        logger.info(f"SL/TP: {len(closed)} trade(s) closed by the server")
        await self.poller.gather(
            self.poller.fetch_open_trades(),
            self.poller.fetch_account_summary(),
        )

        active = self.poller.active
        active_id = active.id if active else None
        notified = []
        for raw in closed:
            event = parse_closed_trade(raw)
            # Only surface closures of the account the user is looking at
            if event.trading_account_id and event.trading_account_id != active_id:
                logger.debug(f"Skipping closure of {event.symbol} on other account {event.trading_account_id}")
                continue

            title, message, severity = describe_closure(event)
            await self.notifications.toast(f"{event.trigger}: {event.symbol} {pnl_text(event.pnl)}", severity)
            await self.notifications.alert(title, message, severity)
            notified.append(event)
        return notified
