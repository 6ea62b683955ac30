"""Order Gateway — validates and submits order, close, modify and cancel requests."""

from contextlib import contextmanager
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import BaseModel

from tradeclient.api_client import TradingApi
from tradeclient.config import settings
from tradeclient.metrics import trade_pnl
from tradeclient.models.account import ActiveAccount, ChallengeAccount
from tradeclient.models.market import PriceMap, has_quote, symbol_category
from tradeclient.models.trade import OrderRequest, Trade
from tradeclient.notifications import NotificationCenter, Severity
from tradeclient.order_policy import OrderPolicy, ValidationCode, validate_order
from tradeclient.poller import AccountPoller

StopLossPrompt = Callable[[OrderRequest], Awaitable[float | None]]


class OutcomeKind(str, Enum):
    ACCEPTED = "accepted"
    CHALLENGE_FAILED = "challenge_failed"  # drawdown breach
    LOT_SIZE = "lot_size"
    ACCOUNT_FAILED = "account_failed"
    REJECTED = "rejected"
    NETWORK_ERROR = "network_error"
    # blocked locally, nothing sent
    NO_ACCOUNT = "no_account"
    BUSY = "busy"
    STOP_LOSS_REQUIRED = "stop_loss_required"
    NO_PRICE = "no_price"
    PENDING_PRICE_REQUIRED = "pending_price_required"


_VALIDATION_OUTCOMES = {
    ValidationCode.STOP_LOSS_REQUIRED: (OutcomeKind.STOP_LOSS_REQUIRED, Severity.WARNING),
    ValidationCode.NO_PRICE: (OutcomeKind.NO_PRICE, Severity.ERROR),
    ValidationCode.PENDING_PRICE_REQUIRED: (OutcomeKind.PENDING_PRICE_REQUIRED, Severity.WARNING),
}

DRAWDOWN_CODES = {"DRAWDOWN_BREACH", "DAILY_DRAWDOWN_BREACH"}
LOT_CODES = {"MAX_LOTS_EXCEEDED", "MIN_LOTS_REQUIRED"}


class OrderOutcome(BaseModel):
    success: bool
    kind: OutcomeKind
    message: str
    severity: Severity
    sent: bool = False  # whether a request reached the network layer
    code: str | None = None
    realized_pnl: float | None = None
    response: dict[str, Any] = {}


class BatchResult(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0  # no price available
    message: str = ""


def classify_open_response(data: dict[str, Any]) -> OrderOutcome:
    """Map a /trade/open response to a user-facing outcome."""
    message = data.get("message") or ""
    code = data.get("code")

    if data.get("success"):
        return OrderOutcome(
            success=True, kind=OutcomeKind.ACCEPTED, message=message,
            severity=Severity.SUCCESS, sent=True, code=code, response=data,
        )
    if data.get("error") == "network":
        return OrderOutcome(
            success=False, kind=OutcomeKind.NETWORK_ERROR,
            message=f"Network error: {message}", severity=Severity.ERROR,
            sent=True, response=data,
        )
    if code in DRAWDOWN_CODES:
        kind, text, severity = OutcomeKind.CHALLENGE_FAILED, f"Challenge Failed: {message}", Severity.ERROR
    elif code in LOT_CODES:
        kind, text, severity = OutcomeKind.LOT_SIZE, f"Lot Size Error: {message}", Severity.WARNING
    elif data.get("accountFailed"):
        reason = data.get("failReason") or message
        kind, text, severity = OutcomeKind.ACCOUNT_FAILED, f"Challenge Account Failed: {reason}", Severity.ERROR
    else:
        kind, text, severity = OutcomeKind.REJECTED, message or "Failed to place order", Severity.ERROR
    return OrderOutcome(
        success=False, kind=kind, message=text, severity=severity,
        sent=True, code=code, response=data,
    )


class OrderGateway:
    def __init__(
        self,
        api: TradingApi,
        poller: AccountPoller,
        prices: Callable[[], PriceMap],
        notifications: NotificationCenter,
        user_id: str = "",
    ):
        self.api = api
        self.poller = poller
        self._prices = prices
        self.notifications = notifications
        self.user_id = user_id
        self._in_flight: set[str] = set()

    # --- Helpers ---

    @property
    def active(self) -> ActiveAccount | None:
        return self.poller.active

    def is_busy(self, operation: str) -> bool:
        return operation in self._in_flight

    @contextmanager
    def _in_flight_guard(self, operation: str):
        self._in_flight.add(operation)
        try:
            yield
        finally:
            self._in_flight.discard(operation)

    def leverage(self) -> str:
        active = self.active
        if active is None:
            return settings.default_leverage
        account = active.account
        if isinstance(account, ChallengeAccount):
            return account.leverage or settings.default_leverage
        return account.leverage or account.account_type_leverage or settings.default_leverage

    def build_payload(self, order: OrderRequest, quote: dict[str, Any]) -> dict[str, Any]:
        """Wire payload for POST /trade/open (pending orders send the entry price as bid and ask)."""
        if order.pending and order.pending_price:
            bid = ask = float(order.pending_price)
        else:
            bid, ask = float(quote["bid"]), float(quote["ask"])
        payload: dict[str, Any] = {
            "userId": self.user_id,
            "tradingAccountId": self.active.id if self.active else None,
            "symbol": order.symbol,
            "segment": symbol_category(order.symbol).value,
            "side": order.side.value,
            "orderType": order.order_type.value,
            "quantity": order.quantity,
            "bid": bid,
            "ask": ask,
            "leverage": self.leverage(),
        }
        if order.sl:
            payload["sl"] = float(order.sl)
        if order.tp:
            payload["tp"] = float(order.tp)
        return payload

    async def _report(self, outcome: OrderOutcome) -> OrderOutcome:
        await self.notifications.toast(outcome.message, outcome.severity)
        return outcome

    async def _blocked(self, kind: OutcomeKind, message: str, severity: Severity) -> OrderOutcome:
        return await self._report(
            OrderOutcome(success=False, kind=kind, message=message, severity=severity)
        )

    # --- Orders ---

    async def place_order(
        self, order: OrderRequest, stop_loss_prompt: StopLossPrompt | None = None
    ) -> OrderOutcome:
        """Validate and submit an order for the active account.

        When the challenge requires a stop loss and none is set, stop_loss_prompt
        is awaited for a value; the order is then re-checked with the same
        validate_order() before anything is sent.
        """
        active = self.active
        if active is None:
            return await self._blocked(
                OutcomeKind.NO_ACCOUNT, "Please select a trading account first", Severity.ERROR
            )
        if self.is_busy("open"):
            return OrderOutcome(
                success=False, kind=OutcomeKind.BUSY,
                message="An order is already being placed", severity=Severity.WARNING,
            )

        with self._in_flight_guard("open"):
            policy = OrderPolicy.for_account(active)
            quote = self._prices().get(order.symbol)
            decision = validate_order(order, quote, policy)

            if decision.needs_stop_loss and stop_loss_prompt is not None:
                sl = await stop_loss_prompt(order)
                if sl:
                    order = order.model_copy(update={"sl": sl})
                    quote = self._prices().get(order.symbol)
                    decision = validate_order(order, quote, policy)

            if not decision.approved:
                kind, severity = _VALIDATION_OUTCOMES[decision.code]
                logger.warning(f"Order blocked: {order.side.value} {order.symbol}: {decision.reason}")
                return await self._blocked(kind, decision.reason, severity)

            payload = self.build_payload(order, quote)
            logger.info(
                f"Placing {payload['orderType']} {order.side.value} {order.quantity} {order.symbol} "
                f"on {payload['tradingAccountId']}"
            )
            data = await self.api.open_trade(payload)
            outcome = classify_open_response(data)

            if outcome.success:
                label = "Market" if not order.pending else order.pending_kind.value
                suffix = " (Challenge)" if data.get("isChallengeAccount") else ""
                outcome.message = f"{order.side.value} {label} order placed!{suffix}"
                logger.info(f"ORDER ACCEPTED: {order.side.value} {order.symbol} {order.quantity} lot")
                await self.poller.gather(
                    self.poller.fetch_open_trades(),
                    self.poller.fetch_pending_orders(),
                    self.poller.fetch_account_summary(),
                )
            else:
                logger.error(f"ORDER FAILED ({outcome.kind.value}): {outcome.message}")
            return await self._report(outcome)

    async def close_trade(self, trade_id: str, quote: dict[str, Any] | None) -> OrderOutcome:
        """Close one position at the given exit quote; blocked without a live quote."""
        if self.is_busy("close"):
            return OrderOutcome(
                success=False, kind=OutcomeKind.BUSY,
                message="A close is already in progress", severity=Severity.WARNING,
            )
        if not has_quote(quote):
            return await self._blocked(OutcomeKind.NO_PRICE, "No price data available", Severity.ERROR)

        with self._in_flight_guard("close"):
            data = await self.api.close_trade(trade_id, quote["bid"], quote["ask"])
            if not data.get("success"):
                return await self._report(_failure(data, "Failed to close trade"))

            trade = data.get("trade") if isinstance(data.get("trade"), dict) else {}
            pnl = trade.get("realizedPnl") or data.get("realizedPnl") or 0.0
            logger.info(f"Closed trade {trade_id}: P/L {pnl:.2f}")
            await self.poller.gather(
                self.poller.fetch_open_trades(),
                self.poller.fetch_trade_history(),
                self.poller.fetch_account_summary(),
            )
            return await self._report(
                OrderOutcome(
                    success=True, kind=OutcomeKind.ACCEPTED,
                    message=f"Closed! P/L: ${pnl:.2f}",
                    severity=Severity.SUCCESS if pnl >= 0 else Severity.WARNING,
                    sent=True, realized_pnl=pnl, response=data,
                )
            )

    async def modify_sl_tp(
        self,
        trade_id: str,
        sl: float | None = None,
        tp: float | None = None,
        quote: dict[str, Any] | None = None,
    ) -> OrderOutcome:
        if self.is_busy("modify"):
            return OrderOutcome(
                success=False, kind=OutcomeKind.BUSY,
                message="An update is already in progress", severity=Severity.WARNING,
            )
        if not has_quote(quote):
            return await self._blocked(OutcomeKind.NO_PRICE, "No price data available", Severity.ERROR)

        with self._in_flight_guard("modify"):
            data = await self.api.modify_trade(trade_id, sl, tp)
            if not data.get("success"):
                return await self._report(_failure(data, "Failed to update SL/TP"))
            logger.info(f"Modified trade {trade_id}: SL={sl}, TP={tp}")
            await self.poller.fetch_open_trades()
            return await self._report(
                OrderOutcome(
                    success=True, kind=OutcomeKind.ACCEPTED,
                    message="SL/TP updated successfully", severity=Severity.SUCCESS,
                    sent=True, response=data,
                )
            )

    async def cancel_pending_order(self, order_id: str) -> OrderOutcome:
        if self.is_busy("cancel"):
            return OrderOutcome(
                success=False, kind=OutcomeKind.BUSY,
                message="A cancel is already in progress", severity=Severity.WARNING,
            )

        with self._in_flight_guard("cancel"):
            data = await self.api.cancel_order(order_id)
            if not data.get("success"):
                return await self._report(_failure(data, "Failed to cancel order"))
            logger.info(f"Cancelled pending order {order_id}")
            await self.poller.fetch_pending_orders()
            return await self._report(
                OrderOutcome(
                    success=True, kind=OutcomeKind.ACCEPTED, message="Order cancelled",
                    severity=Severity.SUCCESS, sent=True, response=data,
                )
            )

    # --- Batches ---

    async def _close_each(self, trades: list[Trade], prices: PriceMap) -> BatchResult:
        result = BatchResult()
        for trade in trades:
            quote = prices.get(trade.symbol)
            if not has_quote(quote):
                result.skipped += 1
                continue
            result.attempted += 1
            data = await self.api.close_trade(trade.id, quote["bid"], quote["ask"])
            if data.get("success"):
                result.succeeded += 1
            else:
                result.failed += 1
                logger.warning(f"Close of {trade.id} failed: {data.get('message') or data.get('error')}")
        return result

    async def close_all(self, trades: list[Trade], which: str = "all") -> BatchResult:
        """Close every trade (or only those in profit / in loss), continuing past failures."""
        if self.is_busy("close_all"):
            return BatchResult(message="Close all already in progress")

        with self._in_flight_guard("close_all"):
            prices = dict(self._prices())
            if which == "profit":
                targets = [t for t in trades if trade_pnl(t, prices) > 0]
            elif which == "loss":
                targets = [t for t in trades if trade_pnl(t, prices) < 0]
            else:
                targets = list(trades)

            result = await self._close_each(targets, prices)
            result.message = f"Closed {result.succeeded} trade(s)"
            logger.info(f"Close all ({which}): {result.succeeded}/{len(targets)}")
            await self.notifications.toast(result.message, Severity.SUCCESS)
            await self.poller.gather(
                self.poller.fetch_open_trades(),
                self.poller.fetch_trade_history(),
                self.poller.fetch_account_summary(),
            )
            return result

    async def kill_switch(self, trades: list[Trade], pending: list[Trade]) -> BatchResult:
        """Emergency: close all open trades and cancel all pending orders."""
        if self.is_busy("kill_switch"):
            return BatchResult(message="Kill switch already running")

        with self._in_flight_guard("kill_switch"):
            result = await self._close_each(list(trades), dict(self._prices()))
            closed = result.succeeded

            cancelled = 0
            for order in pending:
                result.attempted += 1
                data = await self.api.cancel_order(order.id)
                if data.get("success"):
                    cancelled += 1
                    result.succeeded += 1
                else:
                    result.failed += 1

            result.message = f"Kill Switch: Closed {closed} trades, cancelled {cancelled} orders"
            logger.critical(result.message)
            await self.notifications.toast(result.message, Severity.WARNING)
            await self.poller.refresh_all()
            return result


def _failure(data: dict[str, Any], fallback: str) -> OrderOutcome:
    if data.get("error") == "network":
        return OrderOutcome(
            success=False, kind=OutcomeKind.NETWORK_ERROR,
            message="Network error", severity=Severity.ERROR, sent=True, response=data,
        )
    return OrderOutcome(
        success=False, kind=OutcomeKind.REJECTED,
        message=data.get("message") or fallback, severity=Severity.ERROR,
        sent=True, code=data.get("code"), response=data,
    )
