"""Real-time account metrics — floating P&L, equity, margin and challenge drawdown."""

from datetime import datetime
from typing import Any, Callable, Hashable

from pydantic import BaseModel

from tradeclient.models.account import AccountSummary, ActiveAccount, ChallengeAccount
from tradeclient.models.market import PriceMap
from tradeclient.models.trade import Side, Trade, TradeStatus

DEFAULT_INITIAL_BALANCE = 5000.0
DEFAULT_MAX_DAILY_DD_PCT = 5.0
DEFAULT_MAX_OVERALL_DD_PCT = 10.0
DEFAULT_PROFIT_TARGET_PCT = 10.0
WARNING_RATIO = 0.8  # warn once a drawdown reaches 80% of its limit


class DerivedMetrics(BaseModel):
    total_floating_pnl: float = 0.0
    real_time_equity: float = 0.0
    real_time_free_margin: float = 0.0
    total_used_margin: float = 0.0
    today_pnl: float = 0.0
    # challenge accounts only
    real_time_daily_dd: float = 0.0
    real_time_overall_dd: float = 0.0
    real_time_profit: float = 0.0
    daily_dd_warning: bool = False
    overall_dd_warning: bool = False
    profit_target_reached: bool = False


def trade_pnl(trade: Trade, prices: PriceMap) -> float:
    """Floating P&L of one open trade.

    BUY marks at bid and SELL marks at ask, so a fresh position shows the
    spread as a loss. A symbol with no quote yet contributes 0.
    """
    quote = prices.get(trade.symbol)
    if not quote or not quote.get("bid"):
        return 0.0
    if trade.side == Side.BUY:
        raw = quote["bid"] - trade.open_price
    else:
        ask = quote.get("ask")
        if not ask:
            return 0.0
        raw = trade.open_price - ask
    return raw * trade.quantity * trade.contract_size - trade.commission - trade.swap


def today_realized_pnl(history: list[Trade], now: datetime | None = None) -> float:
    """Sum realized P&L of trades closed since local midnight."""
    now = now or datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    total = 0.0
    for trade in history:
        if trade.status != TradeStatus.CLOSED:
            continue
        closed_at = trade.closed_at or trade.updated_at
        if closed_at is None:
            continue
        if closed_at.tzinfo is not None:
            closed_at = closed_at.astimezone().replace(tzinfo=None)
        if closed_at >= midnight:
            total += trade.realized_pnl or 0.0
    return total


def _round(value: float) -> float:
    return round(value, 2)


def compute_metrics(
    active: ActiveAccount | None,
    summary: AccountSummary,
    open_trades: list[Trade],
    prices: PriceMap,
    history: list[Trade],
    now: datetime | None = None,
) -> DerivedMetrics:
    account = active.account if active else None
    balance = summary.balance or (account.balance if account else 0.0) or 0.0
    credit = summary.credit or (account.credit if account else 0.0) or 0.0

    total_pnl = sum(trade_pnl(t, prices) for t in open_trades)
    used_margin = sum(t.margin_used for t in open_trades)

    equity = balance + credit + total_pnl
    # Free margin is balance based, it does not move with floating P&L
    free_margin = balance - used_margin
    today = today_realized_pnl(history, now) + total_pnl

    metrics = DerivedMetrics(
        total_floating_pnl=_round(total_pnl),
        real_time_equity=_round(equity),
        real_time_free_margin=_round(free_margin),
        total_used_margin=_round(used_margin),
        today_pnl=_round(today),
    )

    if isinstance(account, ChallengeAccount):
        _apply_challenge_metrics(metrics, account, equity)
    return metrics


def challenge_figures(account: ChallengeAccount, equity: float) -> tuple[float, float, float]:
    """Unrounded (daily DD %, overall DD %, profit %) for a challenge account."""
    initial = account.initial_balance or account.phase_start_balance or DEFAULT_INITIAL_BALANCE
    day_start = account.day_start_equity or initial

    daily_loss = day_start - equity
    daily_dd = daily_loss / day_start * 100 if daily_loss > 0 else 0.0

    lowest = min(account.lowest_equity_overall or initial, equity)
    overall_loss = initial - lowest
    overall_dd = overall_loss / initial * 100 if overall_loss > 0 else 0.0

    profit = (equity - initial) / initial * 100
    return daily_dd, overall_dd, profit


def _apply_challenge_metrics(metrics: DerivedMetrics, account: ChallengeAccount, equity: float):
    daily_dd, overall_dd, profit = challenge_figures(account, equity)
    rules = account.rules
    daily_limit = (
        rules.max_daily_drawdown_percent
        or account.max_daily_drawdown_percent
        or DEFAULT_MAX_DAILY_DD_PCT
    )
    overall_limit = (
        rules.max_overall_drawdown_percent
        or account.max_overall_drawdown_percent
        or DEFAULT_MAX_OVERALL_DD_PCT
    )
    target = rules.profit_target_phase1_percent or DEFAULT_PROFIT_TARGET_PCT

    metrics.real_time_daily_dd = _round(daily_dd)
    metrics.real_time_overall_dd = _round(overall_dd)
    metrics.real_time_profit = _round(profit)
    metrics.daily_dd_warning = daily_dd > daily_limit * WARNING_RATIO
    metrics.overall_dd_warning = overall_dd > overall_limit * WARNING_RATIO
    metrics.profit_target_reached = profit >= target


class MetricsMemo:
    """Keeps the last computed value and recomputes only when the key changes."""

    def __init__(self):
        self._key: Hashable | None = None
        self._value: Any = None

    def get(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        if self._value is None or key != self._key:
            self._value = compute()
            self._key = key
        return self._value

    def clear(self):
        self._key = None
        self._value = None
