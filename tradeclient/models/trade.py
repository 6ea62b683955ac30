from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MARKET"
    BUY_LIMIT = "BUY_LIMIT"
    BUY_STOP = "BUY_STOP"
    SELL_LIMIT = "SELL_LIMIT"
    SELL_STOP = "SELL_STOP"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    PENDING = "PENDING"
    CLOSED = "CLOSED"


class Trade(BaseModel):
    """Open position, pending order or closed trade as mirrored from the backend."""
    id: str  # backend _id, used for close/modify/cancel
    trade_id: str = ""
    trading_account_id: str | None = None
    symbol: str
    side: Side
    quantity: float  # lots
    open_price: float = 0.0
    contract_size: float = 100000.0
    margin_used: float = 0.0
    commission: float = 0.0
    swap: float = 0.0
    sl: float | None = None
    tp: float | None = None
    order_type: OrderType | None = None
    pending_price: float | None = None
    status: TradeStatus = TradeStatus.OPEN
    # closed trades only
    close_price: float | None = None
    closed_at: datetime | None = None
    updated_at: datetime | None = None
    realized_pnl: float | None = None
    closed_by: str | None = None  # SL, TP, STOP_OUT, ADMIN, USER; not exhaustive


class PendingKind(str, Enum):
    LIMIT = "LIMIT"
    STOP = "STOP"


class OrderRequest(BaseModel):
    """What the user asks for; the gateway turns it into the wire payload."""
    symbol: str
    side: Side
    quantity: float = Field(0.01, gt=0)
    pending: bool = False
    pending_kind: PendingKind = PendingKind.LIMIT
    pending_price: float | None = None
    sl: float | None = None
    tp: float | None = None

    @property
    def order_type(self) -> OrderType:
        if not self.pending:
            return OrderType.MARKET
        return OrderType(f"{self.side.value}_{self.pending_kind.value}")


class ClosedTradeEvent(BaseModel):
    """One entry of /trade/check-sltp closedTrades."""
    symbol: str
    pnl: float = 0.0
    trigger: str = "Manual"
    trading_account_id: str | None = None
