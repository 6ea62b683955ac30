"""Open trades, pending orders, history and order action endpoints."""

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

from tradeclient.models.trade import OrderRequest

router = APIRouter(prefix="/api", tags=["trades"])


class ModifyRequest(BaseModel):
    sl: float | None = None
    tp: float | None = None


def _sync():
    from tradeclient.api.main import app_state
    return app_state["synchronizer"]


@router.get("/trades/open")
async def get_open_trades():
    sync = _sync()
    return [
        {**t.model_dump(mode="json"), "pnl": round(sync.trade_pnl(t), 2)}
        for t in sync.open_trades
    ]


@router.get("/trades/pending")
async def get_pending_orders():
    return [t.model_dump(mode="json") for t in _sync().pending_orders]


@router.get("/trades/history")
async def get_trade_history():
    return [t.model_dump(mode="json") for t in _sync().trade_history]


@router.post("/orders")
async def place_order(order: OrderRequest):
    outcome = await _sync().place_order(order)
    return outcome.model_dump(mode="json")


@router.post("/orders/{order_id}/cancel")
async def cancel_order(order_id: str):
    outcome = await _sync().cancel_pending_order(order_id)
    return outcome.model_dump(mode="json")


@router.post("/trades/close-all")
async def close_all(filter: Literal["all", "profit", "loss"] = "all"):
    result = await _sync().close_all(filter)
    return result.model_dump()


@router.post("/trades/{trade_id}/close")
async def close_trade(trade_id: str):
    outcome = await _sync().close_trade(trade_id)
    return outcome.model_dump(mode="json")


@router.put("/trades/{trade_id}")
async def modify_trade(trade_id: str, req: ModifyRequest):
    outcome = await _sync().modify_sl_tp(trade_id, sl=req.sl, tp=req.tp)
    return outcome.model_dump(mode="json")


@router.post("/kill-switch")
async def kill_switch():
    result = await _sync().kill_switch()
    return result.model_dump()
