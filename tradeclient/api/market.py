"""Instrument catalog and watchlist endpoints."""

from fastapi import APIRouter, HTTPException

router = APIRouter(prefix="/api/instruments", tags=["market"])


@router.get("")
async def list_instruments(starred: bool = False, category: str | None = None):
    from tradeclient.api.main import app_state
    sync = app_state["synchronizer"]
    instruments = sync.watchlist if starred else sync.instruments
    if category:
        instruments = [i for i in instruments if i.category.value == category]
    return [i.model_dump(mode="json") for i in instruments]


@router.post("/{symbol}/star")
async def toggle_star(symbol: str):
    from tradeclient.api.main import app_state
    starred = app_state["synchronizer"].toggle_star(symbol)
    if starred is None:
        raise HTTPException(status_code=404, detail=f"Unknown symbol {symbol}")
    return {"symbol": symbol, "starred": starred}
