"""Account selection, state and live metrics endpoints."""

from fastapi import APIRouter, HTTPException

router = APIRouter(prefix="/api", tags=["accounts"])


def _sync():
    from tradeclient.api.main import app_state
    return app_state["synchronizer"]


@router.get("/state")
async def get_state():
    sync = _sync()
    active = sync.active
    return {
        "state": sync.state.value,
        "account_id": active.id if active else None,
        "account": sync.active_account_info(),
        "stream_connected": sync.stream.connected,
        "symbols_priced": len(sync.prices),
    }


@router.get("/metrics")
async def get_metrics():
    return _sync().metrics.model_dump()


@router.get("/accounts")
async def list_accounts():
    sync = _sync()
    return {
        "accounts": [a.model_dump(mode="json") for a in sync.accounts],
        "challenge_accounts": [a.model_dump(mode="json") for a in sync.challenge_accounts],
    }


@router.post("/accounts/refresh")
async def refresh_accounts():
    sync = _sync()
    await sync.refresh_accounts()
    return {"accounts": len(sync.accounts), "challenge_accounts": len(sync.challenge_accounts)}


@router.post("/accounts/{account_id}/select")
async def select_account(account_id: str):
    sync = _sync()
    if not await sync.select_account(account_id):
        raise HTTPException(status_code=404, detail="Trading account not found")
    return {"state": sync.state.value, "account_id": account_id}


@router.post("/challenge-accounts/{account_id}/select")
async def select_challenge_account(account_id: str):
    sync = _sync()
    if not await sync.select_challenge_account(account_id):
        raise HTTPException(status_code=404, detail="Challenge account not found")
    return {"state": sync.state.value, "account_id": account_id}


@router.delete("/selection")
async def clear_selection():
    sync = _sync()
    await sync.deselect()
    return {"state": sync.state.value}
