"""REST client for the trading backend."""

import json
from datetime import datetime
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from tradeclient.config import settings
from tradeclient.models.account import (
    Account,
    AccountStatus,
    AccountSummary,
    Challenge,
    ChallengeAccount,
    ChallengeRules,
)
from tradeclient.models.market import Category, Instrument, PriceMap
from tradeclient.models.trade import ClosedTradeEvent, Trade


class TradingApi:
    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.api_url
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.request_timeout_s,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Send a request and return the decoded body.

        Backend returns: {"success": true, ...} or {"success": false, "message": "...", "code": "..."}
        Transport failures and non-JSON bodies come back as
        {"success": false, "error": "network" | "malformed", "message": "..."}.
        """
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            return {"success": False, "error": "network", "message": str(e) or type(e).__name__}

        content_type = resp.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.warning(f"{method} {path}: non-JSON response ({resp.status_code})")
            return {"success": False, "error": "malformed", "message": "Invalid server response"}
        try:
            data = resp.json()
        except ValueError as e:
            logger.warning(f"{method} {path}: undecodable JSON: {e}")
            return {"success": False, "error": "malformed", "message": "Invalid server response"}
        if not isinstance(data, dict):
            return {"success": False, "error": "malformed", "message": "Invalid server response"}
        return data

    # --- Accounts ---

    async def get_accounts(self, user_id: str) -> list[Account] | None:
        data = await self._request("GET", f"/trading-accounts/user/{user_id}")
        if data.get("error"):
            return None
        try:
            return [_parse_account(a) for a in data.get("accounts") or []]
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Malformed accounts payload: {e}")
            return None

    async def get_challenge_accounts(self, user_id: str) -> list[ChallengeAccount] | None:
        data = await self._request("GET", f"/prop/my-accounts/{user_id}")
        if not data.get("success", False):
            return None
        try:
            return [_parse_challenge_account(a) for a in data.get("accounts") or []]
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Malformed challenge accounts payload: {e}")
            return None

    async def get_account_summary(
        self, account_id: str, prices: PriceMap | None = None
    ) -> AccountSummary | None:
        params = {"prices": json.dumps(prices)} if prices else None
        data = await self._request("GET", f"/trade/summary/{account_id}", params=params)
        if not data.get("success", False) or not data.get("summary"):
            return None
        s = data["summary"]
        try:
            return AccountSummary(
                balance=s.get("balance") or 0,
                equity=s.get("equity") or 0,
                credit=s.get("credit") or 0,
                free_margin=s.get("freeMargin") or 0,
                used_margin=s.get("usedMargin") or 0,
                floating_pnl=s.get("floatingPnl") or 0,
            )
        except (AttributeError, ValidationError) as e:
            logger.warning(f"Malformed summary for {account_id}: {e}")
            return None

    # --- Trades ---

    async def get_open_trades(self, account_id: str) -> list[Trade] | None:
        return await self._get_trades(f"/trade/open/{account_id}")

    async def get_pending_orders(self, account_id: str) -> list[Trade] | None:
        return await self._get_trades(f"/trade/pending/{account_id}")

    async def get_trade_history(self, account_id: str, limit: int = 50) -> list[Trade] | None:
        return await self._get_trades(f"/trade/history/{account_id}", params={"limit": limit})

    async def _get_trades(self, path: str, params: dict | None = None) -> list[Trade] | None:
        data = await self._request("GET", path, params=params)
        if not data.get("success", False):
            return None
        trades = []
        for t in data.get("trades") or []:
            try:
                trades.append(_parse_trade(t))
            except (KeyError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping malformed trade from {path}: {e}")
        return trades

    async def open_trade(self, payload: dict[str, Any]) -> dict:
        return await self._request("POST", "/trade/open", json=payload)

    async def close_trade(self, trade_id: str, bid: float, ask: float) -> dict:
        return await self._request(
            "POST", "/trade/close", json={"tradeId": trade_id, "bid": bid, "ask": ask}
        )

    async def modify_trade(self, trade_id: str, sl: float | None, tp: float | None) -> dict:
        return await self._request(
            "PUT", "/trade/modify", json={"tradeId": trade_id, "sl": sl, "tp": tp}
        )

    async def cancel_order(self, trade_id: str) -> dict:
        return await self._request("POST", "/trade/cancel", json={"tradeId": trade_id})

    async def check_sltp(self, prices: PriceMap) -> dict:
        return await self._request("POST", "/trade/check-sltp", json={"prices": prices})

    # --- Catalog ---

    async def get_instruments(self) -> list[Instrument] | None:
        data = await self._request("GET", "/prices/instruments")
        if not data.get("success", False):
            return None
        instruments = []
        for inst in data.get("instruments") or []:
            try:
                instruments.append(
                    Instrument(
                        symbol=inst["symbol"],
                        name=inst.get("name") or inst["symbol"],
                        category=Category(inst.get("category") or "Forex"),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed instrument {inst!r}: {e}")
        return instruments


# --- Wire -> model mapping ---


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_account(a: dict) -> Account:
    account_type = a.get("accountTypeId")
    type_leverage = account_type.get("leverage") if isinstance(account_type, dict) else None
    kind = a.get("accountType")
    return Account(
        id=a["_id"],
        account_id=str(a.get("accountId") or ""),
        balance=a.get("balance") or 0,
        credit=a.get("credit") or 0,
        leverage=a.get("leverage"),
        account_type=kind if isinstance(kind, str) else None,
        account_type_leverage=type_leverage,
    )


def _parse_challenge_account(a: dict) -> ChallengeAccount:
    challenge = a.get("challengeId")
    if isinstance(challenge, dict):
        rules = challenge.get("rules") or {}
        parsed_challenge = Challenge(
            id=str(challenge.get("_id") or ""),
            name=challenge.get("name") or "Challenge",
            steps_count=challenge.get("stepsCount") or 2,
            rules=ChallengeRules(
                max_daily_drawdown_percent=rules.get("maxDailyDrawdownPercent"),
                max_overall_drawdown_percent=rules.get("maxOverallDrawdownPercent"),
                profit_target_phase1_percent=rules.get("profitTargetPhase1Percent"),
                stop_loss_mandatory=bool(rules.get("stopLossMandatory")),
            ),
        )
    else:
        # Not populated by the backend: only the reference id is known
        parsed_challenge = Challenge(id=str(challenge or ""))

    return ChallengeAccount(
        id=a["_id"],
        account_id=str(a.get("accountId") or ""),
        challenge=parsed_challenge,
        current_step=a.get("currentStep") or 1,
        status=AccountStatus(a.get("status") or "ACTIVE"),
        balance=a.get("balance") or 0,
        credit=a.get("credit") or 0,
        leverage=a.get("leverage"),
        current_balance=a.get("currentBalance"),
        current_equity=a.get("currentEquity"),
        initial_balance=a.get("initialBalance"),
        phase_start_balance=a.get("phaseStartBalance"),
        day_start_equity=a.get("dayStartEquity"),
        lowest_equity_overall=a.get("lowestEquityOverall"),
        max_daily_drawdown_percent=a.get("maxDailyDrawdownPercent"),
        max_overall_drawdown_percent=a.get("maxOverallDrawdownPercent"),
        fail_reason=a.get("failReason"),
    )


def _parse_trade(t: dict) -> Trade:
    return Trade(
        id=t["_id"],
        trade_id=str(t.get("tradeId") or ""),
        trading_account_id=t.get("tradingAccountId"),
        symbol=t["symbol"],
        side=t["side"],
        quantity=t.get("quantity") or 0,
        open_price=t.get("openPrice") or 0,
        contract_size=t.get("contractSize") or settings.default_contract_size,
        margin_used=t.get("marginUsed") or 0,
        commission=t.get("commission") or 0,
        swap=t.get("swap") or 0,
        sl=t.get("sl") if t.get("sl") is not None else t.get("stopLoss"),
        tp=t.get("tp") if t.get("tp") is not None else t.get("takeProfit"),
        order_type=t.get("orderType"),
        pending_price=t.get("pendingPrice"),
        status=t.get("status") or "OPEN",
        close_price=t.get("closePrice"),
        closed_at=_parse_time(t.get("closedAt")),
        updated_at=_parse_time(t.get("updatedAt")),
        realized_pnl=t.get("realizedPnl") if t.get("realizedPnl") is not None else t.get("pnl"),
        closed_by=t.get("closedBy"),
    )


def parse_closed_trade(c: dict) -> ClosedTradeEvent:
    """Map a check-sltp closedTrades entry; trigger falls back trigger -> closedBy -> reason."""
    return ClosedTradeEvent(
        symbol=c.get("symbol") or "",
        pnl=c.get("pnl") or 0,
        trigger=c.get("trigger") or c.get("closedBy") or c.get("reason") or "Manual",
        trading_account_id=c.get("tradingAccountId"),
    )
