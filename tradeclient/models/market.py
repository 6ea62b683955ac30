from pydantic import BaseModel
from enum import Enum
from typing import Any

# Latest quotes keyed by symbol, as pushed by the price stream:
# {"EURUSD": {"bid": 1.1, "ask": 1.1002}, ...}
PriceMap = dict[str, dict[str, Any]]


class Category(str, Enum):
    FOREX = "Forex"
    METALS = "Metals"
    COMMODITIES = "Commodities"
    CRYPTO = "Crypto"


class Instrument(BaseModel):
    symbol: str
    name: str = ""
    category: Category = Category.FOREX
    starred: bool = False  # client-local watchlist flag
    bid: float = 0.0
    ask: float = 0.0
    spread: float = 0.0


_METALS = {"XAUUSD", "XAGUSD", "XPTUSD", "XPDUSD"}
_COMMODITIES = {"USOIL", "UKOIL", "NGAS", "COPPER", "ALUMINUM", "NICKEL"}
_CRYPTO = {
    "BTCUSD", "ETHUSD", "BNBUSD", "SOLUSD", "XRPUSD", "ADAUSD", "DOGEUSD", "TRXUSD",
    "LINKUSD", "MATICUSD", "DOTUSD", "SHIBUSD", "LTCUSD", "BCHUSD", "AVAXUSD", "XLMUSD",
    "UNIUSD", "ATOMUSD", "ETCUSD", "FILUSD", "ICPUSD", "VETUSD", "NEARUSD", "GRTUSD",
    "AAVEUSD", "MKRUSD", "ALGOUSD", "FTMUSD", "SANDUSD", "MANAUSD", "AXSUSD", "THETAUSD",
    "XMRUSD", "FLOWUSD", "SNXUSD", "EOSUSD", "CHZUSD", "ENJUSD", "ZILUSD", "BATUSD",
    "CRVUSD", "COMPUSD", "SUSHIUSD", "ZRXUSD", "LRCUSD", "ANKRUSD", "GALAUSD", "APEUSD",
    "WAVESUSD", "ZECUSD", "PEPEUSD", "ARBUSD", "OPUSD", "SUIUSD", "APTUSD", "INJUSD",
    "LDOUSD", "IMXUSD", "RUNEUSD", "KAVAUSD", "KSMUSD", "NEOUSD", "QNTUSD", "FETUSD",
    "RNDRUSD", "OCEANUSD", "WLDUSD", "SEIUSD", "TIAUSD", "BLURUSD", "TONUSD", "HBARUSD",
    "1INCHUSD", "BONKUSD", "FLOKIUSD", "ORDIUSD",
}


def symbol_category(symbol: str) -> Category:
    """Segment sent with every order; anything unknown is treated as Forex."""
    if symbol in _METALS:
        return Category.METALS
    if symbol in _COMMODITIES:
        return Category.COMMODITIES
    if symbol in _CRYPTO:
        return Category.CRYPTO
    return Category.FOREX


def has_quote(quote: dict[str, Any] | None) -> bool:
    """True when both sides of the quote are present and positive."""
    if not quote:
        return False
    bid = quote.get("bid")
    ask = quote.get("ask")
    return bool(bid) and bool(ask) and bid > 0 and ask > 0
