"""Price Stream — Socket.IO connection to the backend price feed."""

import asyncio
from collections import defaultdict
from typing import Any, Callable

import socketio
from socketio.exceptions import ConnectionError as StreamConnectionError
from loguru import logger

from tradeclient.config import settings
from tradeclient.models.market import PriceMap


class PriceStream:
    def __init__(self, url: str | None = None, client: Any = None):
        self.url = url or settings.api_base_url
        self.sio = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=settings.stream_reconnect_attempts,
            reconnection_delay=settings.stream_reconnect_delay_s,
            reconnection_delay_max=settings.stream_reconnect_delay_max_s,
        )
        self._connected = False
        self._connect_lock = asyncio.Lock()
        self._prices: PriceMap = {}
        self._price_listeners: list[Callable] = []
        self._trade_listeners: list[Callable] = []
        self._account_listeners: dict[str, list[Callable]] = defaultdict(list)
        self.connect_errors = 0
        self._register_handlers()

    def _register_handlers(self):
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)
        self.sio.on("priceStream", self._on_price_stream)
        self.sio.on("priceUpdate", self._on_price_update)
        self.sio.on("accountUpdate", self._on_account_update)
        self.sio.on("tradeUpdate", self._on_trade_update)

    @property
    def connected(self) -> bool:
        return self._connected and bool(self.sio.connected)

    @property
    def prices(self) -> PriceMap:
        return self._prices

    def get_price(self, symbol: str) -> dict[str, Any] | None:
        return self._prices.get(symbol)

    async def connect(self) -> bool:
        """Open the shared connection. No-op while already connected.

        The first connection is retried up to stream_reconnect_attempts times,
        waiting delay * attempt seconds (capped) between tries. Once connected,
        drops are handled by the Socket.IO client's own reconnection.
        """
        async with self._connect_lock:
            if self.sio.connected:
                logger.debug("Price stream already connected")
                return True

            attempts = settings.stream_reconnect_attempts
            for attempt in range(1, attempts + 1):
                try:
                    logger.info(f"Connecting price stream to {self.url} (attempt {attempt}/{attempts})")
                    await self.sio.connect(
                        self.url,
                        transports=["websocket", "polling"],
                        wait_timeout=settings.stream_timeout_s,
                    )
                    return True
                except StreamConnectionError as e:
                    self.connect_errors += 1
                    logger.error(f"Price stream connection error: {e}")
                    if attempt == attempts:
                        break
                    delay = min(
                        settings.stream_reconnect_delay_s * attempt,
                        settings.stream_reconnect_delay_max_s,
                    )
                    await asyncio.sleep(delay)

            logger.error(f"Price stream gave up after {attempts} attempts")
            return False

    async def disconnect(self):
        if self.sio.connected:
            await self.unsubscribe_prices()
            await self.sio.disconnect()
        self._connected = False
        logger.info("Price stream disconnected")

    # --- Subscriptions ---

    async def subscribe_prices(self):
        if self.sio.connected:
            await self.sio.emit("subscribePrices")
            logger.info("Subscribed to price stream")

    async def unsubscribe_prices(self):
        if self.sio.connected:
            await self.sio.emit("unsubscribePrices")

    async def subscribe_account(self, trading_account_id: str):
        if self.sio.connected and trading_account_id:
            await self.sio.emit("subscribe", {"tradingAccountId": trading_account_id})
            logger.info(f"Subscribed to account {trading_account_id}")

    async def unsubscribe_account(self, trading_account_id: str):
        if self.sio.connected and trading_account_id:
            await self.sio.emit("unsubscribe", {"tradingAccountId": trading_account_id})

    # --- Listeners ---

    def add_price_listener(self, callback: Callable[[PriceMap], Any]) -> Callable[[], None]:
        """Register callback(prices) and return its unsubscribe function.

        A listener added after prices have arrived is called once right away
        with the current cache.
        """
        self._price_listeners.append(callback)
        if self._prices:
            self._call(callback, self._prices)

        def unsubscribe():
            if callback in self._price_listeners:
                self._price_listeners.remove(callback)

        return unsubscribe

    def add_trade_listener(self, callback: Callable[[dict], Any]) -> Callable[[], None]:
        self._trade_listeners.append(callback)

        def unsubscribe():
            if callback in self._trade_listeners:
                self._trade_listeners.remove(callback)

        return unsubscribe

    def add_account_listener(
        self, trading_account_id: str, callback: Callable[[dict], Any]
    ) -> Callable[[], None]:
        self._account_listeners[trading_account_id].append(callback)

        def unsubscribe():
            listeners = self._account_listeners.get(trading_account_id)
            if listeners and callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._account_listeners.pop(trading_account_id, None)

        return unsubscribe

    def _call(self, callback: Callable, payload: Any):
        try:
            result = callback(payload)
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)
        except Exception as e:
            logger.error(f"Price stream listener error: {e}")

    def _notify_prices(self):
        for cb in list(self._price_listeners):
            self._call(cb, self._prices)

    # --- Inbound messages ---

    def apply_snapshot(self, prices: PriceMap):
        """Merge a bulk symbol->quote map; symbols not in the message keep their quote."""
        self._prices.update(prices)
        self._notify_prices()

    def apply_update(self, symbol: str, price: dict[str, Any]):
        self._prices[symbol] = price
        self._notify_prices()

    async def _on_connect(self):
        self._connected = True
        logger.info("Price stream connected")
        await self.subscribe_prices()
        for account_id in list(self._account_listeners):
            await self.subscribe_account(account_id)

    async def _on_disconnect(self, *args):
        self._connected = False
        logger.info(f"Price stream disconnected {args[0] if args else ''}".rstrip())

    async def _on_connect_error(self, data=None):
        self.connect_errors += 1
        logger.warning(f"Price stream connect_error: {data}")

    async def _on_price_stream(self, data):
        if isinstance(data, dict) and data.get("prices"):
            self.apply_snapshot(data["prices"])

    async def _on_price_update(self, data):
        if isinstance(data, dict) and data.get("symbol") and data.get("price"):
            self.apply_update(data["symbol"], data["price"])

    async def _on_account_update(self, data):
        if not isinstance(data, dict) or not data.get("tradingAccountId"):
            return
        for cb in list(self._account_listeners.get(data["tradingAccountId"], [])):
            self._call(cb, data)

    async def _on_trade_update(self, data):
        for cb in list(self._trade_listeners):
            self._call(cb, data)
