"""FastAPI application factory and lifespan management."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from tradeclient.notifications import telegram_sink
from tradeclient.synchronizer import TradingSynchronizer

# Global app state, read by the route handlers
app_state: dict = {}


def create_app(synchronizer: TradingSynchronizer | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logger.info("Starting trading client...")
        from tradeclient.api.ws import broadcast_notice

        sync = synchronizer or TradingSynchronizer()
        sync.notifications.add_sink(broadcast_notice)
        sync.notifications.add_sink(telegram_sink)
        await sync.start()

        app_state.update({"synchronizer": sync})
        logger.info(f"Trading client ready. State: {sync.state.value}")
        yield

        # Shutdown
        logger.info("Shutting down trading client...")
        await sync.stop()
        sync.notifications.remove_sink(broadcast_notice)
        sync.notifications.remove_sink(telegram_sink)
        app_state.clear()

    app = FastAPI(
        title="Trading Client API",
        description="Local control surface for the trading state synchronizer",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health():
        sync = app_state.get("synchronizer")
        return {
            "status": "ok",
            "stream_connected": bool(sync and sync.stream.connected),
        }

    # Include routers
    from tradeclient.api.accounts import router as accounts_router
    from tradeclient.api.market import router as market_router
    from tradeclient.api.trades import router as trades_router
    from tradeclient.api.ws import router as ws_router

    app.include_router(accounts_router)
    app.include_router(market_router)
    app.include_router(trades_router)
    app.include_router(ws_router)

    return app
