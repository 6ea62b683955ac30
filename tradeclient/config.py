from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # Backend
    api_base_url: str = "https://api.PipXcapital.com"
    request_timeout_s: float = 10.0

    # Logged-in user (backend user _id)
    user_id: str = ""

    # Polling cadence (seconds)
    trades_poll_interval_s: float = 2.0
    history_poll_interval_s: float = 10.0
    challenge_stats_interval_s: float = 5.0
    sltp_check_interval_s: float = 2.0
    history_limit: int = 50

    # Price stream (Socket.IO)
    stream_reconnect_attempts: int = 10
    stream_reconnect_delay_s: float = 1.0
    stream_reconnect_delay_max_s: float = 5.0
    stream_timeout_s: float = 10.0

    # Durable selection store
    store_path: str = "data/tradeclient.db"

    # Local control API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Trading defaults
    default_leverage: str = "1:100"
    default_contract_size: float = 100000.0
    starred_symbols: list[str] = Field(
        default_factory=lambda: ["EURUSD", "GBPUSD", "XAUUSD", "BTCUSD"]
    )

    # Telegram (optional)
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def api_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/api"


settings = Settings()
