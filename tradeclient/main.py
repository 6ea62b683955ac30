"""Entry point — checks configuration, then serves the synchronizer's local API."""

import sys

import httpx
import uvicorn
from loguru import logger

from tradeclient.config import Settings, settings


def check_settings(cfg: Settings) -> list[str]:
    """Return the configuration problems that make a run pointless."""
    problems = []
    if not cfg.user_id.strip():
        problems.append("USER_ID is not set; there are no accounts to synchronize")

    try:
        url = httpx.URL(cfg.api_base_url)
    except httpx.InvalidURL:
        url = None
    if url is None or url.scheme not in ("http", "https") or not url.host:
        problems.append(f"API_BASE_URL must be an http(s) URL, got {cfg.api_base_url!r}")

    for name in ("trades_poll_interval_s", "history_poll_interval_s",
                 "challenge_stats_interval_s", "sltp_check_interval_s"):
        if getattr(cfg, name) <= 0:
            problems.append(f"{name.upper()} must be positive")
    if cfg.stream_reconnect_attempts < 1:
        problems.append("STREAM_RECONNECT_ATTEMPTS must be at least 1")
    return problems


def setup_logging():
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level="INFO",
    )
    logger.add(
        "data/tradeclient.log",
        rotation="10 MB",
        retention="7 days",
        level="DEBUG",
    )


def main():
    setup_logging()

    problems = check_settings(settings)
    if problems:
        for problem in problems:
            logger.error(problem)
        sys.exit(2)

    logger.info(f"Backend {settings.api_url}, user {settings.user_id}")
    logger.info(f"Control API on http://{settings.api_host}:{settings.api_port}")

    from tradeclient.api.main import create_app

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
