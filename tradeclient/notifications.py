"""User-facing notices (toasts / acknowledgement dialogs) and their sinks."""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from tradeclient.config import settings


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    message: str
    severity: Severity = Severity.INFO
    title: str = ""
    requires_ack: bool = False  # blocking dialog rather than a transient toast
    created_at: datetime = Field(default_factory=datetime.now)


_LOG_LEVELS = {
    Severity.SUCCESS: "SUCCESS",
    Severity.INFO: "INFO",
    Severity.WARNING: "WARNING",
    Severity.ERROR: "ERROR",
}


class NotificationCenter:
    def __init__(self):
        self._sinks: list[Callable] = []
        self.history: list[Notice] = []
        self.max_history = 200

    def add_sink(self, callback: Callable[[Notice], Any]):
        """Register sink(notice); may be sync or async."""
        self._sinks.append(callback)

    def remove_sink(self, callback: Callable[[Notice], Any]):
        if callback in self._sinks:
            self._sinks.remove(callback)

    async def publish(self, notice: Notice) -> Notice:
        label = f"{notice.title}: {notice.message}" if notice.title else notice.message
        logger.log(_LOG_LEVELS[notice.severity], label)

        self.history.append(notice)
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]

        for cb in list(self._sinks):
            try:
                result = cb(notice)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Notice sink error: {e}")
        return notice

    async def toast(self, message: str, severity: Severity = Severity.INFO) -> Notice:
        return await self.publish(Notice(message=message, severity=severity))

    async def alert(self, title: str, message: str, severity: Severity = Severity.INFO) -> Notice:
        return await self.publish(
            Notice(message=message, severity=severity, title=title, requires_ack=True)
        )


async def send_telegram(message: str):
    """Send a message via Telegram bot."""
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        return

    url = f"https://api.telegram.org/bot{settings.telegram_bot_token}/sendMessage"
    try:
        async with httpx.AsyncClient() as client:
            await client.post(url, json={
                "chat_id": settings.telegram_chat_id,
                "text": message,
                "parse_mode": "HTML",
            })
    except Exception as e:
        logger.error(f"Telegram send failed: {e}")


async def telegram_sink(notice: Notice):
    """Relay acknowledgement notices and errors to Telegram; toasts stay local."""
    if not notice.requires_ack and notice.severity != Severity.ERROR:
        return
    text = f"<b>{notice.title}</b>\n{notice.message}" if notice.title else notice.message
    await send_telegram(text)
