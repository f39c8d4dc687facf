"""
Alert Delivery - Formatting and outbound sinks.

============================================================
PURPOSE
============================================================
Turn Alert objects into HTML messages and deliver them.

PRINCIPLES:
- Best effort: a sink NEVER raises into the pipeline
- Rate limiting to prevent spam
- User-controlled text (symbols, names) is always escaped

============================================================
"""

import asyncio
import html
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Optional

import aiohttp

from .clock import ClockProtocol, SystemClock
from .models import Alert, AlertKind


logger = logging.getLogger(__name__)


SOLSCAN_TOKEN_URL = "https://solscan.io/token"
SOLSCAN_TX_URL = "https://solscan.io/tx"


# ============================================================
# FORMATTER
# ============================================================

class AlertFormatter:
    """
    Formats alerts for chat delivery.

    Uses HTML formatting (Telegram parse_mode=HTML).
    """

    KIND_ICONS = {
        AlertKind.COORDINATED_BUY: "🚨",
        AlertKind.LARGE_SWAP: "🐋",
        AlertKind.TEST: "🧪",
    }

    @classmethod
    def format_alert(cls, alert: Alert) -> str:
        icon = cls.KIND_ICONS.get(alert.kind, "📌")
        lines = [f"{icon} <b>{html.escape(alert.title)}</b>", ""]

        for key, value in alert.fields.items():
            lines.append(f"• <b>{html.escape(key)}:</b> {html.escape(value)}")

        if alert.warnings:
            lines.append("")
            lines.extend(f"⚠️ {html.escape(warning)}" for warning in alert.warnings)

        lines.append("")
        links = [f'<a href="{SOLSCAN_TOKEN_URL}/{html.escape(alert.mint)}">Solscan</a>']
        if alert.signature:
            links.append(f'<a href="{SOLSCAN_TX_URL}/{html.escape(alert.signature)}">Transaction</a>')
        lines.append(" | ".join(links))
        lines.append(f"🕐 {alert.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")

        return "\n".join(lines)


# ============================================================
# SINKS
# ============================================================

class AlertSink(ABC):
    """Outbound destination for rendered alert messages."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def send(self, message: str) -> None:
        """Deliver a message. Best effort, never raises."""
        pass

    async def close(self) -> None:
        pass


class LoggingAlertSink(AlertSink):
    """Writes alerts to the log. Used when no chat delivery is configured."""

    def __init__(self) -> None:
        self.sent: int = 0

    @property
    def name(self) -> str:
        return "log"

    async def send(self, message: str) -> None:
        self.sent += 1
        logger.info(f"ALERT\n{message}")


class TelegramRateLimiter:
    """
    Rate limiter for Telegram messages.

    Prevents excessive message sending.
    """

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
        clock: Optional[ClockProtocol] = None,
    ):
        self._max_per_minute = max_per_minute
        self._max_per_hour = max_per_hour
        self._clock = clock or SystemClock()
        self._minute_window: list = []
        self._hour_window: list = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Try to acquire a send slot."""
        async with self._lock:
            now = self._clock.now()

            minute_ago = now - timedelta(minutes=1)
            hour_ago = now - timedelta(hours=1)
            self._minute_window = [t for t in self._minute_window if t > minute_ago]
            self._hour_window = [t for t in self._hour_window if t > hour_ago]

            if len(self._minute_window) >= self._max_per_minute:
                return False
            if len(self._hour_window) >= self._max_per_hour:
                return False

            self._minute_window.append(now)
            self._hour_window.append(now)
            return True

    @property
    def remaining_minute(self) -> int:
        minute_ago = self._clock.now() - timedelta(minutes=1)
        count = sum(1 for t in self._minute_window if t > minute_ago)
        return max(0, self._max_per_minute - count)


class TelegramAlertSink(AlertSink):
    """
    Sends alert messages to one or more Telegram chats.

    This is a notification-only client.
    """

    BASE_URL = "https://api.telegram.org/bot"

    def __init__(
        self,
        bot_token: str,
        chat_ids: list[str],
        rate_limiter: Optional[TelegramRateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._bot_token = bot_token
        self._chat_ids = list(chat_ids)
        self._rate_limiter = rate_limiter or TelegramRateLimiter()
        self._session = session
        self._owns_session = session is None

        self._stats = {"sent": 0, "failed": 0, "rate_limited": 0}
        logger.info(f"TelegramAlertSink enabled with {len(self._chat_ids)} chat(s)")

    @property
    def name(self) -> str:
        return "telegram"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def send(self, message: str) -> None:
        if not await self._rate_limiter.acquire():
            self._stats["rate_limited"] += 1
            logger.warning("Telegram rate limit reached, message not sent")
            return

        for chat_id in self._chat_ids:
            if await self._send_message(chat_id, message):
                self._stats["sent"] += 1
            else:
                self._stats["failed"] += 1

    async def _send_message(self, chat_id: str, message: str) -> bool:
        try:
            session = await self._get_session()
            url = f"{self.BASE_URL}{self._bot_token}/sendMessage"
            payload = {
                "chat_id": chat_id,
                "text": message,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            }

            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return True
                body = await response.text()
                logger.error(f"Telegram API error: {response.status} - {body}")
                return False

        except Exception as e:
            logger.error(f"Error sending Telegram message: {e}")
            return False

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "chats": len(self._chat_ids)}
