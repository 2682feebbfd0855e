"""Proactive notifications: Slack and Telegram webhooks.

Fires notifications on usage threshold alerts (warning / critical for the
session and weekly windows, plus reminders while still above).

All webhook calls are non-blocking (httpx async) and never raise.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

import httpx

from src.notifications.thresholds import Alert

logger = logging.getLogger(__name__)


class NotifyLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# Emoji/icon mapping
_EMOJI = {
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
}


class NotificationManager:
    """Central dispatcher for Slack / Telegram notifications."""

    def __init__(
        self,
        slack_webhook: str = "",
        telegram_token: str = "",
        telegram_chat_id: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.slack_webhook = slack_webhook
        self.telegram_token = telegram_token
        self.telegram_chat_id = telegram_chat_id
        self._transport = transport
        self._enabled = bool(self.slack_webhook or self.telegram_token)

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "slack_configured": bool(self.slack_webhook),
            "telegram_configured": bool(self.telegram_token and self.telegram_chat_id),
        }

    # -- High-level notification methods ------------------------------------

    async def notify_threshold(self, alert: Alert) -> None:
        """Notify on a fired usage threshold."""
        level = NotifyLevel.CRITICAL if alert.level == "critical" else NotifyLevel.WARNING
        text = (
            f"{_EMOJI[level]} *{alert.title}*\n"
            f"{alert.message}\n"
            f"Threshold: {int(alert.threshold * 100)}%\n"
        )
        await self._send(text)

    # -- Low-level dispatch -------------------------------------------------

    async def _send(self, text: str) -> None:
        """Dispatch to all configured channels."""
        if not self._enabled:
            return
        tasks = []
        if self.slack_webhook:
            tasks.append(self._send_slack(text))
        if self.telegram_token and self.telegram_chat_id:
            tasks.append(self._send_telegram(text))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_slack(self, text: str) -> None:
        """POST to Slack incoming webhook."""
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                resp = await client.post(
                    self.slack_webhook,
                    json={"text": text, "mrkdwn": True},
                )
                if resp.status_code != 200:
                    logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Slack notification failed: %s", exc)

    async def _send_telegram(self, text: str) -> None:
        """POST to Telegram Bot API."""
        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json={
                        "chat_id": self.telegram_chat_id,
                        "text": text,
                        "parse_mode": "Markdown",
                    },
                )
                if resp.status_code != 200:
                    logger.warning("Telegram API returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Telegram notification failed: %s", type(exc).__name__)
