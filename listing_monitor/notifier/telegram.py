"""Telegram Bot API notifier over httpx."""

import re
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import httpx

from listing_monitor.errors import NotificationDeliveryError
from listing_monitor.fetcher.http_client import AsyncHTTPClient
from listing_monitor.fetcher.retry_handler import RetryPolicy
from listing_monitor.models.data_models import NotificationData, Statistics, utc_now
from listing_monitor.monitoring.logger import StructuredLogger


TELEGRAM_API_BASE = "https://api.telegram.org"

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def escape_markdown(text: str) -> str:
    """Escape characters that break legacy Telegram Markdown."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


class TelegramNotifier:
    """
    Send monitoring events to one Telegram chat.

    Every message goes through the retry policy (3 retries, 1s, x2 by
    default). When retries are exhausted NotificationDeliveryError is raised;
    callers decide whether that is fatal.
    """

    def __init__(
        self,
        client: AsyncHTTPClient,
        bot_token: str,
        chat_id: str,
        retry_policy: Optional[RetryPolicy] = None,
        timezone: str = "Asia/Tokyo",
        monitoring_cron: str = "*/5 * * * *",
        api_base: str = TELEGRAM_API_BASE,
        logger: Optional[StructuredLogger] = None
    ):
        self.client = client
        self.chat_id = chat_id
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=3,
            retry_delay=1.0,
            backoff_multiplier=2.0,
            retry_on=(httpx.HTTPError, NotificationDeliveryError),
        )
        self.tz = ZoneInfo(timezone)
        self.monitoring_cron = monitoring_cron
        self.api_url = f"{api_base}/bot{bot_token}"
        self.logger = logger or StructuredLogger()

    def _format_time(self, moment: Optional[datetime] = None) -> str:
        return (moment or utc_now()).astimezone(self.tz).strftime("%Y-%m-%d %H:%M:%S %Z")

    async def _call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self.client.post(f"{self.api_url}/{method}", json=payload or {})
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise NotificationDeliveryError(f"Telegram {method} failed: {description}")
        return body.get("result") or {}

    async def test_connection(self) -> bool:
        """Check the bot token with getMe."""
        try:
            me = await self._call("getMe")
        except (httpx.HTTPError, NotificationDeliveryError) as e:
            self.logger.notification_error("test_connection", str(e))
            return False
        self.logger.log("telegram_connected", username=me.get("username"), bot_id=me.get("id"))
        return True

    async def send_message(self, text: str) -> None:
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "link_preview_options": {"is_disabled": True},
        }

        def on_retry(attempt: int, error: BaseException) -> None:
            self.logger.warning("telegram_retry", attempt=attempt, error=str(error))

        try:
            await self.retry_policy.execute(lambda: self._call("sendMessage", payload), on_retry=on_retry)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Telegram sendMessage failed: {e}") from e
        self.logger.debug("telegram_message_sent", chat_id=self.chat_id)

    async def send_startup_notice(self) -> None:
        await self.send_message(
            "🚀 *Listing monitor started*\n\n"
            f"📅 *Started at*: {self._format_time()}\n"
            f"⚙️ *Schedule*: `{self.monitoring_cron}`\n\n"
            "New listings will be reported as soon as they appear."
        )

    async def send_shutdown_notice(self) -> None:
        await self.send_message(
            "🛑 *Listing monitor stopped*\n\n"
            f"⏰ *Stopped at*: {self._format_time()}"
        )

    async def send_new_listing_notification(self, data: NotificationData) -> None:
        lines = [
            "🏠 *New listings detected!*",
            "",
            f"🆕 *New*: {len(data.new_listings)}",
            f"📊 *Monitored*: {data.total_monitored}",
            f"🎯 *Confidence*: {data.confidence.value}",
            f"⏰ *Detected at*: {self._format_time(data.detected_at)}",
            f"⚡ *Execution time*: {data.execution_time:.1f}s",
            "",
        ]
        for index, listing in enumerate(data.new_listings, start=1):
            entry = f"{index}. {escape_markdown(listing.title)} ({escape_markdown(listing.price)})"
            if listing.location:
                entry += f" {escape_markdown(listing.location)}"
            lines.append(entry)
        lines.extend(["", f"🔗 [Open listing page]({data.url})"])
        await self.send_message("\n".join(lines))

    async def send_error_alert(self, url: str, reason: str) -> None:
        await self.send_message(
            "❌ *Monitoring error*\n\n"
            f"🌐 *URL*: {escape_markdown(url)}\n"
            f"🚨 *Error*: `{reason.replace('`', '')}`\n"
            f"⏰ *At*: {self._format_time()}"
        )

    async def send_statistics_report(self, stats: Statistics) -> None:
        health = (
            "✅ *System is healthy*" if stats.success_rate >= 95
            else "⚠️ *Error rate is high, check the configuration*"
        )
        last_check = self._format_time(stats.last_check) if stats.last_check else "never"
        await self.send_message(
            "📊 *Statistics report*\n\n"
            f"  • Total checks: {stats.total_checks}\n"
            f"  • Success rate: {stats.success_rate}%\n"
            f"  • Average execution time: {stats.average_execution_time:.2f}s\n"
            f"  • New listings: {stats.new_listings}\n"
            f"  • Errors: {stats.errors}\n"
            f"  • Last check: {last_check}\n\n"
            f"{health}"
        )
