"""
Alert notifiers.

``notify()`` is fire-and-forget: it returns immediately, never raises into
the caller, and any delivery work runs in a background task whose failures
are only logged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from libs.option_flow.metrics import alert_delivery_failures_total, alerts_emitted_total
from libs.option_flow.thresholds import describe_alert
from libs.option_flow.types import AlertClass, SummaryRecord

logger = logging.getLogger(__name__)


class AlertNotifier(Protocol):
    """Receiver of threshold alerts."""

    def notify(self, record: SummaryRecord, alert_class: AlertClass, ticker: str) -> None:
        """Schedule a user-visible alert. Must not block or raise."""
        ...


def safe_notify(
    notifier: AlertNotifier, record: SummaryRecord, alert_class: AlertClass, ticker: str
) -> None:
    """Call a notifier, logging instead of propagating anything it raises."""
    alerts_emitted_total.labels(alert_class=alert_class.value).inc()
    try:
        notifier.notify(record, alert_class, ticker)
    except Exception as e:
        alert_delivery_failures_total.labels(notifier=type(notifier).__name__).inc()
        logger.error(f"Alert notifier failed for {ticker}: {e}", exc_info=True)


class LoggingAlertNotifier:
    """Writes alerts to the log. Used when no delivery channel is configured."""

    def notify(self, record: SummaryRecord, alert_class: AlertClass, ticker: str) -> None:
        title, body = describe_alert(record, alert_class, ticker)
        logger.warning(
            "threshold_alert",
            extra={"alert_class": alert_class.value, "title": title, "body": body},
        )


class WebhookAlertNotifier:
    """Posts alerts to an incoming-webhook URL (Slack-compatible ``text`` payload)."""

    TIMEOUT = 10  # seconds

    def __init__(
        self, webhook_url: str, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.webhook_url = webhook_url
        self._transport = transport
        self._pending: set[asyncio.Task[None]] = set()

    def notify(self, record: SummaryRecord, alert_class: AlertClass, ticker: str) -> None:
        title, body = describe_alert(record, alert_class, ticker)
        task = asyncio.get_running_loop().create_task(self._deliver(title, body, alert_class))
        # Keep a strong reference until the task finishes
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, title: str, body: str, alert_class: AlertClass) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(self.webhook_url, json={"text": f"*{title}*\n{body}"})
        except httpx.RequestError as exc:
            alert_delivery_failures_total.labels(notifier=type(self).__name__).inc()
            logger.error("webhook_alert_connection_error", extra={"error": str(exc)})
            return

        if response.status_code >= 300:
            alert_delivery_failures_total.labels(notifier=type(self).__name__).inc()
            logger.error(
                "webhook_alert_failed",
                extra={"status": response.status_code, "alert_class": alert_class.value},
            )
            return

        logger.info("webhook_alert_sent", extra={"alert_class": alert_class.value})

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
