"""
Server synchronization of notification thresholds.

Push alerts are evaluated server-side too, so the notification thresholds
of a ticker are mirrored on the server under /notifications. Highlight
thresholds are local only and never leave the config store.

Failures never raise: fetch returns None and save returns False, so a
flaky server cannot interrupt the settings workflow. A 401 invalidates the
credential like everywhere else.

follow_ticker() keeps the notification set current: every ticker change in
the config store fetches that ticker's server copy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from libs.option_flow.config_store import TICKER, ConfigStore
from libs.option_flow.credentials import CredentialProvider
from libs.option_flow.endpoint import NOTIFICATIONS_PATH, http_url
from libs.option_flow.exceptions import InvalidEndpointError, NotAuthenticatedError
from libs.option_flow.types import ThresholdConfig, ThresholdKind

logger = logging.getLogger(__name__)

# Server field -> ThresholdConfig field
SERVER_FIELDS = {
    "ratio_premium_threshold": "total_premium_threshold",
    "call_ratio_threshold": "call_ratio_threshold",
    "put_ratio_threshold": "put_ratio_threshold",
    "call_premium_threshold": "call_premium_threshold",
    "put_premium_threshold": "put_premium_threshold",
}


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_disabled(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    return False


def parse_server_thresholds(payload: Any, ticker: str) -> ThresholdConfig | None:
    """
    Extract a ticker's thresholds from a GET /notifications body.

    Expected shape: ``{"notifications": {"AAPL": {"call_ratio_threshold": 40, ...}}}``.
    Numbers may be ints, floats or numeric strings; ``disabled`` may be a
    bool or an int and defaults to False.

    Returns:
        The parsed config, or None if the ticker is absent or any field is unusable
    """
    if not isinstance(payload, Mapping):
        return None
    notifications = payload.get("notifications")
    if not isinstance(notifications, Mapping):
        return None
    ticker_data = notifications.get(ticker.upper())
    if not isinstance(ticker_data, Mapping):
        return None

    values: dict[str, Any] = {}
    for server_field, config_field in SERVER_FIELDS.items():
        number = _as_float(ticker_data.get(server_field))
        if number is None:
            return None
        values[config_field] = number
    values["disabled"] = _as_disabled(ticker_data.get("disabled"))
    return ThresholdConfig(**values)


class NotificationThresholdClient:
    """GET/PUT client for server-side notification thresholds."""

    TIMEOUT = 10  # seconds

    def __init__(
        self,
        config_store: ConfigStore,
        credentials: CredentialProvider,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config_store
        self.credentials = credentials
        self._transport = transport
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unfollow: Callable[[], None] | None = None
        self._sync_task: asyncio.Task[ThresholdConfig | None] | None = None

    def _url(self, query: dict[str, str] | None = None) -> str | None:
        try:
            return http_url(
                self.config.host,
                self.config.port,
                self.config.use_insecure,
                NOTIFICATIONS_PATH,
                query,
            )
        except InvalidEndpointError as e:
            logger.warning(f"Invalid notifications URL: {e}")
            return None

    def _auth_headers(self) -> dict[str, str]:
        token = self.credentials.current_credential
        if not self.credentials.is_authenticated or not token:
            raise NotAuthenticatedError("No session credential")
        return {"Authorization": f"Bearer {token}"}

    async def fetch_thresholds(self, ticker: str) -> ThresholdConfig | None:
        """
        Fetch the server copy of a ticker's notification thresholds.

        Returns:
            The thresholds, or None when there are none or the request failed
        """
        ticker = ticker.upper()
        url = self._url({"ticker": ticker})
        if url is None:
            return None
        try:
            headers = self._auth_headers()
        except NotAuthenticatedError:
            logger.info("Not authenticated, skipping threshold fetch")
            return None

        try:
            async with httpx.AsyncClient(
                timeout=self.TIMEOUT, transport=self._transport
            ) as client:
                response = await client.get(url, headers=headers)
        except httpx.RequestError as exc:
            logger.warning(f"Threshold fetch failed for {ticker}: {exc}")
            return None

        if response.status_code == 401:
            logger.warning("Threshold fetch rejected (401), invalidating session")
            self.credentials.on_auth_failure()
            return None
        if response.status_code != 200:
            logger.warning(f"Threshold fetch for {ticker} failed (code: {response.status_code})")
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"Threshold fetch for {ticker} returned invalid JSON")
            return None

        return parse_server_thresholds(payload, ticker)

    async def save_thresholds(
        self, ticker: str, config: ThresholdConfig, disabled: bool | None = None
    ) -> bool:
        """
        Store a ticker's notification thresholds on the server.

        Args:
            ticker: Ticker symbol
            config: Thresholds to store
            disabled: Overrides ``config.disabled`` when given

        Returns:
            True if the server accepted the update
        """
        url = self._url()
        if url is None:
            return False
        try:
            headers = self._auth_headers()
        except NotAuthenticatedError:
            logger.info("Not authenticated, skipping threshold save")
            return False

        try:
            async with httpx.AsyncClient(
                timeout=self.TIMEOUT, transport=self._transport
            ) as client:
                response = await client.put(
                    url, headers=headers, json=config.to_server_payload(ticker, disabled)
                )
        except httpx.RequestError as exc:
            logger.warning(f"Threshold save failed for {ticker}: {exc}")
            return False

        if response.status_code == 401:
            logger.warning("Threshold save rejected (401), invalidating session")
            self.credentials.on_auth_failure()
            return False
        if response.status_code != 200:
            logger.warning(f"Threshold save for {ticker} failed (code: {response.status_code})")
            return False

        logger.info(f"Saved notification thresholds for {ticker.upper()}")
        return True

    async def sync_ticker(self, ticker: str) -> ThresholdConfig | None:
        """Fetch a ticker's server thresholds into the config store's notification set."""
        config = await self.fetch_thresholds(ticker)
        if config is not None:
            self.config.save_thresholds(ticker, config, ThresholdKind.NOTIFICATION)
        return config

    def follow_ticker(self) -> None:
        """
        Re-sync the notification thresholds whenever the config store's ticker changes.

        Must be called from the event loop that runs the syncs; ticker changes
        made on other threads are marshalled onto it. A newer change cancels
        a sync that is still in flight. Stop with aclose().
        """
        if self._unfollow is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unfollow = self.config.add_listener(self._on_config_change)

    def _on_config_change(self, key: str) -> None:
        if key != TICKER or self._loop is None or self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._schedule_sync()
        else:
            self._loop.call_soon_threadsafe(self._schedule_sync)

    def _schedule_sync(self) -> None:
        if self._unfollow is None or self._loop is None:
            return
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
        ticker = self.config.ticker
        logger.info(f"Ticker changed to {ticker}, syncing notification thresholds")
        self._sync_task = self._loop.create_task(self.sync_ticker(ticker))

    async def aclose(self) -> None:
        """Stop following the ticker and cancel a pending sync, if any."""
        if self._unfollow is not None:
            self._unfollow()
            self._unfollow = None
        task = self._sync_task
        self._sync_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
