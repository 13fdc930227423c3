"""
Configuration store for the streaming client.

Holds the connection target (host, port, insecure flag), the subscription
(ticker, date), the notifications switch, and two independent per-ticker
threshold sets (notification and highlight). Listeners are called with the
name of the key that changed, synchronously, and only when the value really
changed.

Storage is in memory; callers that want persistence load values at startup
(see apps/option_monitor/config.py) and mirror changes through a listener.

Example:
    >>> store = ConfigStore(host="feed.example.com", port="443")
    >>> unsubscribe = store.add_listener(lambda key: print("changed", key))
    >>> store.ticker = "msft"
    changed ticker
    >>> store.ticker
    'MSFT'
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import cast

from libs.option_flow.types import DEFAULT_THRESHOLDS, ThresholdConfig, ThresholdKind

logger = logging.getLogger(__name__)

HOST = "host"
PORT = "port"
USE_INSECURE = "use_insecure"
TICKER = "ticker"
SELECTED_DATE = "selected_date"
NOTIFICATIONS_ENABLED = "notifications_enabled"
THRESHOLDS = "thresholds"

# Changes to these keys invalidate the current subscription.
TOPOLOGY_KEYS = frozenset({HOST, PORT, USE_INSECURE, TICKER, SELECTED_DATE})

DEFAULT_HOST = "localhost"
DEFAULT_PORT = "8080"
DEFAULT_TICKER = "AAPL"

ConfigListener = Callable[[str], None]


@dataclass(frozen=True)
class SubscriptionTarget:
    """Snapshot of the fields that make up a stream subscription."""

    host: str
    port: str
    use_insecure: bool
    ticker: str
    selected_date: date


class ConfigStore:
    """Key/value configuration with change notifications."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: str = DEFAULT_PORT,
        use_insecure: bool = False,
        ticker: str = DEFAULT_TICKER,
        selected_date: date | None = None,
        notifications_enabled: bool = True,
    ) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, object] = {
            HOST: host,
            PORT: str(port),
            USE_INSECURE: use_insecure,
            TICKER: (ticker or DEFAULT_TICKER).upper(),
            SELECTED_DATE: selected_date or date.today(),
            NOTIFICATIONS_ENABLED: notifications_enabled,
        }
        self._thresholds: dict[ThresholdKind, dict[str, ThresholdConfig]] = {
            ThresholdKind.NOTIFICATION: {},
            ThresholdKind.HIGHLIGHT: {},
        }
        self._listeners: list[ConfigListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ConfigListener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key)
            except Exception:
                # One broken listener must not block the others
                logger.exception("Config listener failed", extra={"key": key})

    def _set(self, key: str, value: object) -> None:
        with self._lock:
            if self._values.get(key) == value:
                return
            self._values[key] = value
        logger.debug("Config changed", extra={"key": key})
        self._notify(key)

    # ------------------------------------------------------------------
    # Connection target and subscription
    # ------------------------------------------------------------------

    @property
    def host(self) -> str:
        return str(self._values[HOST])

    @host.setter
    def host(self, value: str) -> None:
        self._set(HOST, value.strip())

    @property
    def port(self) -> str:
        return str(self._values[PORT])

    @port.setter
    def port(self, value: str | int) -> None:
        self._set(PORT, str(value).strip())

    @property
    def use_insecure(self) -> bool:
        return bool(self._values[USE_INSECURE])

    @use_insecure.setter
    def use_insecure(self, value: bool) -> None:
        self._set(USE_INSECURE, bool(value))

    @property
    def ticker(self) -> str:
        return str(self._values[TICKER])

    @ticker.setter
    def ticker(self, value: str) -> None:
        self._set(TICKER, value.strip().upper())

    @property
    def selected_date(self) -> date:
        return cast(date, self._values[SELECTED_DATE])

    @selected_date.setter
    def selected_date(self, value: date) -> None:
        self._set(SELECTED_DATE, value)

    @property
    def notifications_enabled(self) -> bool:
        return bool(self._values[NOTIFICATIONS_ENABLED])

    @notifications_enabled.setter
    def notifications_enabled(self, value: bool) -> None:
        self._set(NOTIFICATIONS_ENABLED, bool(value))

    def subscription_target(self) -> SubscriptionTarget:
        """Consistent snapshot of host, port, insecure flag, ticker and date."""
        with self._lock:
            return SubscriptionTarget(
                host=self.host,
                port=self.port,
                use_insecure=self.use_insecure,
                ticker=self.ticker,
                selected_date=self.selected_date,
            )

    def reset_to_defaults(self) -> None:
        """Restore host, port, ticker and insecure flag (thresholds are kept)."""
        self.host = DEFAULT_HOST
        self.port = DEFAULT_PORT
        self.ticker = DEFAULT_TICKER
        self.use_insecure = False

    # ------------------------------------------------------------------
    # Per-ticker thresholds
    # ------------------------------------------------------------------

    def get_thresholds(
        self, ticker: str, kind: ThresholdKind = ThresholdKind.NOTIFICATION
    ) -> ThresholdConfig:
        """Thresholds for a ticker, falling back to the defaults."""
        with self._lock:
            return self._thresholds[kind].get(ticker.upper(), DEFAULT_THRESHOLDS)

    def save_thresholds(
        self,
        ticker: str,
        config: ThresholdConfig,
        kind: ThresholdKind = ThresholdKind.NOTIFICATION,
    ) -> None:
        """
        Store thresholds for a ticker.

        A config equal to the defaults (and enabled) removes the override
        instead of storing a copy of the defaults.
        """
        key = ticker.upper()
        with self._lock:
            current = self._thresholds[kind].get(key)
            if config.is_default() and not config.disabled:
                self._thresholds[kind].pop(key, None)
            else:
                self._thresholds[kind][key] = config
            changed = current != self._thresholds[kind].get(key)
        if changed:
            self._notify(THRESHOLDS)

    def clear_thresholds(
        self, ticker: str, kind: ThresholdKind = ThresholdKind.NOTIFICATION
    ) -> None:
        with self._lock:
            removed = self._thresholds[kind].pop(ticker.upper(), None)
        if removed is not None:
            self._notify(THRESHOLDS)

    def has_custom_thresholds(
        self, ticker: str, kind: ThresholdKind = ThresholdKind.NOTIFICATION
    ) -> bool:
        with self._lock:
            return ticker.upper() in self._thresholds[kind]

    def copy_thresholds(self, ticker: str, source: ThresholdKind, target: ThresholdKind) -> None:
        """Copy one threshold set of a ticker onto the other (explicit user action)."""
        self.save_thresholds(ticker, self.get_thresholds(ticker, source), target)
