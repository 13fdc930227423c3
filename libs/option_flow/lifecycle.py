"""
Connection lifecycle manager for the /analyze stream.

Owns the single transport of one subscription and drives the state machine:

    DISCONNECTED --connect()--> CONNECTING --open ok--> CONNECTED
         ^                          |                      |
         |                    open failed           read/ping failure
       stop()                       v                      v
         +---------------------- ERROR <-------------------+
                                    |
                 TRANSPORT_FAILURE: reconnect after reconnect_delay
                 AUTH_REJECTED:     invalidate credential, sign in, wait
                 INVALID_ENDPOINT:  wait for a config change

CONNECTED is entered as soon as the transport opens, without waiting for a
first frame. Entering it arms a one-shot pending reset: the first record
decoded afterwards clears the record store before it is inserted, so the
store only ever holds records replayed by the current subscription.

Any change to host, port, insecure flag, ticker or date tears the
connection down synchronously, empties the record store and connects again
after settle_delay. Several changes in the same tick collapse into one
rebuild.

Every teardown bumps a generation counter. Reads, pings and opens that
were in flight for an older generation are ignored when they complete, so
a record is never inserted for a subscription that is going away.

Nothing raises out of the public operations; the ConnectionStatus is the
only error surface.

Example:
    >>> manager = ConnectionLifecycleManager(
    ...     config_store=config,
    ...     credentials=credentials,
    ...     record_store=records,
    ...     notifier=LoggingAlertNotifier(),
    ... )
    >>> await manager.start()
    >>> manager.status.phase
    <ConnectionPhase.CONNECTED: 'connected'>
    >>> await manager.stop()
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from libs.common.logging import ConnectionLogContext, log_with_context
from libs.option_flow.config_store import TOPOLOGY_KEYS, ConfigStore, SubscriptionTarget
from libs.option_flow.credentials import CredentialProvider
from libs.option_flow.decoder import decode_frame, split_frames
from libs.option_flow.endpoint import stream_url
from libs.option_flow.exceptions import (
    AuthRejectedError,
    DecodeNoiseError,
    InvalidEndpointError,
    TransportFailureError,
)
from libs.option_flow.metrics import (
    record_store_size,
    stream_auth_rejections_total,
    stream_connected,
    stream_decode_noise_total,
    stream_frames_received_total,
    stream_reconnects_scheduled_total,
    stream_records_decoded_total,
)
from libs.option_flow.notifier import AlertNotifier, safe_notify
from libs.option_flow.record_store import RecordStore
from libs.option_flow.thresholds import evaluate
from libs.option_flow.transport import StreamTransport, TransportFactory, open_websocket
from libs.option_flow.types import (
    ConnectionPhase,
    ConnectionStatus,
    ErrorKind,
    SubscriptionKey,
    SummaryRecord,
    ThresholdKind,
)

logger = logging.getLogger(__name__)

StatusListener = Callable[[ConnectionStatus], None]

# Longest frame excerpt written to the log for dropped frames
_FRAME_LOG_LIMIT = 200


class ConnectionLifecycleManager:
    """
    Keeps one stream subscription alive and reconciles the record store with it.

    Attributes:
        config: Configuration store (target, subscription, thresholds)
        credentials: Bearer credential source
        records: Record store receiving decoded records, newest first
        notifier: Alert receiver, or None to disable alerting

    Notes:
        - Must be used from a single asyncio event loop; config and
          credential callbacks from other threads are marshalled onto it
        - stop() joins every task it cancels, so no reconnect, ping or read
          runs after it returns
    """

    RECONNECT_DELAY = 5.0  # seconds
    SETTLE_DELAY = 0.5  # seconds
    PING_INTERVAL = 30.0  # seconds

    def __init__(
        self,
        config_store: ConfigStore,
        credentials: CredentialProvider,
        record_store: RecordStore,
        notifier: AlertNotifier | None = None,
        *,
        transport_factory: TransportFactory = open_websocket,
        reconnect_delay: float = RECONNECT_DELAY,
        settle_delay: float = SETTLE_DELAY,
        ping_interval: float = PING_INTERVAL,
    ) -> None:
        """
        Initialize the manager and register on config and credential changes.

        Args:
            config_store: Source of target, subscription and thresholds
            credentials: Source of the bearer credential
            record_store: Destination of decoded records
            notifier: Receiver of threshold alerts (None disables alerts)
            transport_factory: Opens a StreamTransport for a URL and headers
            reconnect_delay: Wait before reconnecting after a transport failure
            settle_delay: Wait between a config-triggered teardown and reconnect
            ping_interval: Interval between liveness pings while connected
        """
        self.config = config_store
        self.credentials = credentials
        self.records = record_store
        self.notifier = notifier

        self._transport_factory = transport_factory
        self._reconnect_delay = reconnect_delay
        self._settle_delay = settle_delay
        self._ping_interval = ping_interval

        self._status = ConnectionStatus()
        self._status_listeners: list[StatusListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None

        # Connection state (owned exclusively by this manager)
        self._transport: StreamTransport | None = None
        self._subscription_key: SubscriptionKey | None = None
        self._generation = 0
        self._pending_reset = False
        self._awaiting_credentials = False
        self._stopped = False
        self._had_credential = credentials.is_authenticated

        # Background tasks
        self._read_task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._settle_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._retired: set[asyncio.Task[Any]] = set()

        # Counters
        self._reconnect_attempts = 0
        self._auth_rejections = 0
        self._decode_noise = 0

        self._unsubscribers = [
            config_store.add_listener(self._on_config_change),
            credentials.add_listener(self._on_auth_change),
        ]

        logger.info("ConnectionLifecycleManager initialized")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def phase(self) -> ConnectionPhase:
        return self._status.phase

    @property
    def subscription_key(self) -> SubscriptionKey | None:
        """Key of the live connection, None unless connected."""
        return self._subscription_key

    @property
    def pending_reset(self) -> bool:
        """True until the first record after entering CONNECTED has been stored."""
        return self._pending_reset

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def auth_rejections(self) -> int:
        return self._auth_rejections

    @property
    def decode_noise_count(self) -> int:
        return self._decode_noise

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a callback for status changes.

        Returns:
            A callable that removes the listener
        """
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def get_connection_stats(self) -> dict[str, Any]:
        """
        Get connection statistics.

        Returns:
            Dictionary with phase, error details and counters
        """
        key = self._subscription_key
        return {
            "phase": self._status.phase.value,
            "error_kind": self._status.error_kind.value if self._status.error_kind else None,
            "reason": self._status.reason,
            "is_connected": self._status.is_connected,
            "ticker": key.ticker if key else None,
            "date": key.date.isoformat() if key else None,
            "records": len(self.records),
            "reconnect_attempts": self._reconnect_attempts,
            "auth_rejections": self._auth_rejections,
            "decode_noise": self._decode_noise,
        }

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect for the first time (same as connect())."""
        await self.connect()

    async def connect(self) -> None:
        """
        Open the stream for the current configuration.

        No-op while CONNECTING or CONNECTED. Without a credential the manager
        asks the provider to sign in and stays DISCONNECTED; it connects by
        itself once the provider reports an authenticated state.
        """
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        # Auth changes made while the manager was not running were not observed
        self._had_credential = self.credentials.is_authenticated
        await self._connect()

    async def disconnect(self) -> None:
        """
        Close the stream and cancel every timer.

        Returns once all cancelled tasks have finished.
        """
        self._loop = asyncio.get_running_loop()
        self._awaiting_credentials = False
        self._cancel_timers()
        self._teardown(ConnectionPhase.DISCONNECTED)
        await self._join_retired()

    async def reconnect(self) -> None:
        """Disconnect, wait settle_delay, then connect again."""
        await self.disconnect()
        await asyncio.sleep(self._settle_delay)
        await self.connect()

    async def stop(self) -> None:
        """
        Stop the manager.

        After stop() returns nothing reconnects, not even on configuration
        or credential changes, until connect() or start() is called again.
        """
        self._stopped = True
        await self.disconnect()
        logger.info("Stream stopped")

    async def close(self) -> None:
        """Stop and unregister from the config store and credential provider."""
        await self.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # ------------------------------------------------------------------
    # Connection establishment
    # ------------------------------------------------------------------

    async def _connect(self) -> None:
        if self._status.phase in (ConnectionPhase.CONNECTING, ConnectionPhase.CONNECTED):
            return

        reconnect_task = self._reconnect_task
        if reconnect_task is not None and reconnect_task is not asyncio.current_task():
            self._cancel_task(reconnect_task)
            self._reconnect_task = None

        token = self.credentials.current_credential
        if not self.credentials.is_authenticated or not token:
            self._awaiting_credentials = True
            self._set_status(
                ConnectionPhase.DISCONNECTED, ErrorKind.NOT_AUTHENTICATED, "Sign-in required"
            )
            logger.info("No credential available, requesting sign-in")
            self._request_sign_in()
            return
        self._awaiting_credentials = False

        target = self.config.subscription_target()
        try:
            url = stream_url(target)
        except InvalidEndpointError as e:
            logger.error(f"Invalid stream endpoint: {e}")
            self._set_status(ConnectionPhase.ERROR, ErrorKind.INVALID_ENDPOINT, str(e))
            return

        # Tasks spawned for this connection inherit its connection ID
        with ConnectionLogContext():
            await self._open(url, target, token)

    async def _open(self, url: str, target: SubscriptionTarget, token: str) -> None:
        self._generation += 1
        generation = self._generation
        self._set_status(ConnectionPhase.CONNECTING)
        log_with_context(
            logger,
            "INFO",
            "Opening stream",
            host=target.host,
            ticker=target.ticker,
            date=target.selected_date.isoformat(),
        )

        try:
            transport = await self._transport_factory(url, {"Authorization": f"Bearer {token}"})
        except AuthRejectedError as e:
            if generation == self._generation:
                self._handle_auth_rejected(str(e))
            return
        except TransportFailureError as e:
            if generation == self._generation:
                self._handle_transport_failure(str(e))
            return
        except Exception as e:
            logger.error(f"Unexpected error opening stream: {e}", exc_info=True)
            if generation == self._generation:
                self._handle_transport_failure(str(e))
            return

        if generation != self._generation:
            # Torn down while the handshake was in flight
            await transport.close()
            return

        self._transport = transport
        self._subscription_key = SubscriptionKey(
            host=target.host,
            port=target.port,
            use_insecure=target.use_insecure,
            ticker=target.ticker,
            date=target.selected_date,
            has_credential=True,
        )
        self._had_credential = True
        self._pending_reset = True
        self._set_status(ConnectionPhase.CONNECTED)
        logger.info(f"Stream connected for {target.ticker} on {target.selected_date.isoformat()}")

        loop = asyncio.get_running_loop()
        self._read_task = loop.create_task(self._read_loop(transport, generation))
        self._ping_task = loop.create_task(self._ping_loop(transport, generation))

    def _request_sign_in(self) -> None:
        try:
            self.credentials.sign_in()
        except Exception as e:
            logger.error(f"Credential provider sign-in failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Reading and pinging
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._status.phase is ConnectionPhase.CONNECTED

    async def _read_loop(self, transport: StreamTransport, generation: int) -> None:
        while self._is_current(generation):
            try:
                message = await transport.recv()
            except TransportFailureError as e:
                if self._is_current(generation):
                    self._handle_transport_failure(str(e))
                return
            except Exception as e:
                logger.error(f"Unexpected error reading stream: {e}", exc_info=True)
                if self._is_current(generation):
                    self._handle_transport_failure(str(e))
                return

            for frame in split_frames(message):
                if not self._is_current(generation):
                    return
                self._handle_frame(frame)

    async def _ping_loop(self, transport: StreamTransport, generation: int) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            if not self._is_current(generation):
                return
            try:
                await transport.ping()
            except TransportFailureError as e:
                if self._is_current(generation):
                    logger.warning(f"Liveness ping failed: {e}")
                    self._handle_transport_failure(f"Liveness ping failed: {e}")
                return
            except Exception as e:
                logger.error(f"Unexpected error pinging stream: {e}", exc_info=True)
                if self._is_current(generation):
                    self._handle_transport_failure(f"Liveness ping failed: {e}")
                return
            logger.debug("Liveness ping answered")

    def _handle_frame(self, frame: str | bytes) -> None:
        stream_frames_received_total.inc()
        try:
            record = decode_frame(frame)
        except AuthRejectedError as e:
            logger.warning(f"Server rejected credential in-band: {e}")
            self._handle_auth_rejected(str(e))
            return
        except DecodeNoiseError as e:
            self._decode_noise += 1
            stream_decode_noise_total.inc()
            excerpt = frame[:_FRAME_LOG_LIMIT]
            logger.warning(f"Dropping undecodable frame: {e}", extra={"frame": excerpt})
            return

        stream_records_decoded_total.inc()
        if self._pending_reset:
            self.records.clear()
            self._pending_reset = False
            logger.debug("First record after connect, record store cleared")

        self._notify_thresholds(record)
        self.records.prepend(record)
        record_store_size.set(len(self.records))

    def _notify_thresholds(self, record: SummaryRecord) -> None:
        if self.notifier is None or not self.config.notifications_enabled:
            return
        key = self._subscription_key
        if key is None:
            return
        alert_class = evaluate(
            record, self.config.get_thresholds(key.ticker, ThresholdKind.NOTIFICATION)
        )
        if alert_class is not None:
            safe_notify(self.notifier, record, alert_class, key.ticker)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _handle_transport_failure(self, reason: str) -> None:
        self._teardown(ConnectionPhase.ERROR, ErrorKind.TRANSPORT_FAILURE, reason)
        if self._stopped:
            return
        self._reconnect_attempts += 1
        stream_reconnects_scheduled_total.inc()
        logger.warning(
            f"Stream transport failed: {reason}. Reconnecting in {self._reconnect_delay}s "
            f"(attempt {self._reconnect_attempts})"
        )
        self._reconnect_task = self._spawn(self._reconnect_after_delay())

    def _handle_auth_rejected(self, reason: str) -> None:
        self._teardown(ConnectionPhase.ERROR, ErrorKind.AUTH_REJECTED, reason)
        self._auth_rejections += 1
        stream_auth_rejections_total.inc()
        # Set before invalidating so the resulting "signed out" event is not
        # mistaken for a topology change
        self._awaiting_credentials = True
        try:
            self.credentials.on_auth_failure()
        except Exception as e:
            logger.error(f"Credential provider failed to invalidate: {e}", exc_info=True)
        if not self._stopped:
            self._request_sign_in()

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        if self._stopped:
            return
        await self._connect()

    # ------------------------------------------------------------------
    # Configuration and credential changes
    # ------------------------------------------------------------------

    def _on_config_change(self, key: str) -> None:
        if key in TOPOLOGY_KEYS:
            self._dispatch(lambda: self._rebuild(f"{key} changed"))

    def _on_auth_change(self, authenticated: bool) -> None:
        self._dispatch(lambda: self._handle_auth_change(authenticated))

    def _handle_auth_change(self, authenticated: bool) -> None:
        had_credential = self._had_credential
        self._had_credential = authenticated
        if self._stopped:
            return

        if self._awaiting_credentials:
            if authenticated:
                logger.info("Credential available, connecting")
                self._awaiting_credentials = False
                self._cancel_task(self._connect_task)
                self._connect_task = self._spawn(self._connect())
            return

        if authenticated != had_credential:
            # Credential presence is part of the subscription key
            self._rebuild("credential presence changed")

    def _rebuild(self, reason: str) -> None:
        if self._stopped:
            logger.debug(f"Ignoring {reason}: manager stopped")
            return
        logger.info(f"Subscription changed ({reason}), rebuilding connection")
        self._awaiting_credentials = False
        self._cancel_timers()
        self._teardown(ConnectionPhase.DISCONNECTED)
        self.records.clear()
        record_store_size.set(0)
        self._settle_task = self._spawn(self._connect_after_settle())

    async def _connect_after_settle(self) -> None:
        await asyncio.sleep(self._settle_delay)
        if self._stopped:
            return
        await self._connect()

    def _dispatch(self, callback: Callable[[], None]) -> None:
        """Run a callback on the manager's loop, whichever thread the change came from."""
        if self._loop is None or self._loop.is_closed():
            logger.debug("Change ignored: manager not started")
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            callback()
        else:
            self._loop.call_soon_threadsafe(callback)

    # ------------------------------------------------------------------
    # Teardown and task bookkeeping
    # ------------------------------------------------------------------

    def _teardown(
        self,
        phase: ConnectionPhase,
        error_kind: ErrorKind | None = None,
        reason: str | None = None,
    ) -> None:
        """Synchronously retire the live connection; joined later by _join_retired()."""
        self._generation += 1
        self._pending_reset = False
        self._subscription_key = None

        for task in (self._read_task, self._ping_task):
            self._cancel_task(task)
        self._read_task = None
        self._ping_task = None

        transport = self._transport
        self._transport = None
        if transport is not None:
            self._spawn(transport.close(), retire=True)

        self._set_status(phase, error_kind, reason)

    def _cancel_timers(self) -> None:
        for task in (self._reconnect_task, self._settle_task, self._connect_task):
            self._cancel_task(task)
        self._reconnect_task = None
        self._settle_task = None
        self._connect_task = None

    def _cancel_task(self, task: asyncio.Task[Any] | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        self._retire(task)

    def _retire(self, task: asyncio.Task[Any]) -> None:
        self._retired.add(task)
        task.add_done_callback(self._retired.discard)

    def _spawn(
        self, coro: Coroutine[Any, Any, None], retire: bool = False
    ) -> asyncio.Task[None]:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        if retire:
            self._retire(task)
        return task

    async def _join_retired(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self._retired if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _set_status(
        self,
        phase: ConnectionPhase,
        error_kind: ErrorKind | None = None,
        reason: str | None = None,
    ) -> None:
        status = ConnectionStatus(phase=phase, error_kind=error_kind, reason=reason)
        if status == self._status:
            return
        previous = self._status
        self._status = status
        stream_connected.set(1 if status.is_connected else 0)
        logger.info(f"Stream status: {previous.describe()} -> {status.describe()}")
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")
