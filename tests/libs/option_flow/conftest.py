"""Shared fakes and fixtures for option flow tests."""

import asyncio
import json
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any
from unittest.mock import Mock

import pytest

from libs.option_flow.config_store import ConfigStore
from libs.option_flow.exceptions import TransportFailureError
from libs.option_flow.lifecycle import ConnectionLifecycleManager
from libs.option_flow.record_store import RecordStore

TEST_DATE = date(2025, 1, 2)

# One /transactions trade in the feed's short-key format
TRADE_PAYLOAD = {
    "ev": "AM",
    "sym": "O:AAPL260116C00250000",
    "v": 12,
    "av": 4800,
    "op": 3.1,
    "vw": 3.25,
    "o": 3.2,
    "h": 3.4,
    "l": 3.15,
    "c": 3.3,
    "a": 3.22,
    "z": 2,
    "s": 1735846200000,
    "e": 1735846260000,
}


def make_payload(**overrides: Any) -> dict[str, Any]:
    """A valid summary record payload; override any field."""
    payload: dict[str, Any] = {
        "period_start": "2025-01-02T14:30:00-05:00",
        "period_end": "2025-01-02T14:35:00-05:00",
        "call_premium": 250_000.0,
        "put_premium": 100_000.0,
        "total_premium": 350_000.0,
        "call_put_ratio": 2.5,
        "call_volume": 1200,
        "put_volume": 800,
    }
    payload.update(overrides)
    return payload


def make_frame(**overrides: Any) -> str:
    return json.dumps(make_payload(**overrides))


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until predicate() is true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not reached in time")
        await asyncio.sleep(0.005)


class FakeTransport:
    """In-memory StreamTransport fed from the test."""

    def __init__(self, url: str, headers: Mapping[str, str]) -> None:
        self.url = url
        self.headers = dict(headers)
        self.closed = False
        self.pings = 0
        self.ping_error: Exception | None = None
        self._messages: asyncio.Queue[str | bytes | Exception] = asyncio.Queue()

    def feed(self, message: str | bytes) -> None:
        self._messages.put_nowait(message)

    def fail(self, reason: str = "connection reset") -> None:
        self._messages.put_nowait(TransportFailureError(reason))

    async def recv(self) -> str | bytes:
        item = await self._messages.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def ping(self) -> None:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self) -> None:
        self.closed = True


class FakeTransportFactory:
    """
    TransportFactory that records opens.

    Queue exceptions in ``errors`` to fail opens. Set ``gate`` to hold every
    open until the event is set; opens cancelled while held are counted.
    """

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.errors: list[Exception] = []
        self.open_calls = 0
        self.gate: asyncio.Event | None = None
        self.cancelled_opens = 0

    async def __call__(self, url: str, headers: Mapping[str, str]) -> FakeTransport:
        self.open_calls += 1
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.cancelled_opens += 1
                raise
        if self.errors:
            raise self.errors.pop(0)
        transport = FakeTransport(url, headers)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeCredentials:
    """CredentialProvider that counts calls and lets the test set the token."""

    def __init__(self, token: str | None = "session-token") -> None:
        self.token = token
        self.sign_in_calls = 0
        self.auth_failure_calls = 0
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    @property
    def current_credential(self) -> str | None:
        return self.token

    def set_token(self, token: str | None) -> None:
        changed = (token is None) != (self.token is None)
        self.token = token
        if changed:
            for listener in list(self._listeners):
                listener(token is not None)

    def on_auth_failure(self) -> None:
        self.auth_failure_calls += 1
        self.set_token(None)

    def sign_in(self) -> None:
        self.sign_in_calls += 1

    def add_listener(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)


@pytest.fixture
def config_store() -> ConfigStore:
    return ConfigStore(selected_date=TEST_DATE)


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def record_store() -> RecordStore:
    return RecordStore()


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def notifier() -> Mock:
    return Mock()


@pytest.fixture
def manager(config_store, credentials, record_store, notifier, factory) -> ConnectionLifecycleManager:
    """Manager with short timers and pinging effectively off."""
    return ConnectionLifecycleManager(
        config_store,
        credentials,
        record_store,
        notifier,
        transport_factory=factory,
        reconnect_delay=0.02,
        settle_delay=0.02,
        ping_interval=3600,
    )
