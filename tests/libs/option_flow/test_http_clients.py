"""
Tests for the HTTP clients sharing the stream server.

Tests cover:
- SessionAuthClient.exchange() (session field names, 401, server errors)
- NotificationThresholdClient fetch/save/sync (parsing, 401, failures)
- Following ticker changes for threshold sync
"""

import asyncio
import json
import threading

import httpx
import pytest

from libs.option_flow.auth_client import SessionAuthClient
from libs.option_flow.config_store import ConfigStore
from libs.option_flow.exceptions import AuthRejectedError, SessionExchangeError
from libs.option_flow.threshold_sync import NotificationThresholdClient, parse_server_thresholds
from libs.option_flow.types import ThresholdConfig, ThresholdKind
from tests.libs.option_flow.conftest import FakeCredentials, wait_until

SERVER_THRESHOLDS = {
    "ratio_premium_threshold": 2_000_000,
    "call_ratio_threshold": "25",
    "put_ratio_threshold": 0.4,
    "call_premium_threshold": 1_500_000.0,
    "put_premium_threshold": 750_000,
    "disabled": 0,
}


def mock_transport(status_code=200, payload=None, requests=None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if payload is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


class TestSessionAuthClient:
    """Tests for SessionAuthClient."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["sessionId", "session_id", "token", "jwt"])
    async def test_accepts_each_session_field(self, field):
        requests: list[httpx.Request] = []
        client = SessionAuthClient(
            ConfigStore(), transport=mock_transport(payload={field: "abc"}, requests=requests)
        )

        session = await client.exchange("identity-token", authorization_code="code-1")

        assert session == "abc"
        assert str(requests[0].url) == "http://localhost:8080/auth/login"
        assert json.loads(requests[0].content) == {
            "identity_token": "identity-token",
            "authorization_code": "code-1",
        }

    @pytest.mark.asyncio
    async def test_401_raises_auth_rejected(self):
        client = SessionAuthClient(ConfigStore(), transport=mock_transport(401))

        with pytest.raises(AuthRejectedError):
            await client.exchange("identity-token")

    @pytest.mark.asyncio
    async def test_server_error_carries_message(self):
        client = SessionAuthClient(
            ConfigStore(), transport=mock_transport(500, {"error": "identity provider down"})
        )

        with pytest.raises(SessionExchangeError, match="identity provider down") as exc_info:
            await client.exchange("identity-token")

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_missing_session_field(self):
        client = SessionAuthClient(ConfigStore(), transport=mock_transport(payload={"ok": True}))

        with pytest.raises(SessionExchangeError, match="No session token"):
            await client.exchange("identity-token")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = SessionAuthClient(ConfigStore(), transport=httpx.MockTransport(handler))

        with pytest.raises(SessionExchangeError, match="Network error"):
            await client.exchange("identity-token")


class TestParseServerThresholds:
    """Tests for parse_server_thresholds()."""

    def test_parses_mixed_number_types(self):
        config = parse_server_thresholds({"notifications": {"AAPL": SERVER_THRESHOLDS}}, "aapl")

        assert config == ThresholdConfig(
            call_ratio_threshold=25.0,
            put_ratio_threshold=0.4,
            call_premium_threshold=1_500_000.0,
            put_premium_threshold=750_000.0,
            total_premium_threshold=2_000_000.0,
            disabled=False,
        )

    def test_int_disabled_flag(self):
        data = {**SERVER_THRESHOLDS, "disabled": 1}

        config = parse_server_thresholds({"notifications": {"AAPL": data}}, "AAPL")

        assert config is not None and config.disabled is True

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"notifications": {}},
            {"notifications": {"MSFT": SERVER_THRESHOLDS}},
            {"notifications": {"AAPL": {**SERVER_THRESHOLDS, "call_ratio_threshold": "high"}}},
            [],
        ],
    )
    def test_unusable_payloads(self, payload):
        assert parse_server_thresholds(payload, "AAPL") is None


class TestNotificationThresholdClient:
    """Tests for NotificationThresholdClient."""

    @pytest.mark.asyncio
    async def test_fetch_sends_bearer_and_ticker(self):
        requests: list[httpx.Request] = []
        client = NotificationThresholdClient(
            ConfigStore(),
            FakeCredentials(),
            transport=mock_transport(
                payload={"notifications": {"AAPL": SERVER_THRESHOLDS}}, requests=requests
            ),
        )

        config = await client.fetch_thresholds("aapl")

        assert config is not None
        assert config.total_premium_threshold == 2_000_000.0
        assert str(requests[0].url) == "http://localhost:8080/notifications?ticker=AAPL"
        assert requests[0].headers["Authorization"] == "Bearer session-token"

    @pytest.mark.asyncio
    async def test_fetch_401_invalidates_credential(self):
        credentials = FakeCredentials()
        client = NotificationThresholdClient(
            ConfigStore(), credentials, transport=mock_transport(401)
        )

        assert await client.fetch_thresholds("AAPL") is None
        assert credentials.auth_failure_calls == 1

    @pytest.mark.asyncio
    async def test_fetch_without_credential_skips_request(self):
        requests: list[httpx.Request] = []
        client = NotificationThresholdClient(
            ConfigStore(), FakeCredentials(token=None), transport=mock_transport(requests=requests)
        )

        assert await client.fetch_thresholds("AAPL") is None
        assert requests == []

    @pytest.mark.asyncio
    async def test_fetch_server_error_returns_none(self):
        client = NotificationThresholdClient(
            ConfigStore(), FakeCredentials(), transport=mock_transport(503)
        )

        assert await client.fetch_thresholds("AAPL") is None

    @pytest.mark.asyncio
    async def test_save_puts_server_payload(self):
        requests: list[httpx.Request] = []
        client = NotificationThresholdClient(
            ConfigStore(), FakeCredentials(), transport=mock_transport(requests=requests)
        )

        saved = await client.save_thresholds(
            "aapl", ThresholdConfig(call_ratio_threshold=30.0), disabled=True
        )

        assert saved is True
        assert requests[0].method == "PUT"
        body = json.loads(requests[0].content)
        assert body["ticker"] == "AAPL"
        assert body["call_ratio_threshold"] == 30.0
        assert body["ratio_premium_threshold"] == 1_000_000.0
        assert body["disabled"] is True

    @pytest.mark.asyncio
    async def test_save_failure_returns_false(self):
        client = NotificationThresholdClient(
            ConfigStore(), FakeCredentials(), transport=mock_transport(400)
        )

        assert await client.save_thresholds("AAPL", ThresholdConfig()) is False

    @pytest.mark.asyncio
    async def test_sync_ticker_stores_notification_thresholds(self):
        store = ConfigStore()
        client = NotificationThresholdClient(
            store,
            FakeCredentials(),
            transport=mock_transport(payload={"notifications": {"AAPL": SERVER_THRESHOLDS}}),
        )

        await client.sync_ticker("AAPL")

        assert store.get_thresholds("AAPL", ThresholdKind.NOTIFICATION).call_ratio_threshold == 25.0
        assert store.has_custom_thresholds("AAPL", ThresholdKind.HIGHLIGHT) is False


class TestFollowTicker:
    """Tests for NotificationThresholdClient.follow_ticker()."""

    @staticmethod
    def make_client(store: ConfigStore, requests: list[httpx.Request]) -> NotificationThresholdClient:
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            ticker = request.url.params["ticker"]
            return httpx.Response(200, json={"notifications": {ticker: SERVER_THRESHOLDS}})

        return NotificationThresholdClient(
            store, FakeCredentials(), transport=httpx.MockTransport(handler)
        )

    @pytest.mark.asyncio
    async def test_ticker_change_syncs_new_ticker(self):
        store = ConfigStore()
        requests: list[httpx.Request] = []
        client = self.make_client(store, requests)
        client.follow_ticker()

        store.ticker = "msft"
        await wait_until(lambda: store.has_custom_thresholds("MSFT", ThresholdKind.NOTIFICATION))

        assert [r.url.params["ticker"] for r in requests] == ["MSFT"]
        assert store.get_thresholds("MSFT", ThresholdKind.NOTIFICATION).call_ratio_threshold == 25.0

        await client.aclose()

    @pytest.mark.asyncio
    async def test_other_keys_do_not_sync(self):
        store = ConfigStore()
        requests: list[httpx.Request] = []
        client = self.make_client(store, requests)
        client.follow_ticker()

        store.host = "127.0.0.1"
        store.notifications_enabled = False
        await asyncio.sleep(0.02)

        assert requests == []

        await client.aclose()

    @pytest.mark.asyncio
    async def test_change_from_other_thread(self):
        store = ConfigStore()
        requests: list[httpx.Request] = []
        client = self.make_client(store, requests)
        client.follow_ticker()

        thread = threading.Thread(target=lambda: setattr(store, "ticker", "TSLA"))
        thread.start()
        thread.join()
        await wait_until(lambda: store.has_custom_thresholds("TSLA", ThresholdKind.NOTIFICATION))

        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_stops_following(self):
        store = ConfigStore()
        requests: list[httpx.Request] = []
        client = self.make_client(store, requests)
        client.follow_ticker()

        await client.aclose()
        store.ticker = "MSFT"
        await asyncio.sleep(0.02)

        assert requests == []
