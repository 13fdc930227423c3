"""Exchange of an identity-provider token for a stream session."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from libs.option_flow.config_store import ConfigStore
from libs.option_flow.endpoint import AUTH_PATH, http_url
from libs.option_flow.exceptions import AuthRejectedError, SessionExchangeError

logger = logging.getLogger(__name__)

# The server has used each of these names for the session token.
SESSION_FIELDS = ("sessionId", "session_id", "token", "jwt")


class SessionAuthClient:
    """POST /auth/login client returning a bearer session token."""

    TIMEOUT = 10  # seconds

    def __init__(
        self, config_store: ConfigStore, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.config = config_store
        self._transport = transport

    async def exchange(self, identity_token: str, authorization_code: str | None = None) -> str:
        """
        Trade an identity token for a session token.

        Raises:
            AuthRejectedError: On HTTP 401
            SessionExchangeError: On any other failure (network, status, body)
        """
        url = http_url(self.config.host, self.config.port, self.config.use_insecure, AUTH_PATH)
        body: dict[str, Any] = {"identity_token": identity_token}
        if authorization_code:
            body["authorization_code"] = authorization_code

        logger.info("session_exchange_attempt", extra={"url": url})
        try:
            async with httpx.AsyncClient(
                timeout=self.TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(url, json=body)
        except httpx.RequestError as exc:
            logger.error("session_exchange_network_error", extra={"error": str(exc)})
            raise SessionExchangeError(f"Network error: {exc}") from exc

        if response.status_code == 401:
            raise AuthRejectedError("Identity token rejected (401)")

        if response.status_code != 200:
            raise SessionExchangeError(
                _server_error_message(response), status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise SessionExchangeError("Session response is not JSON", 200) from exc

        if isinstance(payload, dict):
            for field in SESSION_FIELDS:
                value = payload.get(field)
                if isinstance(value, str) and value:
                    logger.info("session_exchange_succeeded")
                    return value

        raise SessionExchangeError("No session token in response", status_code=200)


def _server_error_message(response: httpx.Response) -> str:
    message = f"Server error (code: {response.status_code})"
    try:
        payload = response.json()
    except ValueError:
        return f"{message}. Response: {response.text}" if response.text else message
    if isinstance(payload, dict):
        detail = payload.get("error") or payload.get("message")
        if isinstance(detail, str) and detail:
            return f"{message}: {detail}"
    return message
