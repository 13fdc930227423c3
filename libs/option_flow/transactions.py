"""
Trades behind one summary bucket.

GET /transactions returns the individual option trades of a ticker for one
minute of one day. Each trade is an aggregate event in the upstream feed's
short-key format (``ev``, ``sym``, ``v`` ...), and the contract is encoded
in the option symbol, e.g. ``O:AAPL260116C00250000``.

Unlike threshold sync, failures raise: the caller asked for data and has to
show why there is none. A 401 invalidates the credential, asks the provider
to sign in again and retries once if a new credential arrives in time.

Example:
    >>> client = TransactionClient(config, credentials)
    >>> trades = await client.fetch_for_record(record, tz=ZoneInfo("America/New_York"))
    >>> trades[0].option_details.strike
    250.0
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from uuid import UUID, uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, ValidationError

from libs.option_flow.config_store import ConfigStore
from libs.option_flow.credentials import CredentialProvider
from libs.option_flow.endpoint import TRANSACTIONS_PATH, http_url
from libs.option_flow.exceptions import (
    AuthRejectedError,
    NotAuthenticatedError,
    TransactionFetchError,
)
from libs.option_flow.types import SummaryRecord

logger = logging.getLogger(__name__)

OPTION_SYMBOL_PREFIX = "O:"
EXPIRATION_DIGITS = 6  # YYMMDD
STRIKE_DIGITS = 8  # strike price in thousandths of a dollar
STRIKE_SCALE = 1000.0


def _is_ascii_digits(value: str) -> bool:
    return value.isascii() and value.isdigit()


@dataclass(frozen=True)
class OptionSymbolDetails:
    """Contract fields decoded from an option symbol."""

    underlying: str
    expiration: date
    strike: float
    option_type: str  # "CALL" or "PUT"

    @classmethod
    def parse(cls, symbol: str) -> OptionSymbolDetails | None:
        """
        Decode ``O:<underlying><YYMMDD><C|P><strike x 1000, 8 digits>``.

        Returns:
            The details, or None if the symbol does not follow the format
        """
        if not symbol.startswith(OPTION_SYMBOL_PREFIX):
            return None
        body = symbol[len(OPTION_SYMBOL_PREFIX) :]
        if len(body) < EXPIRATION_DIGITS + 1 + STRIKE_DIGITS:
            return None

        strike_part = body[-STRIKE_DIGITS:]
        type_char = body[-STRIKE_DIGITS - 1]
        head = body[: -STRIKE_DIGITS - 1]
        expiration_part = head[-EXPIRATION_DIGITS:]

        if not _is_ascii_digits(strike_part) or not _is_ascii_digits(expiration_part):
            return None
        if type_char not in ("C", "P"):
            return None

        try:
            expiration = date(
                2000 + int(expiration_part[:2]),
                int(expiration_part[2:4]),
                int(expiration_part[4:]),
            )
        except ValueError:
            return None

        return cls(
            underlying=head[:-EXPIRATION_DIGITS],
            expiration=expiration,
            strike=int(strike_part) / STRIKE_SCALE,
            option_type="CALL" if type_char == "C" else "PUT",
        )


class Transaction(BaseModel):
    """
    One aggregate trade event of an option contract.

    Field aliases are the feed's short keys. Validation is strict, like
    SummaryRecord: numeric strings and booleans are rejected.
    """

    model_config = ConfigDict(frozen=True, strict=True, populate_by_name=True)

    event_type: str = Field(..., alias="ev")
    symbol: str = Field(..., alias="sym", description="Option symbol, e.g. O:AAPL260116C00250000")
    volume: int = Field(..., alias="v")
    accumulated_volume: int = Field(..., alias="av", description="Volume so far today")
    official_open_price: float = Field(..., alias="op")
    volume_weighted_price: float = Field(..., alias="vw", description="VWAP of this window")
    open_price: float = Field(..., alias="o")
    high_price: float = Field(..., alias="h")
    low_price: float = Field(..., alias="l")
    close_price: float = Field(..., alias="c")
    today_vwap: float = Field(..., alias="a", description="VWAP of the day so far")
    average_trade_size: int = Field(..., alias="z")
    start_timestamp: int = Field(..., alias="s", description="Window start, Unix milliseconds")
    end_timestamp: int = Field(..., alias="e", description="Window end, Unix milliseconds")

    _id: UUID = PrivateAttr(default_factory=uuid4)

    @property
    def id(self) -> UUID:
        """Local identity, assigned at decode."""
        return self._id

    @property
    def start_time(self) -> datetime:
        return datetime.fromtimestamp(self.start_timestamp / 1000, tz=UTC)

    @property
    def end_time(self) -> datetime:
        return datetime.fromtimestamp(self.end_timestamp / 1000, tz=UTC)

    @property
    def option_details(self) -> OptionSymbolDetails | None:
        return OptionSymbolDetails.parse(self.symbol)


_TRANSACTIONS = TypeAdapter(list[Transaction])


class TransactionClient:
    """GET /transactions client for the trades behind a summary bucket."""

    TIMEOUT = 10  # seconds
    REAUTH_TIMEOUT = 3.0  # seconds to wait for a new credential after a 401
    REAUTH_POLL_INTERVAL = 0.1  # seconds

    def __init__(
        self,
        config_store: ConfigStore,
        credentials: CredentialProvider,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        reauth_timeout: float = REAUTH_TIMEOUT,
    ) -> None:
        self.config = config_store
        self.credentials = credentials
        self._transport = transport
        self._reauth_timeout = reauth_timeout

    def _url(self, day: date, at: time, ticker: str) -> str:
        query = {"date": day.isoformat(), "time": at.strftime("%H:%M"), "ticker": ticker.upper()}
        return http_url(
            self.config.host,
            self.config.port,
            self.config.use_insecure,
            TRANSACTIONS_PATH,
            query,
        )

    async def fetch_transactions(
        self, day: date, at: time, ticker: str | None = None
    ) -> list[Transaction]:
        """
        Fetch the trades of one minute.

        Args:
            day: Trading day
            at: Minute within the day (seconds are dropped)
            ticker: Underlying ticker, defaults to the config store's ticker

        Returns:
            Trades in server order

        Raises:
            InvalidEndpointError: If the configured server cannot form a URL
            NotAuthenticatedError: Without a credential, or when none arrived after a 401
            AuthRejectedError: If the server rejects the renewed credential as well
            TransactionFetchError: On network errors, other non-200 responses and bad bodies
        """
        url = self._url(day, at, ticker or self.config.ticker)
        token = self.credentials.current_credential
        if not self.credentials.is_authenticated or not token:
            raise NotAuthenticatedError("Sign-in required to fetch transactions")

        response = await self._get(url, token)
        if response.status_code == 401:
            logger.warning("Transaction fetch rejected (401), invalidating session")
            self.credentials.on_auth_failure()
            self.credentials.sign_in()

            token = await self._wait_for_credential()
            if token is None:
                raise NotAuthenticatedError("Sign-in required to fetch transactions")
            response = await self._get(url, token)
            if response.status_code == 401:
                self.credentials.on_auth_failure()
                raise AuthRejectedError("Transaction fetch rejected after sign-in (401)")

        if response.status_code != 200:
            raise TransactionFetchError(
                f"Transaction fetch failed (code: {response.status_code})",
                status_code=response.status_code,
            )

        try:
            transactions = _TRANSACTIONS.validate_json(response.content)
        except ValidationError as e:
            raise TransactionFetchError(
                f"Invalid transactions payload ({e.error_count()} errors)", status_code=200
            ) from e

        logger.info(f"Fetched {len(transactions)} transactions")
        return transactions

    async def fetch_for_record(
        self, record: SummaryRecord, tz: tzinfo = UTC, ticker: str | None = None
    ) -> list[Transaction]:
        """Fetch the trades of the minute a summary bucket starts in, as seen in ``tz``."""
        start = record.period_start.astimezone(tz)
        return await self.fetch_transactions(start.date(), start.time(), ticker)

    async def _get(self, url: str, token: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.TIMEOUT, transport=self._transport
            ) as client:
                return await client.get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.RequestError as exc:
            logger.warning(f"Transaction fetch failed: {exc}")
            raise TransactionFetchError(f"Network error: {exc}") from exc

    async def _wait_for_credential(self) -> str | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._reauth_timeout
        while True:
            token = self.credentials.current_credential
            if self.credentials.is_authenticated and token:
                return token
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(self.REAUTH_POLL_INTERVAL)
