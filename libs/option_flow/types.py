"""
Option Flow Type Definitions

Pydantic models and enums shared by the decoder, the threshold evaluator and
the connection lifecycle manager.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator


class SummaryRecord(BaseModel):
    """
    One time bucket of aggregated option trading activity for a ticker.

    Created once per inbound frame and never mutated. Premium totals and the
    call/put ratio are computed upstream and accepted as given. Validation is
    strict: numeric strings and booleans are rejected, integers are accepted
    for float fields.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    id: UUID = Field(default_factory=uuid4, description="Local identity, assigned at decode")
    period_start: AwareDatetime = Field(..., description="Bucket start (normalized to UTC)")
    period_end: AwareDatetime = Field(..., description="Bucket end (normalized to UTC)")
    call_premium: float = Field(..., description="Premium traded in calls")
    put_premium: float = Field(..., description="Premium traded in puts")
    total_premium: float = Field(..., description="Total premium (upstream computed)")
    call_put_ratio: float = Field(..., description="Call/put ratio (upstream computed)")
    call_volume: int = Field(..., description="Call contracts traded")
    put_volume: int = Field(..., description="Put contracts traded")

    @field_validator("period_start", "period_end")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        """Store every timestamp as an absolute UTC instant."""
        return v.astimezone(UTC)

    @property
    def total_volume(self) -> int:
        """Call plus put contracts."""
        return self.call_volume + self.put_volume


class ThresholdConfig(BaseModel):
    """
    Comparison thresholds for one ticker.

    ``total_premium_threshold`` gates the ratio rules: a ratio rule only
    fires when the bucket's total premium reaches it. The server calls this
    field ``ratio_premium_threshold``.
    """

    model_config = ConfigDict(frozen=True)

    call_ratio_threshold: float = 40.0
    put_ratio_threshold: float = 0.50
    call_premium_threshold: float = 1_000_000.0
    put_premium_threshold: float = 500_000.0
    total_premium_threshold: float = 1_000_000.0
    disabled: bool = False

    def is_default(self) -> bool:
        """True when all five numeric thresholds equal the defaults (``disabled`` ignored)."""
        default = DEFAULT_THRESHOLDS
        return (
            self.call_ratio_threshold == default.call_ratio_threshold
            and self.put_ratio_threshold == default.put_ratio_threshold
            and self.call_premium_threshold == default.call_premium_threshold
            and self.put_premium_threshold == default.put_premium_threshold
            and self.total_premium_threshold == default.total_premium_threshold
        )

    def to_server_payload(self, ticker: str, disabled: bool | None = None) -> dict[str, Any]:
        """Render the body of a PUT /notifications request."""
        return {
            "ticker": ticker.upper(),
            "ratio_premium_threshold": self.total_premium_threshold,
            "call_ratio_threshold": self.call_ratio_threshold,
            "put_ratio_threshold": self.put_ratio_threshold,
            "call_premium_threshold": self.call_premium_threshold,
            "put_premium_threshold": self.put_premium_threshold,
            "disabled": self.disabled if disabled is None else disabled,
        }


DEFAULT_THRESHOLDS = ThresholdConfig()


class ThresholdKind(str, Enum):
    """Which of the two per-ticker threshold sets is meant."""

    NOTIFICATION = "notification"
    HIGHLIGHT = "highlight"


class AlertClass(str, Enum):
    """Result of classifying a record against a ThresholdConfig."""

    CALL_RATIO_EXCEEDED = "call_ratio_exceeded"
    PUT_RATIO_BELOW = "put_ratio_below"
    BOTH_PREMIUMS_EXCEEDED = "both_premiums_exceeded"
    CALL_PREMIUM_EXCEEDED = "call_premium_exceeded"
    PUT_PREMIUM_EXCEEDED = "put_premium_exceeded"


class Highlight(str, Enum):
    """Row colour cue derived from the highlight thresholds."""

    GREEN = "green"
    RED = "red"
    YELLOW = "yellow"


class ConnectionPhase(str, Enum):
    """
    Lifecycle manager phases.

    DISCONNECTED: no transport; only left through connect()
    CONNECTING: transport being opened
    CONNECTED: transport open, frames being read (set before the first frame)
    ERROR: last attempt failed; see ConnectionStatus.error_kind
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Failure classification used for recovery decisions."""

    INVALID_ENDPOINT = "invalid_endpoint"
    NOT_AUTHENTICATED = "not_authenticated"
    TRANSPORT_FAILURE = "transport_failure"
    AUTH_REJECTED = "auth_rejected"
    DECODE_NOISE = "decode_noise"


class ConnectionStatus(BaseModel):
    """Observable state of the lifecycle manager."""

    model_config = ConfigDict(frozen=True)

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    error_kind: ErrorKind | None = None
    reason: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED

    def describe(self) -> str:
        """Human readable one-liner, e.g. ``error: transport_failure (connection reset)``."""
        if self.phase is ConnectionPhase.ERROR:
            kind = self.error_kind.value if self.error_kind else "unknown"
            return f"error: {kind} ({self.reason})" if self.reason else f"error: {kind}"
        return self.phase.value


@dataclass(frozen=True)
class SubscriptionKey:
    """
    Identity of a stream subscription.

    Two connections may share buffered records only if their keys are equal;
    the lifecycle manager never updates a live connection in place.
    """

    host: str
    port: str
    use_insecure: bool
    ticker: str
    date: date
    has_credential: bool
