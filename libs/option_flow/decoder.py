"""
Record decoder for the /analyze stream.

Turns one text frame into a SummaryRecord. Frames that fail to decode are
split in two classes:

- auth-flavored payloads (the server rejected our credential) raise
  AuthRejectedError and are escalated by the lifecycle manager;
- everything else raises DecodeNoiseError, is logged and dropped.

Example:
    >>> record = decode_frame('{"period_start": "2025-01-02T14:30:00-05:00", ...}')
    >>> record.period_start.tzinfo
    datetime.timezone.utc
"""

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from libs.option_flow.exceptions import AuthRejectedError, DecodeNoiseError
from libs.option_flow.types import SummaryRecord

# Tried in order: fractional seconds first, then whole seconds. Both need an offset.
TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)

# Fields whose value 401 marks an authentication failure.
AUTH_STATUS_FIELDS = ("status", "code", "status_code", "statusCode", "error_code")

# Fields whose text is searched for AUTH_FAILURE_MARKERS.
AUTH_MESSAGE_FIELDS = ("error", "message", "detail", "reason", "type")

AUTH_FAILURE_MARKERS = (
    "unauthorized",
    "unauthenticated",
    "not authenticated",
    "authentication failed",
    "authentication required",
    "invalid token",
    "token expired",
    "expired token",
    "invalid session",
    "session expired",
)

UNAUTHORIZED_STATUS = 401

REQUIRED_FIELDS = (
    "period_start",
    "period_end",
    "call_premium",
    "put_premium",
    "total_premium",
    "call_put_ratio",
    "call_volume",
    "put_volume",
)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp carrying an explicit UTC offset.

    Args:
        value: e.g. ``2025-01-02T14:30:00.123-05:00`` or ``2025-01-02T19:30:00Z``

    Returns:
        Timezone-aware datetime normalized to UTC

    Raises:
        ValueError: If the value matches neither accepted form
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")

    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return parsed.astimezone(UTC)

    raise ValueError(f"Invalid timestamp format: {value!r}")


def _is_unauthorized_status(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value == UNAUTHORIZED_STATUS
    if isinstance(value, str):
        return value.strip() == str(UNAUTHORIZED_STATUS)
    return False


def _has_auth_marker(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.lower()
    return any(marker in text for marker in AUTH_FAILURE_MARKERS)


def is_auth_failure_payload(payload: Any) -> bool:
    """
    Decide whether a decoded JSON value is the server rejecting our credential.

    Matches when the object has a status-like field equal to 401, or a
    message-like field containing one of AUTH_FAILURE_MARKERS, or an
    ``error`` object that matches either rule itself. An error payload that
    is about something else (rate limits, bad ticker) does not match.

    Args:
        payload: Result of ``json.loads`` on a frame

    Returns:
        True for auth-flavored payloads
    """
    if not isinstance(payload, Mapping):
        return False

    for field in AUTH_STATUS_FIELDS:
        if _is_unauthorized_status(payload.get(field)):
            return True

    for field in AUTH_MESSAGE_FIELDS:
        if _has_auth_marker(payload.get(field)):
            return True

    nested = payload.get("error")
    if isinstance(nested, Mapping):
        return is_auth_failure_payload(nested)

    return False


def decode_frame(frame: str | bytes) -> SummaryRecord:
    """
    Decode one wire frame into a SummaryRecord.

    Args:
        frame: A single JSON object as text (bytes are decoded as UTF-8)

    Returns:
        The decoded record

    Raises:
        AuthRejectedError: If the frame is an auth-failure payload
        DecodeNoiseError: If the frame is anything else that is not a record
    """
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeNoiseError(f"Frame is not valid UTF-8: {e}") from e

    try:
        payload = json.loads(frame)
    except json.JSONDecodeError as e:
        raise DecodeNoiseError(f"Frame is not valid JSON: {e.msg}") from e

    try:
        return _build_record(payload)
    except (ValueError, TypeError, ValidationError) as e:
        # Auth check runs only after normal decoding failed
        if is_auth_failure_payload(payload):
            raise AuthRejectedError(_auth_reason(payload)) from e
        raise DecodeNoiseError(f"Frame is not a summary record: {e}") from e


def _build_record(payload: Any) -> SummaryRecord:
    if not isinstance(payload, Mapping):
        raise TypeError(f"Expected a JSON object, got {type(payload).__name__}")

    missing = [field for field in REQUIRED_FIELDS if field not in payload]
    if missing:
        raise ValueError(f"Missing required fields: {missing}")

    return SummaryRecord.model_validate(
        {
            **{field: payload[field] for field in REQUIRED_FIELDS},
            "period_start": parse_timestamp(payload["period_start"]),
            "period_end": parse_timestamp(payload["period_end"]),
        }
    )


def _auth_reason(payload: Mapping[str, Any]) -> str:
    for field in AUTH_MESSAGE_FIELDS:
        value = payload.get(field)
        if isinstance(value, str) and value:
            return value
    return "unauthorized"


def split_frames(message: str | bytes) -> list[str | bytes]:
    """
    Split one transport message into newline-delimited frames, dropping blank lines.

    Only ``\\n`` (optionally preceded by ``\\r``) separates frames. Other
    Unicode line separators may appear unescaped inside JSON strings.
    """
    if isinstance(message, bytes):
        return [line.removesuffix(b"\r") for line in message.split(b"\n") if line.strip()]
    return [line.removesuffix("\r") for line in message.split("\n") if line.strip()]
