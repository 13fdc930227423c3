"""
Tests for the stream frame decoder.

Tests cover:
- Valid records (fractional and whole-second timestamps, UTC normalization)
- Noise (bad JSON, missing fields, wrong types, non-objects)
- Auth-flavored payloads escalated as AuthRejectedError
- Newline-delimited frame splitting
"""

import json
from datetime import UTC, datetime

import pytest

from libs.option_flow.decoder import (
    decode_frame,
    is_auth_failure_payload,
    parse_timestamp,
    split_frames,
)
from libs.option_flow.exceptions import AuthRejectedError, DecodeNoiseError
from tests.libs.option_flow.conftest import make_frame, make_payload


class TestParseTimestamp:
    """Tests for parse_timestamp()."""

    def test_fractional_seconds_with_offset(self):
        parsed = parse_timestamp("2025-01-02T14:30:00.250-05:00")

        assert parsed == datetime(2025, 1, 2, 19, 30, 0, 250000, tzinfo=UTC)

    def test_whole_seconds_with_z_suffix(self):
        parsed = parse_timestamp("2025-01-02T19:30:00Z")

        assert parsed == datetime(2025, 1, 2, 19, 30, tzinfo=UTC)
        assert parsed.tzinfo is UTC

    @pytest.mark.parametrize(
        "value",
        ["2025-01-02T14:30:00", "2025-01-02", "yesterday", ""],
    )
    def test_rejects_values_without_offset_or_time(self, value):
        with pytest.raises(ValueError, match="Invalid timestamp"):
            parse_timestamp(value)

    def test_rejects_non_string(self):
        with pytest.raises(ValueError, match="must be a string"):
            parse_timestamp(1735846200)  # type: ignore[arg-type]


class TestDecodeFrame:
    """Tests for decode_frame()."""

    def test_decodes_valid_record(self):
        record = decode_frame(make_frame())

        assert record.period_start == datetime(2025, 1, 2, 19, 30, tzinfo=UTC)
        assert record.period_end == datetime(2025, 1, 2, 19, 35, tzinfo=UTC)
        assert record.call_premium == 250_000.0
        assert record.put_premium == 100_000.0
        assert record.total_premium == 350_000.0
        assert record.call_put_ratio == 2.5
        assert record.call_volume == 1200
        assert record.put_volume == 800
        assert record.total_volume == 2000

    def test_each_decode_gets_new_identity(self):
        frame = make_frame()

        assert decode_frame(frame).id != decode_frame(frame).id

    def test_accepts_bytes(self):
        record = decode_frame(make_frame().encode("utf-8"))

        assert record.call_volume == 1200

    def test_total_premium_taken_as_given(self):
        record = decode_frame(make_frame(total_premium=1.0))

        assert record.total_premium == 1.0

    def test_extra_fields_ignored(self):
        record = decode_frame(make_frame(ticker="AAPL", interval="5m"))

        assert record.call_volume == 1200

    def test_invalid_json_is_noise(self):
        with pytest.raises(DecodeNoiseError, match="not valid JSON"):
            decode_frame("{not json")

    def test_invalid_utf8_is_noise(self):
        with pytest.raises(DecodeNoiseError, match="UTF-8"):
            decode_frame(b"\xff\xfe")

    def test_missing_field_is_noise(self):
        payload = make_payload()
        del payload["put_volume"]

        with pytest.raises(DecodeNoiseError, match="put_volume"):
            decode_frame(json.dumps(payload))

    def test_bad_timestamp_is_noise(self):
        with pytest.raises(DecodeNoiseError):
            decode_frame(make_frame(period_start="2025-01-02 14:30"))

    def test_wrong_type_is_noise(self):
        with pytest.raises(DecodeNoiseError):
            decode_frame(make_frame(call_volume="lots"))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"call_premium": "1000"},
            {"call_put_ratio": "2.5"},
            {"call_volume": True},
            {"put_volume": "800"},
            {"call_volume": 1200.5},
        ],
    )
    def test_numeric_strings_and_booleans_are_noise(self, overrides):
        with pytest.raises(DecodeNoiseError):
            decode_frame(make_frame(**overrides))

    def test_integer_premiums_accepted(self):
        record = decode_frame(make_frame(call_premium=1000, put_premium=0))

        assert record.call_premium == 1000.0
        assert isinstance(record.call_premium, float)

    @pytest.mark.parametrize("frame", ["[]", "42", '"text"', "null"])
    def test_non_object_is_noise(self, frame):
        with pytest.raises(DecodeNoiseError):
            decode_frame(frame)

    def test_unrelated_error_payload_is_noise(self):
        with pytest.raises(DecodeNoiseError):
            decode_frame('{"error": "Ticker not found"}')

    @pytest.mark.parametrize(
        "frame",
        [
            '{"error": "Unauthorized"}',
            '{"status": 401}',
            '{"code": "401", "message": "bad"}',
            '{"message": "Token expired, please sign in again"}',
            '{"error": {"code": 401, "message": "nope"}}',
            '{"reason": "Authentication required"}',
        ],
    )
    def test_auth_payload_raises_auth_rejected(self, frame):
        with pytest.raises(AuthRejectedError):
            decode_frame(frame)

    def test_auth_reason_uses_message_text(self):
        with pytest.raises(AuthRejectedError, match="Invalid token"):
            decode_frame('{"detail": "Invalid token"}')

    def test_valid_record_with_auth_words_is_a_record(self):
        """The auth check only runs when normal decoding failed."""
        record = decode_frame(make_frame(message="unauthorized"))

        assert record.call_volume == 1200


class TestIsAuthFailurePayload:
    """Tests for is_auth_failure_payload()."""

    def test_boolean_status_is_not_401(self):
        assert is_auth_failure_payload({"status": True}) is False

    def test_non_mapping(self):
        assert is_auth_failure_payload(["unauthorized"]) is False

    def test_rate_limit_error(self):
        assert is_auth_failure_payload({"error": "rate limited", "status": 429}) is False


class TestSplitFrames:
    """Tests for split_frames()."""

    def test_single_frame(self):
        assert split_frames('{"a": 1}') == ['{"a": 1}']

    def test_multiple_frames_drop_blank_lines(self):
        assert split_frames('{"a": 1}\n\n  \n{"b": 2}\n') == ['{"a": 1}', '{"b": 2}']

    def test_bytes(self):
        assert split_frames(b'{"a": 1}\r\n{"b": 2}') == [b'{"a": 1}', b'{"b": 2}']

    def test_crlf_text(self):
        assert split_frames('{"a": 1}\r\n{"b": 2}\r\n') == ['{"a": 1}', '{"b": 2}']

    @pytest.mark.parametrize("separator", ["\u2028", "\u2029", "\x85", "\x1c", "\x0b"])
    def test_unicode_line_separators_stay_inside_frame(self, separator):
        frame = '{"error": "session' + separator + 'expired", "status": 401}'

        assert split_frames(frame) == [frame]

    def test_auth_payload_with_line_separator_survives_split(self):
        (frame,) = split_frames('{"error": "session\u2028expired", "status": 401}')

        with pytest.raises(AuthRejectedError):
            decode_frame(frame)
