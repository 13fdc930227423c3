"""
Tests for threshold evaluation.

Tests cover:
- Rule order and the aggregate premium gate
- Premium rules (both/call/put)
- Disabled configs
- Highlight mapping
- Alert text
"""

from datetime import UTC, datetime

import pytest

from libs.option_flow.thresholds import classify, describe_alert, evaluate, highlight_for
from libs.option_flow.types import AlertClass, Highlight, SummaryRecord, ThresholdConfig


def make_record(**overrides) -> SummaryRecord:
    values = {
        "period_start": datetime(2025, 1, 2, 14, 30, tzinfo=UTC),
        "period_end": datetime(2025, 1, 2, 14, 35, tzinfo=UTC),
        "call_premium": 0.0,
        "put_premium": 0.0,
        "total_premium": 0.0,
        "call_put_ratio": 1.0,
        "call_volume": 10,
        "put_volume": 10,
    }
    values.update(overrides)
    return SummaryRecord(**values)


@pytest.fixture
def config() -> ThresholdConfig:
    return ThresholdConfig()


class TestEvaluate:
    """Tests for evaluate() with the default thresholds."""

    def test_call_ratio_with_gate_met(self, config):
        record = make_record(call_put_ratio=45.0, total_premium=1_200_000.0)

        assert evaluate(record, config) is AlertClass.CALL_RATIO_EXCEEDED

    def test_call_ratio_below_gate_falls_through_to_premiums(self, config):
        """High ratio but small total: the premium rules decide."""
        record = make_record(call_put_ratio=45.0, total_premium=200_000.0, call_premium=1_500_000.0)

        assert evaluate(record, config) is AlertClass.CALL_PREMIUM_EXCEEDED

    def test_call_ratio_below_gate_no_premiums(self, config):
        record = make_record(call_put_ratio=45.0, total_premium=200_000.0)

        assert evaluate(record, config) is None

    def test_put_ratio_with_gate_met(self, config):
        record = make_record(call_put_ratio=0.3, total_premium=2_000_000.0)

        assert evaluate(record, config) is AlertClass.PUT_RATIO_BELOW

    def test_ratio_boundaries_are_inclusive(self, config):
        at_call = make_record(call_put_ratio=40.0, total_premium=1_000_000.0)
        at_put = make_record(call_put_ratio=0.5, total_premium=1_000_000.0)

        assert evaluate(at_call, config) is AlertClass.CALL_RATIO_EXCEEDED
        assert evaluate(at_put, config) is AlertClass.PUT_RATIO_BELOW

    def test_ratio_rule_wins_over_premiums(self, config):
        record = make_record(
            call_put_ratio=50.0,
            total_premium=3_000_000.0,
            call_premium=2_000_000.0,
            put_premium=1_000_000.0,
        )

        assert evaluate(record, config) is AlertClass.CALL_RATIO_EXCEEDED

    def test_both_premiums(self, config):
        record = make_record(
            call_put_ratio=2.0,
            total_premium=1_700_000.0,
            call_premium=1_100_000.0,
            put_premium=600_000.0,
        )

        assert evaluate(record, config) is AlertClass.BOTH_PREMIUMS_EXCEEDED

    def test_put_premium_only(self, config):
        record = make_record(put_premium=500_000.0, total_premium=600_000.0)

        assert evaluate(record, config) is AlertClass.PUT_PREMIUM_EXCEEDED

    def test_moderate_ratio_with_large_call_premium(self, config):
        """Ratio inside both bounds, gate met: the call premium rule decides."""
        record = make_record(
            call_put_ratio=15.92,
            total_premium=1_231_438.03,
            call_premium=1_158_667.03,
            put_premium=72_771,
        )

        assert evaluate(record, config) is AlertClass.CALL_PREMIUM_EXCEEDED
        assert highlight_for(record, config) is None

    def test_nothing_exceeded(self, config):
        assert evaluate(make_record(), config) is None

    def test_disabled_config_returns_none(self):
        record = make_record(call_put_ratio=45.0, total_premium=1_200_000.0)
        config = ThresholdConfig(disabled=True)

        assert evaluate(record, config) is None
        assert classify(record, config) is AlertClass.CALL_RATIO_EXCEEDED

    def test_custom_thresholds(self):
        config = ThresholdConfig(
            call_ratio_threshold=5.0, total_premium_threshold=100_000.0
        )
        record = make_record(call_put_ratio=6.0, total_premium=150_000.0)

        assert evaluate(record, config) is AlertClass.CALL_RATIO_EXCEEDED


class TestHighlightFor:
    """Tests for highlight_for()."""

    @pytest.mark.parametrize(
        ("overrides", "expected"),
        [
            ({"call_put_ratio": 45.0, "total_premium": 1_200_000.0}, Highlight.GREEN),
            ({"call_put_ratio": 0.2, "total_premium": 1_200_000.0}, Highlight.RED),
            (
                {"call_premium": 1_000_000.0, "put_premium": 500_000.0, "total_premium": 1.5e6},
                Highlight.YELLOW,
            ),
            ({"put_premium": 700_000.0, "total_premium": 800_000.0}, Highlight.RED),
            ({"call_premium": 1_000_000.0, "total_premium": 1_000_000.0}, None),
            ({}, None),
        ],
    )
    def test_highlight_mapping(self, config, overrides, expected):
        assert highlight_for(make_record(**overrides), config) is expected

    def test_disabled_config_has_no_highlight(self):
        record = make_record(call_put_ratio=45.0, total_premium=1_200_000.0)

        assert highlight_for(record, ThresholdConfig(disabled=True)) is None


class TestDescribeAlert:
    """Tests for describe_alert()."""

    def test_call_ratio_title(self):
        record = make_record(call_put_ratio=45.2, total_premium=1_231_438.0)

        title, body = describe_alert(record, AlertClass.CALL_RATIO_EXCEEDED, "aapl")

        assert title == "AAPL call ratio 45.20"
        assert body.startswith("14:30-14:35 UTC total $1,231,438")

    def test_put_premium_title(self):
        record = make_record(put_premium=612_000.0)

        title, _ = describe_alert(record, AlertClass.PUT_PREMIUM_EXCEEDED, "SPY")

        assert title == "SPY put premium $612,000"
