"""
Threshold evaluation for summary records.

Pure functions: no I/O, no configuration lookups. The lifecycle manager
calls evaluate() with the notification thresholds of the active ticker;
presentation code calls highlight_for() with the highlight thresholds. Both
share one rule order so alerts and row colours never disagree.

Rule order (first match wins):
    1. ratio >= call ratio threshold and total premium >= gate -> CALL_RATIO_EXCEEDED
    2. ratio <= put ratio threshold  and total premium >= gate -> PUT_RATIO_BELOW
    3. premium thresholds, call and put checked independently:
       both -> BOTH_PREMIUMS_EXCEEDED, call only -> CALL_PREMIUM_EXCEEDED,
       put only -> PUT_PREMIUM_EXCEEDED, neither -> None

Example:
    >>> evaluate(record, ThresholdConfig())
    <AlertClass.CALL_PREMIUM_EXCEEDED: 'call_premium_exceeded'>
"""

from libs.option_flow.types import AlertClass, Highlight, SummaryRecord, ThresholdConfig

_HIGHLIGHTS: dict[AlertClass, Highlight | None] = {
    AlertClass.CALL_RATIO_EXCEEDED: Highlight.GREEN,
    AlertClass.PUT_RATIO_BELOW: Highlight.RED,
    AlertClass.BOTH_PREMIUMS_EXCEEDED: Highlight.YELLOW,
    AlertClass.PUT_PREMIUM_EXCEEDED: Highlight.RED,
    AlertClass.CALL_PREMIUM_EXCEEDED: None,
}


def classify(record: SummaryRecord, config: ThresholdConfig) -> AlertClass | None:
    """Apply the rule order, ignoring ``config.disabled``."""
    gate_met = record.total_premium >= config.total_premium_threshold

    if record.call_put_ratio >= config.call_ratio_threshold and gate_met:
        return AlertClass.CALL_RATIO_EXCEEDED

    if record.call_put_ratio <= config.put_ratio_threshold and gate_met:
        return AlertClass.PUT_RATIO_BELOW

    call_exceeded = record.call_premium >= config.call_premium_threshold
    put_exceeded = record.put_premium >= config.put_premium_threshold

    if call_exceeded and put_exceeded:
        return AlertClass.BOTH_PREMIUMS_EXCEEDED
    if call_exceeded:
        return AlertClass.CALL_PREMIUM_EXCEEDED
    if put_exceeded:
        return AlertClass.PUT_PREMIUM_EXCEEDED
    return None


def evaluate(record: SummaryRecord, config: ThresholdConfig) -> AlertClass | None:
    """
    Classify a record for alerting.

    Args:
        record: Decoded summary record
        config: Thresholds for the record's ticker

    Returns:
        The alert class, or None when nothing matched or the config is disabled
    """
    if config.disabled:
        return None
    return classify(record, config)


def highlight_for(record: SummaryRecord, config: ThresholdConfig) -> Highlight | None:
    """Row colour for a record under the given highlight thresholds."""
    if config.disabled:
        return None
    alert_class = classify(record, config)
    if alert_class is None:
        return None
    return _HIGHLIGHTS[alert_class]


def describe_alert(record: SummaryRecord, alert_class: AlertClass, ticker: str) -> tuple[str, str]:
    """
    Build the title and body of a user-visible alert.

    Returns:
        (title, body), e.g. ("AAPL call ratio 45.20", "14:30-14:35 UTC total $1,231,438")
    """
    ticker = ticker.upper()
    if alert_class is AlertClass.CALL_RATIO_EXCEEDED:
        title = f"{ticker} call ratio {record.call_put_ratio:.2f}"
    elif alert_class is AlertClass.PUT_RATIO_BELOW:
        title = f"{ticker} put-heavy ratio {record.call_put_ratio:.2f}"
    elif alert_class is AlertClass.BOTH_PREMIUMS_EXCEEDED:
        title = f"{ticker} call and put premium spike"
    elif alert_class is AlertClass.CALL_PREMIUM_EXCEEDED:
        title = f"{ticker} call premium ${record.call_premium:,.0f}"
    else:
        title = f"{ticker} put premium ${record.put_premium:,.0f}"

    window = f"{record.period_start:%H:%M}-{record.period_end:%H:%M} UTC"
    body = (
        f"{window} total ${record.total_premium:,.0f} "
        f"(calls ${record.call_premium:,.0f} / puts ${record.put_premium:,.0f}, "
        f"ratio {record.call_put_ratio:.2f})"
    )
    return title, body
