"""
URL construction for the stream and the companion HTTP endpoints.

Scheme rules (same for ws/wss and http/https):
- hosts containing ``localhost`` or ``127.0.0.1`` use the insecure scheme;
- ``use_insecure`` forces the insecure scheme (development servers);
- everything else uses the secure scheme.

The port is left out when it equals the scheme default (80/443) or is not a
number, so ``example.com`` + ``443`` yields ``wss://example.com/analyze``.
"""

from urllib.parse import urlencode, urlunsplit

from libs.option_flow.config_store import SubscriptionTarget
from libs.option_flow.exceptions import InvalidEndpointError

STREAM_PATH = "/analyze"
AUTH_PATH = "/auth/login"
NOTIFICATIONS_PATH = "/notifications"
TRANSACTIONS_PATH = "/transactions"

LOOPBACK_MARKERS = ("localhost", "127.0.0.1")
_FORBIDDEN_HOST_CHARS = frozenset(" /?#@\\\t\r\n")


def _is_loopback(host: str) -> bool:
    return any(marker in host for marker in LOOPBACK_MARKERS)


def _validate_host(host: str) -> str:
    host = host.strip()
    if not host:
        raise InvalidEndpointError("Host is empty")
    if any(char in _FORBIDDEN_HOST_CHARS for char in host):
        raise InvalidEndpointError(f"Host contains invalid characters: {host!r}")
    return host


def _netloc(host: str, port: str, secure: bool) -> str:
    default_port = 443 if secure else 80
    try:
        port_number = int(port)
    except ValueError:
        return host
    if port_number == default_port:
        return host
    if not 0 < port_number < 65536:
        raise InvalidEndpointError(f"Port out of range: {port_number}")
    return f"{host}:{port_number}"


def uses_secure_transport(host: str, use_insecure: bool) -> bool:
    return not (_is_loopback(host) or use_insecure)


def stream_url(target: SubscriptionTarget) -> str:
    """
    Build the /analyze WebSocket URL for a subscription.

    Raises:
        InvalidEndpointError: If host or port cannot form a URL

    Example:
        >>> stream_url(SubscriptionTarget("localhost", "8080", False, "aapl", date(2025, 1, 2)))
        'ws://localhost:8080/analyze?date=2025-01-02&ticker=AAPL'
    """
    host = _validate_host(target.host)
    secure = uses_secure_transport(host, target.use_insecure)
    query = urlencode(
        {"date": target.selected_date.isoformat(), "ticker": target.ticker.upper()}
    )
    return urlunsplit(
        ("wss" if secure else "ws", _netloc(host, target.port, secure), STREAM_PATH, query, "")
    )


def http_url(
    host: str, port: str, use_insecure: bool, path: str, query: dict[str, str] | None = None
) -> str:
    """
    Build an http(s) URL on the same server as the stream.

    Raises:
        InvalidEndpointError: If host or port cannot form a URL
    """
    host = _validate_host(host)
    secure = uses_secure_transport(host, use_insecure)
    return urlunsplit(
        (
            "https" if secure else "http",
            _netloc(host, port, secure),
            path,
            urlencode(query) if query else "",
            "",
        )
    )
