"""
Option flow streaming client.

Connects to the /analyze WebSocket of an options-analytics server, decodes
per-interval summary records, keeps them newest-first in a record store and
raises alerts when records cross per-ticker thresholds.

Components are constructed explicitly and wired together by the caller:

    >>> config = ConfigStore(host="feed.example.com", port="443", ticker="AAPL")
    >>> credentials = SessionCredentialProvider(initial_token=session_token)
    >>> records = RecordStore()
    >>> manager = ConnectionLifecycleManager(config, credentials, records, LoggingAlertNotifier())
    >>> await manager.start()
"""

from libs.option_flow.auth_client import SessionAuthClient
from libs.option_flow.config_store import ConfigStore, SubscriptionTarget
from libs.option_flow.credentials import CredentialProvider, SessionCredentialProvider
from libs.option_flow.decoder import decode_frame, is_auth_failure_payload, split_frames
from libs.option_flow.endpoint import http_url, stream_url
from libs.option_flow.exceptions import (
    AuthRejectedError,
    DecodeNoiseError,
    InvalidEndpointError,
    NotAuthenticatedError,
    OptionFlowError,
    SessionExchangeError,
    TransactionFetchError,
    TransportFailureError,
)
from libs.option_flow.lifecycle import ConnectionLifecycleManager
from libs.option_flow.notifier import (
    AlertNotifier,
    LoggingAlertNotifier,
    WebhookAlertNotifier,
    safe_notify,
)
from libs.option_flow.record_store import RecordStore
from libs.option_flow.threshold_sync import NotificationThresholdClient, parse_server_thresholds
from libs.option_flow.thresholds import classify, describe_alert, evaluate, highlight_for
from libs.option_flow.transactions import OptionSymbolDetails, Transaction, TransactionClient
from libs.option_flow.transport import StreamTransport, TransportFactory, WebSocketTransport
from libs.option_flow.types import (
    DEFAULT_THRESHOLDS,
    AlertClass,
    ConnectionPhase,
    ConnectionStatus,
    ErrorKind,
    Highlight,
    SubscriptionKey,
    SummaryRecord,
    ThresholdConfig,
    ThresholdKind,
)

__all__ = [
    # Lifecycle
    "ConnectionLifecycleManager",
    # Configuration and credentials
    "ConfigStore",
    "SubscriptionTarget",
    "CredentialProvider",
    "SessionCredentialProvider",
    "SessionAuthClient",
    "NotificationThresholdClient",
    "parse_server_thresholds",
    "TransactionClient",
    # Stream
    "StreamTransport",
    "TransportFactory",
    "WebSocketTransport",
    "stream_url",
    "http_url",
    "decode_frame",
    "split_frames",
    "is_auth_failure_payload",
    # Records and alerts
    "RecordStore",
    "classify",
    "evaluate",
    "highlight_for",
    "describe_alert",
    "AlertNotifier",
    "LoggingAlertNotifier",
    "WebhookAlertNotifier",
    "safe_notify",
    # Types
    "SummaryRecord",
    "ThresholdConfig",
    "DEFAULT_THRESHOLDS",
    "ThresholdKind",
    "AlertClass",
    "Highlight",
    "ConnectionPhase",
    "ConnectionStatus",
    "ErrorKind",
    "SubscriptionKey",
    "Transaction",
    "OptionSymbolDetails",
    # Exceptions
    "OptionFlowError",
    "InvalidEndpointError",
    "NotAuthenticatedError",
    "TransportFailureError",
    "AuthRejectedError",
    "DecodeNoiseError",
    "SessionExchangeError",
    "TransactionFetchError",
]
