"""
Option Monitor - FastAPI Application

Keeps one option flow stream subscription alive and exposes its state.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, time

from fastapi import FastAPI, HTTPException, Query, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel

from apps.option_monitor.config import settings
from libs.common.logging import configure_logging
from libs.option_flow import (
    AlertNotifier,
    AuthRejectedError,
    ConfigStore,
    ConnectionLifecycleManager,
    InvalidEndpointError,
    LoggingAlertNotifier,
    NotAuthenticatedError,
    NotificationThresholdClient,
    RecordStore,
    SessionCredentialProvider,
    ThresholdKind,
    TransactionClient,
    TransactionFetchError,
    WebhookAlertNotifier,
    highlight_for,
)

configure_logging(service_name=settings.service_name, log_level=settings.log_level)
logger = logging.getLogger(__name__)

# Global components (built in lifespan)
config_store: ConfigStore | None = None
records: RecordStore | None = None
manager: ConnectionLifecycleManager | None = None
transactions: TransactionClient | None = None


# Response Models
class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    stream_connected: bool
    phase: str
    records: int
    reconnect_attempts: int


class StatusResponse(BaseModel):
    """Detailed connection status."""

    phase: str
    error_kind: str | None
    reason: str | None
    ticker: str | None
    date: str | None
    records: int
    reconnect_attempts: int
    auth_rejections: int
    decode_noise: int


class SummaryResponse(BaseModel):
    """One summary record with its highlight colour."""

    period_start: datetime
    period_end: datetime
    call_premium: float
    put_premium: float
    total_premium: float
    call_put_ratio: float
    call_volume: int
    put_volume: int
    total_volume: int
    highlight: str | None


class TransactionResponse(BaseModel):
    """One trade behind a summary bucket, with its decoded contract."""

    symbol: str
    event_type: str
    volume: int
    accumulated_volume: int
    volume_weighted_price: float
    open_price: float
    high_price: float
    low_price: float
    close_price: float
    today_vwap: float
    average_trade_size: int
    start_time: datetime
    end_time: datetime
    underlying: str | None
    expiration: date | None
    strike: float | None
    option_type: str | None


def _build_notifier() -> AlertNotifier:
    if settings.alert_webhook_url:
        logger.info("Threshold alerts delivered to webhook")
        return WebhookAlertNotifier(settings.alert_webhook_url)
    logger.info("No alert webhook configured, threshold alerts are logged")
    return LoggingAlertNotifier()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan context manager for the stream lifecycle.

    Builds and wires all components, connects on startup, stops on shutdown.
    """
    global config_store, records, manager, transactions

    logger.info("Starting Option Monitor...")

    notifier: AlertNotifier | None = None
    threshold_client: NotificationThresholdClient | None = None
    try:
        config_store = ConfigStore(
            host=settings.stream_host,
            port=settings.stream_port,
            use_insecure=settings.stream_use_insecure,
            ticker=settings.ticker,
            selected_date=settings.stream_date,
            notifications_enabled=settings.notifications_enabled,
        )
        credentials = SessionCredentialProvider(initial_token=settings.session_token)
        records = RecordStore(max_records=settings.max_records)
        notifier = _build_notifier()
        transactions = TransactionClient(
            config_store, credentials, reauth_timeout=settings.reauth_timeout
        )

        if settings.sync_thresholds:
            threshold_client = NotificationThresholdClient(config_store, credentials)
            if credentials.is_authenticated:
                synced = await threshold_client.sync_ticker(config_store.ticker)
                if synced is None:
                    logger.info(f"Using local notification thresholds for {config_store.ticker}")
            # Later ticker changes fetch that ticker's server thresholds
            threshold_client.follow_ticker()

        manager = ConnectionLifecycleManager(
            config_store,
            credentials,
            records,
            notifier,
            reconnect_delay=settings.reconnect_delay,
            settle_delay=settings.settle_delay,
            ping_interval=settings.ping_interval,
        )
        await manager.start()

        logger.info(f"Option Monitor started successfully on port {settings.port}")

        yield

    except Exception as e:
        logger.error(f"Failed to start Option Monitor: {e}")
        raise

    finally:
        logger.info("Shutting down Option Monitor...")

        if manager:
            await manager.close()
            logger.info("Stream stopped successfully")

        if threshold_client:
            await threshold_client.aclose()

        if isinstance(notifier, WebhookAlertNotifier):
            await notifier.drain()


# Create FastAPI app
app = FastAPI(
    title="Option Monitor",
    description="Option flow stream monitor with threshold alerts",
    version="1.0.0",
    lifespan=lifespan,
)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint with stream status.

    Returns:
        "healthy" while connected, "degraded" otherwise
    """
    if not manager:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stream manager not initialized",
        )

    stats = manager.get_connection_stats()

    return HealthResponse(
        status="healthy" if stats["is_connected"] else "degraded",
        service=settings.service_name,
        stream_connected=bool(stats["is_connected"]),
        phase=stats["phase"],
        records=stats["records"],
        reconnect_attempts=stats["reconnect_attempts"],
    )


@app.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    """Connection phase, last error and counters."""
    if not manager:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stream manager not initialized",
        )

    stats = manager.get_connection_stats()
    return StatusResponse(
        phase=stats["phase"],
        error_kind=stats["error_kind"],
        reason=stats["reason"],
        ticker=stats["ticker"],
        date=stats["date"],
        records=stats["records"],
        reconnect_attempts=stats["reconnect_attempts"],
        auth_rejections=stats["auth_rejections"],
        decode_noise=stats["decode_noise"],
    )


@app.get("/summaries", response_model=list[SummaryResponse])
async def get_summaries(
    limit: int = Query(default=50, ge=1, le=1000),
) -> list[SummaryResponse]:
    """
    Newest summary records of the active subscription.

    Args:
        limit: Maximum number of records to return

    Returns:
        Records newest first, with the highlight of the ticker's highlight thresholds
    """
    if not records or not config_store:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Record store not initialized",
        )

    thresholds = config_store.get_thresholds(config_store.ticker, ThresholdKind.HIGHLIGHT)
    response = []
    for record in records.snapshot()[:limit]:
        highlight = highlight_for(record, thresholds)
        response.append(
            SummaryResponse(
                period_start=record.period_start,
                period_end=record.period_end,
                call_premium=record.call_premium,
                put_premium=record.put_premium,
                total_premium=record.total_premium,
                call_put_ratio=record.call_put_ratio,
                call_volume=record.call_volume,
                put_volume=record.put_volume,
                total_volume=record.total_volume,
                highlight=highlight.value if highlight else None,
            )
        )
    return response


@app.get("/transactions", response_model=list[TransactionResponse])
async def get_transactions(
    day: date = Query(..., alias="date"),
    at: time = Query(..., alias="time"),
    ticker: str | None = Query(default=None),
) -> list[TransactionResponse]:
    """
    Trades of one minute, fetched from the stream server.

    Args:
        day: Trading day (YYYY-MM-DD)
        at: Minute within the day (HH:MM)
        ticker: Underlying ticker, defaults to the configured ticker

    Returns:
        Trades in server order
    """
    if not transactions:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transaction client not initialized",
        )

    try:
        trades = await transactions.fetch_transactions(day, at, ticker)
    except (NotAuthenticatedError, AuthRejectedError) as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except InvalidEndpointError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except TransactionFetchError as e:
        logger.error(f"Transaction fetch failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    response = []
    for trade in trades:
        details = trade.option_details
        response.append(
            TransactionResponse(
                symbol=trade.symbol,
                event_type=trade.event_type,
                volume=trade.volume,
                accumulated_volume=trade.accumulated_volume,
                volume_weighted_price=trade.volume_weighted_price,
                open_price=trade.open_price,
                high_price=trade.high_price,
                low_price=trade.low_price,
                close_price=trade.close_price,
                today_vwap=trade.today_vwap,
                average_trade_size=trade.average_trade_size,
                start_time=trade.start_time,
                end_time=trade.end_time,
                underlying=details.underlying if details else None,
                expiration=details.expiration if details else None,
                strike=details.strike if details else None,
                option_type=details.option_type if details else None,
            )
        )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "apps.option_monitor.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
    )
