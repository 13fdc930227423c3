"""
Option Monitor Service

FastAPI service that keeps an option flow stream subscription alive and
raises threshold alerts for incoming summary records.

Provides:
- Stream connection lifecycle (connect, reconnect, re-authentication)
- Newest-first summary records of the active subscription
- Threshold alerts (log or webhook)
- Health, status and Prometheus metrics endpoints

Usage:
    uvicorn apps.option_monitor.main:app --port 8010
"""
