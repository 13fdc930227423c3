"""
Apps package - FastAPI services built on the shared libraries.

This package contains:
- option_monitor: Option flow stream monitor with threshold alerts
"""
