"""Common utilities shared across libraries and services."""
