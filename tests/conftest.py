"""
Root conftest for tests.

Ensures every test starts without a connection ID left over from a previous
test's logging context.
"""

import pytest

from libs.common.logging import clear_connection_id


@pytest.fixture(autouse=True)
def reset_connection_id():
    """Clear the logging connection ID around each test."""
    clear_connection_id()
    yield
    clear_connection_id()
