"""Connection ID generation and context propagation for stream logging.

Every connection attempt made by the lifecycle manager gets a short
connection ID. It is stored in a context variable so every log line written
while handling that connection (open, frames, pings, teardown) carries the
same ID, and the lines of two successive connections never mix.

Example:
    >>> from libs.common.logging.context import generate_connection_id, get_connection_id
    >>> connection_id = generate_connection_id()
    >>> set_connection_id(connection_id)
    >>> get_connection_id() == connection_id
    True
"""

import contextvars
import uuid
from types import TracebackType

# Context variable for storing the connection ID in async contexts
_connection_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "connection_id", default=None
)


def generate_connection_id() -> str:
    """Generate a new connection ID.

    Returns:
        The first 12 hex characters of a UUID4 (short enough to scan in logs)

    Example:
        >>> len(generate_connection_id())
        12
    """
    return uuid.uuid4().hex[:12]


def get_connection_id() -> str | None:
    """Get the connection ID of the current context, or None if unset."""
    return _connection_id_var.get()


def set_connection_id(connection_id: str) -> None:
    """Set the connection ID for the current context.

    Args:
        connection_id: The connection ID to set

    Raises:
        ValueError: If connection_id is empty
    """
    if not connection_id:
        raise ValueError("Connection ID cannot be empty")
    _connection_id_var.set(connection_id)


def clear_connection_id() -> None:
    """Clear the connection ID from the current context."""
    _connection_id_var.set(None)


class ConnectionLogContext:
    """Context manager that scopes a connection ID to a block of code.

    Args:
        connection_id: The ID to set. If None, a new one is generated.

    Example:
        >>> with ConnectionLogContext("a1b2c3") as cid:
        ...     print(get_connection_id())
        a1b2c3
    """

    def __init__(self, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or generate_connection_id()
        self.previous_connection_id: str | None = None

    def __enter__(self) -> str:
        self.previous_connection_id = get_connection_id()
        set_connection_id(self.connection_id)
        return self.connection_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.previous_connection_id is not None:
            set_connection_id(self.previous_connection_id)
        else:
            clear_connection_id()
