"""
Credential provider interface and an in-process implementation.

The lifecycle manager never signs in by itself. It reads the current bearer
credential, reports rejections through ``on_auth_failure()``, asks for a new
sign-in with ``sign_in()``, and reacts when the provider tells its listeners
that the authentication state changed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

AuthListener = Callable[[bool], None]
SignInHandler = Callable[[], Awaitable[str | None]]


@runtime_checkable
class CredentialProvider(Protocol):
    """Source of the bearer credential used to open the stream."""

    @property
    def is_authenticated(self) -> bool:
        """True when a credential is available."""
        ...

    @property
    def current_credential(self) -> str | None:
        """The bearer token, or None."""
        ...

    def on_auth_failure(self) -> None:
        """Invalidate the stored credential after a server rejection."""
        ...

    def sign_in(self) -> None:
        """Start acquiring a credential. The result arrives through listeners."""
        ...

    def add_listener(self, listener: AuthListener) -> Callable[[], None]:
        """Register for authenticated/unauthenticated changes; returns an unsubscribe callable."""
        ...


class SessionCredentialProvider:
    """
    Keeps a session token in memory.

    The interactive part of signing in (an identity-provider widget plus the
    token exchange, see SessionAuthClient) is injected as ``sign_in_handler``:
    an async callable returning the new session token, or None when the user
    cancelled. Only one sign-in runs at a time.

    Example:
        >>> async def interactive_sign_in() -> str | None:
        ...     identity_token = await widget.present()
        ...     return await auth_client.exchange(identity_token)
        >>> provider = SessionCredentialProvider(sign_in_handler=interactive_sign_in)
        >>> provider.sign_in()
    """

    def __init__(
        self,
        sign_in_handler: SignInHandler | None = None,
        initial_token: str | None = None,
    ) -> None:
        self._sign_in_handler = sign_in_handler
        self._token: str | None = initial_token or None
        self._lock = threading.RLock()
        self._listeners: list[AuthListener] = []
        self._sign_in_task: asyncio.Task[None] | None = None
        self.last_error: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    @property
    def current_credential(self) -> str | None:
        return self._token

    @property
    def is_signing_in(self) -> bool:
        return self._sign_in_task is not None and not self._sign_in_task.done()

    def add_listener(self, listener: AuthListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_credential(self, token: str | None) -> None:
        """Store a new token (None signs out) and notify listeners on change."""
        token = token or None
        with self._lock:
            if token == self._token:
                return
            self._token = token
            authenticated = token is not None
            listeners = list(self._listeners)
        logger.info("Authentication state changed", extra={"authenticated": authenticated})
        for listener in listeners:
            try:
                listener(authenticated)
            except Exception:
                logger.exception("Auth listener failed")

    def sign_out(self) -> None:
        self.set_credential(None)

    def on_auth_failure(self) -> None:
        logger.warning("Credential rejected by server, clearing session")
        self.set_credential(None)

    def sign_in(self) -> None:
        if self._sign_in_handler is None:
            logger.warning("Sign-in requested but no sign-in handler is configured")
            return
        if self.is_signing_in:
            logger.debug("Sign-in already in progress")
            return
        self.last_error = None
        self._sign_in_task = asyncio.get_running_loop().create_task(self._run_sign_in())

    async def _run_sign_in(self) -> None:
        assert self._sign_in_handler is not None
        try:
            token = await self._sign_in_handler()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Sign-in failed: {e}", exc_info=True)
            return
        if token is None:
            logger.info("Sign-in cancelled")
            return
        self.set_credential(token)

    async def aclose(self) -> None:
        """Cancel a pending sign-in, if any."""
        task = self._sign_in_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
