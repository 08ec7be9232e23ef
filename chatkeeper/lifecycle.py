"""Connection lifecycle state machine with bounded reconnect backoff."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, cast

from chatkeeper.errors import (
    FatalError,
    MissingCredentialsError,
    ReconnectExhaustedError,
    SessionInvalidError,
)
from chatkeeper.models import ConnectionState, ConnectionUpdate, EventKind, Session, TransportEvent
from chatkeeper.transport.base import UNAUTHORIZED_CLOSE_CODE, Transport, TransportConnection

if TYPE_CHECKING:
    from chatkeeper.orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)


def calculate_reconnect_backoff(attempt: int, *, base_seconds: float = 1.0, max_seconds: float = 30.0) -> float:
    normalized_attempt = max(attempt, 0)
    if base_seconds <= 0.0 or max_seconds <= 0.0:
        return 0.0
    return min(base_seconds * (2**normalized_attempt), max_seconds)


class ConnectionManager:
    """Opens, monitors and repairs the transport connection.

    Only one connect attempt is in flight at a time; a connect request while
    ``connecting`` or ``connected`` is a no-op. State changes happen without
    suspension points, so they are serialized on the event loop.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        transport: Transport,
        *,
        credentials_path: Path,
        max_reconnect_attempts: int = 10,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        announce_delay_seconds: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._transport = transport
        self._credentials_path = credentials_path
        self._base_delay_seconds = base_delay_seconds
        self._max_delay_seconds = max_delay_seconds
        self._announce_delay_seconds = announce_delay_seconds
        self._sleep = sleep
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._announce_task: Optional[asyncio.Task[None]] = None
        self._fatal_event = asyncio.Event()
        self._closing = False
        self.session = Session(max_reconnect_attempts=max_reconnect_attempts)
        self.fatal_error: FatalError | None = None

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def pending_reconnect(self) -> Optional[asyncio.Task[None]]:
        return self._reconnect_task

    async def connect(self) -> bool:
        """Open a new connection; return True when a handle was issued."""

        connect_failed = False
        async with self._connect_lock:
            if self._closing or self.session.state is not ConnectionState.DISCONNECTED:
                LOGGER.debug("Connect request ignored in state %s", self.session.state.value)
                return False
            if not self._credentials_path.exists():
                error = MissingCredentialsError(
                    f"No session credentials at {self._credentials_path}",
                    user_message="No session found. Pair the account before starting.",
                )
                self._fail(error)
                raise error

            self.session.state = ConnectionState.CONNECTING
            LOGGER.info("Connecting to transport")
            try:
                connection = await self._transport.connect(self._credentials_path)
            except asyncio.CancelledError:
                self.session.state = ConnectionState.DISCONNECTED
                raise
            except Exception as exc:
                LOGGER.warning("Transport connect failed: %s", exc)
                self.session.state = ConnectionState.DISCONNECTED
                connect_failed = True
            else:
                self.session.connection = connection
                connection.subscribe(
                    EventKind.CONNECTION_UPDATE,
                    functools.partial(self._on_connection_event, connection),
                )

        if connect_failed:
            self._schedule_reconnect()
            return False
        return True

    async def _on_connection_event(self, connection: TransportConnection, event: TransportEvent) -> None:
        if isinstance(event, ConnectionUpdate):
            self.handle_connection_update(connection, event)

    def handle_connection_update(self, connection: TransportConnection, update: ConnectionUpdate) -> None:
        if connection is not self.session.connection:
            LOGGER.debug("Ignoring %s from a stale connection", update.status)
            return
        if update.status == "open":
            self._handle_open(connection)
        elif update.status == "close":
            self._handle_close(update)

    def _handle_open(self, connection: TransportConnection) -> None:
        if self.session.state is not ConnectionState.CONNECTING:
            return
        self.session.state = ConnectionState.CONNECTED
        self.session.reconnect_attempts = 0
        self.session.account_id = connection.account_id
        self.session.account_name = connection.account_name
        LOGGER.info(
            "Connected as %s (%s)",
            connection.account_name or "Unknown",
            _phone(connection.account_id),
        )
        self._orchestrator.on_connected(connection)
        if self._announce_task is None or self._announce_task.done():
            self._announce_task = asyncio.create_task(self._announce_later(), name="startup-announce")

    def _handle_close(self, update: ConnectionUpdate) -> None:
        self.session.state = ConnectionState.DISCONNECTED
        self.session.connection = None
        if self._closing:
            return

        if update.close_code == UNAUTHORIZED_CLOSE_CODE:
            self.session.state = ConnectionState.TERMINAL_INVALID
            LOGGER.error("Session invalid (close code %s); re-pair the account", update.close_code)
            self._fail(
                SessionInvalidError(
                    f"Transport closed with unauthorized code {update.close_code}",
                    user_message="Session invalid. Please re-pair the bot.",
                )
            )
            return

        LOGGER.info("Connection closed (code=%s reason=%s)", update.close_code, update.reason)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or self.fatal_error is not None:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self.session.reconnect_attempts >= self.session.max_reconnect_attempts:
            LOGGER.error(
                "Giving up after %d reconnect attempts", self.session.reconnect_attempts
            )
            self._fail(
                ReconnectExhaustedError(
                    f"Reconnect attempts exhausted ({self.session.max_reconnect_attempts})"
                )
            )
            return

        self.session.reconnect_attempts += 1
        self.session.total_reconnects += 1
        delay = calculate_reconnect_backoff(
            self.session.reconnect_attempts,
            base_seconds=self._base_delay_seconds,
            max_seconds=self._max_delay_seconds,
        )
        LOGGER.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            delay,
            self.session.reconnect_attempts,
            self.session.max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay), name="reconnect")

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        # Let connect() schedule the next attempt if this one fails.
        self._reconnect_task = None
        try:
            await self.connect()
        except FatalError:
            LOGGER.error("Reconnect hit a fatal condition", exc_info=True)

    async def _announce_later(self) -> None:
        await self._sleep(self._announce_delay_seconds)
        if self.session.state is not ConnectionState.CONNECTED:
            return
        try:
            await self._orchestrator.announce_startup()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Startup announcement failed: %s", exc)

    def _fail(self, error: FatalError) -> None:
        if self.fatal_error is None:
            self.fatal_error = error
        self._fatal_event.set()

    async def wait_until_fatal(self) -> None:
        """Block until a fatal condition occurs, then raise it."""

        await self._fatal_event.wait()
        raise cast(FatalError, self.fatal_error)

    async def close(self) -> None:
        self._closing = True
        for task in (self._reconnect_task, self._announce_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        connection = self.session.connection
        self.session.connection = None
        if self.session.state is not ConnectionState.TERMINAL_INVALID:
            self.session.state = ConnectionState.DISCONNECTED
        if connection is not None:
            with contextlib.suppress(Exception):
                await connection.close()


def _phone(account_id: str | None) -> str:
    if not account_id:
        return "unknown"
    return account_id.split(":")[0].split("@")[0]
