"""Connection State Machine.

This module owns the client's connection lifecycle. It never touches a
socket, file or timer itself: each event goes in, and the machine returns
the effects the driver (ShellClient) must carry out, in order.

States:
    IDLE: Created, nothing attempted yet
    CONNECTING: Reading the info file and opening the socket
    CONNECTED: Handshake sent, session streaming
    RECONNECTING: Waiting for the single pending reconnect timer
    CLOSED: Terminal, the process exits

Valid Transitions:
    IDLE → CONNECTING
    CONNECTING → CONNECTED | RECONNECTING | CLOSED
    CONNECTED → RECONNECTING | CLOSED
    RECONNECTING → CONNECTING

Usage:
    from servershell.shell.state_machine import ConnectionStateMachine, Start

    sm = ConnectionStateMachine(SessionMode.INTERACTIVE)
    effects = sm.handle(Start())  # [ReadInfo()]
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable, Optional, Union

import structlog

from servershell.core.exceptions import InvalidStateTransition, ServerDisabledError
from servershell.shell.info import ConnectionInfo
from servershell.shell.modes import SessionMode
from servershell.shell.protocol import EXITING_MESSAGE


log = structlog.get_logger()

UNAVAILABLE_WARNING = "Server unavailable (waiting to reconnect)"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_RECONNECT_DELAY = 0.1  # seconds
DEFAULT_WARN_AFTER = 3


class ConnectionState(StrEnum):
    """Connection lifecycle states."""

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


VALID_TRANSITIONS: frozenset[tuple[ConnectionState, ConnectionState]] = frozenset([
    (ConnectionState.IDLE, ConnectionState.CONNECTING),
    (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
    (ConnectionState.CONNECTING, ConnectionState.RECONNECTING),
    (ConnectionState.CONNECTING, ConnectionState.CLOSED),
    (ConnectionState.CONNECTED, ConnectionState.RECONNECTING),
    (ConnectionState.CONNECTED, ConnectionState.CLOSED),
    (ConnectionState.RECONNECTING, ConnectionState.CONNECTING),
])


def is_valid_transition(
    from_state: ConnectionState,
    to_state: ConnectionState,
) -> bool:
    """Check if a state transition is valid.

    Args:
        from_state: Current state.
        to_state: Target state.

    Returns:
        True if transition is allowed, False otherwise.
    """
    return (from_state, to_state) in VALID_TRANSITIONS


def get_valid_targets(from_state: ConnectionState) -> set[ConnectionState]:
    """Get all valid target states from a given state.

    Args:
        from_state: Current state.

    Returns:
        Set of states that can be transitioned to. Empty if terminal state.
    """
    return {to for (frm, to) in VALID_TRANSITIONS if frm == from_state}


@dataclass
class ReconnectTimer:
    """The single pending reconnect.

    Attributes:
        delay: Seconds until the next attempt.
        handle: Loop timer handle, set by the driver once scheduled.
    """

    delay: float
    handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        """Cancel the underlying loop timer, if scheduled."""
        if self.handle is not None:
            self.handle.cancel()


@dataclass
class ClientSession:
    """Per-process connection bookkeeping.

    Attributes:
        mode: Interactive or batch, fixed for the process lifetime.
        connected: True between a successful connect and its teardown.
        exit_on_close: Set once the server printed the exit phrase.
        first_time_connecting: True until the first successful connect.
        reconnect_count: Reconnect requests since the last successful connect.
        reconnect_timer: The pending reconnect, if any (at most one).
        attempts: Total connection attempts started.
    """

    mode: SessionMode = SessionMode.INTERACTIVE
    connected: bool = False
    exit_on_close: bool = False
    first_time_connecting: bool = True
    reconnect_count: int = 0
    reconnect_timer: Optional[ReconnectTimer] = None
    attempts: int = 0


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class Start:
    """Begin the first connection attempt."""


@dataclass(frozen=True)
class InfoUnavailable:
    """Info file missing, unreadable or malformed."""

    error: Optional[Exception] = None


@dataclass(frozen=True)
class InfoLoaded:
    """Info file parsed."""

    info: ConnectionInfo


@dataclass(frozen=True)
class SocketConnected:
    """TCP connection established."""


@dataclass(frozen=True)
class SentinelSeen:
    """Server output contained the exit phrase."""


@dataclass(frozen=True)
class SocketClosed:
    """Server closed the connection."""


@dataclass(frozen=True)
class SocketFailed:
    """Connect or transfer failed."""

    error: Optional[Exception] = None


@dataclass(frozen=True)
class TimerFired:
    """The pending reconnect timer elapsed."""


Event = Union[
    Start,
    InfoUnavailable,
    InfoLoaded,
    SocketConnected,
    SentinelSeen,
    SocketClosed,
    SocketFailed,
    TimerFired,
]


# =============================================================================
# Effects
# =============================================================================


@dataclass(frozen=True)
class ReadInfo:
    """Read the info file and report InfoLoaded or InfoUnavailable."""


@dataclass(frozen=True)
class OpenSocket:
    """Open a TCP connection and report SocketConnected or SocketFailed."""

    host: str
    port: int


@dataclass(frozen=True)
class BeginSession:
    """Send the mode-specific handshake and start moving bytes."""

    key: str


@dataclass(frozen=True)
class Teardown:
    """Detach the current socket, restore the terminal and close it."""


@dataclass(frozen=True)
class ScheduleReconnect:
    """Arm the loop timer for the given reconnect."""

    timer: ReconnectTimer


@dataclass(frozen=True)
class Notify:
    """Show a message on the user's error stream."""

    message: str
    warning: bool = False


@dataclass(frozen=True)
class FinishBatch:
    """Decode the buffered batch response and exit with its code."""


@dataclass(frozen=True)
class Exit:
    """Stop the client with the given process exit code."""

    code: int = 0


Effect = Union[
    ReadInfo,
    OpenSocket,
    BeginSession,
    Teardown,
    ScheduleReconnect,
    Notify,
    FinishBatch,
    Exit,
]


class ConnectionStateMachine:
    """Explicit connection lifecycle for one client process.

    Each call to handle() validates the transition, updates the owned
    ClientSession and returns the effects to perform. Invalid events
    raise InvalidStateTransition.

    Attributes:
        session: The owned ClientSession.
        current_state: Current connection state (read-only).
        history: List of (state, timestamp) tuples (read-only copy).
    """

    def __init__(
        self,
        mode: SessionMode = SessionMode.INTERACTIVE,
        host: str = DEFAULT_HOST,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        warn_after: int = DEFAULT_WARN_AFTER,
    ) -> None:
        """Initialize state machine in IDLE state.

        Args:
            mode: Session mode chosen for this process.
            host: Address the server listens on.
            reconnect_delay: Default seconds between attempts.
            warn_after: Reconnect request that triggers the unavailable warning.
        """
        self._session = ClientSession(mode=mode)
        self._host = host
        self._reconnect_delay = reconnect_delay
        self._warn_after = warn_after
        self._key: Optional[str] = None
        self._current_state = ConnectionState.IDLE
        self._history: list[tuple[ConnectionState, datetime]] = [
            (ConnectionState.IDLE, datetime.now(timezone.utc))
        ]
        self._handlers: dict[type, Callable[..., list[Effect]]] = {
            Start: self._on_start,
            InfoUnavailable: self._on_info_unavailable,
            InfoLoaded: self._on_info_loaded,
            SocketConnected: self._on_socket_connected,
            SentinelSeen: self._on_sentinel_seen,
            SocketClosed: self._on_socket_closed,
            SocketFailed: self._on_socket_failed,
            TimerFired: self._on_timer_fired,
        }

    @property
    def session(self) -> ClientSession:
        """The owned client session."""
        return self._session

    @property
    def current_state(self) -> ConnectionState:
        """Current connection state."""
        return self._current_state

    @property
    def history(self) -> list[tuple[ConnectionState, datetime]]:
        """State transition history (read-only copy)."""
        return list(self._history)

    def handle(self, event: Event) -> list[Effect]:
        """Apply an event and return the resulting effects.

        Args:
            event: The event that occurred.

        Returns:
            Effects for the driver, in execution order.

        Raises:
            InvalidStateTransition: If the event is not allowed in this state.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown event: {event!r}")
        return handler(event)

    def request_reconnect(self, delay: Optional[float] = None) -> list[Effect]:
        """Count a reconnect request and schedule a retry if none is pending.

        The unavailable warning fires when the count reaches warn_after;
        the count only resets on a successful connect, so it shows once
        per outage.

        Args:
            delay: Seconds to wait. Defaults to the configured delay.

        Returns:
            Effects for the driver (possibly empty).
        """
        effects: list[Effect] = []
        session = self._session

        session.reconnect_count += 1
        if session.reconnect_count == self._warn_after:
            effects.append(Notify(UNAVAILABLE_WARNING, warning=True))

        if session.reconnect_timer is not None:
            log.debug("reconnect_already_pending", reconnect_count=session.reconnect_count)
            return effects

        timer = ReconnectTimer(delay=delay or self._reconnect_delay)
        session.reconnect_timer = timer
        effects.append(ScheduleReconnect(timer))
        log.debug(
            "reconnect_scheduled",
            delay=timer.delay,
            reconnect_count=session.reconnect_count,
        )
        return effects

    def _transition(self, to_state: ConnectionState, event: Event) -> None:
        from_state = self._current_state

        if not is_valid_transition(from_state, to_state):
            raise InvalidStateTransition(
                from_state=str(from_state),
                to_state=str(to_state),
                event=type(event).__name__,
            )

        self._current_state = to_state
        self._history.append((to_state, datetime.now(timezone.utc)))

        log.debug(
            "shell_state_changed",
            from_state=str(from_state),
            to_state=str(to_state),
            trigger=type(event).__name__,
        )

    def _require(self, state: ConnectionState, event: Event) -> None:
        """Reject events that do not change state outside their one valid state."""
        if self._current_state != state:
            raise InvalidStateTransition(
                from_state=str(self._current_state),
                to_state=str(state),
                event=type(event).__name__,
            )

    # Event handlers

    def _on_start(self, event: Start) -> list[Effect]:
        self._transition(ConnectionState.CONNECTING, event)
        self._session.attempts += 1
        return [ReadInfo()]

    def _on_info_unavailable(self, event: InfoUnavailable) -> list[Effect]:
        self._transition(ConnectionState.RECONNECTING, event)
        log.debug("info_unavailable", error=str(event.error) if event.error else None)
        return self.request_reconnect()

    def _on_info_loaded(self, event: InfoLoaded) -> list[Effect]:
        self._require(ConnectionState.CONNECTING, event)
        info = event.info

        if not info.enabled:
            if self._session.first_time_connecting:
                # The server may simply not have started its shell yet
                self._transition(ConnectionState.RECONNECTING, event)
                log.debug("server_not_ready", status=info.status)
                return self.request_reconnect()

            self._transition(ConnectionState.CLOSED, event)
            disabled = ServerDisabledError(status=info.status, reason=info.reason)
            log.info("server_shell_disabled", **disabled.context)
            effects: list[Effect] = []
            if info.reason:
                effects.append(Notify(str(disabled.message)))
            effects.append(Notify(EXITING_MESSAGE))
            effects.append(Exit(0))
            return effects

        assert info.port is not None and info.key is not None
        self._key = info.key
        return [OpenSocket(host=self._host, port=info.port)]

    def _on_socket_connected(self, event: SocketConnected) -> list[Effect]:
        self._transition(ConnectionState.CONNECTED, event)
        session = self._session
        session.first_time_connecting = False
        session.reconnect_count = 0
        session.connected = True
        log.info("shell_connected", mode=str(session.mode), attempts=session.attempts)
        assert self._key is not None
        return [BeginSession(key=self._key)]

    def _on_sentinel_seen(self, event: SentinelSeen) -> list[Effect]:
        self._require(ConnectionState.CONNECTED, event)
        self._session.exit_on_close = True
        return []

    def _on_socket_closed(self, event: SocketClosed) -> list[Effect]:
        self._require(ConnectionState.CONNECTED, event)
        session = self._session
        session.connected = False

        if session.mode == SessionMode.BATCH:
            self._transition(ConnectionState.CLOSED, event)
            return [Teardown(), FinishBatch()]

        if session.exit_on_close:
            self._transition(ConnectionState.CLOSED, event)
            log.info("shell_exit_requested")
            return [Teardown(), Exit(0)]

        self._transition(ConnectionState.RECONNECTING, event)
        log.info("shell_disconnected")
        return [Teardown(), *self.request_reconnect()]

    def _on_socket_failed(self, event: SocketFailed) -> list[Effect]:
        self._transition(ConnectionState.RECONNECTING, event)
        self._session.connected = False
        log.debug("socket_failed", error=str(event.error) if event.error else None)
        return [Teardown(), *self.request_reconnect()]

    def _on_timer_fired(self, event: TimerFired) -> list[Effect]:
        self._transition(ConnectionState.CONNECTING, event)
        self._session.reconnect_timer = None
        self._session.attempts += 1
        return [ReadInfo()]
