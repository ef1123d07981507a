"""Shell Client.

This module drives the ConnectionStateMachine on a single asyncio event
loop: it performs the effects the machine asks for (read the info file,
open the socket, send the handshake, move bytes, arm the reconnect timer)
and feeds the outcomes back in as events.

Usage:
    from servershell.shell.client import ShellClient
    from servershell.shell.io import ShellIO

    async def main() -> int:
        client = ShellClient(Path(".meteor/local/shell"), ShellIO.from_stdio())
        return await client.run()
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Mapping, Optional

import structlog
import typer

from servershell.core.config import Settings, get_settings
from servershell.core.exceptions import InfoUnavailableError, ProtocolViolationError
from servershell.shell.banner import shell_banner
from servershell.shell.info import read_connection_info
from servershell.shell.io import ShellIO
from servershell.shell.modes import SessionMode, select_mode, terminal_framing_enabled
from servershell.shell.protocol import (
    MAX_RESPONSE_SIZE,
    BatchRequest,
    InteractiveHandshake,
    SentinelScanner,
    decode_batch_result,
    encode_message,
)
from servershell.shell.state_machine import (
    BeginSession,
    ConnectionStateMachine,
    Effect,
    Event,
    Exit,
    FinishBatch,
    InfoLoaded,
    InfoUnavailable,
    Notify,
    OpenSocket,
    ReadInfo,
    ScheduleReconnect,
    SentinelSeen,
    SocketClosed,
    SocketConnected,
    SocketFailed,
    Start,
    Teardown,
    TimerFired,
)


log = structlog.get_logger()

READ_CHUNK = 64 * 1024


class _Connection:
    """One socket instance and the tasks moving its bytes."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.tasks: list[asyncio.Task[None]] = []
        self.closed = False

    def teardown(self, io: ShellIO) -> bool:
        """Detach everything from this socket and close it.

        Returns:
            False if the connection was already torn down.
        """
        if self.closed:
            return False
        self.closed = True

        io.set_raw(False)
        current = asyncio.current_task()
        for task in self.tasks:
            if task is not current:
                task.cancel()
        self.writer.close()
        return True


class ShellClient:
    """Attaches a shell session to a running server.

    Attributes:
        mode: Interactive or batch, chosen once from the input stream.
        machine: The connection state machine being driven.
    """

    def __init__(
        self,
        shell_dir: Path | str,
        io: ShellIO,
        settings: Optional[Settings] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Initialize the client (nothing is read or opened yet).

        Args:
            shell_dir: Directory holding the server's info file.
            io: Standard stream wiring.
            settings: Settings to use. Defaults to get_settings().
            environ: Environment consulted for the editor flag.
                Defaults to os.environ.
        """
        settings = settings or get_settings()
        self._shell_dir = Path(shell_dir)
        self._io = io
        self._connection_config = settings.connection
        self._terminal_config = settings.terminal
        self._environ = environ

        self._mode = select_mode(io.interactive)
        self._machine = ConnectionStateMachine(
            self._mode,
            host=settings.connection.host,
            reconnect_delay=settings.connection.reconnect_delay,
            warn_after=settings.connection.warn_after,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._done: Optional[asyncio.Future[int]] = None
        self._connection: Optional[_Connection] = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._command: Optional[asyncio.Task[str]] = None
        self._response = bytearray()

    @property
    def mode(self) -> SessionMode:
        """Session mode for this process."""
        return self._mode

    @property
    def machine(self) -> ConnectionStateMachine:
        """The driven state machine."""
        return self._machine

    async def run(self) -> int:
        """Connect and keep the session alive until it ends.

        Returns:
            Process exit code.

        Raises:
            ProtocolViolationError: If a batch response breaks the contract.
        """
        self._loop = asyncio.get_running_loop()
        self._done = self._loop.create_future()
        if self._mode == SessionMode.BATCH:
            # Owned by the client so a torn-down connection cannot cancel a
            # partial read and lose input already consumed
            self._command = self._loop.create_task(self._io.read_all())

        log.debug("shell_client_starting", shell_dir=str(self._shell_dir), mode=str(self._mode))
        self._dispatch(Start())

        try:
            return await self._done
        finally:
            await self._shutdown()

    # Event dispatch

    def _dispatch(self, event: Event) -> None:
        assert self._done is not None
        if self._done.done():
            return

        try:
            for effect in self._machine.handle(event):
                self._apply(effect)
                if self._done.done():
                    break
        except Exception as e:
            self._fail(e)

    def _dispatch_for(self, connection: _Connection, event: Event) -> None:
        """Dispatch an event unless it comes from a superseded socket."""
        if connection.closed or connection is not self._connection:
            log.debug("stale_socket_event", trigger=type(event).__name__)
            return
        self._dispatch(event)

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, ReadInfo):
            self._spawn(self._read_info())
        elif isinstance(effect, OpenSocket):
            self._spawn(self._open_socket(effect))
        elif isinstance(effect, BeginSession):
            self._begin_session(effect)
        elif isinstance(effect, Teardown):
            self._teardown()
        elif isinstance(effect, ScheduleReconnect):
            assert self._loop is not None
            effect.timer.handle = self._loop.call_later(
                effect.timer.delay, self._dispatch, TimerFired()
            )
        elif isinstance(effect, Notify):
            self._io.report(effect.message, fg=typer.colors.YELLOW if effect.warning else None)
        elif isinstance(effect, FinishBatch):
            self._finish_batch()
        elif isinstance(effect, Exit):
            self._finish(effect.code)
        else:
            raise TypeError(f"Unknown effect: {effect!r}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        assert self._loop is not None
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fail(exc)

    def _finish(self, code: int) -> None:
        assert self._done is not None
        if not self._done.done():
            self._done.set_result(code)

    def _fail(self, exc: BaseException) -> None:
        assert self._done is not None
        if not self._done.done():
            self._done.set_exception(exc)

    # Effects

    async def _read_info(self) -> None:
        try:
            info = await read_connection_info(
                self._shell_dir, self._connection_config.info_file
            )
        except InfoUnavailableError as e:
            log.debug("info_unavailable", **e.context)
            self._dispatch(InfoUnavailable(e))
            return
        self._dispatch(InfoLoaded(info))

    async def _open_socket(self, effect: OpenSocket) -> None:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(effect.host, effect.port),
                timeout=self._connection_config.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            log.debug("socket_connect_failed", host=effect.host, port=effect.port, error=str(e))
            self._dispatch(SocketFailed(e))
            return

        self._connection = _Connection(reader, writer)
        self._dispatch(SocketConnected())

    def _begin_session(self, effect: BeginSession) -> None:
        connection = self._connection
        assert connection is not None

        if self._mode == SessionMode.BATCH:
            self._response = bytearray()
            connection.tasks = [
                self._spawn(self._send_batch(connection, effect.key)),
                self._spawn(self._collect_response(connection)),
            ]
            return

        terminal = terminal_framing_enabled(self._environ, self._terminal_config.plain_env_var)
        # Sending the options object is what starts the server's REPL
        connection.writer.write(encode_message(InteractiveHandshake(key=effect.key, terminal=terminal)))

        if self._terminal_config.banner:
            self._io.banner(shell_banner(tab_completion=terminal))
        if self._terminal_config.raw_mode:
            self._io.set_raw(True)

        connection.tasks = [
            self._spawn(self._pump_input(connection)),
            self._spawn(self._pump_output(connection)),
        ]

    def _teardown(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None and connection.teardown(self._io):
            log.debug("socket_torn_down")

    def _finish_batch(self) -> None:
        result = decode_batch_result(bytes(self._response))
        if result.has_error:
            self._io.report(str(result.error))
            log.info("batch_failed", code=result.exit_code)
        else:
            self._io.write((result.render() + "\n").encode("utf-8"))
        self._finish(result.exit_code)

    # Byte movers

    async def _pump_input(self, connection: _Connection) -> None:
        """Forward user input to the server unmodified."""
        try:
            while True:
                data = await self._io.input.read(READ_CHUNK)
                if not data:
                    if connection.writer.can_write_eof():
                        connection.writer.write_eof()
                    return
                connection.writer.write(data)
                await connection.writer.drain()
        except OSError as e:
            self._dispatch_for(connection, SocketFailed(e))

    async def _pump_output(self, connection: _Connection) -> None:
        """Forward server output to the user, watching for the exit phrase."""
        scanner = SentinelScanner()
        try:
            while True:
                data = await connection.reader.read(READ_CHUNK)
                if not data:
                    break
                self._io.write(data)
                if scanner.feed(data):
                    self._dispatch_for(connection, SentinelSeen())
        except OSError as e:
            self._dispatch_for(connection, SocketFailed(e))
            return

        if scanner.flush():
            self._dispatch_for(connection, SentinelSeen())
        self._dispatch_for(connection, SocketClosed())

    async def _send_batch(self, connection: _Connection, key: str) -> None:
        """Send the whole of stdin as one evaluate-and-exit request."""
        assert self._command is not None
        command = await asyncio.shield(self._command)
        if connection.closed:
            return
        try:
            connection.writer.write(encode_message(BatchRequest(key=key, command=command)))
            await connection.writer.drain()
        except OSError as e:
            self._dispatch_for(connection, SocketFailed(e))

    async def _collect_response(self, connection: _Connection) -> None:
        """Buffer every byte the server sends until it closes."""
        try:
            while True:
                data = await connection.reader.read(READ_CHUNK)
                if not data:
                    break
                self._response.extend(data)
                if len(self._response) > MAX_RESPONSE_SIZE:
                    raise ProtocolViolationError(
                        f"response exceeds limit of {MAX_RESPONSE_SIZE} bytes"
                    )
        except OSError as e:
            self._dispatch_for(connection, SocketFailed(e))
            return
        self._dispatch_for(connection, SocketClosed())

    async def _shutdown(self) -> None:
        timer = self._machine.session.reconnect_timer
        if timer is not None:
            timer.cancel()
        self._teardown()

        tasks = [t for t in self._tasks if t is not asyncio.current_task()]
        if self._command is not None and not self._command.done():
            tasks.append(self._command)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.debug("shell_client_stopped", state=str(self._machine.current_state))
