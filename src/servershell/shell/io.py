"""Standard stream wiring for a shell session.

ShellIO is the only place the client touches the process's stdin,
stdout and stderr. Tests build one around in-memory streams.
"""

from __future__ import annotations

import asyncio
import os
import sys
import threading
from typing import BinaryIO, Optional, TextIO

import structlog
import typer

from servershell.shell.modes import RawTerminal


log = structlog.get_logger()

READ_CHUNK = 64 * 1024


class ShellIO:
    """Input source and output sinks of one client process.

    Attributes:
        input: Reader yielding the user's input bytes.
        output: Binary sink for session output (stdout).
        error: Text sink for banners, warnings and errors (stderr).
        interactive: Whether stdin is attached to a terminal.
        terminal: Raw mode controller for the input terminal, if any.
    """

    def __init__(
        self,
        input: asyncio.StreamReader,
        output: BinaryIO,
        error: TextIO,
        interactive: bool = False,
        terminal: Optional[RawTerminal] = None,
    ) -> None:
        self.input = input
        self.output = output
        self.error = error
        self.interactive = interactive
        self.terminal = terminal

    @classmethod
    def from_stdio(cls, loop: Optional[asyncio.AbstractEventLoop] = None) -> "ShellIO":
        """Wire the process's standard streams.

        Must be called with the event loop running (or passed in), since
        stdin is fed into an asyncio.StreamReader from a daemon thread.
        """
        loop = loop or asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        fd = sys.stdin.fileno()
        interactive = os.isatty(fd)

        threading.Thread(
            target=_feed_reader,
            args=(fd, reader, loop),
            name="servershell-stdin",
            daemon=True,
        ).start()

        return cls(
            input=reader,
            output=sys.stdout.buffer,
            error=sys.stderr,
            interactive=interactive,
            terminal=RawTerminal(fd) if interactive else None,
        )

    def write(self, data: bytes) -> None:
        """Write session output and flush it immediately."""
        self.output.write(data)
        self.output.flush()

    def report(self, message: str, fg: Optional[str] = None) -> None:
        """Write a line to the error stream, optionally coloured."""
        typer.secho(message, file=self.error, fg=fg)

    def banner(self, text: str) -> None:
        """Write banner text to the error stream without a trailing newline."""
        typer.secho(text, file=self.error, fg=typer.colors.GREEN, nl=False)

    async def read_all(self) -> str:
        """Read input until end-of-input and decode it as UTF-8."""
        data = await self.input.read()
        return data.decode("utf-8", errors="replace")

    def set_raw(self, enabled: bool) -> None:
        """Enable or restore raw terminal input (no-op without a terminal)."""
        if self.terminal is None:
            return
        if enabled:
            self.terminal.enable()
        else:
            self.terminal.restore()


def _feed_reader(fd: int, reader: asyncio.StreamReader, loop: asyncio.AbstractEventLoop) -> None:
    """Blocking stdin pump run on a daemon thread."""
    try:
        while True:
            data = os.read(fd, READ_CHUNK)
            if not data:
                break
            loop.call_soon_threadsafe(reader.feed_data, data)
    except OSError as e:
        log.debug("stdin_read_failed", error=str(e))
    except RuntimeError:
        # Loop closed while the thread was blocked in read
        return
    try:
        loop.call_soon_threadsafe(reader.feed_eof)
    except RuntimeError:
        pass
