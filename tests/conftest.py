"""
servershell Test Configuration

Shared pytest fixtures: info files, in-memory standard streams and a
loopback fake of the server's shell port.
"""

import asyncio
import io
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Generator, Optional

import pytest

from servershell.core.config import ConnectionConfig, Settings, TerminalConfig, reset_settings
from servershell.shell.io import ShellIO


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Tests that run a loopback fake server")


@pytest.fixture(autouse=True)
def clean_settings() -> Generator[None, None, None]:
    """Reset the settings singleton and SERVERSHELL_ env vars around each test."""
    reset_settings()
    for key in list(os.environ.keys()):
        if key.startswith("SERVERSHELL_"):
            del os.environ[key]
    yield
    reset_settings()


@pytest.fixture
def shell_dir(tmp_path: Path) -> Path:
    """Provide an empty shell directory."""
    path = tmp_path / "shell"
    path.mkdir()
    return path


@pytest.fixture
def write_info(shell_dir: Path) -> Callable[..., Path]:
    """Factory writing info.json into shell_dir.

    Pass keyword fields for a JSON object, or raw=... for literal content.
    """

    def _write(raw: Optional[str] = None, **fields: Any) -> Path:
        path = shell_dir / "info.json"
        path.write_text(raw if raw is not None else json.dumps(fields), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with a short reconnect delay and no banner."""
    return Settings(
        connection=ConnectionConfig(reconnect_delay=0.01, connect_timeout=1.0),
        terminal=TerminalConfig(banner=False),
    )


class MemoryIO(ShellIO):
    """ShellIO over in-memory streams, exposing what was written."""

    @property
    def stdout(self) -> bytes:
        return self.output.getvalue()  # type: ignore[attr-defined]

    @property
    def stderr(self) -> str:
        return self.error.getvalue()  # type: ignore[attr-defined]


@pytest.fixture
def make_io() -> Callable[..., MemoryIO]:
    """Factory building a MemoryIO. Call it inside a running event loop."""

    def _make(
        stdin: Optional[bytes] = None,
        interactive: bool = False,
        terminal: Any = None,
        eof: bool = True,
    ) -> MemoryIO:
        reader = asyncio.StreamReader()
        if stdin:
            reader.feed_data(stdin)
        if eof:
            reader.feed_eof()
        return MemoryIO(
            input=reader,
            output=io.BytesIO(),
            error=io.StringIO(),
            interactive=interactive,
            terminal=terminal,
        )

    return _make


Handler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


class FakeShellServer:
    """Loopback stand-in for the server's shell port.

    Records the first line (handshake) of every accepted connection.
    """

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self._server: Optional[asyncio.AbstractServer] = None
        self.handshakes: list[dict[str, Any]] = []
        self.connections = 0

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> "FakeShellServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        try:
            line = await reader.readline()
            if line:
                self.handshakes.append(json.loads(line))
            await self._handler(reader, writer)
        finally:
            writer.close()


@pytest.fixture
def fake_server() -> Callable[[Handler], Awaitable[FakeShellServer]]:
    """Factory starting a FakeShellServer. Call it inside a running event loop."""

    async def _start(handler: Handler) -> FakeShellServer:
        return await FakeShellServer(handler).start()

    return _start
