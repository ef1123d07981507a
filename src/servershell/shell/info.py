"""Connection Info Reader.

The server advertises its current shell connectivity in a small JSON file
(the "info file") inside the shell directory:

    {"status": "enabled", "port": 53412, "key": "c1b0...", "reason": null}

The file is read fresh before every connection attempt and never cached,
since the server may rewrite it at any time.

Usage:
    from servershell.shell.info import read_connection_info

    info = await read_connection_info(Path(".meteor/local/shell"))
    if info.enabled:
        ...
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog

from servershell.core.exceptions import (
    InfoParseError,
    InfoReadError,
    InfoUnavailableError,
)


log = structlog.get_logger()

INFO_FILE_NAME = "info.json"
STATUS_ENABLED = "enabled"


def get_info_file(shell_dir: Path | str, file_name: str = INFO_FILE_NAME) -> Path:
    """Return the path of the info file inside a shell directory."""
    return Path(shell_dir) / file_name


@dataclass(frozen=True)
class ConnectionInfo:
    """Connection parameters advertised by the server.

    Attributes:
        status: 'enabled', 'disabled', or None when absent. Any value other
            than 'enabled' means the server does not accept shell connections.
        port: TCP port on loopback (required when enabled).
        key: Shared secret sent in the handshake (required when enabled).
        reason: Optional explanation for a disabled status.
    """

    status: Optional[str] = None
    port: Optional[int] = None
    key: Optional[str] = None
    reason: Optional[str] = None

    @property
    def enabled(self) -> bool:
        """Return True if the server currently accepts shell connections."""
        return self.status == STATUS_ENABLED

    @classmethod
    def from_json(cls, data: str, path: str = INFO_FILE_NAME) -> "ConnectionInfo":
        """Parse an info file body.

        Args:
            data: JSON text of the info file.
            path: Path used in error messages.

        Returns:
            ConnectionInfo instance.

        Raises:
            InfoParseError: If the text is not a usable connection record.
        """
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise InfoParseError(path=path, reason=f"invalid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise InfoParseError(path=path, reason="JSON data must be an object")

        # Forward compatibility: ignore fields this client does not know
        known_fields = {f for f in cls.__dataclass_fields__}
        filtered: dict[str, Any] = {k: v for k, v in parsed.items() if k in known_fields}
        info = cls(**filtered)

        if info.enabled:
            if not isinstance(info.port, int) or isinstance(info.port, bool):
                raise InfoParseError(path=path, reason=f"invalid port: {info.port!r}")
            if not isinstance(info.key, str):
                raise InfoParseError(path=path, reason="missing key")

        return info


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InfoReadError(path=str(path), reason=f"undecodable content: {e}") from e
    except OSError as e:
        raise InfoReadError(path=str(path), reason=e.strerror or str(e)) from e


async def read_connection_info(
    shell_dir: Path | str,
    file_name: str = INFO_FILE_NAME,
) -> ConnectionInfo:
    """Read and parse the info file without blocking the event loop.

    Args:
        shell_dir: Directory the server writes its info file into.
        file_name: Info file name inside shell_dir.

    Returns:
        Parsed ConnectionInfo (possibly not enabled).

    Raises:
        InfoReadError: If the file is missing or unreadable.
        InfoParseError: If the content is malformed.
    """
    path = get_info_file(shell_dir, file_name)
    text = await asyncio.to_thread(_read_text, path)
    info = ConnectionInfo.from_json(text, path=str(path))
    log.debug("connection_info_read", path=str(path), status=info.status, port=info.port)
    return info


@dataclass(frozen=True)
class InfoStatus:
    """Human-oriented classification of an info file.

    Attributes:
        state: One of 'missing', 'malformed', 'disabled', 'enabled'.
        detail: Reason, error text or port description.
    """

    state: str
    detail: str = ""

    @property
    def usable(self) -> bool:
        """Return True if a connection attempt would proceed."""
        return self.state == STATUS_ENABLED


def describe_info(shell_dir: Path | str, file_name: str = INFO_FILE_NAME) -> InfoStatus:
    """Classify the info file for display.

    Args:
        shell_dir: Directory the server writes its info file into.
        file_name: Info file name inside shell_dir.

    Returns:
        InfoStatus describing why the file is (un)usable.
    """
    path = get_info_file(shell_dir, file_name)
    try:
        info = ConnectionInfo.from_json(_read_text(path), path=str(path))
    except InfoReadError as e:
        return InfoStatus("missing", e.reason or "")
    except InfoUnavailableError as e:
        return InfoStatus("malformed", e.reason or "")

    if not info.enabled:
        return InfoStatus("disabled", info.reason or "")
    return InfoStatus(STATUS_ENABLED, f"port {info.port}")
