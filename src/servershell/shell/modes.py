"""Session mode selection and terminal raw mode.

A client whose stdin is a terminal runs an interactive session; anything
else (piped input, scripts, CI) runs a single batch evaluation. The choice
is made once per process and survives reconnects.
"""

from __future__ import annotations

import os
from enum import StrEnum
from typing import Any, Mapping, Optional

import structlog

try:  # pragma: no cover - platform-dependent optional module
    import termios
except ImportError:  # pragma: no cover
    termios = None  # type: ignore[assignment]


log = structlog.get_logger()


class SessionMode(StrEnum):
    """How the client talks to the server."""

    INTERACTIVE = "interactive"
    BATCH = "batch"


def select_mode(isatty: bool) -> SessionMode:
    """Pick the session mode from whether stdin is a terminal."""
    return SessionMode.INTERACTIVE if isatty else SessionMode.BATCH


def terminal_framing_enabled(
    environ: Optional[Mapping[str, str]] = None,
    env_var: str = "EMACS",
) -> bool:
    """Return False when the host editor cannot handle terminal framing.

    The same flag also drops the tab-completion hint from the banner,
    since completion does not work inside such editors.
    """
    env = os.environ if environ is None else environ
    return not env.get(env_var)


class RawTerminal:
    """Puts a terminal file descriptor in raw input mode and restores it.

    Input is passed through byte by byte with echo and signal keys
    disabled, so Ctrl-C and friends reach the server's REPL. Output
    processing is left alone.

    restore() may be called any number of times, including without a
    prior enable(); only the first call after enable() touches the fd.
    """

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._saved: Optional[list[Any]] = None

    @property
    def active(self) -> bool:
        """Return True while raw mode is in effect."""
        return self._saved is not None

    def enable(self) -> bool:
        """Switch to raw mode if the fd is a terminal.

        Returns:
            True if raw mode was applied.
        """
        if self._saved is not None:
            return True
        if termios is None or not os.isatty(self._fd):
            return False

        try:
            saved = termios.tcgetattr(self._fd)
            mode = list(saved)
            mode[0] &= ~(termios.BRKINT | termios.ICRNL | termios.INPCK | termios.ISTRIP | termios.IXON)
            mode[2] |= termios.CS8
            mode[3] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
            mode[6] = list(saved[6])
            mode[6][termios.VMIN] = 1
            mode[6][termios.VTIME] = 0
            termios.tcsetattr(self._fd, termios.TCSAFLUSH, mode)
        except termios.error as e:
            log.debug("raw_mode_unavailable", fd=self._fd, error=str(e))
            return False

        self._saved = saved
        return True

    def restore(self) -> None:
        """Restore the saved terminal mode (no-op when nothing is saved)."""
        saved, self._saved = self._saved, None
        if saved is None or termios is None:
            return
        try:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            log.debug("raw_mode_restore_failed", fd=self._fd, error=str(e))

    def __enter__(self) -> "RawTerminal":
        self.enable()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.restore()
