"""Shell Wire Protocol.

This module defines the messages exchanged with the server's shell port.

Message Format:
- Serialization: JSON
- Delimiter: Newline (\\n) after the single outbound handshake
- Encoding: UTF-8

Interactive sessions send one handshake, then stream raw bytes in both
directions. The client watches each incoming line for EXITING_MESSAGE,
which means "stop" rather than "reconnect" when the socket closes.

Batch sessions send the whole command inside the handshake; the server
answers with one JSON object {error?, code?, result?} and closes.

Usage:
    from servershell.shell.protocol import (
        InteractiveHandshake, BatchRequest, encode_message, decode_batch_result
    )

    wire_data = encode_message(InteractiveHandshake(key="secret", terminal=True))
    result = decode_batch_result(b'{"result": 42}')
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

from servershell.core.exceptions import ProtocolViolationError


# Must match the text the server prints before closing an intentional exit
EXITING_MESSAGE = "Shell exiting..."

MAX_RESPONSE_SIZE = 10 * 1024 * 1024  # 10MB limit on a buffered batch response


@dataclass(frozen=True)
class InteractiveHandshake:
    """First message of an interactive session.

    Attributes:
        key: Shared secret from the info file.
        terminal: Whether the server should use terminal framing.
    """

    key: str
    terminal: bool = True

    def to_json(self) -> str:
        """Serialize handshake to JSON string."""
        return json.dumps({"terminal": self.terminal, "key": self.key})


@dataclass(frozen=True)
class BatchRequest:
    """Single-use request evaluating one command.

    The whole command travels as a JSON string so the server can tell
    when it has received all of it.

    Attributes:
        key: Shared secret from the info file.
        command: Entire accumulated input text.
    """

    key: str
    command: str

    def to_json(self) -> str:
        """Serialize request to JSON string."""
        return json.dumps(
            {
                "evaluateAndExit": {"command": self.command},
                "terminal": False,
                "key": self.key,
            }
        )


def encode_message(msg: InteractiveHandshake | BatchRequest) -> bytes:
    """Encode message to wire format (JSON + newline, UTF-8).

    Args:
        msg: Handshake or batch request to encode.

    Returns:
        UTF-8 encoded bytes with newline delimiter.
    """
    return (msg.to_json() + "\n").encode("utf-8")


def contains_exit_sentinel(line: str) -> bool:
    """Return True if a line of server output announces an intentional exit."""
    return EXITING_MESSAGE in line


class SentinelScanner:
    """Splits incoming server bytes into lines and watches for the exit phrase.

    Lines may arrive split across several reads; incomplete tails are kept
    until the next newline or flush().
    """

    def __init__(self) -> None:
        self._pending = b""
        self._seen = False

    @property
    def seen(self) -> bool:
        """Return True once any complete line carried the exit phrase."""
        return self._seen

    def feed(self, data: bytes) -> bool:
        """Scan a chunk of server output.

        Args:
            data: Raw bytes read from the socket.

        Returns:
            True if a line completed by this chunk contains the exit phrase.
        """
        *lines, self._pending = (self._pending + data).split(b"\n")
        return any([self._check(line) for line in lines])

    def flush(self) -> bool:
        """Scan any unterminated tail left when the stream ends."""
        tail, self._pending = self._pending, b""
        return bool(tail) and self._check(tail)

    def _check(self, line: bytes) -> bool:
        if contains_exit_sentinel(line.decode("utf-8", errors="replace")):
            self._seen = True
            return True
        return False


@dataclass(frozen=True)
class BatchResult:
    """Server response to a batch request.

    Attributes:
        error: Error text reported by the server, if evaluation failed.
        code: Exit code the client should use with the error.
        result: JSON value produced by the command on success.
    """

    error: Optional[Any] = None
    code: Optional[Any] = None
    result: Any = None

    @property
    def has_error(self) -> bool:
        """Return True if the server reported a failure."""
        return bool(self.error)

    @property
    def exit_code(self) -> int:
        """Process exit code for this result."""
        if not self.has_error:
            return 0
        if isinstance(self.code, int) and not isinstance(self.code, bool):
            return self.code
        return 1

    def render(self) -> str:
        """Return the JSON text written to stdout for a successful result.

        Compact and unescaped, matching what the server side would print.
        """
        return json.dumps(self.result, ensure_ascii=False, separators=(",", ":"))


def decode_batch_result(buffer: bytes) -> BatchResult:
    """Decode the buffered batch response.

    Args:
        buffer: Every byte received before the server closed the socket.

    Returns:
        BatchResult instance.

    Raises:
        ProtocolViolationError: If the response is absent, oversized or not
            a JSON object.
    """
    if not buffer:
        raise ProtocolViolationError("connection closed without a response")

    if len(buffer) > MAX_RESPONSE_SIZE:
        raise ProtocolViolationError(
            f"response size {len(buffer)} exceeds limit of {MAX_RESPONSE_SIZE} bytes"
        )

    try:
        parsed = json.loads(buffer.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolViolationError(f"failed to decode response: {e}") from e

    if not isinstance(parsed, dict):
        raise ProtocolViolationError("response must be a JSON object")

    return BatchResult(
        error=parsed.get("error"),
        code=parsed.get("code"),
        result=parsed.get("result"),
    )
