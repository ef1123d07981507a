"""Unit tests for the shell wire protocol.

Tests cover:
- Handshake and batch request wire shapes
- Exit sentinel detection, including lines split across reads
- Batch result decoding and protocol violations
"""

import json

import pytest

from servershell.core.exceptions import ProtocolViolationError
from servershell.shell.protocol import (
    EXITING_MESSAGE,
    MAX_RESPONSE_SIZE,
    BatchRequest,
    BatchResult,
    InteractiveHandshake,
    SentinelScanner,
    contains_exit_sentinel,
    decode_batch_result,
    encode_message,
)


class TestMessages:
    """Tests for outbound messages."""

    def test_interactive_handshake_shape(self) -> None:
        """Interactive handshake is {terminal, key} plus newline."""
        wire = encode_message(InteractiveHandshake(key="k1", terminal=True))
        assert wire.endswith(b"\n")
        assert wire.count(b"\n") == 1
        assert json.loads(wire) == {"terminal": True, "key": "k1"}

    def test_interactive_handshake_without_terminal(self) -> None:
        """Editor mode sends terminal: false."""
        wire = encode_message(InteractiveHandshake(key="k1", terminal=False))
        assert json.loads(wire)["terminal"] is False

    def test_batch_request_shape(self) -> None:
        """Batch request wraps the whole command in evaluateAndExit."""
        command = "const x = 1;\nx + 1\n"
        wire = encode_message(BatchRequest(key="k2", command=command))
        assert wire.count(b"\n") == 1
        assert json.loads(wire) == {
            "evaluateAndExit": {"command": command},
            "terminal": False,
            "key": "k2",
        }

    def test_batch_request_utf8(self) -> None:
        """Non-ASCII input survives the round through the wire."""
        wire = encode_message(BatchRequest(key="k", command="'héllo ✓'"))
        assert json.loads(wire.decode("utf-8"))["evaluateAndExit"]["command"] == "'héllo ✓'"


class TestSentinel:
    """Tests for exit phrase detection."""

    def test_exact_phrase(self) -> None:
        assert EXITING_MESSAGE == "Shell exiting..."

    def test_contains_anywhere_in_line(self) -> None:
        assert contains_exit_sentinel("> Shell exiting...")
        assert contains_exit_sentinel("\x1b[32mShell exiting...\x1b[0m")
        assert not contains_exit_sentinel("Shell exiting")

    def test_scanner_complete_line(self) -> None:
        scanner = SentinelScanner()
        assert scanner.feed(b"> 1 + 1\n2\nShell exiting...\n") is True
        assert scanner.seen is True

    def test_scanner_ignores_ordinary_output(self) -> None:
        scanner = SentinelScanner()
        assert scanner.feed(b"> .help\nType .exit to leave\n") is False
        assert scanner.flush() is False
        assert scanner.seen is False

    def test_scanner_line_split_across_reads(self) -> None:
        """A phrase split over two chunks is found when the line completes."""
        scanner = SentinelScanner()
        assert scanner.feed(b"Shell exi") is False
        assert scanner.feed(b"ting...\r\n") is True

    def test_scanner_unterminated_tail(self) -> None:
        """A final line without newline is checked on flush."""
        scanner = SentinelScanner()
        assert scanner.feed(b"bye\nShell exiting...") is False
        assert scanner.flush() is True
        assert scanner.seen is True


class TestBatchResult:
    """Tests for decode_batch_result()."""

    def test_success_result(self) -> None:
        result = decode_batch_result(b'{"result": "T"}')
        assert result.has_error is False
        assert result.exit_code == 0
        assert result.render() == '"T"'

    def test_structured_result(self) -> None:
        result = decode_batch_result(b'{"result": {"count": 3, "ok": true}}')
        assert json.loads(result.render()) == {"count": 3, "ok": True}

    def test_render_keeps_non_ascii(self) -> None:
        result = decode_batch_result('{"result": "héllo ✓"}'.encode("utf-8"))
        assert result.render() == '"héllo ✓"'

    def test_render_is_compact(self) -> None:
        result = decode_batch_result(b'{"result": {"a": 1, "b": [1, 2], "c": null}}')
        assert result.render() == '{"a":1,"b":[1,2],"c":null}'

    def test_missing_result_renders_null(self) -> None:
        assert decode_batch_result(b"{}").render() == "null"

    def test_error_with_code(self) -> None:
        result = decode_batch_result(b'{"error": "boom", "code": 7}')
        assert result.has_error is True
        assert result.error == "boom"
        assert result.exit_code == 7

    def test_error_without_code_exits_nonzero(self) -> None:
        assert decode_batch_result(b'{"error": "boom"}').exit_code == 1

    def test_empty_error_is_success(self) -> None:
        result = BatchResult(error="", code=3, result=1)
        assert result.has_error is False
        assert result.exit_code == 0

    def test_empty_buffer_is_violation(self) -> None:
        with pytest.raises(ProtocolViolationError) as exc_info:
            decode_batch_result(b"")
        assert "without a response" in str(exc_info.value)

    @pytest.mark.parametrize("buffer", [b"not json", b'{"result": ', b"\xff\xfe", b"[1]", b"42"])
    def test_unparseable_buffer_is_violation(self, buffer: bytes) -> None:
        with pytest.raises(ProtocolViolationError):
            decode_batch_result(buffer)

    def test_oversized_buffer_is_violation(self) -> None:
        with pytest.raises(ProtocolViolationError) as exc_info:
            decode_batch_result(b" " * (MAX_RESPONSE_SIZE + 1))
        assert "exceeds limit" in str(exc_info.value)
