"""Server Shell Exception Hierarchy.

This module defines the structured exception hierarchy for servershell.
All custom exceptions inherit from ServerShellError, enabling consistent
error handling across the client.

Exception Categories:
- Recoverable → absorbed by the connection state machine (InfoUnavailableError,
  socket errors). These are logged, never shown to the user.
- Terminal → surfaced to the user (ServerDisabledError after a prior
  connection, ProtocolViolationError, server-reported batch errors).

Usage:
    from servershell.core.exceptions import InfoParseError, ProtocolViolationError

    # Malformed info file content
    raise InfoParseError(path="/app/.shell/info.json", reason="not an object")

    # Batch response did not honour the result contract
    raise ProtocolViolationError(reason="connection closed without a response")
"""

from typing import Any, Optional


class ServerShellError(Exception):
    """Base exception for all servershell errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: Optional[str] = None) -> None:
        """Initialize ServerShellError.

        Args:
            message: Optional custom message. Defaults to a generic message.
        """
        self.message = message or "A server shell error occurred."
        super().__init__(self.message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context dictionary for structured logging.

        Returns:
            dict: Key-value pairs of exception context.
        """
        return {}

    def __repr__(self) -> str:
        """Return debug representation."""
        return f"{self.__class__.__name__}({self.message!r})"


class ConfigurationError(ServerShellError):
    """Configuration file or value is invalid.

    Raised when YAML configuration cannot be parsed or
    contains invalid values.

    Attributes:
        config_path: Path to the configuration file.
        key: The configuration key that caused the error.
    """

    def __init__(
        self,
        config_path: str,
        key: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Initialize ConfigurationError.

        Args:
            config_path: Path to the config file.
            key: Optional key that caused the error.
            message: Optional custom message.
        """
        self.config_path = config_path
        self.key = key

        if message is None:
            if key:
                message = f"Configuration error in '{config_path}' at key '{key}'."
            else:
                message = f"Configuration error in '{config_path}'."

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for configuration error."""
        return {
            "config_path": self.config_path,
            "key": self.key,
        }

    def __repr__(self) -> str:
        """Return debug representation with attributes."""
        return (
            f"ConfigurationError(config_path={self.config_path!r}, "
            f"key={self.key!r})"
        )


class InfoUnavailableError(ServerShellError):
    """The server's connection info file cannot be used right now.

    A server that is mid-restart may briefly leave the file missing or
    partially written, so this is always recoverable: the client schedules
    another attempt and never reports it to the user.

    Attributes:
        path: Path to the info file.
        reason: Description of why the file is unusable.
    """

    def __init__(
        self,
        path: str,
        reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Initialize InfoUnavailableError.

        Args:
            path: Path to the info file.
            reason: Description of failure cause.
            message: Optional custom message.
        """
        self.path = path
        self.reason = reason

        if message is None:
            if reason:
                message = f"Connection info '{path}' unavailable: {reason}"
            else:
                message = f"Connection info '{path}' unavailable."

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for info file errors."""
        return {
            "path": self.path,
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        """Return debug representation with attributes."""
        return (
            f"{self.__class__.__name__}(path={self.path!r}, "
            f"reason={self.reason!r})"
        )


class InfoReadError(InfoUnavailableError):
    """Info file is missing or could not be read."""


class InfoParseError(InfoUnavailableError):
    """Info file content is not a well-formed connection record."""


class ServerDisabledError(ServerShellError):
    """Server reports that shell connections are not enabled.

    Attributes:
        status: The status value found in the info file.
        reason: Optional human-readable explanation from the server.
    """

    def __init__(
        self,
        status: Optional[str] = None,
        reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Initialize ServerDisabledError.

        Args:
            status: Status found in the info file (None when absent).
            reason: Optional explanation supplied by the server.
            message: Optional custom message.
        """
        self.status = status
        self.reason = reason

        if message is None:
            message = reason or f"Server shell is not enabled (status: {status!r})."

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for a disabled server."""
        return {
            "status": self.status,
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        """Return debug representation with attributes."""
        return (
            f"ServerDisabledError(status={self.status!r}, "
            f"reason={self.reason!r})"
        )


class ProtocolViolationError(ServerShellError):
    """Server response did not honour the wire contract.

    Raised in batch mode when the connection closes without a response,
    or the response is not a JSON object. Never retried.

    Attributes:
        reason: Description of why the response is invalid.
    """

    def __init__(
        self,
        reason: str | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize ProtocolViolationError.

        Args:
            reason: Description of failure cause.
            message: Optional custom message.
        """
        self.reason = reason

        if message is None:
            if reason:
                message = f"Protocol violation: {reason}"
            else:
                message = "Protocol violation - invalid or missing server response."

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for protocol violation."""
        return {
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        """Return debug representation with attributes."""
        return f"ProtocolViolationError(reason={self.reason!r})"


class InvalidStateTransition(ServerShellError):
    """Invalid connection state transition attempted.

    Raised when an event arrives that the connection lifecycle
    does not allow in the current state.

    Attributes:
        from_state: Current state.
        to_state: Attempted target state.
        event: Name of the event that triggered the transition.
    """

    def __init__(
        self,
        from_state: str,
        to_state: str,
        event: str | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize InvalidStateTransition.

        Args:
            from_state: Current state.
            to_state: Attempted target state.
            event: Optional name of the triggering event.
            message: Optional custom message.
        """
        self.from_state = from_state
        self.to_state = to_state
        self.event = event

        if message is None:
            message = f"Invalid connection state transition: {from_state} → {to_state}"
            if event:
                message += f" (on {event})"
            message += "."

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for invalid state transition."""
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "trigger": self.event,
        }

    def __repr__(self) -> str:
        """Return debug representation with attributes."""
        return (
            f"InvalidStateTransition(from_state={self.from_state!r}, "
            f"to_state={self.to_state!r}, event={self.event!r})"
        )
