"""Core module for servershell.

Exports the core components: exceptions, configuration and logging setup.
"""

from servershell.core.exceptions import (
    ServerShellError,
    ConfigurationError,
    InfoUnavailableError,
    InfoReadError,
    InfoParseError,
    ServerDisabledError,
    ProtocolViolationError,
    InvalidStateTransition,
)
from servershell.core.config import (
    get_settings,
    reset_settings,
    Settings,
    ConnectionConfig,
    TerminalConfig,
    LoggingConfig,
)
from servershell.core.logging import configure_logging

__all__ = [
    # Exceptions
    "ServerShellError",
    "ConfigurationError",
    "InfoUnavailableError",
    "InfoReadError",
    "InfoParseError",
    "ServerDisabledError",
    "ProtocolViolationError",
    "InvalidStateTransition",
    # Configuration
    "get_settings",
    "reset_settings",
    "Settings",
    "ConnectionConfig",
    "TerminalConfig",
    "LoggingConfig",
    # Logging
    "configure_logging",
]
