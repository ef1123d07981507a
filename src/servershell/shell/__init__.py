"""Server Shell Client Package.

This package contains the client side of the server shell: connection
info discovery, wire protocol, session modes, the connection state
machine and the asyncio driver tying them to the standard streams.

Components:
- info: Info file reader (ConnectionInfo)
- protocol: Handshake messages, exit sentinel scanning, batch results
- modes: Interactive/batch selection and raw terminal control
- state_machine: Connection lifecycle (events in, effects out)
- client: ShellClient driving the state machine on one event loop
- io: Standard stream wiring
"""

from servershell.shell.client import ShellClient
from servershell.shell.info import (
    INFO_FILE_NAME,
    ConnectionInfo,
    describe_info,
    get_info_file,
    read_connection_info,
)
from servershell.shell.io import ShellIO
from servershell.shell.modes import RawTerminal, SessionMode, select_mode
from servershell.shell.protocol import (
    EXITING_MESSAGE,
    BatchRequest,
    BatchResult,
    InteractiveHandshake,
    SentinelScanner,
    decode_batch_result,
    encode_message,
)
from servershell.shell.state_machine import (
    ClientSession,
    ConnectionState,
    ConnectionStateMachine,
)

__all__ = [
    "ShellClient",
    "INFO_FILE_NAME",
    "ConnectionInfo",
    "describe_info",
    "get_info_file",
    "read_connection_info",
    "ShellIO",
    "RawTerminal",
    "SessionMode",
    "select_mode",
    "EXITING_MESSAGE",
    "BatchRequest",
    "BatchResult",
    "InteractiveHandshake",
    "SentinelScanner",
    "decode_batch_result",
    "encode_message",
    "ClientSession",
    "ConnectionState",
    "ConnectionStateMachine",
]
