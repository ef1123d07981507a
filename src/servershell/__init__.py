"""
servershell - attach a REPL session to an already running server.

Reads the server's side-channel info file, connects over loopback and
either streams an interactive terminal session or evaluates piped input
once and prints the JSON result.
"""

from servershell.shell import ShellClient, ShellIO

__version__ = "1.0.0"

__all__ = [
    "ShellClient",
    "ShellIO",
]
