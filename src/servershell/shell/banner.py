"""Welcome banner shown after each interactive connect."""

from __future__ import annotations

import os


def shell_banner(tab_completion: bool = True) -> str:
    """Return the banner text.

    Args:
        tab_completion: Include the tab-completion hint (it does not
            work inside editors that disable terminal framing).
    """
    lines = [
        "",
        "Welcome to the server-side interactive shell!",
    ]

    if tab_completion:
        lines.extend([
            "",
            "Tab completion is enabled for global variables.",
        ])

    lines.extend([
        "",
        "Type .reload to restart the server and the shell.",
        "Type .exit to disconnect from the server and leave the shell.",
        "Type .help for additional help.",
        os.linesep,
    ])

    return os.linesep.join(lines)
