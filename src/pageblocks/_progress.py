# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Progress indicators for CLI output.

Spinners are drawn with ``rich`` on interactive terminals and suppressed
when stderr is piped, so JSON on stdout stays clean.
"""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Generator

from rich.console import Console


@contextlib.contextmanager
def status_spinner(msg: str) -> Generator[None, None, None]:
    """Show a spinner with *msg* while active (only when stderr is a TTY)."""
    if not sys.stderr.isatty():
        yield
        return
    with Console(stderr=True).status(msg):
        yield


def print_step(msg: str) -> None:
    """Print a step message to stderr (only when interactive)."""
    if sys.stderr.isatty():
        print(msg, file=sys.stderr)
