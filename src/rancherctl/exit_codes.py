"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes returned by the CLI."""

    OK = 0
    FAILURE = 1
    USAGE = 2
    PRECONDITION = 3
    OPERATION = 4
