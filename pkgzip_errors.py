#!/usr/bin/env python3
"""Error types shared by the pkgzip tools.

Every error aborts the run. Nothing here is recovered internally; run_cli
translates these into the exit status of every CLI command.
"""

from __future__ import annotations

import sys
from typing import Any, Callable


class PkgZipError(Exception):
    """Base class for all pkgzip failures."""

    pass


class ConfigError(PkgZipError):
    """Invalid writer configuration (compression, level, mode, timestamp)."""

    pass


class InputError(PkgZipError):
    """Unreadable or malformed manifest, status file, or entry source."""

    pass


class OutputError(PkgZipError):
    """The output archive could not be created, written, or finalized."""

    pass


def run_cli(command: Callable[[Any], int], args: Any) -> int:
    """Run a parsed CLI command, mapping failures to exit status.

    Returns the command's status, 1 for a PkgZipError, 2 for anything else.
    """
    try:
        return command(args)
    except PkgZipError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 2
