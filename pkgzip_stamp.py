#!/usr/bin/env python3
"""Resolve the single timestamp stamped on every archive record.

The build system may supply a volatile status file of `KEY VALUE` lines; when
it does, its BUILD_TIMESTAMP wins over any requested timestamp.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from pkgzip_errors import InputError, run_cli

# 1980-01-01T00:00:00Z, the earliest instant a ZIP header can represent
ZIP_EPOCH = 315532800

TIMESTAMP_KEY = "BUILD_TIMESTAMP"


def get_timestamp(status_file: Path) -> int:
    """Return the BUILD_TIMESTAMP value from a build status file.

    Raises:
        InputError: If the file is unreadable, lacks the key, or the value
            is not an integer
    """
    try:
        content = Path(status_file).read_text(encoding="utf-8")
    except OSError as e:
        raise InputError(f"Cannot read status file {status_file}: {e}") from e

    for line in content.split("\n"):
        parts = line.strip().split(" ")
        if len(parts) > 1 and parts[0] == TIMESTAMP_KEY:
            try:
                return int(parts[1])
            except ValueError as e:
                raise InputError(
                    f"Invalid {TIMESTAMP_KEY} in status file <{status_file}>: {parts[1]!r}"
                ) from e

    raise InputError(f"Invalid status file <{status_file}>. Expected to find {TIMESTAMP_KEY}")


def resolve_timestamp(requested: int = ZIP_EPOCH, status_file: Optional[Path] = None) -> int:
    """Pick the run timestamp.

    A status file value is used as-is; otherwise the requested value is
    clamped up to ZIP_EPOCH.
    """
    if status_file:
        return get_timestamp(status_file)
    return max(ZIP_EPOCH, requested)


# =============================================================================
# CLI Interface
# =============================================================================

DESCRIPTION = "Resolve the archive timestamp"


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-t",
        "--timestamp",
        type=int,
        default=ZIP_EPOCH,
        help="Requested unix time; values before 1980-01-01 are raised to it",
    )
    # An empty value means no status file, as build rules pass it unset
    parser.add_argument("--stamp_from", default="", help="Status file holding BUILD_TIMESTAMP")


def run(args: argparse.Namespace) -> int:
    status_file = Path(args.stamp_from) if args.stamp_from else None
    print(resolve_timestamp(args.timestamp, status_file))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=DESCRIPTION)
    add_arguments(parser)
    return run_cli(run, parser.parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
