#!/usr/bin/env python3
"""pkgzip command line: build, resolve and stamp under one entry point.

Each tool module supplies DESCRIPTION, add_arguments() and run(); this module
mounts them as argparse subcommands and maps their failures to exit status
through pkgzip_errors.run_cli.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

import pkgzip_manifest
import pkgzip_stamp
import pkgzip_zip
from pkgzip_errors import run_cli

# Subcommand name -> tool module, in help order
COMMANDS = {
    "build": pkgzip_zip,
    "resolve": pkgzip_manifest,
    "stamp": pkgzip_stamp,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pkgzip",
        description="Deterministic ZIP packaging from build manifests",
        epilog="Run: pkgzip <command> --help for command-specific options.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    for name, module in COMMANDS.items():
        sub = subparsers.add_parser(
            name,
            help=module.DESCRIPTION,
            description=module.DESCRIPTION,
            epilog=getattr(module, "EPILOG", None),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        module.add_arguments(sub)
        sub.set_defaults(run=module.run)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # --help exits 0, usage errors exit 2
        return exc.code if isinstance(exc.code, int) else 0

    if args.command is None:
        parser.print_help()
        return 0
    return run_cli(args.run, args)


if __name__ == "__main__":
    sys.exit(main())
