#!/usr/bin/env python3
"""
pkgzip Manifest Resolution

A manifest is a JSON array of packaging actions produced by the build system.
Each action names an entry kind, an archive destination, a filesystem source,
and optional mode/ownership metadata.

Resolution Summary:
1. Prefix every destination (archive-relative, never absolute)
2. Key entries by destination; a later entry replaces an earlier one
3. Synthesize a directory entry for every missing ancestor
4. Sort entries by destination

The resolved manifest is the only input the archive writer needs.
"""

from __future__ import annotations

import argparse
import json
import posixpath
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, TextIO

from jsonschema import Draft202012Validator

from pkgzip_errors import InputError, run_cli

# =============================================================================
# Constants
# =============================================================================

# Mode given to directories implied by a deeper destination (rwxr-xr-x)
DEFAULT_DIR_MODE = "0o755"

# Destinations that denote the archive root
ROOT_PATHS = {"", "."}

# Maximum number of schema failures shown in one error message
MAX_REPORTED_ERRORS = 5

MANIFEST_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "pkgzip manifest",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["type", "dest"],
        "properties": {
            "type": {"enum": ["file", "symlink", "dir", "tree", "empty-file"]},
            "dest": {"type": "string"},
            "src": {"type": ["string", "null"]},
            "mode": {"type": ["string", "null"]},
            "user": {"type": ["string", "null"]},
            "group": {"type": ["string", "null"]},
            "uid": {"type": ["integer", "null"]},
            "gid": {"type": ["integer", "null"]},
            "origin": {"type": ["string", "null"]},
        },
    },
}


# =============================================================================
# Data Types
# =============================================================================


class EntryType(Enum):
    FILE = "file"
    SYMLINK = "symlink"
    DIR = "dir"
    TREE = "tree"
    EMPTY_FILE = "empty-file"


class ManifestEntry(NamedTuple):
    """One packaging action from the manifest."""

    type: EntryType
    dest: str  # Archive path; archive-relative once resolved
    src: str = ""  # Filesystem path (file, tree) or link target (symlink)
    mode: str = ""  # Octal permission string; "" means writer default
    user: str = ""
    group: str = ""
    uid: int = 0
    gid: int = 0
    origin: str = ""  # Provenance, e.g. the build target that declared it

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "dest": self.dest,
            "src": self.src,
            "mode": self.mode,
            "user": self.user,
            "group": self.group,
            "uid": self.uid,
            "gid": self.gid,
            "origin": self.origin,
        }


# =============================================================================
# Loading
# =============================================================================


def _format_schema_errors(errors: List[Any]) -> str:
    lines = []
    for err in errors[:MAX_REPORTED_ERRORS]:
        path = err.json_path or "$"
        lines.append(f"{path}: {err.message}")
    if len(errors) > MAX_REPORTED_ERRORS:
        lines.append(f"... {len(errors) - MAX_REPORTED_ERRORS} more")
    return "\n".join(lines)


def validate_manifest_data(data: Any) -> None:
    """Check decoded manifest JSON against MANIFEST_SCHEMA.

    Raises:
        InputError: If the document does not conform
    """
    validator = Draft202012Validator(MANIFEST_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: e.json_path)
    if errors:
        raise InputError(f"Invalid manifest:\n{_format_schema_errors(errors)}")


def entry_from_json(item: Dict[str, Any]) -> ManifestEntry:
    """Build an entry from one validated manifest object. Nulls become zero values."""
    return ManifestEntry(
        type=EntryType(item["type"]),
        dest=item["dest"],
        src=item.get("src") or "",
        mode=item.get("mode") or "",
        user=item.get("user") or "",
        group=item.get("group") or "",
        uid=item.get("uid") or 0,
        gid=item.get("gid") or 0,
        origin=item.get("origin") or "",
    )


def read_entries(data: Any) -> List[ManifestEntry]:
    """Validate decoded manifest JSON and return its entries in file order."""
    validate_manifest_data(data)
    return [entry_from_json(item) for item in data]


def read_entries_from_file(manifest_path: Path) -> List[ManifestEntry]:
    """Read a manifest file.

    Raises:
        InputError: If the file is unreadable, not JSON, or fails validation
    """
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise InputError(f"Cannot read manifest {manifest_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise InputError(f"Malformed manifest {manifest_path}: {e}") from e

    return read_entries(data)


# =============================================================================
# Resolution
# =============================================================================


def combine_paths(left: str, right: str) -> str:
    """Join a prefix and a destination into an archive-relative path.

    combine_paths("/usr/", "/lib/x") == "usr/lib/x"
    """
    result = left.rstrip("/") + "/" + right.lstrip("/")
    return result.lstrip("/")


def _parents(dest: str) -> Iterable[str]:
    """Yield every ancestor of dest, nearest first, stopping before the root."""
    parent = dest.rstrip("/")
    while parent not in ROOT_PATHS:
        parent = posixpath.dirname(parent)
        if parent in ROOT_PATHS:
            return
        yield parent


def resolve_manifest(prefix: str, entries: Iterable[ManifestEntry]) -> List[ManifestEntry]:
    """
    Resolve raw manifest entries into the archive's entry list.

    Destinations are prefixed and lose any trailing "/". Duplicates collapse
    to the last entry seen, missing ancestor directories are synthesized, and
    the result is sorted by destination. The input is not modified.

    Args:
        prefix: Path prefix for every destination (e.g. "/" or "/usr/share")
        entries: Raw entries in manifest order

    Returns:
        New list of entries, one per destination, in ascending order
    """
    by_dest: Dict[str, ManifestEntry] = {}

    for entry in entries:
        # "a/b/" and "a/b" name the same record
        dest = combine_paths(prefix, entry.dest).rstrip("/")
        by_dest[dest] = entry._replace(dest=dest)

    # Snapshot the keys; ancestors are added while walking
    for dest in list(by_dest):
        origin = by_dest[dest].origin
        for parent in _parents(dest):
            if parent in by_dest:
                continue
            by_dest[parent] = ManifestEntry(
                type=EntryType.DIR,
                dest=parent,
                mode=DEFAULT_DIR_MODE,
                origin=f"parent directory of {origin}",
            )

    return sorted(by_dest.values(), key=lambda e: e.dest)


def report_manifest(entries: Iterable[ManifestEntry], stream: Optional[TextIO] = None) -> None:
    """Write each destination on its own line, in order."""
    if stream is None:
        stream = sys.stdout
    for entry in entries:
        print(entry.dest, file=stream)


def load_manifest(prefix: str, manifest_path: Path) -> List[ManifestEntry]:
    """Read a manifest file and resolve it under prefix."""
    return resolve_manifest(prefix, read_entries_from_file(manifest_path))


# =============================================================================
# CLI Interface
# =============================================================================


DESCRIPTION = "Resolve a pkgzip manifest"

EPILOG = """
Examples:
  %(prog)s manifest.json                  # List resolved destinations
  %(prog)s manifest.json -d /opt/app      # Resolve under a prefix
  %(prog)s manifest.json --json           # Full entries as JSON
"""


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("manifest", type=Path, help="Path to manifest JSON")
    parser.add_argument(
        "-d",
        "--directory",
        default="/",
        help="Path prefix applied to every destination",
    )
    parser.add_argument("--json", action="store_true", help="Output entries as JSON")


def run(args: argparse.Namespace) -> int:
    entries = load_manifest(args.directory, args.manifest)
    if args.json:
        print(json.dumps([e.to_json() for e in entries], indent=2))
    else:
        report_manifest(entries)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    add_arguments(parser)
    return run_cli(run, parser.parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
