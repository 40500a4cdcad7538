#!/usr/bin/env python3
"""Write a resolved pkgzip manifest into a deterministic ZIP archive.

Determinism settings:
  - Every record carries the same timestamp (see pkgzip_stamp).
  - Records are written in manifest order, which the resolver sorts; tree
    artifacts are expanded in sorted order as well.
  - Permissions come from the entry's mode, or the writer's default mode,
    and are stored as Unix attributes (create_system = 3).
  - Directories, symlinks and empty files are always ZIP_STORED.

Note: archives are byte-for-byte stable only if the input file bytes are
identical.
"""

from __future__ import annotations

import argparse
import os
import posixpath
import stat
import struct
import sys
import tempfile
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Tuple

from pkgzip_errors import ConfigError, InputError, OutputError, run_cli
from pkgzip_manifest import EntryType, ManifestEntry, load_manifest, report_manifest
from pkgzip_stamp import ZIP_EPOCH, resolve_timestamp

# =============================================================================
# Constants
# =============================================================================

UNIX_DIR_BIT = stat.S_IFDIR
UNIX_SYMLINK_BIT = stat.S_IFLNK
MSDOS_DIR_BIT = 0x10

# General purpose flag bit 11: filename is UTF-8
UTF8_FLAG = 0x800

# Offset of the flag word in a local file header (after signature and version)
LOCAL_FLAGS_OFFSET = 6

# Unix "made by" host, so readers honour the permission bits
CREATE_SYSTEM_UNIX = 3

# Permission bits only; the type bits are added per record kind
MAX_MODE = 0o7777

# Mode for directories and executables found while expanding trees
TREE_MODE = "0755"

# Last year an MS-DOS date field can hold
MAX_ZIP_YEAR = 2107

COMPRESSION_TYPES = {
    "deflated": zipfile.ZIP_DEFLATED,
    "stored": zipfile.ZIP_STORED,
    "": zipfile.ZIP_DEFLATED,
}

DateTime = Tuple[int, int, int, int, int, int]


# =============================================================================
# Setting parsers
# =============================================================================


def parse_mode(mode: str) -> int:
    """Parse an octal permission string ("644", "0755", "0o755").

    An empty string means no permission override and parses as 0.

    Raises:
        ConfigError: If the string is not octal or exceeds 0o7777
    """
    if not mode:
        return 0
    try:
        value = int(mode, 8)
    except ValueError as e:
        raise ConfigError(f"invalid mode: {mode}") from e
    if not 0 <= value <= MAX_MODE:
        raise ConfigError(f"invalid mode: {mode} (must be within 0..7777)")
    return value


def parse_compression(compression_type: str) -> int:
    try:
        return COMPRESSION_TYPES[compression_type]
    except KeyError:
        raise ConfigError(f"invalid compression type: {compression_type}") from None


def parse_compression_level(compression_level: str, compression: int) -> Optional[int]:
    """Parse the level; "" keeps the library default (None)."""
    if not compression_level:
        return None
    try:
        level = int(compression_level)
    except ValueError as e:
        raise ConfigError(f"invalid compression level: {compression_level}") from e
    if compression == zipfile.ZIP_DEFLATED and not -1 <= level <= 9:
        raise ConfigError(f"invalid compression level: {compression_level} (deflate uses -1..9)")
    return level


def zip_date_time(timestamp: int) -> DateTime:
    """Convert a unix timestamp to the UTC tuple a ZipInfo expects."""
    if timestamp < ZIP_EPOCH:
        raise ConfigError(f"timestamp {timestamp} is before 1980-01-01, which ZIP cannot store")
    ts = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    if ts.year > MAX_ZIP_YEAR:
        raise ConfigError(f"timestamp {timestamp} is after {MAX_ZIP_YEAR}, which ZIP cannot store")
    return (ts.year, ts.month, ts.day, ts.hour, ts.minute, ts.second)


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


# =============================================================================
# Writer
# =============================================================================


class ZipWriter:
    """Writes manifest entries into one archive.

    All settings are validated before anything is created on disk. Records
    are written to a temporary file beside the output, which replaces the
    output only when the writer is closed successfully. Use as a context
    manager; an exception inside the block discards the partial archive.
    """

    def __init__(
        self,
        output_path: Path,
        timestamp: int,
        default_mode: str = "",
        compression_type: str = "",
        compression_level: str = "",
    ):
        self.output_path = Path(output_path)
        self.timestamp = timestamp
        self.date_time = zip_date_time(timestamp)
        self.default_mode = parse_mode(default_mode)
        self.compression_type = parse_compression(compression_type)
        self.compression_level = parse_compression_level(compression_level, self.compression_type)

        try:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.output_path.parent,
                prefix=f".{self.output_path.name}.",
                suffix=".tmp",
            )
        except OSError as e:
            raise OutputError(f"Cannot create {self.output_path}: {e}") from e

        self._tmp_path = Path(tmp_name)
        self._file = os.fdopen(fd, "w+b")
        self._zip: Optional[zipfile.ZipFile] = zipfile.ZipFile(
            self._file, "w", compression=self.compression_type
        )

    def __enter__(self) -> "ZipWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    @property
    def closed(self) -> bool:
        return self._zip is None

    def close(self) -> None:
        """Finalize the archive and move it into place."""
        if self._zip is None:
            return
        zf, self._zip = self._zip, None
        try:
            zf.close()
            self._file.close()
            os.chmod(self._tmp_path, 0o666 & ~_current_umask())
            os.replace(self._tmp_path, self.output_path)
        except OSError as e:
            self._discard()
            raise OutputError(f"Cannot finalize {self.output_path}: {e}") from e

    def abort(self) -> None:
        """Drop the partially written archive; the output path is left untouched."""
        if self._zip is None:
            return
        self._zip = None
        self._discard()

    def _discard(self) -> None:
        self._file.close()
        try:
            self._tmp_path.unlink()
        except FileNotFoundError:
            pass

    # -------------------------------------------------------------------------
    # Record helpers
    # -------------------------------------------------------------------------

    def make_zipinfo(self, path: str, mode: str) -> zipfile.ZipInfo:
        """Header for one record: fixed timestamp, Unix permissions, UTF-8 name."""
        info = zipfile.ZipInfo(filename=path, date_time=self.date_time)
        info.flag_bits |= UTF8_FLAG
        info.create_system = CREATE_SYSTEM_UNIX
        f_mode = parse_mode(mode) if mode else self.default_mode
        info.external_attr = f_mode << 16
        return info

    def _writestr(self, info: zipfile.ZipInfo, data: bytes) -> None:
        if self._zip is None:
            raise OutputError(f"Archive already closed: {self.output_path}")
        # zipfile rewrites both fields while writing: flag_bits keeps 0x800
        # only for non-ASCII names, and an attribute word of 0 becomes 0o600
        flag_bits = info.flag_bits
        external_attr = info.external_attr
        try:
            self._zip.writestr(info, data, compresslevel=self.compression_level)
            self._patch_local_flags(info.header_offset, flag_bits)
        except OSError as e:
            raise OutputError(f"Cannot write {info.filename} to {self.output_path}: {e}") from e
        # The central directory is written from these at close
        info.flag_bits = flag_bits
        info.external_attr = external_attr

    def _patch_local_flags(self, header_offset: int, flag_bits: int) -> None:
        end = self._file.tell()
        self._file.seek(header_offset + LOCAL_FLAGS_OFFSET)
        current = struct.unpack("<H", self._file.read(2))[0]
        self._file.seek(header_offset + LOCAL_FLAGS_OFFSET)
        self._file.write(struct.pack("<H", current | flag_bits))
        self._file.seek(end)

    @staticmethod
    def _read_source(src: str, dest: str) -> bytes:
        try:
            with open(src, "rb") as f:
                return f.read()
        except OSError as e:
            raise InputError(f"Cannot read {src} for {dest}: {e}") from e

    def _write_dir(self, dir_path: str, mode: str) -> None:
        if not dir_path.endswith("/"):
            dir_path += "/"
        info = self.make_zipinfo(dir_path, mode)
        info.compress_type = zipfile.ZIP_STORED
        info.external_attr |= (UNIX_DIR_BIT << 16) | MSDOS_DIR_BIT
        self._writestr(info, b"")

    def _write_file(self, path: str, mode: str, src: str) -> None:
        info = self.make_zipinfo(path, mode)
        info.compress_type = self.compression_type
        self._writestr(info, self._read_source(src, path))

    # -------------------------------------------------------------------------
    # Entry dispatch
    # -------------------------------------------------------------------------

    def add_manifest_entry(self, entry: ManifestEntry) -> None:
        """Write the record(s) for one resolved manifest entry."""
        dst_path = entry.dest.strip("/")

        if entry.type == EntryType.TREE:
            self.add_tree(entry.src, dst_path, entry.mode)
            return

        if entry.type == EntryType.DIR:
            # The archive root is implicit
            if dst_path:
                self._write_dir(dst_path, entry.mode)
            return

        if not dst_path:
            source = entry.origin or entry.src
            raise InputError(f"{entry.type.value} entry from {source!r} has no destination")

        if entry.type == EntryType.FILE:
            self._write_file(dst_path, entry.mode, entry.src)
        elif entry.type == EntryType.EMPTY_FILE:
            info = self.make_zipinfo(dst_path, entry.mode)
            info.compress_type = zipfile.ZIP_STORED
            self._writestr(info, b"")
        elif entry.type == EntryType.SYMLINK:
            info = self.make_zipinfo(dst_path, entry.mode)
            info.compress_type = zipfile.ZIP_STORED
            info.external_attr |= UNIX_SYMLINK_BIT << 16
            self._writestr(info, entry.src.encode("utf-8"))
        else:
            raise ValueError(f"Unknown type for manifest entry: {entry}")

    def add_tree(self, tree_top: str, dest_path: str, mode: str = "") -> None:
        """
        Expand a directory tree under dest_path.

        Every directory becomes a stored 0755 record; every file becomes a
        content record using mode, or 0755 when mode is empty. Records are
        written in sorted destination order. Symlinked directories are
        followed and expanded like real ones.

        Raises:
            InputError: If the tree cannot be walked, contains a symlink
                cycle, or a file cannot be read
        """
        tree_top = os.path.normpath(tree_top)
        dest = posixpath.normpath(dest_path.strip("/")) if dest_path.strip("/") else ""

        to_write: Dict[str, Optional[str]] = {}

        def _raise(err: OSError) -> None:
            raise err

        # Real paths of the directories above each pending root
        chains: Dict[str, frozenset] = {tree_top: frozenset()}

        try:
            for root, dirs, files in os.walk(tree_top, onerror=_raise, followlinks=True):
                real_root = os.path.realpath(root)
                chain = chains.pop(root)
                if real_root in chain:
                    raise InputError(f"Symlink cycle in tree {tree_top} at {root}")
                chain = chain | {real_root}
                dirs.sort()
                for name in dirs:
                    chains[os.path.join(root, name)] = chain
                rel_path = os.path.relpath(root, tree_top).replace(os.sep, "/")
                dest_dir = dest if rel_path == "." else posixpath.join(dest, rel_path)
                to_write[dest_dir] = None
                for name in sorted(files):
                    to_write[posixpath.join(dest_dir, name)] = os.path.join(root, name)
        except OSError as e:
            raise InputError(f"Cannot walk tree {tree_top} for {dest_path}: {e}") from e

        for path in sorted(to_write):
            content_path = to_write[path]
            if content_path is None:
                if path:
                    self._write_dir(path, TREE_MODE)
                continue

            f_mode = mode
            if not f_mode:
                # Empty falls through to the writer default in make_zipinfo
                f_mode = TREE_MODE if os.path.exists(content_path) else ""
            self._write_file(path, f_mode, content_path)


# =============================================================================
# Driver
# =============================================================================


def build_zip(
    manifest_path: Path,
    output_path: Path,
    prefix: str = "/",
    timestamp: int = ZIP_EPOCH,
    status_file: Optional[Path] = None,
    default_mode: str = "",
    compression_type: str = "",
    compression_level: str = "",
    report: Optional[TextIO] = None,
) -> None:
    """Resolve a manifest file and write it to output_path.

    When report is given, each resolved destination is written to it, in
    order, before the archive is built.
    """
    unix_ts = resolve_timestamp(timestamp, status_file)
    entries = load_manifest(prefix, manifest_path)
    if report is not None:
        report_manifest(entries, report)

    with ZipWriter(
        output_path,
        unix_ts,
        default_mode=default_mode,
        compression_type=compression_type,
        compression_level=compression_level,
    ) as writer:
        for entry in entries:
            writer.add_manifest_entry(entry)


DESCRIPTION = "Create a deterministic ZIP archive from a manifest"


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-o", "--output", type=Path, required=True, help="The output zip file path")
    parser.add_argument(
        "-d",
        "--directory",
        default="/",
        help="An absolute path to use as a prefix for all files in the zip",
    )
    parser.add_argument(
        "-t",
        "--timestamp",
        type=int,
        default=ZIP_EPOCH,
        help="The unix time to use for files added into the zip; values before 1980 are ignored",
    )
    parser.add_argument("--stamp_from", default="", help="File to find BUILD_TIMESTAMP in")
    parser.add_argument(
        "-m",
        "--mode",
        default="",
        help="The file system mode to use for files added into the zip",
    )
    parser.add_argument(
        "-c",
        "--compression_type",
        default="",
        help="The compression type to use (deflated or stored)",
    )
    parser.add_argument(
        "-l", "--compression_level", default="", help="The compression level to use"
    )
    parser.add_argument(
        "--manifest", type=Path, required=True, help="Manifest of contents to add to the zip"
    )


def run(args: argparse.Namespace) -> int:
    build_zip(
        args.manifest,
        args.output,
        prefix=args.directory,
        timestamp=args.timestamp,
        status_file=Path(args.stamp_from) if args.stamp_from else None,
        default_mode=args.mode,
        compression_type=args.compression_type,
        compression_level=args.compression_level,
        report=sys.stdout,
    )
    print(f"Created {args.output}", file=sys.stderr)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=DESCRIPTION)
    add_arguments(parser)
    return run_cli(run, parser.parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
