from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

import pkgzip_manifest
from pkgzip_errors import InputError
from pkgzip_manifest import EntryType, ManifestEntry


def _file(dest: str, src: str = "src", mode: str = "", origin: str = "") -> ManifestEntry:
    return ManifestEntry(type=EntryType.FILE, dest=dest, src=src, mode=mode, origin=origin)


@pytest.mark.parametrize(
    ("prefix", "dest", "expected"),
    [
        ("/usr/", "/lib/x", "usr/lib/x"),
        ("", "a/b", "a/b"),
        ("/", "/a.txt", "a.txt"),
        ("/", "a.txt", "a.txt"),
        ("opt//", "//bin/tool", "opt/bin/tool"),
        ("/", "/", ""),
    ],
)
def test_combine_paths(prefix: str, dest: str, expected: str) -> None:
    assert pkgzip_manifest.combine_paths(prefix, dest) == expected


def test_resolve_empty_manifest_is_empty() -> None:
    assert pkgzip_manifest.resolve_manifest("/", []) == []


def test_resolve_single_top_level_file() -> None:
    entries = pkgzip_manifest.resolve_manifest("/", [_file("/a.txt", src="./a.txt", mode="644")])
    assert entries == [_file("a.txt", src="./a.txt", mode="644")]


def test_resolve_last_entry_wins() -> None:
    first = _file("x/y.txt", src="first", mode="600")
    second = _file("x/y.txt", src="second")
    entries = pkgzip_manifest.resolve_manifest("", [first, second])

    files = [e for e in entries if e.type == EntryType.FILE]
    assert files == [second]


def test_resolve_synthesizes_parent_directories() -> None:
    entries = pkgzip_manifest.resolve_manifest("/", [_file("a/b/c", origin="//pkg:c")])
    by_dest = {e.dest: e for e in entries}

    assert [e.dest for e in entries] == ["a", "a/b", "a/b/c"]
    for parent in ("a", "a/b"):
        entry = by_dest[parent]
        assert entry.type == EntryType.DIR
        assert entry.mode == pkgzip_manifest.DEFAULT_DIR_MODE
        assert entry.src == ""
        assert (entry.uid, entry.gid, entry.user, entry.group) == (0, 0, "", "")
        assert entry.origin == "parent directory of //pkg:c"


def test_resolve_keeps_explicit_directory_over_synthesized() -> None:
    explicit = ManifestEntry(type=EntryType.DIR, dest="x", mode="0700", origin="explicit")
    entries = pkgzip_manifest.resolve_manifest("/", [_file("x/y.txt"), explicit])
    assert entries[0] == explicit


def test_resolve_trailing_slash_names_one_directory() -> None:
    explicit = ManifestEntry(type=EntryType.DIR, dest="a/b/", mode="0700")
    entries = pkgzip_manifest.resolve_manifest("/", [explicit, _file("a/b/c")])

    assert [e.dest for e in entries] == ["a", "a/b", "a/b/c"]
    assert entries[1] == explicit._replace(dest="a/b")


def test_resolve_trailing_slash_duplicate_collapses_to_last() -> None:
    first = ManifestEntry(type=EntryType.DIR, dest="d", mode="0755")
    second = ManifestEntry(type=EntryType.DIR, dest="/d/", mode="0700")
    entries = pkgzip_manifest.resolve_manifest("/", [first, second])
    assert entries == [second._replace(dest="d")]


def test_resolve_prefix_is_applied_before_parent_walk() -> None:
    entries = pkgzip_manifest.resolve_manifest("/opt/app", [_file("bin/tool")])
    assert [e.dest for e in entries] == ["opt", "opt/app", "opt/app/bin", "opt/app/bin/tool"]


def test_resolve_output_is_sorted_and_unique() -> None:
    raw = [
        _file("z/last"),
        _file("a/b/c"),
        _file("a.txt"),
        _file("a/b/c"),
        _file("m/n/o/p"),
        _file("a/b-c"),
    ]
    dests = [e.dest for e in pkgzip_manifest.resolve_manifest("/", raw)]
    assert dests == sorted(dests)
    assert len(dests) == len(set(dests))
    for dest in dests:
        parts = dest.split("/")
        for i in range(1, len(parts)):
            assert "/".join(parts[:i]) in dests


def test_resolve_root_destination_is_kept() -> None:
    root_dir = ManifestEntry(type=EntryType.DIR, dest="/")
    entries = pkgzip_manifest.resolve_manifest("/", [root_dir])
    assert entries == [root_dir._replace(dest="")]


def test_resolve_does_not_modify_input() -> None:
    raw = [_file("/a/b")]
    pkgzip_manifest.resolve_manifest("/prefix", raw)
    assert raw == [_file("/a/b")]


def test_report_manifest_lists_destinations_in_order() -> None:
    entries = pkgzip_manifest.resolve_manifest("/", [_file("x/y.txt"), _file("a")])
    out = io.StringIO()
    pkgzip_manifest.report_manifest(entries, out)
    assert out.getvalue() == "a\nx\nx/y.txt\n"


def test_read_entries_decodes_all_fields() -> None:
    data = [
        {
            "type": "symlink",
            "dest": "/bin/sh",
            "src": "busybox",
            "mode": "0777",
            "user": "root",
            "group": "wheel",
            "uid": 0,
            "gid": 10,
            "origin": "//base:sh",
        }
    ]
    (entry,) = pkgzip_manifest.read_entries(data)
    assert entry == ManifestEntry(
        type=EntryType.SYMLINK,
        dest="/bin/sh",
        src="busybox",
        mode="0777",
        user="root",
        group="wheel",
        uid=0,
        gid=10,
        origin="//base:sh",
    )


def test_read_entries_nulls_become_zero_values() -> None:
    data = [{"type": "dir", "dest": "d", "src": None, "mode": None, "uid": None, "gid": None}]
    (entry,) = pkgzip_manifest.read_entries(data)
    assert entry == ManifestEntry(type=EntryType.DIR, dest="d")


@pytest.mark.parametrize(
    ("data", "match"),
    [
        ({"type": "file"}, r"\$: .* is not of type 'array'"),
        ([{"type": "socket", "dest": "x"}], r"\$\[0\]\.type"),
        ([{"type": "file"}], r"'dest' is a required property"),
        ([{"type": "file", "dest": "x", "uid": "0"}], r"\$\[0\]\.uid"),
    ],
)
def test_read_entries_rejects_invalid_documents(data: object, match: str) -> None:
    with pytest.raises(InputError, match=match):
        pkgzip_manifest.read_entries(data)


def test_read_entries_from_file_rejects_malformed_json(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text("[{", encoding="utf-8")
    with pytest.raises(InputError, match="Malformed manifest"):
        pkgzip_manifest.read_entries_from_file(path)


def test_read_entries_from_file_missing(tmp_path: Path) -> None:
    with pytest.raises(InputError, match="Cannot read manifest"):
        pkgzip_manifest.read_entries_from_file(tmp_path / "missing.json")


def test_load_manifest_resolves_file(write_manifest) -> None:
    path = write_manifest(
        [
            {"type": "file", "dest": "x/y.txt", "src": "y.txt", "mode": ""},
            {"type": "empty-file", "dest": "x/.keep"},
        ]
    )
    entries = pkgzip_manifest.load_manifest("/", path)
    assert [(e.type, e.dest) for e in entries] == [
        (EntryType.DIR, "x"),
        (EntryType.EMPTY_FILE, "x/.keep"),
        (EntryType.FILE, "x/y.txt"),
    ]


def test_entry_to_json_matches_manifest_fields() -> None:
    entry = _file("a", src="b", mode="644", origin="o")
    payload = entry.to_json()
    assert payload["type"] == "file"
    assert pkgzip_manifest.read_entries([payload]) == [entry]
    json.dumps(payload)
