from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, List

import pytest


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small tree artifact: top.txt, sub/f.txt, sub/deeper/g.bin."""
    root = tmp_path / "tree"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "top.txt").write_text("top\n", encoding="utf-8")
    (root / "sub" / "f.txt").write_text("nested file\n", encoding="utf-8")
    (root / "sub" / "deeper" / "g.bin").write_bytes(b"\x00\x01\x02")
    return root


@pytest.fixture
def write_manifest(tmp_path: Path) -> Callable[[List[dict]], Path]:
    def _write(entries: List[dict], name: str = "manifest.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(entries), encoding="utf-8")
        return path

    return _write
