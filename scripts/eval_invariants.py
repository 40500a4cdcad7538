#!/usr/bin/env python3
from __future__ import annotations

import hashlib
import json
import sys
import tempfile
import zipfile
from pathlib import Path

TIMESTAMP = 1700000000


def _write_sample(root: Path) -> Path:
    tree = root / "tree"
    (tree / "sub").mkdir(parents=True)
    (tree / "sub" / "f.txt").write_text("tree file\n", encoding="utf-8")
    (tree / "top.txt").write_text("top\n", encoding="utf-8")
    readme = root / "README"
    readme.write_text("sample\n", encoding="utf-8")

    manifest = [
        {"type": "file", "dest": "doc/README", "src": str(readme), "mode": "0644"},
        {"type": "tree", "dest": "share/data", "src": str(tree)},
        {"type": "symlink", "dest": "bin/readme", "src": "../doc/README"},
        {"type": "empty-file", "dest": "var/.keep"},
        {"type": "dir", "dest": "tmp"},
    ]
    manifest_path = root / "manifest.json"
    manifest_path.write_text(json.dumps(manifest), encoding="utf-8")
    return manifest_path


def main() -> int:
    root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(root))

    import pkgzip_zip

    checks = []

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp_path = Path(tmpdir)
        manifest_path = _write_sample(tmp_path)

        digests = []
        for name in ("first.zip", "second.zip"):
            out_zip = tmp_path / name
            pkgzip_zip.build_zip(manifest_path, out_zip, prefix="/opt", timestamp=TIMESTAMP)
            digests.append(hashlib.sha256(out_zip.read_bytes()).hexdigest())

        checks.append(
            {
                "id": "byte-identical",
                "passed": digests[0] == digests[1],
                "details": f"sha256:{digests[0]}",
            }
        )

        with zipfile.ZipFile(tmp_path / "first.zip") as zf:
            infos = zf.infolist()
        names = [info.filename for info in infos]

        stamps = {info.date_time for info in infos}
        checks.append(
            {
                "id": "single-timestamp",
                "passed": len(stamps) == 1,
                "details": f"{len(stamps)} distinct timestamp(s)",
            }
        )

        missing = []
        for name in names:
            parts = name.rstrip("/").split("/")
            for i in range(1, len(parts)):
                parent = "/".join(parts[:i]) + "/"
                if parent not in names:
                    missing.append(parent)
        checks.append(
            {
                "id": "parents-present",
                "passed": not missing,
                "details": (
                    "All parent directories present" if not missing else f"Missing: {missing}"
                ),
            }
        )

        compressed_dirs = [
            info.filename
            for info in infos
            if info.is_dir() and info.compress_type != zipfile.ZIP_STORED
        ]
        checks.append(
            {
                "id": "dirs-stored",
                "passed": not compressed_dirs,
                "details": (
                    "Directories are stored"
                    if not compressed_dirs
                    else f"Compressed: {compressed_dirs}"
                ),
            }
        )

        checks.append(
            {
                "id": "sorted-names",
                "passed": [n.rstrip("/") for n in names] == sorted(n.rstrip("/") for n in names),
                "details": f"{len(names)} records",
            }
        )

    passed = all(check["passed"] for check in checks)
    result = {"passed": passed, "checks": checks}
    print(json.dumps(result, indent=2))
    return 0 if passed else 1


if __name__ == "__main__":
    raise SystemExit(main())
