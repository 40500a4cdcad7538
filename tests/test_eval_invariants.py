from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path


def test_eval_invariants_pass(repo_root: Path) -> None:
    result = subprocess.run(
        [sys.executable, str(repo_root / "scripts" / "eval_invariants.py")],
        capture_output=True,
        text=True,
        check=False,
    )

    assert result.returncode == 0, result.stdout + result.stderr
    report = json.loads(result.stdout)
    assert report["passed"] is True
    assert {check["id"] for check in report["checks"]} == {
        "byte-identical",
        "single-timestamp",
        "parents-present",
        "dirs-stored",
        "sorted-names",
    }
