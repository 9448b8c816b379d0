from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.mark.parametrize(
    "module",
    [
        "ul_cli.main",
        "ul_api.app",
        "ul_core.keys.key_store",
        "ul_core.namespaces",
        "ul_core.namespaces.version_service",
        "ul_core.builds",
        "ul_core.jobs",
    ],
)
def test_module_imports_in_a_fresh_interpreter(module: str) -> None:
    completed = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=REPO_ROOT,
        capture_output=True,
        text=True,
        check=False,
    )

    assert completed.returncode == 0, completed.stderr
