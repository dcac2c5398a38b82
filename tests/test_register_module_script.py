from __future__ import annotations

import hashlib
import subprocess
import sys
from pathlib import Path

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "register_module.py"


def _run_script(*args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_register_script_emits_hash_of_given_key() -> None:
    output = _run_script("--module-id", "local-scheduler", "--api-key", "local-scheduler-key", "--scope", "sync:read")

    expected_hash = hashlib.sha256(b"local-scheduler-key").hexdigest()
    assert "insert into modules" in output
    assert "values ('local-scheduler', array['sync:read']::text[], true)" in output
    assert f"select id, '{expected_hash}', true" in output
    assert "local-scheduler-key" not in output.replace("'local-scheduler'", "")


def test_register_script_generates_key_and_grants_default_scopes() -> None:
    output = _run_script("--module-id", "o'brien")

    assert "-- generated api key" in output
    assert "'o''brien'" in output
    assert "'reconcile:write', 'sync:read', 'sync:write'" in output
