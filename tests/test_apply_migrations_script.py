from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "apply_migrations.py"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        capture_output=True,
        text=True,
    )


def test_dry_run_prints_migrations_in_order() -> None:
    completed = _run_script("--dry-run")

    assert completed.returncode == 0
    assert "-- migration: 0001_jobsync_schema.sql" in completed.stdout
    assert "create table if not exists jobs" in completed.stdout.lower()
    assert "create table if not exists sync_runs" in completed.stdout.lower()


def test_dry_run_with_custom_directory(tmp_path: Path) -> None:
    (tmp_path / "0002_second.sql").write_text("select 2;\n", encoding="utf-8")
    (tmp_path / "0001_first.sql").write_text("select 1;\n", encoding="utf-8")

    completed = _run_script("--dry-run", "--migrations-dir", str(tmp_path))

    assert completed.returncode == 0
    assert completed.stdout.index("0001_first.sql") < completed.stdout.index("0002_second.sql")


def test_missing_database_url_is_an_error(tmp_path: Path) -> None:
    (tmp_path / "0001_first.sql").write_text("select 1;\n", encoding="utf-8")

    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), "--migrations-dir", str(tmp_path)],
        capture_output=True,
        text=True,
        env={key: value for key, value in os.environ.items() if key != "JOBSYNC_DATABASE_URL"},
    )

    assert completed.returncode == 2
    assert "JOBSYNC_DATABASE_URL is required" in completed.stderr
