from __future__ import annotations

import os
import sys
import time
from pathlib import Path

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from recordkit.io.fs import check_name_matches, delete_files_older_than  # noqa: E402

N_DAY = 86_400


def _touch(path: Path, *, age_days: float) -> Path:
    path.write_bytes(b"x")
    n_mtime = time.time() - age_days * N_DAY
    os.utime(path, (n_mtime, n_mtime))
    return path


def test_only_expired_matching_files_are_deleted(tmp_path: Path) -> None:
    path_old = _touch(tmp_path / "old.xlsx", age_days=61)
    path_old_upper = _touch(tmp_path / "OLD2.XLSX", age_days=90)
    path_fresh = _touch(tmp_path / "fresh.xlsx", age_days=1)
    path_other = _touch(tmp_path / "old.csv", age_days=400)
    (tmp_path / "nested.xlsx").mkdir()

    assert delete_files_older_than(tmp_path, 60) == 2

    assert not path_old.exists()
    assert not path_old_upper.exists()
    assert path_fresh.exists()
    assert path_other.exists()
    assert (tmp_path / "nested.xlsx").is_dir()


def test_custom_patterns_and_reference_time(tmp_path: Path) -> None:
    path_csv = _touch(tmp_path / "a.csv", age_days=0)
    n_now = time.time() + 3 * N_DAY

    assert delete_files_older_than(tmp_path, 2, patterns=("*.csv",), now=n_now) == 1
    assert not path_csv.exists()


def test_missing_directory_and_negative_window_are_noops(tmp_path: Path) -> None:
    path_old = _touch(tmp_path / "old.xlsx", age_days=100)

    assert delete_files_older_than(tmp_path / "missing", 1) == 0
    assert delete_files_older_than(tmp_path, -1) == 0
    assert path_old.exists()


def test_name_matching_is_case_insensitive() -> None:
    assert check_name_matches("Report.XLSX", ("*.xlsx",))
    assert not check_name_matches("report.xlsx.part", ("*.xlsx",))
