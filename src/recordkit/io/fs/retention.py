import os
import time
from collections.abc import Sequence
from fnmatch import fnmatchcase
from pathlib import Path

from loguru import logger

N_SECONDS_PER_DAY = 86_400


def check_name_matches(name: str, patterns: Sequence[str]) -> bool:
    """Case-insensitive glob match of a bare file name against any pattern."""
    c_name_lower = name.lower()
    return any(fnmatchcase(c_name_lower, _pat.lower()) for _pat in patterns)


def delete_files_older_than(
    dir_target: os.PathLike[str] | str,
    days: int,
    *,
    patterns: Sequence[str] = ("*.xlsx",),
    now: float | None = None,
) -> int:
    """Delete regular files in ``dir_target`` last modified more than ``days`` ago.

    Only direct children whose name matches one of ``patterns`` are considered;
    subdirectories and symlinks are left alone.

    Args:
        dir_target: Directory to sweep.
        days: Retention window in days. Negative values disable the sweep.
        patterns: Glob patterns of eligible file names.
        now: Reference epoch seconds; defaults to the current time.

    Returns:
        Number of files deleted. Listing and per-file failures are logged and
        not raised.
    """
    path_dir = Path(dir_target)
    if days < 0 or not path_dir.is_dir():
        return 0

    n_cutoff = (time.time() if now is None else now) - days * N_SECONDS_PER_DAY
    n_deleted = 0
    try:
        it_entries = os.scandir(path_dir)
    except OSError as e:
        logger.warning(f"Cannot list `{path_dir}` for retention sweep: {e}")
        return 0

    with it_entries:
        for _entry in it_entries:
            if not check_name_matches(_entry.name, patterns):
                continue
            try:
                if not _entry.is_file(follow_symlinks=False):
                    continue
                if _entry.stat(follow_symlinks=False).st_mtime >= n_cutoff:
                    continue
                os.remove(_entry.path)
            except OSError as e:
                logger.warning(f"Cannot delete expired file `{_entry.path}`: {e}")
                continue
            n_deleted += 1
            logger.debug(f"Deleted expired file `{_entry.path}`.")
    return n_deleted
