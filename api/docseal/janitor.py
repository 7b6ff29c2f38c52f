"""Removal of stale temporary and staging files."""

import errno
import os
import time
from typing import Iterable, List, Optional, Tuple

from . import config
from .logger import get_logger

log = get_logger(__name__)


def _mtime(path: str) -> Optional[float]:
    try:
        return os.lstat(path).st_mtime
    except FileNotFoundError:
        return None


def _snapshot(directory: str) -> Tuple[List[Tuple[str, float]], List[Tuple[str, float]]]:
    # mtimes are read before anything is removed; deleting a file bumps its parent's mtime
    files, dirs = [], []
    for root, subdirs, names in os.walk(directory):
        for name in subdirs:
            path = os.path.join(root, name)
            mtime = _mtime(path)
            if mtime is not None:
                dirs.append((path, mtime))
        for name in names:
            path = os.path.join(root, name)
            mtime = _mtime(path)
            if mtime is not None:
                files.append((path, mtime))
    return files, dirs


def sweep(directories: Optional[Iterable[str]] = None, max_age: Optional[int] = None, now: Optional[float] = None) -> int:
    """
    Delete files older than ``max_age`` seconds; returns how many were removed.

    Stale directories left empty are removed in the same pass, deepest first.
    Entries that vanish mid-sweep (a conversion cleaning up its own work dir)
    are treated as already gone.
    """
    directories = list(directories or (config.TEMP_DIR, config.STAGING_DIR))
    max_age = config.TEMP_MAX_AGE_SECONDS if max_age is None else max_age
    cutoff = (now if now is not None else time.time()) - max_age
    removed = 0
    for directory in directories:
        if not os.path.isdir(directory):
            continue
        files, dirs = _snapshot(directory)
        for path, mtime in files:
            if mtime >= cutoff:
                continue
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                log.warning("Could not remove {}: {}", path, exc)
                continue
            removed += 1
        for path, mtime in sorted(dirs, key=lambda entry: entry[0].count(os.sep), reverse=True):
            if mtime >= cutoff:
                continue
            try:
                os.rmdir(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                # still holds fresh files
                if exc.errno not in (errno.ENOTEMPTY, errno.EEXIST):
                    log.warning("Could not remove directory {}: {}", path, exc)
    if removed:
        log.info("Janitor removed {} stale file(s)", removed)
    return removed
