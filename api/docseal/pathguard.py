"""
Path validation for every filesystem access made by the pipeline.

Paths coming from callers or from the record store are resolved against a
base directory and rejected unless the canonical result stays inside it.
"""

import os
import tempfile
from typing import Iterable, Optional

from . import config
from .errors import SecurityError
from .logger import get_logger

log = get_logger(__name__)


def _is_within(path: str, base: str) -> bool:
    return path == base or path.startswith(base.rstrip(os.sep) + os.sep)


def resolve(path: str, allowed_base: Optional[str] = None, allowed_bases: Optional[Iterable[str]] = None) -> str:
    """
    Canonicalize ``path`` and check it against the allowed base directories.

    Relative paths are joined to ``allowed_base`` (or resolved from the working
    directory when only the allow-list is used). Raises SecurityError when the
    canonical path falls outside every allowed base.
    """
    if not isinstance(path, (str, os.PathLike)) or not str(path).strip():
        log.error("SECURITY: empty or invalid path rejected: {!r}", path)
        raise SecurityError("invalid path")
    raw = os.fspath(path)
    if "\x00" in raw:
        log.error("SECURITY: path with NUL byte rejected: {!r}", raw)
        raise SecurityError("invalid path")

    if allowed_base is not None:
        bases = [os.path.realpath(allowed_base)]
        candidate = os.path.realpath(os.path.join(bases[0], raw))
    else:
        bases = [os.path.realpath(b) for b in (allowed_bases or config.ALLOWED_BASE_DIRS)]
        candidate = os.path.realpath(raw)

    for base in bases:
        if _is_within(candidate, base):
            return candidate

    log.error(
        "SECURITY: path traversal attempt blocked: input={!r} resolved={!r} allowed={}",
        raw, candidate, ", ".join(bases),
    )
    raise SecurityError("access denied: path outside allowed directories")


def read_bytes(path: str, allowed_base: Optional[str] = None) -> bytes:
    with open(resolve(path, allowed_base), "rb") as fh:
        return fh.read()


def write_bytes(path: str, data: bytes, allowed_base: Optional[str] = None) -> str:
    """Write through a sibling temp file; readers see the old or the new bytes, never a mix."""
    target = resolve(path, allowed_base)
    directory = os.path.dirname(target)
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix="." + os.path.basename(target) + ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, target)
    except BaseException:
        try:
            os.remove(tmp)
        except FileNotFoundError:
            pass
        raise
    return target


def remove(path: str, allowed_base: Optional[str] = None) -> bool:
    target = resolve(path, allowed_base)
    try:
        os.remove(target)
    except FileNotFoundError:
        return False
    return True


def ensure_directories():
    for base in config.ALLOWED_BASE_DIRS:
        os.makedirs(base, exist_ok=True)
