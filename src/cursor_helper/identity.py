"""Project identity: the two ids Cursor derives from a project path.

Cursor keeps per-project data in two places, keyed differently:

- ``~/.cursor/projects/<slug id>/``: the path with separators and dots
  replaced by dashes (``/Users/me/.claude`` -> ``Users-me-claude``).
- ``workspaceStorage/<content hash>/``: ``md5(path + round(birthtime_ms))``.

Neither id is interchangeable with the other, and both are computed from the
path exactly as Cursor saw it, so paths are never symlink-resolved here.
"""

import hashlib
import logging
import math
import os
import re
import sys

from .errors import MetadataUnavailable

logger = logging.getLogger(__name__)

_SLUG_SEPARATORS = re.compile(r"[/\\.]")
_DASH_RUNS = re.compile(r"-{2,}")


def to_slug_id(path: "str | os.PathLike[str]") -> str:
    """Convert an absolute path to the folder id used under ~/.cursor/projects.

    The root path yields an empty string.
    """
    slug = _SLUG_SEPARATORS.sub("-", os.fspath(path))
    slug = _DASH_RUNS.sub("-", slug)
    return slug.strip("-")


def clean_path(path: "str | os.PathLike[str]") -> str:
    """Make a path absolute and collapse ``.``/``..`` without following symlinks."""
    return os.path.abspath(os.fspath(path))


def normalize_path_for_hash(path: str, windows: bool | None = None) -> str:
    """Lowercase the drive letter on Windows (``C:\\x`` -> ``c:\\x``)."""
    if windows is None:
        windows = sys.platform == "win32"
    if windows and len(path) >= 2 and path[1] == ":" and path[0].isalpha():
        return path[0].lower() + path[1:]
    return path


def birthtime_ms(st: os.stat_result) -> float:
    """Return a directory's creation time in milliseconds.

    Linux filesystems rarely expose a birth time through ``os.stat``; there the
    inode change time is used instead, which can drift from Cursor's own value.
    """
    birth_ns = getattr(st, "st_birthtime_ns", None)
    if birth_ns is not None:
        return birth_ns / 1_000_000
    birth = getattr(st, "st_birthtime", None)
    if birth is not None:
        return birth * 1000.0
    if sys.platform != "win32":
        logger.debug("No birth time available, falling back to ctime")
    return st.st_ctime_ns / 1_000_000


def js_round(value: float) -> int:
    """Round half up, like JavaScript's ``Math.round``."""
    return math.floor(value + 0.5)


def hash_with_birthtime(path_str: str, birth_ms: float) -> str:
    """Compute the workspace-storage hash for an already normalized path."""
    payload = f"{path_str}{js_round(birth_ms)}".encode("utf-8")
    return hashlib.md5(payload, usedforsecurity=False).hexdigest()


def to_content_hash(path: "str | os.PathLike[str]") -> str:
    """Compute the workspaceStorage directory name for an existing directory.

    Raises:
        MetadataUnavailable: if the path cannot be stat-ed.
    """
    path_str = os.fspath(path)
    try:
        st = os.stat(path_str)
    except OSError as e:
        raise MetadataUnavailable(f"Failed to get metadata for {path_str}: {e}") from e

    return hash_with_birthtime(normalize_path_for_hash(path_str), birthtime_ms(st))
