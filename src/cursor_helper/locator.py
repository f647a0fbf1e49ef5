"""Locate workspaceStorage entries for a project path.

Each ``workspaceStorage/<id>/`` directory carries a ``workspace.json`` naming
the folder it belongs to. The directory name is normally the content hash of
that folder, but hashes are not reproducible everywhere (Linux birth times,
moved folders), so lookups scan the recorded folder URIs instead.
"""

import json
import logging
import os
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from . import folder_uri
from .core import FolderLocation, WorkspaceRecord
from .errors import FatalIOError
from .store import LEGACY_CHAT_PREFIX, composer_ids, connect_readonly, read_item

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _exists(path: str) -> bool:
    return os.path.exists(path)


def _is_windows() -> bool:
    return sys.platform == "win32"


def read_folder_uri(ws_dir: Path) -> str | None:
    """Return the ``folder`` URI from a workspace.json, or None."""
    ws_json = ws_dir / "workspace.json"
    if not ws_json.exists():
        return None
    try:
        data = json.loads(ws_json.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read workspace.json in %s: %s", ws_dir, e)
        return None
    if not isinstance(data, dict):
        return None
    # Multi-root workspaces store "workspace" instead of "folder"
    folder = data.get("folder")
    return folder if isinstance(folder, str) and folder else None


def iter_workspaces(storage_dir: Path) -> Iterator[tuple[Path, str]]:
    """Yield ``(workspace_dir, folder_uri)`` for every single-folder workspace.

    Raises:
        FatalIOError: if the storage directory itself cannot be listed.
    """
    try:
        entries = sorted(storage_dir.iterdir())
    except OSError as e:
        raise FatalIOError(f"Failed to read {storage_dir}: {e}") from e

    for ws_dir in entries:
        if not ws_dir.is_dir():
            continue
        uri = read_folder_uri(ws_dir)
        if uri:
            yield ws_dir, uri


def normalize_local_path(path: str, windows: bool | None = None) -> str:
    """Comparison key for local folder paths.

    Trailing separators are ignored everywhere. On Windows, drive letters and
    path case are ignored and both separators are treated alike.
    """
    if windows is None:
        windows = _is_windows()
    if windows:
        path = path.replace("\\", "/").lower()
    return path.rstrip("/") or "/"


def _leaf(path: str) -> str:
    return path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]


def _find_local(
    project: str, entries: list[tuple[Path, str]]
) -> tuple[Path, FolderLocation] | None:
    target = normalize_local_path(project)
    for ws_dir, uri in entries:
        location = folder_uri.parse(uri)
        if location is None or location.is_remote:
            continue
        if normalize_local_path(location.path) == target:
            return ws_dir, location
    return None


def _find_remote(project: str, entries: list[tuple[Path, str]]) -> Path | None:
    search = project.rstrip("/")
    remotes = []
    for ws_dir, uri in entries:
        location = folder_uri.parse(uri)
        if location is not None and location.is_remote:
            remotes.append((ws_dir, location.path.rstrip("/")))

    for ws_dir, remote_path in remotes:
        if remote_path == search:
            return ws_dir

    # Last resort: several hosts can share a leaf directory name
    search_name = _leaf(search)
    if not search_name:
        return None
    for ws_dir, remote_path in remotes:
        if _leaf(remote_path) == search_name:
            logger.info("Matched remote workspace %s by folder name only", ws_dir.name)
            return ws_dir
    return None


def find_workspace_dir(project_path: "str | os.PathLike[str]", storage_dir: Path) -> Path | None:
    """Find the workspaceStorage directory for a project.

    A path that exists locally is matched against ``file://`` workspaces.
    Otherwise it is treated as a path on a remote machine and matched against
    ``vscode-remote://`` workspaces, first by full path, then by folder name.
    Returns None when no workspace matches.
    """
    if not storage_dir.is_dir():
        return None

    project = os.fspath(project_path)
    entries = list(iter_workspaces(storage_dir))

    if _exists(project):
        found = _find_local(project, entries)
        return found[0] if found else None

    return _find_remote(project, entries)


def find_existing_workspace(
    project_path: "str | os.PathLike[str]", storage_dir: Path
) -> tuple[str, str] | None:
    """Return ``(recorded_path, storage_id)`` for a local project, or None.

    ``recorded_path`` is the path as Cursor stored it, which can differ from
    the caller's spelling (e.g. ``/tmp`` vs ``/private/tmp`` on macOS).
    """
    if not storage_dir.is_dir():
        return None
    found = _find_local(os.fspath(project_path), list(iter_workspaces(storage_dir)))
    if found is None:
        return None
    ws_dir, location = found
    return location.path, ws_dir.name


def count_chat_sessions(ws_dir: Path) -> int:
    """Count chat sessions recorded in a workspace's state.vscdb.

    Counts composer sessions plus legacy ``workbench.panel.aichat.<uuid>.*``
    panel entries. Any read failure counts as zero.
    """
    db_path = ws_dir / "state.vscdb"
    if not db_path.exists():
        return 0

    try:
        conn = connect_readonly(db_path)
    except FatalIOError as e:
        logger.debug("Cannot count chats in %s: %s", ws_dir, e)
        return 0

    try:
        ids = set(composer_ids(read_item(conn, "composer.composerData")))
        rows = conn.execute(
            "SELECT key FROM ItemTable WHERE key LIKE ?", (LEGACY_CHAT_PREFIX + "%",)
        ).fetchall()
    except sqlite3.Error as e:
        logger.debug("Cannot count chats in %s: %s", ws_dir, e)
        return 0
    finally:
        conn.close()

    for (key,) in rows:
        legacy_id = key[len(LEGACY_CHAT_PREFIX):].split(".", 1)[0]
        if legacy_id:
            ids.add(legacy_id)
    return len(ids)


def list_workspaces(storage_dir: Path) -> list[WorkspaceRecord]:
    """Return every single-folder workspace, most recently modified first."""
    if not storage_dir.is_dir():
        return []

    records = []
    for ws_dir, uri in iter_workspaces(storage_dir):
        location = folder_uri.parse(uri)
        if location is None:
            logger.warning("Invalid folder URL in %s: %s", ws_dir / "workspace.json", uri)
            continue

        try:
            mtime = datetime.fromtimestamp(ws_dir.stat().st_mtime, tz=timezone.utc)
        except (OSError, ValueError, OverflowError):
            mtime = None

        records.append(WorkspaceRecord(
            storage_id=ws_dir.name,
            location=location,
            storage_dir=ws_dir,
            last_modified=mtime,
            chat_count=count_chat_sessions(ws_dir),
        ))

    records.sort(key=lambda r: r.path)
    records.sort(key=lambda r: r.last_modified or _EPOCH, reverse=True)
    return records


def filter_workspaces(records: list[WorkspaceRecord], pattern: str | None) -> list[WorkspaceRecord]:
    """Keep ``local`` or ``remote`` workspaces, or those whose path contains ``pattern``."""
    if not pattern:
        return records
    if pattern == "local":
        return [r for r in records if not r.location.is_remote]
    if pattern == "remote":
        return [r for r in records if r.location.is_remote]
    return [r for r in records if pattern in r.path]


def sort_workspaces(
    records: list[WorkspaceRecord], sort: str = "modified", reverse: bool = False
) -> list[WorkspaceRecord]:
    """Sort by ``name``, ``chats`` or ``modified`` (the listing order)."""
    if sort == "name":
        records = sorted(records, key=lambda r: r.path)
    elif sort == "chats":
        records = sorted(records, key=lambda r: r.chat_count, reverse=True)
    if reverse:
        records = list(reversed(records))
    return records
