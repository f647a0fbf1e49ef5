"""Move, copy, clone, back up, restore and clean Cursor project metadata.

A project's metadata lives in three places:

- ``~/.cursor/projects/<slug id>/``
- ``workspaceStorage/<content hash>/`` (with ``workspace.json`` naming the folder)
- ``globalStorage/storage.json`` (references by folder URI)

Operations check their preconditions before touching anything. Directory
moves are not atomic: a cross-filesystem move copies, verifies, then removes
the source, and an interrupted run has to be retried by hand.
"""

import errno
import filecmp
import io
import json
import logging
import os
import shutil
import sqlite3
import tarfile
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import psutil

from . import folder_uri
from .config import CursorPaths
from .errors import FatalIOError, NotFound, PreconditionFailure
from .identity import (
    birthtime_ms,
    clean_path,
    hash_with_birthtime,
    normalize_path_for_hash,
    to_content_hash,
    to_slug_id,
)
from .locator import count_chat_sessions, find_existing_workspace, find_workspace_dir, iter_workspaces
from .manifest import MANIFEST_NAME, BackupContents, MigrationManifest
from .store import LEGACY_CHAT_PREFIX

logger = logging.getLogger(__name__)

CURSOR_PROCESS_NAMES = {"cursor", "cursor.exe"}


@dataclass
class MigrationReport:
    """What an operation did (or, for a dry run, would do)."""

    old_path: str
    new_path: str
    old_slug_id: str = ""
    old_content_hash: str = ""
    new_slug_id: str = ""
    new_content_hash: str | None = None
    steps: list[str] = field(default_factory=list)
    dry_run: bool = False

    def step(self, message: str) -> None:
        logger.info("%s%s", "[dry-run] " if self.dry_run else "", message)
        self.steps.append(message)


# ── Helpers ──────────────────────────────────────────────────────


def is_cursor_running() -> bool:
    """Return True if a Cursor process is alive."""
    for proc in psutil.process_iter(["name"]):
        try:
            name = (proc.info.get("name") or "").lower()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if name in CURSOR_PROCESS_NAMES:
            return True
    return False


def format_size(num_bytes: int) -> str:
    """Format bytes as a human-readable size (``1.5 KB``)."""
    for unit, factor in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
        if num_bytes >= factor:
            return f"{num_bytes / factor:.1f} {unit}"
    return f"{num_bytes} B"


def dir_size(path: Path) -> int:
    """Total size of regular files below ``path``; unreadable entries count as 0."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def resolve_existing(path: str) -> str:
    """Absolute, ``..``-collapsed form of a path that must exist."""
    resolved = clean_path(path)
    if not os.path.exists(resolved):
        raise PreconditionFailure(f"Path does not exist: {resolved}")
    return resolved


def resolve_new(path: str) -> str:
    """Absolute form of a path that must not exist yet, under an existing parent."""
    resolved = clean_path(path)
    parent = os.path.dirname(resolved)
    if not os.path.isdir(parent):
        raise PreconditionFailure(f"Parent directory does not exist: {parent}")
    if os.path.exists(resolved):
        raise PreconditionFailure(f"Path already exists: {resolved}")
    return resolved


def _copy_if_missing(src: str, dst: str) -> str:
    if os.path.exists(dst):
        return dst
    return shutil.copy2(src, dst)


def copy_dir(src: Path, dst: Path, overwrite: bool = False) -> None:
    """Copy a directory tree.

    An existing target is merged. Files already present there are kept unless
    ``overwrite`` is set.
    """
    try:
        if dst.exists():
            shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True,
                            copy_function=shutil.copy2 if overwrite else _copy_if_missing)
        else:
            shutil.copytree(src, dst, symlinks=True)
    except (OSError, shutil.Error) as e:
        raise FatalIOError(f"Failed to copy {src} to {dst}: {e}") from e


def _trees_match(src: Path, dst: Path) -> bool:
    """True if every file under ``src`` exists under ``dst`` with the same content."""
    cmp = filecmp.dircmp(src, dst)
    if cmp.left_only or cmp.diff_files or cmp.funny_files:
        return False
    return all(_trees_match(src / d, dst / d) for d in cmp.common_dirs)


def move_dir(src: Path, dst: Path, overwrite: bool = False) -> None:
    """Move a directory tree.

    Same-filesystem moves are a single rename. Otherwise (or when merging into
    an existing target) the tree is copied, checked, and the source removed.
    The source is only removed once every one of its files is present at the
    target, so a merge that kept conflicting target files leaves it in place.
    """
    if not dst.exists():
        try:
            os.rename(src, dst)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise FatalIOError(f"Failed to move {src} to {dst}: {e}") from e
            logger.debug("Cross-device move of %s, copying instead", src)

    copy_dir(src, dst, overwrite=overwrite)
    if not _trees_match(src, dst):
        raise FatalIOError(
            f"Files in {src} conflict with or are missing from {dst}; source left in place"
        )
    try:
        shutil.rmtree(src)
    except OSError as e:
        raise FatalIOError(f"Copied {src} to {dst} but failed to remove the source: {e}") from e


def transfer(src: Path, dst: Path, copy: bool, overwrite: bool = False) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    if copy:
        copy_dir(src, dst, overwrite=overwrite)
    else:
        move_dir(src, dst, overwrite=overwrite)


def write_workspace_json(ws_dir: Path, project_path: str) -> None:
    """Point a workspace storage directory at ``project_path``."""
    content = json.dumps({"folder": folder_uri.format(project_path)}, indent=2)
    (ws_dir / "workspace.json").write_text(content, encoding="utf-8")


def update_storage_json(storage_path: Path, old_uri: str, new_uri: str, dry_run: bool = False) -> bool:
    """Rewrite folder-URI references in globalStorage/storage.json.

    Updates ``backupWorkspaces.folders[].folderUri`` and renames the
    ``profileAssociations.workspaces`` key. Returns True if anything matched.
    """
    if not storage_path.exists():
        return False
    try:
        data = json.loads(storage_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        raise FatalIOError(f"Failed to read {storage_path}: {e}") from e
    if not isinstance(data, dict):
        return False

    modified = False

    folders = (data.get("backupWorkspaces") or {}).get("folders")
    if isinstance(folders, list):
        for folder in folders:
            if isinstance(folder, dict) and folder.get("folderUri") == old_uri:
                folder["folderUri"] = new_uri
                modified = True

    workspaces = (data.get("profileAssociations") or {}).get("workspaces")
    if isinstance(workspaces, dict) and old_uri in workspaces:
        workspaces[new_uri] = workspaces.pop(old_uri)
        modified = True

    if modified and not dry_run:
        storage_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return modified


def remap_chat_uuids(db_path: Path) -> int:
    """Give every legacy chat panel in a copied state.vscdb a fresh UUID.

    Keys look like ``workbench.panel.aichat.<uuid>.<suffix>``. Only ever
    called on a copy, never on the original database.
    """
    conn = sqlite3.connect(str(db_path))
    try:
        keys = [row[0] for row in conn.execute(
            "SELECT key FROM ItemTable WHERE key LIKE ?", (LEGACY_CHAT_PREFIX + "%",)
        )]
        old_ids = []
        for key in keys:
            old_id = key[len(LEGACY_CHAT_PREFIX):].split(".", 1)[0]
            if old_id and old_id not in old_ids:
                old_ids.append(old_id)

        for old_id in old_ids:
            old_prefix = f"{LEGACY_CHAT_PREFIX}{old_id}."
            new_prefix = f"{LEGACY_CHAT_PREFIX}{uuid.uuid4()}."
            conn.execute(
                "UPDATE ItemTable SET key = ? || substr(key, ?) WHERE substr(key, 1, ?) = ?",
                (new_prefix, len(old_prefix) + 1, len(old_prefix), old_prefix),
            )
        conn.commit()
    except sqlite3.Error as e:
        raise FatalIOError(f"Failed to remap chat ids in {db_path}: {e}") from e
    finally:
        conn.close()
    return len(old_ids)


def _locate_old(paths: CursorPaths, project: str) -> tuple[str, str]:
    """Path as Cursor recorded it, and its workspace storage id."""
    existing = find_existing_workspace(project, paths.workspace_storage)
    if existing is not None:
        recorded, storage_id = existing
        if recorded != project:
            logger.info("Cursor recorded path as: %s", recorded)
        return recorded, storage_id
    return project, to_content_hash(project)


def _check_merge(
    report: MigrationReport,
    dst: Path,
    confirm_merge: Callable[[Path], bool] | None,
    confirmed: set[Path],
) -> None:
    """Ask before merging into an existing target; raise if the answer is no."""
    if dst in confirmed or not dst.exists():
        return
    report.step(f"Target exists: {dst}")
    if report.dry_run:
        report.step("Would ask before merging into the existing directory")
        return
    if confirm_merge is None or not confirm_merge(dst):
        raise PreconditionFailure(f"Aborted: target directory already exists: {dst}")
    confirmed.add(dst)
    report.step(f"Merging into existing directory {dst}")


# ── Rename / copy ────────────────────────────────────────────────


def rename(
    paths: CursorPaths,
    old: str,
    new: str,
    copy: bool = False,
    dry_run: bool = False,
    check_running: bool = True,
    confirm_merge: Callable[[Path], bool] | None = None,
) -> MigrationReport:
    """Move (or copy) a project folder and carry its Cursor metadata along.

    If a metadata directory for the new location already exists, the move
    only goes ahead when ``confirm_merge(target)`` returns True. A source file
    that differs from one already in the target stops the move with the
    source left in place.
    """
    old_path = resolve_existing(old)
    new_path = resolve_new(new)
    if not dry_run and check_running and is_cursor_running():
        raise PreconditionFailure(
            "Cursor is running. Please close it completely before running this command."
        )

    recorded_path, old_hash = _locate_old(paths, old_path)
    old_slug = to_slug_id(recorded_path)
    old_projects_dir = paths.projects / old_slug
    old_ws_dir = paths.workspace_storage / old_hash
    action = "Copy" if copy else "Move"

    report = MigrationReport(
        old_path=old_path,
        new_path=new_path,
        old_slug_id=old_slug,
        old_content_hash=old_hash,
        new_slug_id=to_slug_id(new_path),
        dry_run=dry_run,
    )

    # A fresh copy gets a new birth time, unknown until it exists
    estimated_hash = None
    if not copy:
        estimated_hash = hash_with_birthtime(
            normalize_path_for_hash(new_path), birthtime_ms(os.stat(old_path))
        )

    confirmed: set[Path] = set()
    new_projects_dir = paths.projects / report.new_slug_id
    if old_projects_dir.exists():
        _check_merge(report, new_projects_dir, confirm_merge, confirmed)
    if old_ws_dir.exists() and estimated_hash:
        _check_merge(report, paths.workspace_storage / estimated_hash, confirm_merge, confirmed)

    report.step(f"{action} project folder {old_path} -> {new_path}")
    if not dry_run:
        transfer(Path(old_path), Path(new_path), copy)

    if dry_run:
        report.new_content_hash = estimated_hash
    else:
        report.new_content_hash = to_content_hash(new_path)

    if old_projects_dir.exists():
        report.step(f"{action} projects data {old_projects_dir} -> {new_projects_dir}")
        if not dry_run:
            transfer(old_projects_dir, new_projects_dir, copy)
    else:
        report.step("No projects data to migrate")

    if old_ws_dir.exists():
        new_ws_name = report.new_content_hash or "<computed-at-runtime>"
        new_ws_dir = paths.workspace_storage / new_ws_name
        if not dry_run:
            # The real hash can differ from the estimate when birth time is unavailable
            _check_merge(report, new_ws_dir, confirm_merge, confirmed)
        report.step(f"{action} workspaceStorage {old_ws_dir} -> {new_ws_dir}")
        report.step(f"Set workspace.json folder to {folder_uri.format(new_path)}")
        if not dry_run:
            transfer(old_ws_dir, new_ws_dir, copy)
            write_workspace_json(new_ws_dir, new_path)
    else:
        report.step("No workspaceStorage data to migrate")

    if paths.storage_json.exists():
        old_uri = folder_uri.format(recorded_path)
        new_uri = folder_uri.format(new_path)
        if update_storage_json(paths.storage_json, old_uri, new_uri, dry_run=dry_run):
            report.step(f"Updated storage.json references {old_uri} -> {new_uri}")
        else:
            report.step("No matching storage.json references")

    return report


# ── Clone ────────────────────────────────────────────────────────


def clone(paths: CursorPaths, old: str, new: str, dry_run: bool = False) -> MigrationReport:
    """Copy a project with independent chat history to a new location."""
    old_path = resolve_existing(old)
    new_path = resolve_new(new)

    recorded_path, old_hash = _locate_old(paths, old_path)
    old_projects_dir = paths.projects / to_slug_id(recorded_path)
    old_ws_dir = paths.workspace_storage / old_hash
    if not old_projects_dir.exists() and not old_ws_dir.exists():
        raise NotFound(f"No Cursor data found for: {old_path}")

    report = MigrationReport(
        old_path=old_path,
        new_path=new_path,
        old_slug_id=to_slug_id(recorded_path),
        old_content_hash=old_hash,
        new_slug_id=to_slug_id(new_path),
        dry_run=dry_run,
    )

    report.step(f"Copy project folder {old_path} -> {new_path}")
    if dry_run:
        report.step("Create new workspace storage with the new hash")
        report.step("Copy chat sessions with new ids and update workspace.json")
        return report

    copy_dir(Path(old_path), Path(new_path))
    report.new_content_hash = to_content_hash(new_path)

    if old_projects_dir.exists():
        new_projects_dir = paths.projects / report.new_slug_id
        report.step(f"Copy projects data -> {new_projects_dir}")
        transfer(old_projects_dir, new_projects_dir, copy=True)

    if old_ws_dir.exists():
        new_ws_dir = paths.workspace_storage / report.new_content_hash
        report.step(f"Copy workspaceStorage -> {new_ws_dir}")
        transfer(old_ws_dir, new_ws_dir, copy=True)
        write_workspace_json(new_ws_dir, new_path)

        db_path = new_ws_dir / "state.vscdb"
        if db_path.exists():
            remapped = remap_chat_uuids(db_path)
            if remapped:
                report.step(f"Remapped {remapped} chat session id(s)")

    return report


# ── Backup / restore ─────────────────────────────────────────────


def _add_bytes(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    info.mode = 0o644
    info.mtime = int(time.time())
    tar.addfile(info, io.BytesIO(content))


def backup(paths: CursorPaths, project: str, archive: str) -> tuple[Path, MigrationManifest]:
    """Write a ``.tar.gz`` with the project's Cursor metadata and a manifest."""
    project_path = resolve_existing(project)
    recorded_path, content_hash = _locate_old(paths, project_path)
    slug_id = to_slug_id(recorded_path)

    projects_dir = paths.projects / slug_id
    ws_dir = paths.workspace_storage / content_hash
    has_projects = projects_dir.exists()
    has_workspace = ws_dir.exists()
    if not has_projects and not has_workspace:
        raise NotFound(f"No Cursor data found for: {project_path}")

    manifest = MigrationManifest(
        project_path=recorded_path,
        slug_id=slug_id,
        content_hash=content_hash,
        includes=BackupContents(workspace_storage=has_workspace, projects_data=has_projects),
    )

    archive_path = Path(archive if archive.endswith(".tar.gz") else f"{archive}.tar.gz")
    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            _add_bytes(tar, MANIFEST_NAME, manifest.to_json().encode("utf-8"))
            if has_workspace:
                tar.add(ws_dir, arcname="workspaceStorage")
            if has_projects:
                tar.add(projects_dir, arcname="projects")
    except (OSError, tarfile.TarError) as e:
        raise FatalIOError(f"Failed to write backup {archive_path}: {e}") from e

    return archive_path, manifest


def read_manifest(archive_path: Path) -> MigrationManifest:
    """Read and validate ``manifest.json`` from a backup archive.

    Raises:
        VersionMismatch: if the manifest was written by an unknown format.
    """
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            try:
                member = tar.getmember(MANIFEST_NAME)
            except KeyError:
                raise NotFound("Backup archive does not contain manifest.json") from None
            fileobj = tar.extractfile(member)
            if fileobj is None:
                raise NotFound("Backup archive does not contain manifest.json")
            text = fileobj.read().decode("utf-8")
    except (OSError, tarfile.TarError) as e:
        raise FatalIOError(f"Failed to read backup {archive_path}: {e}") from e

    try:
        return MigrationManifest.from_json(text)
    except ValueError as e:
        raise FatalIOError(str(e)) from e


def _extract(tar: tarfile.TarFile, dest: str) -> None:
    if hasattr(tarfile, "data_filter"):
        tar.extractall(dest, filter="data")
    else:
        tar.extractall(dest)


def restore(paths: CursorPaths, archive: str, new: str) -> tuple[MigrationReport, MigrationManifest]:
    """Restore a backup for a project now living at ``new``."""
    archive_path = Path(archive)
    if not archive_path.exists():
        raise PreconditionFailure(f"Backup file does not exist: {archive_path}")
    new_path = clean_path(new)
    parent = os.path.dirname(new_path)
    if not os.path.isdir(parent):
        raise PreconditionFailure(f"Parent directory does not exist: {parent}")

    manifest = read_manifest(archive_path)

    report = MigrationReport(old_path=manifest.project_path, new_path=new_path,
                             old_slug_id=manifest.slug_id,
                             old_content_hash=manifest.content_hash)

    if not os.path.exists(new_path):
        os.makedirs(new_path)
        report.step(f"Created {new_path}")

    report.new_slug_id = to_slug_id(new_path)
    report.new_content_hash = to_content_hash(new_path)
    new_projects_dir = paths.projects / report.new_slug_id
    new_ws_dir = paths.workspace_storage / report.new_content_hash

    with tempfile.TemporaryDirectory() as tmp:
        try:
            with tarfile.open(archive_path, "r:gz") as tar:
                _extract(tar, tmp)
        except (OSError, tarfile.TarError) as e:
            raise FatalIOError(f"Failed to extract backup {archive_path}: {e}") from e

        extracted_ws = Path(tmp) / "workspaceStorage"
        extracted_projects = Path(tmp) / "projects"

        # Backed-up files replace whatever Cursor created at the new location
        if extracted_ws.exists() and manifest.includes.workspace_storage:
            if new_ws_dir.exists():
                report.step(f"Overwriting existing workspaceStorage {new_ws_dir}")
            transfer(extracted_ws, new_ws_dir, copy=False, overwrite=True)
            if (new_ws_dir / "workspace.json").exists():
                write_workspace_json(new_ws_dir, new_path)
            report.step(f"Restored workspaceStorage -> {new_ws_dir}")

        if extracted_projects.exists() and manifest.includes.projects_data:
            if new_projects_dir.exists():
                report.step(f"Overwriting existing projects data {new_projects_dir}")
            transfer(extracted_projects, new_projects_dir, copy=False, overwrite=True)
            report.step(f"Restored projects data -> {new_projects_dir}")

    return report, manifest


# ── Clean / stats ────────────────────────────────────────────────


@dataclass
class OrphanedWorkspace:
    storage_dir: Path
    folder_uri: str
    size_bytes: int


def find_orphans(storage_dir: Path) -> list[OrphanedWorkspace]:
    """Local workspaces whose project folder no longer exists.

    Remote workspaces are never reported: their folders cannot be checked.
    """
    if not storage_dir.is_dir():
        return []

    orphans = []
    for ws_dir, uri in iter_workspaces(storage_dir):
        location = folder_uri.parse(uri)
        if location is None or location.is_remote:
            continue
        if not os.path.exists(location.path):
            orphans.append(OrphanedWorkspace(ws_dir, uri, dir_size(ws_dir)))
    return orphans


def clean(orphans: list[OrphanedWorkspace]) -> tuple[int, int]:
    """Delete orphaned workspaces. Returns ``(deleted, failed)``."""
    deleted = failed = 0
    for orphan in orphans:
        try:
            shutil.rmtree(orphan.storage_dir)
            deleted += 1
        except OSError as e:
            logger.error("Failed to delete %s: %s", orphan.storage_dir, e)
            failed += 1
    return deleted, failed


@dataclass
class ProjectStats:
    project_path: str
    slug_id: str
    content_hash: str | None = None
    chat_sessions: int = 0
    workspace_size: int = 0
    projects_size: int = 0


def stats(paths: CursorPaths, project: str) -> ProjectStats:
    project_path = resolve_existing(project)
    result = ProjectStats(project_path=project_path, slug_id=to_slug_id(project_path))

    projects_dir = paths.projects / result.slug_id
    if projects_dir.exists():
        result.projects_size = dir_size(projects_dir)

    ws_dir = find_workspace_dir(project_path, paths.workspace_storage)
    if ws_dir is not None:
        result.content_hash = ws_dir.name
        result.workspace_size = dir_size(ws_dir)
        result.chat_sessions = count_chat_sessions(ws_dir)
    return result


def format_stats(result: ProjectStats) -> str:
    lines = [
        f"Project: {result.project_path}",
        f"Folder ID: {result.slug_id}",
        f"Workspace Hash: {result.content_hash or '(not found)'}",
        "",
        f"Chat Sessions: {result.chat_sessions}",
        f"Workspace Storage: {format_size(result.workspace_size)}",
        f"Projects Data: {format_size(result.projects_size)}",
        f"Total Cursor Data: {format_size(result.workspace_size + result.projects_size)}",
    ]
    return "\n".join(lines)

