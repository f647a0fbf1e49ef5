"""FastAPI web server for browsing Cursor chat history locally."""

import logging
import urllib.parse
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response

from . import __version__, folder_uri
from .config import CursorPaths
from .core import ChatExport, WorkspaceRecord
from .export import build_export, parse_format, render, sanitize_filename
from .locator import filter_workspaces, list_workspaces, read_folder_uri, sort_workspaces
from .store import ExportOptions

logger = logging.getLogger(__name__)

app = FastAPI(title="cursor-helper", version=__version__)

# Storage roots (resolved on first request)
_paths: CursorPaths | None = None


def _get_paths() -> CursorPaths:
    """Lazily resolve and cache the Cursor storage roots."""
    global _paths
    if _paths is None:
        _paths = CursorPaths.detect()
        logger.info("Using workspace storage at %s", _paths.workspace_storage)
    return _paths


def _workspace_to_dict(record: WorkspaceRecord) -> dict:
    return {
        "storage_id": record.storage_id,
        "path": record.path,
        "kind": record.location.kind,
        "remote_type": record.location.remote_type.kind if record.location.remote_type else None,
        "remote_name": record.location.remote_name,
        "last_modified": record.last_modified.isoformat() if record.last_modified else None,
        "chat_count": record.chat_count,
    }


def _resolve_workspace(storage_id: str) -> tuple[Path, str]:
    """Return ``(workspace_dir, project_path)`` or raise 404."""
    if not storage_id or storage_id in (".", "..") or "/" in storage_id or "\\" in storage_id:
        raise HTTPException(status_code=404, detail="Workspace not found")

    ws_dir = _get_paths().workspace_storage / storage_id
    uri = read_folder_uri(ws_dir) if ws_dir.is_dir() else None
    location = folder_uri.parse(uri) if uri else None
    if location is None:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return ws_dir, location.path


def _build(storage_id: str, options: ExportOptions) -> ChatExport:
    ws_dir, project_path = _resolve_workspace(storage_id)
    export, store = build_export(ws_dir, project_path, _get_paths().global_db, options)
    if store.skipped:
        logger.warning("Skipped %d malformed record(s) for %s", store.skipped, storage_id)
    return export


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/workspaces")
async def get_workspaces(
    filter: str | None = Query(None, description="local, remote, or a path substring"),
    sort: str = Query("modified", description="Sort: modified, name, chats"),
    reverse: bool = Query(False),
):
    """Return every workspace known to Cursor."""
    records = list_workspaces(_get_paths().workspace_storage)
    records = filter_workspaces(records, filter)
    records = sort_workspaces(records, sort, reverse)
    return {
        "total": len(records),
        "workspaces": [_workspace_to_dict(r) for r in records],
    }


@app.get("/api/workspaces/{storage_id}/sessions")
async def get_sessions(
    storage_id: str,
    thinking: bool = Query(False, description="Include reasoning blocks"),
    tools: bool = Query(False, description="Include tool calls"),
    stats: bool = Query(False, description="Include model and token counts"),
    include_archived: bool = Query(False),
    exclude_blank: bool = Query(False),
):
    """Return the reconstructed sessions of one workspace."""
    options = ExportOptions(
        with_thinking=thinking,
        with_tools=tools,
        with_stats=stats,
        include_archived=include_archived,
        exclude_blank=exclude_blank,
    )
    return _build(storage_id, options).to_dict()


@app.get("/api/export/{storage_id}")
async def export_workspace(
    storage_id: str,
    format: str = Query("md", description="Export format: md or json"),
    verbose: bool = Query(False, description="Include thinking, tools and stats"),
):
    """Download all sessions of a workspace as Markdown or JSON."""
    fmt = parse_format(format)
    if fmt is None:
        raise HTTPException(status_code=400, detail=f"Unknown format: {format}")

    options = ExportOptions.verbose() if verbose else ExportOptions()
    export = _build(storage_id, options)
    content = render(export, fmt)

    name = sanitize_filename(Path(export.project_path).name or storage_id) or storage_id
    media_type = "application/json" if fmt == "json" else "text/markdown"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": _content_disposition(f"{name}.{fmt}")},
    )


def _content_disposition(filename: str) -> str:
    # Header values must be latin-1; non-ASCII names go in the RFC 5987 form
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    value = f'attachment; filename="{fallback}"'
    if fallback != filename:
        value += f"; filename*=UTF-8''{urllib.parse.quote(filename)}"
    return value
