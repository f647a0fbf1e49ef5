"""Shared test fixtures for cursor-helper."""

import json
import sqlite3
from datetime import datetime, timezone

import pytest

from cursor_helper import folder_uri
from cursor_helper.config import CursorPaths
from cursor_helper.identity import to_content_hash, to_slug_id

CREATED_MS = int(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)
LATER_MS = int(datetime(2025, 1, 15, 11, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)
MUCH_LATER_MS = int(datetime(2025, 1, 15, 14, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)


def make_db(path, items=None, kv=None):
    """Create a state.vscdb with ItemTable and cursorDiskKV rows."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for key, value in (items or {}).items():
        conn.execute("INSERT INTO ItemTable VALUES (?, ?)", (key, value if isinstance(value, str) else json.dumps(value)))
    for key, value in (kv or {}).items():
        conn.execute("INSERT INTO cursorDiskKV VALUES (?, ?)", (key, value if isinstance(value, str) else json.dumps(value)))
    conn.commit()
    conn.close()
    return path


def make_workspace(storage_dir, storage_id, uri, items=None):
    """Create workspaceStorage/<storage_id>/ with a workspace.json and optional db."""
    ws_dir = storage_dir / storage_id
    ws_dir.mkdir(parents=True, exist_ok=True)
    (ws_dir / "workspace.json").write_text(json.dumps({"folder": uri}), encoding="utf-8")
    if items is not None:
        make_db(ws_dir / "state.vscdb", items=items)
    return ws_dir


COMPOSER_INDEX = {
    "allComposers": [
        {
            "composerId": "comp-001",
            "name": "Fix auth bug",
            "createdAt": CREATED_MS,
            "lastUpdatedAt": LATER_MS,
            "isArchived": False,
        },
        {
            "composerId": "comp-002",
            "name": "Add dark mode",
            "createdAt": LATER_MS,
            "lastUpdatedAt": MUCH_LATER_MS,
        },
        {
            "composerId": "comp-003",
            "name": "Old experiment",
            "createdAt": CREATED_MS - 60_000,
            "isArchived": True,
        },
        {
            "composerId": "comp-004",
            "name": "",
            "createdAt": CREATED_MS - 120_000,
        },
        {"name": "No id here", "createdAt": CREATED_MS},
    ],
    "selectedComposerIds": ["comp-001"],
}

GLOBAL_KV = {
    "composerData:comp-001": {
        "fullConversationHeadersOnly": [
            {"bubbleId": "b1", "type": 1},
            {"bubbleId": "b2", "type": 2},
            {"bubbleId": "b3", "type": 2},
            {"bubbleId": "b-missing", "type": 2},
        ],
    },
    "bubbleId:comp-001:b1": {
        "text": "Fix the login authentication bug in auth.ts",
        "createdAt": "2025-01-15T10:00:05.000Z",
    },
    "bubbleId:comp-001:b2": {
        "text": "The token check compares against the wrong field.",
        "thinking": {"text": "Look at the validate() call first."},
        "thinkingDurationMs": 1500,
        "createdAt": "2025-01-15T10:00:10.000Z",
    },
    "bubbleId:comp-001:b3": {
        "text": "",
        "toolFormerData": {
            "name": "read_file",
            "params": {"path": "src/auth.ts"},
            "result": "export function authenticate() {}",
            "status": "completed",
        },
    },
    "composerData:comp-002": {
        "fullConversationHeadersOnly": [
            {"bubbleId": "d1", "type": 1},
            {"bubbleId": "d2", "type": 2},
        ],
    },
    "bubbleId:comp-002:d1": {"text": "Add dark mode support to the app"},
    "bubbleId:comp-002:d2": {
        "text": "Implemented dark mode with CSS variables.",
        "modelInfo": {"modelName": "gpt-4o"},
        "tokenCount": {"inputTokens": 120, "outputTokens": 45},
    },
    "composerData:comp-003": {
        "fullConversationHeadersOnly": [{"bubbleId": "o1", "type": 1}],
    },
    "bubbleId:comp-003:o1": {"text": "An archived question"},
}


@pytest.fixture
def cursor_paths(tmp_path, monkeypatch):
    """Empty Cursor storage roots under tmp_path, also exported via env vars."""
    config_dir = tmp_path / "Cursor"
    paths = CursorPaths(
        workspace_storage=config_dir / "User" / "workspaceStorage",
        global_storage=config_dir / "User" / "globalStorage",
        projects=tmp_path / "cursor-projects",
    )
    paths.workspace_storage.mkdir(parents=True)
    paths.global_storage.mkdir(parents=True)
    paths.projects.mkdir(parents=True)
    monkeypatch.setenv("CURSOR_HELPER_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("CURSOR_HELPER_PROJECTS_DIR", str(paths.projects))
    return paths


@pytest.fixture
def project_dir(tmp_path):
    """A local project folder with one source file."""
    project = tmp_path / "dev" / "my-project"
    project.mkdir(parents=True)
    (project / "main.py").write_text("print('hello')\n", encoding="utf-8")
    return project


@pytest.fixture
def cursor_workspace(cursor_paths, project_dir):
    """Full Cursor metadata for project_dir: workspace db, global db, projects dir."""
    ws_dir = make_workspace(
        cursor_paths.workspace_storage,
        to_content_hash(project_dir),
        folder_uri.format(str(project_dir)),
        items={
            "composer.composerData": COMPOSER_INDEX,
            "workbench.panel.aichat.11111111-1111-1111-1111-111111111111.numberOfVisibleMessages": "3",
        },
    )
    make_db(cursor_paths.global_db, kv=GLOBAL_KV)

    projects_data = cursor_paths.projects / to_slug_id(str(project_dir))
    projects_data.mkdir(parents=True)
    (projects_data / "notes.txt").write_text("project notes", encoding="utf-8")

    storage = {
        "backupWorkspaces": {"folders": [{"folderUri": folder_uri.format(str(project_dir))}]},
        "profileAssociations": {"workspaces": {folder_uri.format(str(project_dir)): "__default__profile__"}},
    }
    cursor_paths.storage_json.write_text(json.dumps(storage), encoding="utf-8")
    return ws_dir
