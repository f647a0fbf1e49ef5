"""Platform-aware path resolution for Cursor data directories."""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

CONFIG_DIR_ENV = "CURSOR_HELPER_CONFIG_DIR"
PROJECTS_DIR_ENV = "CURSOR_HELPER_PROJECTS_DIR"


def get_cursor_config_dir() -> Path:
    """Return Cursor's configuration root (the directory holding ``User/``)."""
    env = os.environ.get(CONFIG_DIR_ENV)
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "Cursor"
    else:  # Linux
        xdg = os.environ.get("XDG_CONFIG_HOME")
        base = Path(xdg) if xdg else Path.home() / ".config"
        return base / "Cursor"


def get_workspace_storage_dir() -> Path:
    """Return the path to Cursor's workspaceStorage directory."""
    return get_cursor_config_dir() / "User" / "workspaceStorage"


def get_global_storage_dir() -> Path:
    """Return the path to Cursor's globalStorage directory."""
    return get_cursor_config_dir() / "User" / "globalStorage"


def get_projects_dir() -> Path:
    """Return the path to Cursor's per-project data (~/.cursor/projects)."""
    env = os.environ.get(PROJECTS_DIR_ENV)
    if env:
        return Path(env)

    return Path.home() / ".cursor" / "projects"


@dataclass(frozen=True)
class CursorPaths:
    """The three storage roots every command works against."""

    workspace_storage: Path
    global_storage: Path
    projects: Path

    @classmethod
    def detect(cls) -> "CursorPaths":
        return cls(
            workspace_storage=get_workspace_storage_dir(),
            global_storage=get_global_storage_dir(),
            projects=get_projects_dir(),
        )

    @property
    def global_db(self) -> Path:
        return self.global_storage / "state.vscdb"

    @property
    def storage_json(self) -> Path:
        return self.global_storage / "storage.json"
