"""Backup manifest stored as ``manifest.json`` at the root of a backup archive."""

import json
import time
from dataclasses import dataclass, field

from .errors import VersionMismatch

MANIFEST_VERSION = 1
MANIFEST_NAME = "manifest.json"


@dataclass
class BackupContents:
    workspace_storage: bool = False
    projects_data: bool = False


@dataclass
class MigrationManifest:
    """What a backup captured and under which identifiers."""

    project_path: str
    slug_id: str
    content_hash: str
    created_at: int = field(default_factory=lambda: int(time.time()))
    includes: BackupContents = field(default_factory=BackupContents)
    version: int = MANIFEST_VERSION

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "project_path": self.project_path,
            "folder_id": self.slug_id,
            "workspace_hash": self.content_hash,
            "created_at": self.created_at,
            "includes": {
                "workspace_storage": self.includes.workspace_storage,
                "projects_data": self.includes.projects_data,
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "MigrationManifest":
        """Build a manifest, refusing any version other than the current one.

        Raises:
            VersionMismatch: for an unknown or missing version.
            ValueError: if a required field is missing.
        """
        if not isinstance(data, dict):
            raise ValueError("Manifest must be a JSON object")
        version = data.get("version")
        if isinstance(version, bool) or version != MANIFEST_VERSION:
            raise VersionMismatch(version, MANIFEST_VERSION)

        try:
            includes = data.get("includes") or {}
            return cls(
                version=version,
                project_path=str(data["project_path"]),
                slug_id=str(data["folder_id"]),
                content_hash=str(data["workspace_hash"]),
                created_at=int(data.get("created_at", 0)),
                includes=BackupContents(
                    workspace_storage=bool(includes.get("workspace_storage", False)),
                    projects_data=bool(includes.get("projects_data", False)),
                ),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValueError(f"Invalid manifest: {e}") from e

    @classmethod
    def from_json(cls, text: str) -> "MigrationManifest":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse {MANIFEST_NAME}: {e}") from e
        return cls.from_dict(data)
