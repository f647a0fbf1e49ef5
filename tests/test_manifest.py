"""Tests for the backup manifest."""

import json

import pytest

from cursor_helper.errors import VersionMismatch
from cursor_helper.manifest import MANIFEST_VERSION, BackupContents, MigrationManifest


@pytest.fixture
def manifest():
    return MigrationManifest(
        project_path="/Users/me/project",
        slug_id="Users-me-project",
        content_hash="c7480b5cd6454db2f4f4821a1e396980",
        created_at=1_700_000_000,
        includes=BackupContents(workspace_storage=True, projects_data=False),
    )


class TestMigrationManifest:
    def test_on_disk_keys(self, manifest):
        data = json.loads(manifest.to_json())
        assert data == {
            "version": MANIFEST_VERSION,
            "project_path": "/Users/me/project",
            "folder_id": "Users-me-project",
            "workspace_hash": "c7480b5cd6454db2f4f4821a1e396980",
            "created_at": 1_700_000_000,
            "includes": {"workspace_storage": True, "projects_data": False},
        }

    def test_read_back(self, manifest):
        assert MigrationManifest.from_json(manifest.to_json()) == manifest

    def test_created_at_defaults_to_now(self):
        m = MigrationManifest(project_path="/p", slug_id="p", content_hash="h")
        assert m.created_at > 1_600_000_000
        assert m.includes == BackupContents()

    def test_unknown_version(self, manifest):
        data = manifest.to_dict()
        data["version"] = 2
        with pytest.raises(VersionMismatch) as exc_info:
            MigrationManifest.from_dict(data)
        assert exc_info.value.found == 2
        assert "Unsupported backup manifest version" in str(exc_info.value)

    def test_missing_version(self, manifest):
        data = manifest.to_dict()
        del data["version"]
        with pytest.raises(VersionMismatch):
            MigrationManifest.from_dict(data)

    def test_missing_field(self, manifest):
        data = manifest.to_dict()
        del data["workspace_hash"]
        with pytest.raises(ValueError):
            MigrationManifest.from_dict(data)

    def test_bad_json(self):
        with pytest.raises(ValueError):
            MigrationManifest.from_json("{not json")
