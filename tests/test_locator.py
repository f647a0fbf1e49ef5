"""Tests for workspace lookup and listing."""

import json
import os
from unittest.mock import patch

import pytest

from cursor_helper import folder_uri, locator
from cursor_helper.errors import FatalIOError
from cursor_helper.locator import (
    count_chat_sessions,
    filter_workspaces,
    find_existing_workspace,
    find_workspace_dir,
    iter_workspaces,
    list_workspaces,
    normalize_local_path,
    sort_workspaces,
)

from conftest import make_workspace


@pytest.fixture
def storage(tmp_path):
    storage_dir = tmp_path / "workspaceStorage"
    storage_dir.mkdir()
    return storage_dir


class TestFindLocal:
    def test_exact_match(self, storage, project_dir):
        make_workspace(storage, "other", "file:///somewhere/else")
        make_workspace(storage, "mine", folder_uri.format(str(project_dir)))
        assert find_workspace_dir(project_dir, storage) == storage / "mine"

    def test_trailing_slash_ignored(self, storage, project_dir):
        make_workspace(storage, "mine", folder_uri.format(str(project_dir)) + "/")
        assert find_workspace_dir(str(project_dir) + os.sep, storage) == storage / "mine"

    def test_no_match(self, storage, project_dir):
        make_workspace(storage, "other", "file:///somewhere/else")
        assert find_workspace_dir(project_dir, storage) is None

    def test_missing_storage_dir(self, tmp_path, project_dir):
        assert find_workspace_dir(project_dir, tmp_path / "nope") is None

    def test_existing_path_does_not_match_remote(self, storage, project_dir):
        make_workspace(storage, "remote", f"vscode-remote://ssh-remote+box{project_dir.as_posix()}")
        assert find_workspace_dir(project_dir, storage) is None

    def test_windows_paths_ignore_case(self, storage):
        make_workspace(storage, "win", "file:///c%3A/Users/Me/Project")
        with (
            patch.object(locator, "_exists", return_value=True),
            patch.object(locator, "_is_windows", return_value=True),
        ):
            assert find_workspace_dir("C:\\Users\\me\\project", storage) == storage / "win"

    def test_skips_multi_root_and_broken_entries(self, storage, project_dir):
        multi = storage / "multi"
        multi.mkdir()
        (multi / "workspace.json").write_text(json.dumps({"workspace": "file:///x.code-workspace"}), encoding="utf-8")
        broken = storage / "broken"
        broken.mkdir()
        (broken / "workspace.json").write_text("{not json", encoding="utf-8")
        (storage / "stray-file").write_text("", encoding="utf-8")
        make_workspace(storage, "mine", folder_uri.format(str(project_dir)))

        assert [d.name for d, _ in iter_workspaces(storage)] == ["mine"]
        assert find_workspace_dir(project_dir, storage) == storage / "mine"


class TestFindRemote:
    def test_exact_remote_path(self, storage):
        make_workspace(storage, "a", "vscode-remote://ssh-remote+box1/home/me/api")
        make_workspace(storage, "b", "vscode-remote://ssh-remote+box2/srv/app")
        with patch.object(locator, "_exists", return_value=False):
            assert find_workspace_dir("/srv/app", storage) == storage / "b"

    def test_exact_match_beats_leaf_match(self, storage):
        make_workspace(storage, "a", "vscode-remote://tunnel+t1/other/app")
        make_workspace(storage, "b", "vscode-remote://tunnel+t2/srv/app")
        with patch.object(locator, "_exists", return_value=False):
            assert find_workspace_dir("/srv/app/", storage) == storage / "b"

    def test_leaf_name_fallback(self, storage):
        make_workspace(storage, "a", "vscode-remote://wsl+Ubuntu/home/me/app")
        with patch.object(locator, "_exists", return_value=False):
            assert find_workspace_dir("/mnt/c/work/app", storage) == storage / "a"

    def test_no_remote_match(self, storage):
        make_workspace(storage, "a", "vscode-remote://wsl+Ubuntu/home/me/app")
        make_workspace(storage, "local", "file:///home/me/other")
        with patch.object(locator, "_exists", return_value=False):
            assert find_workspace_dir("/home/me/other", storage) is None


class TestFindExisting:
    def test_returns_recorded_path(self, storage, project_dir):
        make_workspace(storage, "mine", folder_uri.format(str(project_dir)) + "/")
        recorded, storage_id = find_existing_workspace(project_dir, storage)
        assert recorded == str(project_dir) + "/"
        assert storage_id == "mine"

    def test_none_when_unknown(self, storage, project_dir):
        assert find_existing_workspace(project_dir, storage) is None


class TestNormalize:
    def test_posix(self):
        assert normalize_local_path("/a/B/", windows=False) == "/a/B"
        assert normalize_local_path("/", windows=False) == "/"

    def test_windows(self):
        assert normalize_local_path("C:\\Users\\Me\\", windows=True) == "c:/users/me"


class TestCountChats:
    def test_counts_composers_and_legacy_panels(self, cursor_workspace):
        # comp-001..comp-004 plus one legacy aichat panel
        assert count_chat_sessions(cursor_workspace) == 5

    def test_missing_db(self, storage):
        ws = make_workspace(storage, "empty", "file:///x")
        assert count_chat_sessions(ws) == 0

    def test_corrupt_db(self, storage):
        ws = make_workspace(storage, "corrupt", "file:///x")
        (ws / "state.vscdb").write_bytes(b"this is not sqlite" * 100)
        assert count_chat_sessions(ws) == 0


class TestListWorkspaces:
    def test_sorted_by_modified(self, storage):
        old = make_workspace(storage, "old", "file:///projects/old")
        new = make_workspace(storage, "new", "vscode-remote://ssh-remote+box/srv/new")
        os.utime(old, (1_600_000_000, 1_600_000_000))
        os.utime(new, (1_700_000_000, 1_700_000_000))

        records = list_workspaces(storage)
        assert [r.storage_id for r in records] == ["new", "old"]
        assert records[0].location.is_remote
        assert records[0].chat_count == 0

    def test_invalid_uri_skipped(self, storage):
        make_workspace(storage, "bad", "http://example.com/x")
        make_workspace(storage, "good", "file:///projects/good")
        assert [r.storage_id for r in list_workspaces(storage)] == ["good"]

    def test_missing_storage(self, tmp_path):
        assert list_workspaces(tmp_path / "nope") == []

    def test_unreadable_storage_root(self, tmp_path):
        not_a_dir = tmp_path / "file"
        not_a_dir.write_text("", encoding="utf-8")
        with pytest.raises(FatalIOError):
            list(iter_workspaces(not_a_dir))

    def test_filter_and_sort(self, storage):
        a = make_workspace(storage, "a", "file:///projects/alpha")
        b = make_workspace(storage, "b", "vscode-remote://tunnel+t/srv/beta")
        c = make_workspace(storage, "c", "file:///projects/gamma")
        for i, ws in enumerate((a, b, c)):
            os.utime(ws, (1_600_000_000 + i, 1_600_000_000 + i))
        records = list_workspaces(storage)

        assert [r.storage_id for r in filter_workspaces(records, "local")] == ["c", "a"]
        assert [r.storage_id for r in filter_workspaces(records, "remote")] == ["b"]
        assert [r.storage_id for r in filter_workspaces(records, "gam")] == ["c"]
        assert filter_workspaces(records, None) == records

        assert [r.path for r in sort_workspaces(records, "name")] == [
            "/projects/alpha", "/projects/gamma", "/srv/beta",
        ]
        assert [r.storage_id for r in sort_workspaces(records, "modified", reverse=True)] == ["a", "b", "c"]
