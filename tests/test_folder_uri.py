"""Tests for folder URI parsing and formatting."""

import sys

import pytest

from cursor_helper import folder_uri
from cursor_helper.core import FolderLocation, RemoteType


class TestParseFile:
    def test_local_path(self):
        loc = folder_uri.parse("file:///Users/me/project")
        assert loc == FolderLocation(path="/Users/me/project")
        assert loc.kind == "local"
        assert loc.is_remote is False

    def test_percent_decoded(self):
        loc = folder_uri.parse("file:///Users/me/my%20project%2Bextra")
        assert loc.path == "/Users/me/my project+extra"

    def test_unicode_path(self):
        loc = folder_uri.parse("file:///home/me/%E9%A1%B9%E7%9B%AE")
        assert loc.path == "/home/me/项目"

    @pytest.mark.skipif(sys.platform == "win32", reason="separators become backslashes on Windows")
    def test_windows_drive(self):
        loc = folder_uri.parse("file:///c%3A/Users/me/project")
        assert loc.path == "c:/Users/me/project"

    def test_unc_share(self):
        loc = folder_uri.parse("file://server/share/dir")
        assert loc.path == "//server/share/dir"

    def test_empty_path(self):
        assert folder_uri.parse("file://") is None


class TestParseRemote:
    def test_ssh_remote(self):
        loc = folder_uri.parse("vscode-remote://ssh-remote+myhost/home/me/proj")
        assert loc.path == "/home/me/proj"
        assert loc.remote_type == RemoteType.SSH_REMOTE
        assert loc.remote_name == "myhost"
        assert loc.kind == "remote"

    def test_encoded_plus(self):
        loc = folder_uri.parse("vscode-remote://ssh-remote%2Bmyhost/home/me/proj")
        assert loc.remote_type == RemoteType.SSH_REMOTE
        assert loc.remote_name == "myhost"

    def test_ssh_user_at_host(self):
        loc = folder_uri.parse("vscode-remote://ssh-remote%2Bme@box/home/me/proj")
        assert loc.remote_type == RemoteType.SSH_REMOTE
        assert loc.remote_name == "me@box"
        assert loc.path == "/home/me/proj"

    def test_tunnel(self):
        loc = folder_uri.parse("vscode-remote://tunnel+devbox/work/app")
        assert loc.remote_type == RemoteType.TUNNEL
        assert loc.remote_type.kind == "tunnel"
        assert loc.remote_name == "devbox"

    def test_wsl_keeps_name_case(self):
        loc = folder_uri.parse("vscode-remote://wsl%2BUbuntu-22.04/home/me")
        assert loc.remote_type == RemoteType.WSL
        assert loc.remote_name == "Ubuntu-22.04"

    def test_dev_container_over_ssh(self):
        uri = "vscode-remote://dev-container%2B7b2263223a317d@ssh-remote%2Bbuildbox/workspaces/app"
        loc = folder_uri.parse(uri)
        assert loc.remote_type == RemoteType.DEV_CONTAINER
        assert loc.remote_type.display == "container"
        assert loc.remote_name == "buildbox"
        assert loc.path == "/workspaces/app"

    def test_dev_container_without_outer_host(self):
        loc = folder_uri.parse("vscode-remote://dev-container%2Babc@localhost/workspaces/app")
        assert loc.remote_type == RemoteType.DEV_CONTAINER
        assert loc.remote_name == "container"

    def test_unknown_type_is_kept(self):
        loc = folder_uri.parse("vscode-remote://codespaces+fluffy-robot/workspaces/x")
        assert loc.remote_type.kind == "unknown"
        assert loc.remote_type.display == "codespaces"
        assert loc.remote_name == "fluffy-robot"

    def test_authority_without_plus(self):
        loc = folder_uri.parse("vscode-remote://somehost/srv/app")
        assert loc.is_remote
        assert loc.remote_type.token == "somehost"
        assert loc.remote_name == ""

    def test_remote_path_not_decoded(self):
        loc = folder_uri.parse("vscode-remote://ssh-remote+h/home/me/my%20proj")
        assert loc.path == "/home/me/my%20proj"

    def test_describe_remote(self):
        loc = folder_uri.parse("vscode-remote://ssh-remote+myhost/home/me")
        assert loc.describe_remote() == "ssh:myhost"
        assert FolderLocation(path="/x").describe_remote() == "-"


class TestParseInvalid:
    @pytest.mark.parametrize("uri", ["", "http://example.com/x", "not a uri", "file://[bad/x"])
    def test_returns_none(self, uri):
        assert folder_uri.parse(uri) is None

    def test_non_string(self):
        assert folder_uri.parse(None) is None


class TestFormat:
    def test_unix_path(self):
        assert folder_uri.format("/Users/me/project") == "file:///Users/me/project"

    def test_special_characters_encoded(self):
        assert folder_uri.format("/Users/me/my project+1") == "file:///Users/me/my%20project%2B1"

    def test_windows_drive_matches_cursor_form(self):
        assert folder_uri.format("C:\\Users\\me\\project") == "file:///c%3A/Users/me/project"

    def test_round_trip_local(self):
        path = "/home/me/some dir/项目"
        assert folder_uri.parse(folder_uri.format(path)).path == path
