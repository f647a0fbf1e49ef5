"""Parse and build the folder URIs stored in workspace.json.

Cursor records the opened folder as one of:

- ``file:///Users/me/project`` (local, percent-encoded)
- ``vscode-remote://<type>+<name>/<path>`` for tunnel, ssh-remote and wsl
  connections; ``+`` is frequently stored as ``%2B``
- ``vscode-remote://dev-container+<config>@<outer type>+<outer host>/<path>``
  for a dev container running on top of another remote

Anything else (or anything malformed) parses to ``None`` so that a caller
scanning many workspaces can skip the record and move on.
"""

import logging
import os
import re
import sys
import urllib.parse

from .core import FolderLocation, RemoteType

logger = logging.getLogger(__name__)

_DRIVE_URI_PATH = re.compile(r"^/[A-Za-z]:")
_DRIVE_PATH = re.compile(r"^[A-Za-z]:")


def parse(uri: str) -> FolderLocation | None:
    """Normalize a stored folder URI into a FolderLocation."""
    if not isinstance(uri, str) or not uri:
        return None
    try:
        parts = urllib.parse.urlsplit(uri)
    except ValueError as e:
        logger.debug("Malformed folder URI %r: %s", uri, e)
        return None

    scheme = parts.scheme.lower()
    if scheme == "file":
        return _parse_file(parts)
    if scheme == "vscode-remote":
        return _parse_remote(parts)
    return None


def _parse_file(parts: urllib.parse.SplitResult) -> FolderLocation | None:
    path = urllib.parse.unquote(parts.path)
    if not path:
        return None

    if parts.netloc and parts.netloc.lower() != "localhost":
        # UNC share: file://server/share/dir
        path = f"//{parts.netloc}{path}"
    elif _DRIVE_URI_PATH.match(path):
        path = path[1:]
        if sys.platform == "win32":
            path = path.replace("/", "\\")

    return FolderLocation(path=path)


def _parse_remote(parts: urllib.parse.SplitResult) -> FolderLocation:
    authority = urllib.parse.unquote(parts.netloc)
    userinfo, _, host = authority.rpartition("@")

    if userinfo.startswith("dev-container+"):
        # The container config lives in the user-info; the host names the
        # machine the container runs on.
        _, plus, outer_name = host.partition("+")
        remote_type = RemoteType.DEV_CONTAINER
        name = outer_name if plus else "container"
    elif "+" in authority:
        # ssh-remote+user@host keeps the user in the name
        token, _, name = authority.partition("+")
        remote_type = RemoteType.parse(token)
    else:
        remote_type = RemoteType.parse(authority)
        name = ""

    return FolderLocation(
        path=parts.path or "/",
        remote_type=remote_type,
        remote_name=name,
    )


def format(path: "str | os.PathLike[str]") -> str:
    """Build the ``file://`` URI for a local path.

    Separators are always emitted as forward slashes; everything outside the
    unreserved set is percent-encoded. Drive paths take the form Cursor
    stores, ``file:///c%3A/...``.
    """
    path_str = os.fspath(path)
    if sys.platform == "win32" or _DRIVE_PATH.match(path_str):
        path_str = path_str.replace("\\", "/")
    if _DRIVE_PATH.match(path_str):
        path_str = "/" + path_str[0].lower() + path_str[1:]
    return "file://" + urllib.parse.quote(path_str, safe="/")
