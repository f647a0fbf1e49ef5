"""Core data models for cursor-helper."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class RemoteType:
    """Connection type from a ``vscode-remote://`` authority.

    Known tokens are ``tunnel``, ``ssh-remote``, ``dev-container`` and ``wsl``.
    Anything else is kept verbatim and reported as ``unknown``.
    """

    token: str

    KNOWN = {
        "tunnel": "tunnel",
        "ssh-remote": "ssh",
        "dev-container": "container",
        "wsl": "wsl",
    }

    @classmethod
    def parse(cls, token: str) -> "RemoteType":
        return cls(token)

    @property
    def kind(self) -> str:
        return self.token if self.token in self.KNOWN else "unknown"

    @property
    def display(self) -> str:
        """Short label used in listings (``ssh-remote`` shows as ``ssh``)."""
        return self.KNOWN.get(self.token, self.token)

    def __str__(self) -> str:
        return self.display


RemoteType.TUNNEL = RemoteType("tunnel")
RemoteType.SSH_REMOTE = RemoteType("ssh-remote")
RemoteType.DEV_CONTAINER = RemoteType("dev-container")
RemoteType.WSL = RemoteType("wsl")


@dataclass(frozen=True)
class FolderLocation:
    """Normalized form of a stored folder URI."""

    path: str
    remote_type: Optional[RemoteType] = None
    remote_name: Optional[str] = None

    @property
    def kind(self) -> str:
        return "remote" if self.remote_type is not None else "local"

    @property
    def is_remote(self) -> bool:
        return self.remote_type is not None

    def describe_remote(self) -> str:
        if self.remote_type is None:
            return "-"
        return f"{self.remote_type.display}:{self.remote_name or ''}"


@dataclass
class WorkspaceRecord:
    """One ``workspaceStorage/<storage_id>/`` directory."""

    storage_id: str
    location: FolderLocation
    storage_dir: Path
    last_modified: Optional[datetime] = None
    chat_count: int = 0

    @property
    def path(self) -> str:
        return self.location.path


# Message kinds. A message is a tagged record: ``kind`` decides which of the
# optional fields below are meaningful.
USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"
THINKING = "thinking"
UNKNOWN = "unknown"


@dataclass
class ToolCall:
    name: str
    params: Optional[str] = None
    result: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"name": self.name}
        for key in ("params", "result", "status"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class TokenCount:
    input: int
    output: int


@dataclass
class ChatMessage:
    """A single message reconstructed from a bubble record."""

    kind: str  # "user" | "assistant" | "tool" | "thinking" | "unknown"
    content: str
    timestamp: Optional[int] = None  # epoch seconds
    thinking_duration_ms: Optional[int] = None
    tool_call: Optional[ToolCall] = None
    model: Optional[str] = None
    tokens: Optional[TokenCount] = None

    @property
    def role(self) -> str:
        return self.kind

    @classmethod
    def text(cls, kind: str, content: str, timestamp: Optional[int] = None,
             model: Optional[str] = None, tokens: Optional[TokenCount] = None) -> "ChatMessage":
        return cls(kind=kind, content=content, timestamp=timestamp, model=model, tokens=tokens)

    @classmethod
    def tool(cls, call: ToolCall, timestamp: Optional[int] = None) -> "ChatMessage":
        return cls(kind=TOOL, content=f"[{call.name}]", timestamp=timestamp, tool_call=call)

    @classmethod
    def thinking(cls, content: str, timestamp: Optional[int] = None,
                 duration_ms: Optional[int] = None) -> "ChatMessage":
        return cls(kind=THINKING, content=content, timestamp=timestamp,
                   thinking_duration_ms=duration_ms)

    def to_dict(self) -> dict:
        data = {"role": self.kind, "content": self.content}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        if self.thinking_duration_ms is not None:
            data["thinking_duration_ms"] = self.thinking_duration_ms
        if self.tool_call is not None:
            data["tool_call"] = self.tool_call.to_dict()
        if self.model is not None:
            data["model"] = self.model
        if self.tokens is not None:
            data["tokens"] = {"input": self.tokens.input, "output": self.tokens.output}
        return data


@dataclass
class ChatSession:
    """A single composer conversation."""

    id: str
    title: Optional[str] = None
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: Optional[int] = None  # epoch seconds
    updated_at: Optional[int] = None

    def to_dict(self) -> dict:
        data: dict = {"id": self.id}
        if self.title is not None:
            data["title"] = self.title
        data["messages"] = [m.to_dict() for m in self.messages]
        if self.created_at is not None:
            data["created_at"] = self.created_at
        if self.updated_at is not None:
            data["updated_at"] = self.updated_at
        return data


@dataclass
class ChatExport:
    """All sessions exported for one project."""

    project_path: str
    exported_at: int  # epoch seconds
    sessions: list[ChatSession] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "project_path": self.project_path,
            "exported_at": self.exported_at,
            "sessions": [s.to_dict() for s in self.sessions],
        }
