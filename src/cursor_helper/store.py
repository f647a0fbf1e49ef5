"""Chat session reconstruction from Cursor's SQLite stores.

Cursor spreads one conversation over two databases:

1. ``workspaceStorage/<id>/state.vscdb`` (table ``ItemTable``) holds the
   composer index under ``composer.composerData``: every session's id,
   name, archived flag and timestamps.
2. ``globalStorage/state.vscdb`` (table ``cursorDiskKV``) holds, per
   session, ``composerData:<composerId>`` with an ordered list of bubble
   headers, and one ``bubbleId:<composerId>:<bubbleId>`` record per message.

The lookup is kept as two explicit stages so that "indexed, but bodies
pruned" stays distinguishable: such sessions come back with no messages.
All database access is read-only.
"""

import json
import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .core import (
    ASSISTANT,
    UNKNOWN,
    USER,
    ChatMessage,
    ChatSession,
    TokenCount,
    ToolCall,
)
from .errors import FatalIOError

logger = logging.getLogger(__name__)

COMPOSER_INDEX_KEY = "composer.composerData"
LEGACY_CHAT_PREFIX = "workbench.panel.aichat."

PARAMS_LIMIT = 500
RESULT_LIMIT = 1000
TRUNCATION_MARKER = "...[truncated]"

ROLE_BY_TYPE = {1: USER, 2: ASSISTANT}


@dataclass
class ExportOptions:
    """Which optional parts of a conversation to reconstruct."""

    with_thinking: bool = False
    with_tools: bool = False
    with_stats: bool = False
    include_archived: bool = False
    exclude_blank: bool = False

    @classmethod
    def verbose(cls, **kwargs) -> "ExportOptions":
        """Options with thinking, tools and stats all enabled."""
        return cls(with_thinking=True, with_tools=True, with_stats=True, **kwargs)


@dataclass
class ComposerInfo:
    """One entry of the composer index."""

    composer_id: str
    name: str
    created_at: int  # milliseconds
    last_updated_at: int
    is_archived: bool = False


@dataclass
class BubbleHeader:
    bubble_id: str
    type_code: int


# ── SQLite access ────────────────────────────────────────────────


def connect_readonly(db_path: Path) -> sqlite3.Connection:
    """Open a state.vscdb file read-only.

    Raises:
        FatalIOError: if the file cannot be opened.
    """
    uri = Path(db_path).absolute().as_uri() + "?mode=ro"
    try:
        return sqlite3.connect(uri, uri=True)
    except sqlite3.Error as e:
        raise FatalIOError(f"Failed to open {db_path}: {e}") from e


def read_item(conn: sqlite3.Connection, key: str, table: str = "ItemTable") -> str | None:
    """Read a single value by key; bytes are decoded as UTF-8."""
    if table not in ("ItemTable", "cursorDiskKV"):
        raise ValueError(f"Unknown table: {table}")
    row = conn.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
    if row is None or row[0] is None:
        return None
    val = row[0]
    return val if isinstance(val, str) else bytes(val).decode("utf-8", errors="replace")


def _load_json(raw: str | None, what: str):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt %s: %s", what, e)
        return None


# ── Field helpers ────────────────────────────────────────────────


def _int_or_none(value) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` characters and append a marker.

    Works on code points, so multi-byte characters are never split.
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


_ISO_FRACTION = re.compile(r"\.(\d+)")


def parse_iso_timestamp(value) -> int | None:
    """Parse an ISO 8601 string (``2026-01-19T04:31:31.394Z``) to epoch seconds."""
    if not isinstance(value, str) or not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        # Python 3.10 only accepts 3 or 6 fraction digits
        value = _ISO_FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
        dt = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _stringify(value) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return None


# ── Stage 1: composer index ──────────────────────────────────────


def parse_composer_index(data, include_archived: bool = False) -> tuple[list[ComposerInfo], int]:
    """Turn a decoded ``composer.composerData`` document into ComposerInfo.

    Returns the retained entries and the number of malformed entries skipped
    (no id or no creation time). Archived entries are dropped unless
    ``include_archived`` is set.
    """
    if not isinstance(data, dict):
        return [], 0
    composers = data.get("allComposers")
    if not isinstance(composers, list):
        return [], 0

    result = []
    skipped = 0
    for comp in composers:
        if not isinstance(comp, dict):
            skipped += 1
            continue

        composer_id = comp.get("composerId")
        if not isinstance(composer_id, str) or not composer_id:
            skipped += 1
            continue

        if comp.get("isArchived") is True and not include_archived:
            continue

        name = comp.get("name")
        if not isinstance(name, str) or not name.strip():
            name = "Untitled"
        created = _int_or_none(comp.get("createdAt"))
        if created is None:
            skipped += 1
            continue
        updated = _int_or_none(comp.get("lastUpdatedAt"))

        result.append(ComposerInfo(
            composer_id=composer_id,
            name=name,
            created_at=created,
            last_updated_at=updated if updated is not None else created,
            is_archived=comp.get("isArchived") is True,
        ))

    return result, skipped


def composer_ids(raw: str | None) -> list[str]:
    """All composer ids in a raw composer index, archived ones included."""
    data = _load_json(raw, COMPOSER_INDEX_KEY)
    composers = data.get("allComposers") if isinstance(data, dict) else None
    if not isinstance(composers, list):
        return []
    return [
        c["composerId"] for c in composers
        if isinstance(c, dict) and isinstance(c.get("composerId"), str) and c["composerId"]
    ]


# ── Stage 2: headers and bubbles ─────────────────────────────────


def parse_headers(data) -> tuple[list[BubbleHeader], int]:
    """Read ``fullConversationHeadersOnly`` from a composerData record."""
    if not isinstance(data, dict):
        return [], 0
    raw_headers = data.get("fullConversationHeadersOnly")
    if not isinstance(raw_headers, list):
        return [], 0

    headers = []
    skipped = 0
    for header in raw_headers:
        bubble_id = header.get("bubbleId") if isinstance(header, dict) else None
        if not isinstance(bubble_id, str) or not bubble_id:
            skipped += 1
            continue
        type_code = _int_or_none(header.get("type"))
        headers.append(BubbleHeader(bubble_id=bubble_id, type_code=type_code or 0))
    return headers, skipped


def bubble_to_messages(bubble: dict, type_code: int, options: ExportOptions) -> list[ChatMessage]:
    """Classify one bubble record into zero or more messages.

    A reasoning block is emitted first when requested. A bubble carrying a
    tool call becomes a tool message and nothing else. Otherwise non-empty
    text becomes a user, assistant or unknown message by ``type_code``.
    """
    timestamp = parse_iso_timestamp(bubble.get("createdAt"))
    messages = []

    if options.with_thinking:
        thinking = bubble.get("thinking")
        text = thinking.get("text") if isinstance(thinking, dict) else None
        if isinstance(text, str) and text:
            messages.append(ChatMessage.thinking(
                text,
                timestamp=timestamp,
                duration_ms=_int_or_none(bubble.get("thinkingDurationMs")),
            ))

    if options.with_tools:
        tool_data = bubble.get("toolFormerData")
        if isinstance(tool_data, dict):
            name = tool_data.get("name")
            params = _stringify(tool_data.get("params"))
            result = _stringify(tool_data.get("result"))
            status = tool_data.get("status")
            call = ToolCall(
                name=name if isinstance(name, str) and name else "unknown",
                params=truncate(params, PARAMS_LIMIT) if params is not None else None,
                result=truncate(result, RESULT_LIMIT) if result is not None else None,
                status=status if isinstance(status, str) else None,
            )
            messages.append(ChatMessage.tool(call, timestamp=timestamp))
            return messages

    text = bubble.get("text")
    if not isinstance(text, str) or not text:
        return messages

    model = None
    tokens = None
    if options.with_stats:
        model_info = bubble.get("modelInfo")
        if isinstance(model_info, dict) and isinstance(model_info.get("modelName"), str):
            model = model_info["modelName"]
        token_count = bubble.get("tokenCount")
        if isinstance(token_count, dict):
            inp = _int_or_none(token_count.get("inputTokens"))
            out = _int_or_none(token_count.get("outputTokens"))
            if inp is not None and out is not None and (inp > 0 or out > 0):
                tokens = TokenCount(input=inp, output=out)

    messages.append(ChatMessage.text(
        ROLE_BY_TYPE.get(type_code, UNKNOWN),
        text,
        timestamp=timestamp,
        model=model,
        tokens=tokens,
    ))
    return messages


# ── Store ────────────────────────────────────────────────────────


class SessionStore:
    """Read-only view of one workspace's chat sessions.

    ``skipped`` counts malformed records dropped during the last read;
    ``blank_filtered`` counts sessions removed by ``exclude_blank``.
    """

    def __init__(self, workspace_dir: Path, global_db: Path | None = None):
        self.workspace_dir = Path(workspace_dir)
        self.global_db = global_db
        self.skipped = 0
        self.blank_filtered = 0

    @property
    def workspace_db(self) -> Path:
        return self.workspace_dir / "state.vscdb"

    def read_composer_index(self, include_archived: bool = False) -> list[ComposerInfo]:
        """Stage 1: the composer index of this workspace."""
        if not self.workspace_db.exists():
            return []
        try:
            conn = connect_readonly(self.workspace_db)
        except FatalIOError as e:
            logger.warning("%s", e)
            return []

        try:
            raw = read_item(conn, COMPOSER_INDEX_KEY)
        except sqlite3.Error as e:
            logger.warning("Failed to read composer index from %s: %s", self.workspace_db, e)
            return []
        finally:
            conn.close()

        composers, skipped = parse_composer_index(
            _load_json(raw, f"composer index in {self.workspace_db}"), include_archived
        )
        self.skipped += skipped
        return composers

    def _open_global(self) -> sqlite3.Connection | None:
        if self.global_db is None or not Path(self.global_db).exists():
            logger.info("No global storage database; sessions will have no messages")
            return None
        try:
            return connect_readonly(self.global_db)
        except FatalIOError as e:
            logger.warning("%s", e)
            return None

    def _kv_get(self, conn: sqlite3.Connection, key: str) -> str | None:
        try:
            return read_item(conn, key, table="cursorDiskKV")
        except sqlite3.Error as e:
            logger.debug("Failed to read %s from global storage: %s", key, e)
            return None

    def read_headers(self, conn: sqlite3.Connection, composer_id: str) -> list[BubbleHeader] | None:
        """Stage 2: ordered bubble headers, or None if the session record is absent."""
        raw = self._kv_get(conn, f"composerData:{composer_id}")
        if raw is None:
            return None
        data = _load_json(raw, f"composerData for {composer_id}")
        if data is None:
            self.skipped += 1
            return None
        headers, skipped = parse_headers(data)
        self.skipped += skipped
        return headers

    def read_bubble(self, conn: sqlite3.Connection, composer_id: str, bubble_id: str) -> dict | None:
        raw = self._kv_get(conn, f"bubbleId:{composer_id}:{bubble_id}")
        data = _load_json(raw, f"bubble {bubble_id}")
        return data if isinstance(data, dict) else None

    def fetch_messages(
        self, conn: sqlite3.Connection, composer_id: str, options: ExportOptions
    ) -> list[ChatMessage]:
        headers = self.read_headers(conn, composer_id)
        if headers is None:
            return []

        messages = []
        for header in headers:
            bubble = self.read_bubble(conn, composer_id, header.bubble_id)
            if bubble is None:
                self.skipped += 1
                continue
            messages.extend(bubble_to_messages(bubble, header.type_code, options))
        return messages

    def sessions(self, options: ExportOptions | None = None) -> list[ChatSession]:
        """Reconstruct all sessions, newest created first."""
        options = options or ExportOptions()
        self.skipped = 0
        self.blank_filtered = 0

        composers = self.read_composer_index(options.include_archived)
        if not composers:
            return []

        conn = self._open_global()
        sessions = []
        try:
            for comp in composers:
                messages = self.fetch_messages(conn, comp.composer_id, options) if conn else []
                sessions.append(ChatSession(
                    id=comp.composer_id,
                    title=comp.name,
                    messages=messages,
                    created_at=comp.created_at // 1000,
                    updated_at=comp.last_updated_at // 1000,
                ))
        finally:
            if conn is not None:
                conn.close()

        sessions.sort(key=lambda s: s.created_at, reverse=True)

        if options.exclude_blank:
            before = len(sessions)
            sessions = [s for s in sessions if s.messages]
            self.blank_filtered = before - len(sessions)

        if self.skipped:
            logger.info("Skipped %d malformed record(s) in %s", self.skipped, self.workspace_dir)
        return sessions
