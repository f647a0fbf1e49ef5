"""Export chat sessions to Markdown and JSON formats."""

import json
import time
from datetime import datetime, timezone
from pathlib import Path

from .core import ASSISTANT, THINKING, TOOL, USER, ChatExport, ChatMessage, ChatSession
from .store import ExportOptions, SessionStore

FORMATS = {"md": "md", "markdown": "md", "json": "json"}

_ROLE_LABELS = {USER: "**User**", ASSISTANT: "**Assistant**", "system": "**System**"}


def parse_format(value: str) -> str | None:
    """Map ``md``/``markdown``/``json`` (any case) to ``md`` or ``json``."""
    return FORMATS.get(value.lower())


def build_export(
    workspace_dir: Path,
    project_path: str,
    global_db: Path | None,
    options: ExportOptions | None = None,
) -> tuple[ChatExport, SessionStore]:
    """Reconstruct every session of a workspace into an export document."""
    store = SessionStore(workspace_dir, global_db)
    sessions = store.sessions(options)
    return ChatExport(
        project_path=project_path,
        exported_at=int(time.time()),
        sessions=sessions,
    ), store


def format_timestamp(ts: int) -> str:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    except (ValueError, OSError, OverflowError):
        return str(ts)


def export_to_json(export: ChatExport) -> str:
    return json.dumps(export.to_dict(), indent=2, ensure_ascii=False)


def _message_to_markdown(msg: ChatMessage, heading: str) -> list[str]:
    lines = []

    if msg.kind == THINKING:
        header = f"{heading} 💭 **Thinking**"
        if msg.thinking_duration_ms is not None:
            header += f" _{msg.thinking_duration_ms / 1000:.1f}s_"
        lines.extend([header, ""])
        lines.extend(["<details>", "<summary>Click to expand thinking...</summary>", ""])
        lines.extend([msg.content, "", "</details>", ""])
        return lines

    if msg.kind == TOOL:
        tc = msg.tool_call
        if tc is None:
            return lines
        header = f"{heading} 🔧 **Tool: {tc.name}**"
        if tc.status:
            header += f" [{tc.status}]"
        lines.extend([header, ""])
        if tc.params is not None:
            lines.extend(["<details>", "<summary>Parameters</summary>", "", "```json"])
            lines.extend([tc.params, "```", "", "</details>", ""])
        if tc.result is not None:
            lines.extend(["<details>", "<summary>Result</summary>", "", "```"])
            lines.extend([tc.result, "```", "", "</details>", ""])
        return lines

    header = f"{heading} {_ROLE_LABELS.get(msg.kind, msg.kind)}"
    if msg.model:
        header += f" _{msg.model}_"
    if msg.tokens and (msg.tokens.input > 0 or msg.tokens.output > 0):
        header += f" ({msg.tokens.input}↓ {msg.tokens.output}↑)"
    lines.extend([header, "", msg.content, ""])
    return lines


def session_to_markdown(
    session: ChatSession, index: int, heading: str = "##", standalone: bool = False
) -> str:
    """Render one session; ``heading`` is the session-level Markdown marker.

    A standalone rendering (one file per session) puts a rule under the title.
    """
    title = session.title or "Untitled Session"
    lines = [f"{heading} Session {index}: {title}", ""]
    if session.created_at is not None:
        lines.extend([f"_Created: {format_timestamp(session.created_at)}_", ""])
    if standalone:
        lines.extend(["---", ""])

    message_heading = heading + "#"
    for msg in session.messages:
        lines.extend(_message_to_markdown(msg, message_heading))

    return "\n".join(lines)


def export_to_markdown(export: ChatExport) -> str:
    """Render a whole export as one Markdown document."""
    parts = [
        f"# Chat Export: {export.project_path}",
        "",
        f"_Exported: {format_timestamp(export.exported_at)}_",
        "",
        "---",
        "",
    ]
    for i, session in enumerate(export.sessions, 1):
        parts.append(session_to_markdown(session, i))
        parts.extend(["---", ""])
    return "\n".join(parts)


def render(export: ChatExport, fmt: str) -> str:
    return export_to_json(export) if fmt == "json" else export_to_markdown(export)


def sanitize_filename(name: str, max_len: int = 50) -> str:
    """Replace characters that are unsafe in file names and cap the length."""
    cleaned = "".join(
        "_" if c in '/\\:*?"<>|' or not c.isprintable() else c for c in name
    )
    return cleaned[:max_len].strip()


def write_split(export: ChatExport, output_dir: Path, fmt: str) -> list[Path]:
    """Write one file per session, named ``NNN-<title>.<ext>``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []

    for i, session in enumerate(export.sessions, 1):
        safe_title = sanitize_filename(session.title or "Untitled") or "Untitled"
        path = output_dir / f"{i:03d}-{safe_title}.{fmt}"
        if fmt == "json":
            single = ChatExport(
                project_path=export.project_path,
                exported_at=export.exported_at,
                sessions=[session],
            )
            content = export_to_json(single)
        else:
            content = session_to_markdown(session, i, heading="#", standalone=True)
        path.write_text(content, encoding="utf-8")
        written.append(path)

    return written
