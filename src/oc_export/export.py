"""Export resolved sessions to Markdown and JSON formats."""

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from .core import (
    ConversationItem,
    Part,
    PatchPart,
    Project,
    ReasoningPart,
    ResolvedMessage,
    ResolvedSession,
    Session,
    StepFinishPart,
    StepStartPart,
    SubAgentBlock,
    TextPart,
    ToolPart,
    ToolState,
    UnknownPart,
)
from .resolver import Resolution

logger = logging.getLogger(__name__)

FORMATS = ("md", "json")

_TODO_CHECKS = {"completed": "[x]", "in_progress": "[-]", "cancelled": "[~]"}
_PRIORITY_BADGES = {"high": " `HIGH`", "medium": " `MED`", "low": " `LOW`"}

# read/write output longer than this is folded into <details>
_FOLD_OUTPUT_LINES = 30


def session_to_markdown(resolved: ResolvedSession, project: Project) -> str:
    """Render a resolved session as Markdown."""
    session = resolved.session
    lines = [f"# {session.title or 'Untitled Session'}", ""]

    lines.extend([
        "| | |",
        "|---|---|",
        f"| **Project** | `{project.worktree}` |",
        f"| **Date** | {format_timestamp(session.created)} |",
        f"| **Model** | {primary_model(resolved.items) or 'unknown'} |",
        f"| **Version** | opencode {session.version or 'unknown'} |",
    ])
    if session.slug:
        lines.append(f"| **Slug** | {session.slug} |")
    lines.append(f"| **Session** | `{session.id}` |")
    lines.extend(["", "---", ""])

    _render_items(lines, resolved.items, depth=0)

    if resolved.todos:
        lines.extend(["---", "", "## Task List", ""])
        for todo in resolved.todos:
            check = _TODO_CHECKS.get(todo.status, "[ ]")
            badge = _PRIORITY_BADGES.get(todo.priority or "", "")
            lines.append(f"- {check} {todo.content}{badge}")
        lines.append("")

    if resolved.diffs:
        lines.extend(["---", "", "## Files Changed", ""])
        for diff in resolved.diffs:
            status = diff.status or "modified"
            lines.append(f"- **{diff.file}** ({status}) +{diff.additions or 0} / -{diff.deletions or 0}")
        lines.append("")

    totals = resolved.token_totals
    if totals.input + totals.output > 0:
        lines.extend([
            "---",
            "",
            "## Token Usage",
            "",
            "| Metric | Count |",
            "|---|---:|",
            f"| Input | {format_number(totals.input)} |",
            f"| Output | {format_number(totals.output)} |",
        ])
        if totals.reasoning > 0:
            lines.append(f"| Reasoning | {format_number(totals.reasoning)} |")
        lines.append(f"| Cache Read | {format_number(totals.cache_read)} |")
        lines.append(f"| Cache Write | {format_number(totals.cache_write)} |")
        summary = session.summary
        if summary.files:
            lines.append(
                f"| Files Changed | {summary.files} (+{summary.additions or 0} / -{summary.deletions or 0}) |"
            )
        lines.append("")

    return "\n".join(lines)


def session_to_json(resolved: ResolvedSession, project: Project) -> str:
    """Export a resolved session as structured JSON."""
    data = {
        "project": {
            "id": project.id,
            "name": project.display_name,
            "worktree": project.worktree,
            "vcs": project.vcs,
        },
        "session": _session_to_dict(resolved.session),
        "items": [_item_to_dict(item) for item in resolved.items],
        "todos": [asdict(todo) for todo in resolved.todos],
        "diffs": [asdict(diff) for diff in resolved.diffs],
        "tokens": asdict(resolved.token_totals),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def write_export(resolution: Resolution, output_dir: Path, fmt: str = "md") -> Iterator[Path]:
    """Write one file per resolved session, yielding each path as it is written.

    Files go to ``<output_dir>/<project name>/<date>_<slug>.<fmt>``. Sessions
    that would share a file name within one run get a ``-2``, ``-3``, ...
    suffix instead of overwriting each other.
    """
    if fmt not in FORMATS:
        raise ValueError(f"Unknown export format: {fmt}")
    render = session_to_json if fmt == "json" else session_to_markdown
    written: set[Path] = set()

    for resolved_project in resolution.projects:
        project = resolved_project.project
        project_dir = output_dir / project.display_name
        project_dir.mkdir(parents=True, exist_ok=True)

        for resolved in resolved_project.sessions:
            stem = resolved.session.file_stem(format_date(resolved.session.created))
            path = project_dir / f"{stem}.{fmt}"
            counter = 2
            while path in written:
                path = project_dir / f"{stem}-{counter}.{fmt}"
                counter += 1
            if counter > 2:
                logger.warning("Session %s shares a file name; writing %s", resolved.session.id, path.name)
            written.add(path)
            path.write_text(render(resolved, project), encoding="utf-8")
            logger.debug("Wrote %s", path)
            yield path


def primary_model(items: list[ConversationItem]) -> Optional[str]:
    """Model of the first top-level assistant message that names one."""
    for item in items:
        if isinstance(item, ResolvedMessage) and item.message.role == "assistant":
            model = item.message.effective_model
            if model:
                return model
    return None


# ── Conversation ─────────────────────────────────────────────────


def _render_items(lines: list[str], items: list[ConversationItem], depth: int) -> None:
    for item in items:
        if isinstance(item, SubAgentBlock):
            _render_sub_agent(lines, item, depth)
        else:
            _render_message(lines, item, depth)


def _render_message(lines: list[str], resolved: ResolvedMessage, depth: int) -> None:
    prefix = "> " if depth > 0 else ""
    message = resolved.message

    if message.role == "user":
        lines.extend([f"{prefix}## User", ""])
    elif message.role == "assistant":
        model = message.effective_model or "assistant"
        mode_badge = f" `{message.mode}`" if message.mode and message.mode != "code" else ""
        lines.extend([f"{prefix}## Assistant ({model}){mode_badge}", ""])

    for part in resolved.parts:
        _render_part(lines, part, prefix)

    lines.extend([f"{prefix}---", ""])


def _render_sub_agent(lines: list[str], block: SubAgentBlock, depth: int) -> None:
    title = block.session.title or "Sub-agent"
    agent = block.session.slug or "agent"

    lines.extend(["---", "", f"> ### Sub-agent: {title} (`{agent}`)", ""])
    _render_items(lines, block.items, depth + 1)
    lines.extend(["> *End of sub-agent*", "", "---", ""])


def _render_part(lines: list[str], part: Part, prefix: str) -> None:
    kind = part.kind

    if isinstance(kind, TextPart):
        if kind.text:
            _quote(lines, kind.text, prefix)
            lines.append("")
    elif isinstance(kind, ToolPart):
        _render_tool(lines, kind.tool, kind.state, prefix)
    elif isinstance(kind, StepFinishPart):
        output = kind.tokens.output if kind.tokens else None
        if output:
            lines.extend([f"{prefix}*Step: {output} output tokens, {kind.reason or 'done'}*", ""])
    elif isinstance(kind, ReasoningPart):
        if kind.text:
            lines.extend([f"{prefix}<details>", f"{prefix}<summary>Thinking...</summary>", ""])
            _quote(lines, kind.text, prefix)
            lines.extend(["", f"{prefix}</details>", ""])
    elif isinstance(kind, PatchPart):
        if kind.files:
            lines.append(f"{prefix}*Patched files:*")
            lines.extend(f"{prefix}- `{name}`" for name in kind.files)
            lines.append("")
    elif isinstance(kind, (StepStartPart, UnknownPart)):
        pass


def _render_tool(lines: list[str], tool: str, state: ToolState, prefix: str) -> None:
    status = state.status or "unknown"
    error_badge = " **ERROR**" if status == "error" else ""
    lines.extend([f"{prefix}### Tool: `{tool}` - {state.title or tool}{error_badge}", ""])

    if isinstance(state.input, dict):
        _render_tool_input(lines, tool, state.input, prefix)

    if state.error is not None:
        lines.append(f"{prefix}**Error:**")
        _fence(lines, state.error, prefix)
    elif state.output:
        _render_tool_output(lines, tool, state.output, prefix)


def _render_tool_input(lines: list[str], tool: str, data: dict, prefix: str) -> None:
    file_path = data.get("filePath") if isinstance(data.get("filePath"), str) else None

    if tool == "bash":
        command = data.get("command")
        if isinstance(command, str):
            description = data.get("description")
            if isinstance(description, str) and description:
                lines.extend([f"{prefix}> {description}", ""])
            _fence(lines, command, prefix, lang="bash")
    elif tool == "read":
        if file_path:
            lines.extend([f"{prefix}**File:** `{file_path}`", ""])
    elif tool == "write":
        if file_path:
            lines.extend([f"{prefix}**Write to:** `{file_path}`", ""])
        content = data.get("content")
        if isinstance(content, str):
            ext = file_path.rsplit(".", 1)[-1] if file_path else ""
            lines.extend([
                f"{prefix}<details>",
                f"{prefix}<summary>File content ({len(content.splitlines())} lines)</summary>",
                "",
            ])
            _fence(lines, content, prefix, lang=ext)
            lines.extend([f"{prefix}</details>", ""])
    elif tool == "edit":
        if file_path:
            lines.extend([f"{prefix}**Edit:** `{file_path}`", ""])
        old = data.get("oldString")
        if isinstance(old, str):
            new = data.get("newString")
            lines.append(f"{prefix}```diff")
            lines.extend(f"{prefix}- {line}" for line in old.splitlines())
            if isinstance(new, str):
                lines.extend(f"{prefix}+ {line}" for line in new.splitlines())
            lines.extend([f"{prefix}```", ""])
    elif tool in ("glob", "grep"):
        pattern = data.get("pattern")
        if isinstance(pattern, str):
            label = "Pattern" if tool == "glob" else "Search"
            path = data.get("path") if isinstance(data.get("path"), str) else "."
            lines.extend([f"{prefix}**{label}:** `{pattern}` in `{path}`", ""])
    elif tool in ("todowrite", "todoread"):
        # shown in the Task List section instead
        pass
    else:
        _fence(lines, json.dumps(data, indent=2, ensure_ascii=False), prefix, lang="json")


def _render_tool_output(lines: list[str], tool: str, output: str, prefix: str) -> None:
    line_count = len(output.splitlines())
    fold = tool in ("write", "read") and line_count > _FOLD_OUTPUT_LINES

    if fold:
        lines.extend([f"{prefix}<details>", f"{prefix}<summary>Output ({line_count} lines)</summary>", ""])
    else:
        lines.append(f"{prefix}**Output:**")

    _fence(lines, output, prefix)

    if fold:
        lines.extend([f"{prefix}</details>", ""])


def _quote(lines: list[str], text: str, prefix: str) -> None:
    if not prefix:
        lines.append(text)
    else:
        lines.extend(f"{prefix}{line}" for line in text.splitlines())


def _fence(lines: list[str], text: str, prefix: str, lang: str = "") -> None:
    lines.append(f"{prefix}```{lang}")
    lines.extend(f"{prefix}{line}" for line in text.splitlines())
    lines.extend([f"{prefix}```", ""])


# ── JSON helpers ─────────────────────────────────────────────────


def _session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "parent_id": session.parent_id,
        "slug": session.slug,
        "title": session.title,
        "version": session.version,
        "created": _iso(session.created),
        "updated": _iso(session.updated),
    }


def _item_to_dict(item: ConversationItem) -> dict[str, Any]:
    if isinstance(item, SubAgentBlock):
        return {
            "type": "sub_agent",
            "session": _session_to_dict(item.session),
            "items": [_item_to_dict(child) for child in item.items],
            "tokens": asdict(item.token_totals),
        }
    message = item.message
    return {
        "type": "message",
        "id": message.id,
        "role": message.role,
        "model": message.effective_model,
        "created": _iso(message.created),
        "completed": _iso(message.completed),
        "tokens": asdict(message.tokens) if message.tokens else None,
        "parts": [_part_to_dict(part) for part in item.parts],
    }


def _part_to_dict(part: Part) -> dict[str, Any]:
    kind = part.kind
    if isinstance(kind, UnknownPart):
        return {"id": part.id, "type": kind.type, "unrecognized": True}
    type_names = {
        TextPart: "text",
        ToolPart: "tool",
        StepStartPart: "step-start",
        StepFinishPart: "step-finish",
        ReasoningPart: "reasoning",
        PatchPart: "patch",
    }
    return {"id": part.id, "type": type_names[type(kind)], **asdict(kind)}


# ── Utility ──────────────────────────────────────────────────────


def _ms_to_datetime(ms: Optional[int]) -> Optional[datetime]:
    """Convert millisecond timestamp to datetime, or None."""
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (ValueError, OSError, OverflowError):
        return None


def _iso(ms: Optional[int]) -> Optional[str]:
    dt = _ms_to_datetime(ms)
    return dt.isoformat() if dt else None


def format_timestamp(ms: Optional[int]) -> str:
    dt = _ms_to_datetime(ms)
    if dt is None:
        return "unknown" if ms is None else f"{ms}ms"
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def format_date(ms: Optional[int]) -> str:
    dt = _ms_to_datetime(ms)
    return dt.strftime("%Y-%m-%d") if dt else "unknown"


def format_number(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)
