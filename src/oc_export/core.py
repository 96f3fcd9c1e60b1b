"""Core data models for oc-export.

Two families live here: records deserialized from the OpenCode storage
directory (frozen, built with ``from_dict``), and the resolved tree the
resolver hands to the renderer.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

GLOBAL_PROJECT_ID = "global"
GLOBAL_PROJECT_NAME = "_global"


class RecordError(ValueError):
    """A JSON document does not have the shape of the record it should hold."""


def _require(data: Any, key: str, kind: type = str) -> Any:
    if not isinstance(data, dict):
        raise RecordError(f"expected an object, got {type(data).__name__}")
    value = data.get(key)
    if value is None:
        raise RecordError(f"missing required field '{key}'")
    if not isinstance(value, kind):
        raise RecordError(f"field '{key}' should be {kind.__name__}, got {type(value).__name__}")
    return value


def _obj(data: dict, key: str) -> dict:
    """Return a nested object, or {} when absent or not an object."""
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _int(value: Any) -> Optional[int]:
    # bool is an int subclass; a flag is never a count
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def time_sort_key(ms: Optional[int]) -> tuple[bool, int]:
    """Sort key for an optional timestamp: known times ascending, unknown last."""
    return (ms is None, ms or 0)


# ── Tokens ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Tokens:
    """Token counters as stored; any counter may be absent."""

    input: Optional[int] = None
    output: Optional[int] = None
    reasoning: Optional[int] = None
    cache_read: Optional[int] = None
    cache_write: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Tokens"]:
        if not isinstance(data, dict):
            return None
        cache = _obj(data, "cache")
        return cls(
            input=_int(data.get("input")),
            output=_int(data.get("output")),
            reasoning=_int(data.get("reasoning")),
            cache_read=_int(cache.get("read")),
            cache_write=_int(cache.get("write")),
        )


@dataclass
class TokenTotals:
    """Summed token counters for one session."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0

    def add(self, tokens: Optional[Tokens]) -> None:
        if tokens is None:
            return
        self.input += tokens.input or 0
        self.output += tokens.output or 0
        self.reasoning += tokens.reasoning or 0
        self.cache_read += tokens.cache_read or 0
        self.cache_write += tokens.cache_write or 0


# ── Project / Session / Message ──────────────────────────────────


@dataclass(frozen=True)
class Project:
    """A working tree (or the global sentinel) that owns sessions."""

    id: str
    worktree: str
    vcs: Optional[str] = None
    created: Optional[int] = None  # ms since epoch
    updated: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Project":
        project_id = _require(data, "id")
        worktree = _require(data, "worktree")
        time_data = _obj(data, "time")
        return cls(
            id=project_id,
            worktree=worktree,
            vcs=_str(data.get("vcs")),
            created=_int(time_data.get("created")),
            updated=_int(time_data.get("updated")),
        )

    @property
    def display_name(self) -> str:
        """Short name derived from the last segment of the worktree path."""
        if self.id == GLOBAL_PROJECT_ID:
            return GLOBAL_PROJECT_NAME
        name = self.worktree.rstrip("/").rsplit("/", 1)[-1]
        if name in ("", ".", ".."):
            return self.id[:8]
        return name


@dataclass(frozen=True)
class SessionSummary:
    additions: Optional[int] = None
    deletions: Optional[int] = None
    files: Optional[int] = None


@dataclass(frozen=True)
class Session:
    """A single conversation. ``parent_id`` marks a sub-agent session."""

    id: str
    project_id: str
    parent_id: Optional[str] = None
    slug: Optional[str] = None
    title: Optional[str] = None
    version: Optional[str] = None
    directory: Optional[str] = None
    created: Optional[int] = None
    updated: Optional[int] = None
    summary: SessionSummary = field(default_factory=SessionSummary)

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        session_id = _require(data, "id")
        project_id = _require(data, "projectID")
        time_data = _obj(data, "time")
        summary = _obj(data, "summary")
        return cls(
            id=session_id,
            project_id=project_id,
            parent_id=_str(data.get("parentID")),
            slug=_str(data.get("slug")),
            title=_str(data.get("title")),
            version=_str(data.get("version")),
            directory=_str(data.get("directory")),
            created=_int(time_data.get("created")),
            updated=_int(time_data.get("updated")),
            summary=SessionSummary(
                additions=_int(summary.get("additions")),
                deletions=_int(summary.get("deletions")),
                files=_int(summary.get("files")),
            ),
        )

    @property
    def is_sub_agent(self) -> bool:
        return self.parent_id is not None

    def file_stem(self, date_str: str) -> str:
        """Filename-safe stem: ``<date>_<slug|title|id>``."""
        name = self.slug or self.title or self.id
        sanitized = "".join(c if c.isalnum() or c in "-_" else "-" for c in name)
        return f"{date_str}_{sanitized[:60].rstrip('-')}"


@dataclass(frozen=True)
class Message:
    """One user or assistant turn."""

    id: str
    session_id: str
    role: str  # "user" | "assistant"
    created: Optional[int] = None
    completed: Optional[int] = None
    parent_id: Optional[str] = None  # assistant: the user message it answers
    model_id: Optional[str] = None  # assistant: top-level modelID
    user_model_id: Optional[str] = None  # user: model.modelID
    provider_id: Optional[str] = None
    mode: Optional[str] = None
    agent: Optional[str] = None
    cost: Optional[float] = None
    finish: Optional[str] = None
    tokens: Optional[Tokens] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Message":
        message_id = _require(data, "id")
        session_id = _require(data, "sessionID")
        role = _require(data, "role")
        time_data = _obj(data, "time")
        return cls(
            id=message_id,
            session_id=session_id,
            role=role,
            created=_int(time_data.get("created")),
            completed=_int(time_data.get("completed")),
            parent_id=_str(data.get("parentID")),
            model_id=_str(data.get("modelID")),
            user_model_id=_str(_obj(data, "model").get("modelID")),
            provider_id=_str(data.get("providerID")),
            mode=_str(data.get("mode")),
            agent=_str(data.get("agent")),
            cost=_float(data.get("cost")),
            finish=_str(data.get("finish")),
            tokens=Tokens.from_dict(data.get("tokens")),
        )

    @property
    def effective_model(self) -> Optional[str]:
        """Model ID regardless of whether this is a user or assistant message."""
        return self.model_id or self.user_model_id


# ── Parts ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PartTime:
    start: Optional[int] = None
    end: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["PartTime"]:
        if not isinstance(data, dict):
            return None
        return cls(start=_int(data.get("start")), end=_int(data.get("end")))


@dataclass(frozen=True)
class TextPart:
    text: str
    time: Optional[PartTime] = None


@dataclass(frozen=True)
class ToolState:
    status: Optional[str] = None
    input: Any = None  # freeform JSON payload
    output: Optional[str] = None
    error: Optional[str] = None
    title: Optional[str] = None
    metadata: Any = None
    time: Optional[PartTime] = None


@dataclass(frozen=True)
class ToolPart:
    tool: str
    state: ToolState
    call_id: Optional[str] = None


@dataclass(frozen=True)
class StepStartPart:
    snapshot: Optional[str] = None


@dataclass(frozen=True)
class StepFinishPart:
    reason: Optional[str] = None
    snapshot: Optional[str] = None
    cost: Optional[float] = None
    tokens: Optional[Tokens] = None


@dataclass(frozen=True)
class ReasoningPart:
    text: Optional[str] = None
    metadata: Any = None
    time: Optional[PartTime] = None


@dataclass(frozen=True)
class PatchPart:
    hash: Optional[str] = None
    files: tuple[str, ...] = ()


@dataclass(frozen=True)
class UnknownPart:
    """A part type this version does not know. Kept, never rendered."""

    type: str
    raw: dict = field(default_factory=dict)


PartKind = Union[TextPart, ToolPart, StepStartPart, StepFinishPart, ReasoningPart, PatchPart, UnknownPart]


def _parse_kind(part_type: str, data: dict) -> PartKind:
    if part_type == "text":
        return TextPart(text=_require(data, "text"), time=PartTime.from_dict(data.get("time")))
    if part_type == "tool":
        tool = _require(data, "tool")
        state = _require(data, "state", dict)
        return ToolPart(
            tool=tool,
            call_id=_str(data.get("callID")),
            state=ToolState(
                status=_str(state.get("status")),
                input=state.get("input"),
                output=_str(state.get("output")),
                error=_str(state.get("error")),
                title=_str(state.get("title")),
                metadata=state.get("metadata"),
                time=PartTime.from_dict(state.get("time")),
            ),
        )
    if part_type == "step-start":
        return StepStartPart(snapshot=_str(data.get("snapshot")))
    if part_type == "step-finish":
        return StepFinishPart(
            reason=_str(data.get("reason")),
            snapshot=_str(data.get("snapshot")),
            cost=_float(data.get("cost")),
            tokens=Tokens.from_dict(data.get("tokens")),
        )
    if part_type == "reasoning":
        return ReasoningPart(
            text=_str(data.get("text")),
            metadata=data.get("metadata"),
            time=PartTime.from_dict(data.get("time")),
        )
    if part_type == "patch":
        files = data.get("files")
        return PatchPart(
            hash=_str(data.get("hash")),
            files=tuple(f for f in files if isinstance(f, str)) if isinstance(files, list) else (),
        )
    return UnknownPart(type=part_type, raw=dict(data))


@dataclass(frozen=True)
class Part:
    """Atomic content unit of a message. Ordered within a message by ``id``."""

    id: str
    session_id: str
    message_id: str
    kind: PartKind

    @classmethod
    def from_dict(cls, data: Any) -> "Part":
        part_id = _require(data, "id")
        session_id = _require(data, "sessionID")
        message_id = _require(data, "messageID")
        part_type = _require(data, "type")
        return cls(
            id=part_id,
            session_id=session_id,
            message_id=message_id,
            kind=_parse_kind(part_type, data),
        )


# ── Session side-records ─────────────────────────────────────────


@dataclass(frozen=True)
class DiffEntry:
    """One file changed during a session."""

    file: str
    before: Optional[str] = None
    after: Optional[str] = None
    additions: Optional[int] = None
    deletions: Optional[int] = None
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "DiffEntry":
        return cls(
            file=_require(data, "file"),
            before=_str(data.get("before")),
            after=_str(data.get("after")),
            additions=_int(data.get("additions")),
            deletions=_int(data.get("deletions")),
            status=_str(data.get("status")),
        )


@dataclass(frozen=True)
class TodoEntry:
    """One task-list item: pending | in_progress | completed | cancelled."""

    id: str
    content: str
    status: str
    priority: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "TodoEntry":
        return cls(
            id=_require(data, "id"),
            content=_require(data, "content"),
            status=_require(data, "status"),
            priority=_str(data.get("priority")),
        )


# ── Resolved tree ────────────────────────────────────────────────


@dataclass
class ResolvedMessage:
    """A message with its parts inlined."""

    message: Message
    parts: list[Part] = field(default_factory=list)


@dataclass
class SubAgentBlock:
    """A sub-agent session inlined at its position in the parent timeline."""

    session: Session
    items: list["ConversationItem"] = field(default_factory=list)
    token_totals: TokenTotals = field(default_factory=TokenTotals)


ConversationItem = Union[ResolvedMessage, SubAgentBlock]


@dataclass
class ResolvedSession:
    """A top-level session ready for rendering."""

    session: Session
    items: list[ConversationItem] = field(default_factory=list)
    diffs: list[DiffEntry] = field(default_factory=list)
    todos: list[TodoEntry] = field(default_factory=list)
    token_totals: TokenTotals = field(default_factory=TokenTotals)


@dataclass
class ResolvedProject:
    """A project with its resolved top-level sessions."""

    project: Project
    sessions: list[ResolvedSession] = field(default_factory=list)
