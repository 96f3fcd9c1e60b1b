"""OpenCode storage loader.

Reads the storage directory (~/.local/share/opencode/storage/ by default)
into a single in-memory StorageIndex. Layout:

    project/<projectID>.json
    session/<projectID>/<sessionID>.json
    message/<sessionID>/<messageID>.json
    part/<messageID>/<partID>.json
    session_diff/<sessionID>.json     (JSON array)
    todo/<sessionID>.json             (JSON array)

A record that cannot be read or parsed is skipped and reported as a
LoadWarning; the rest of the load carries on. Only a missing storage root
is fatal.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from .config import get_opencode_path
from .core import DiffEntry, Message, Part, Project, RecordError, Session, TodoEntry, time_sort_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageNotFoundError(FileNotFoundError):
    """The storage root does not exist or cannot be opened as a directory."""


@dataclass(frozen=True)
class LoadWarning:
    """A record that was skipped during loading."""

    path: Path
    kind: str  # "project" | "session" | "message" | "part" | "session_diff" | "todo"
    cause: str

    def __str__(self) -> str:
        return f"skipping {self.kind} {self.path}: {self.cause}"


@dataclass
class StorageIndex:
    """Everything loaded from disk, keyed for lookup by the resolver.

    Treat as read-only once built; the accessors hand out copies.
    """

    projects: list[Project] = field(default_factory=list)  # oldest first
    sessions: dict[str, Session] = field(default_factory=dict)
    messages_by_session: dict[str, list[Message]] = field(default_factory=dict)  # by created
    parts_by_message: dict[str, list[Part]] = field(default_factory=dict)  # by part id
    diffs_by_session: dict[str, list[DiffEntry]] = field(default_factory=dict)
    todos_by_session: dict[str, list[TodoEntry]] = field(default_factory=dict)
    sessions_by_project: dict[str, list[str]] = field(default_factory=dict)

    def messages_for(self, session_id: str) -> list[Message]:
        return list(self.messages_by_session.get(session_id, ()))

    def parts_for(self, message_id: str) -> list[Part]:
        return list(self.parts_by_message.get(message_id, ()))

    def diffs_for(self, session_id: str) -> list[DiffEntry]:
        return list(self.diffs_by_session.get(session_id, ()))

    def todos_for(self, session_id: str) -> list[TodoEntry]:
        return list(self.todos_by_session.get(session_id, ()))

    def sessions_for(self, project_id: str) -> list[Session]:
        """Sessions of a project in discovery order."""
        return [
            self.sessions[sid]
            for sid in self.sessions_by_project.get(project_id, ())
            if sid in self.sessions
        ]


@dataclass
class LoadResult:
    index: StorageIndex
    warnings: list[LoadWarning] = field(default_factory=list)


class StoreLoader:
    """Loads an OpenCode storage directory into a StorageIndex."""

    def __init__(self, base_path: Optional[Path] = None):
        self._base_path = base_path

    def get_base_path(self) -> Path:
        if self._base_path is not None:
            return self._base_path
        return get_opencode_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_dir()

    def load(self) -> LoadResult:
        """Read every record under the storage root.

        Raises:
            StorageNotFoundError: the root is missing or not a readable directory.
        """
        base = self.get_base_path()
        if not base.is_dir() or not os.access(base, os.R_OK | os.X_OK):
            raise StorageNotFoundError(f"Storage directory not found: {base}")

        warnings: list[LoadWarning] = []
        index = StorageIndex()

        index.projects = self._load_projects(base / "project", warnings)
        index.sessions, index.sessions_by_project = self._load_sessions(base / "session", warnings)
        index.messages_by_session = self._load_grouped(
            base / "message", "message", Message.from_dict, warnings,
            sort_key=lambda m: time_sort_key(m.created),
        )
        index.parts_by_message = self._load_grouped(
            base / "part", "part", Part.from_dict, warnings,
            sort_key=lambda p: p.id,
        )
        index.diffs_by_session = self._load_session_lists(
            base / "session_diff", "session_diff", DiffEntry.from_dict, warnings,
        )
        index.todos_by_session = self._load_session_lists(
            base / "todo", "todo", TodoEntry.from_dict, warnings,
        )
        self._drop_orphans(index)

        logger.info(
            "Loaded %d projects, %d sessions from %s (%d records skipped)",
            len(index.projects), len(index.sessions), base, len(warnings),
        )
        return LoadResult(index=index, warnings=warnings)

    # ── Per-kind loaders ─────────────────────────────────────────────

    def _load_projects(self, directory: Path, warnings: list[LoadWarning]) -> list[Project]:
        projects = []
        for path in self._json_files(directory, "project", warnings):
            project = self._load_record(path, "project", Project.from_dict, warnings)
            if project is not None:
                projects.append(project)
        projects.sort(key=lambda p: time_sort_key(p.created))
        return projects

    def _load_sessions(
        self, directory: Path, warnings: list[LoadWarning]
    ) -> tuple[dict[str, Session], dict[str, list[str]]]:
        sessions: dict[str, Session] = {}
        by_project: dict[str, list[str]] = {}

        for project_dir in self._subdirs(directory, "session", warnings):
            for path in self._json_files(project_dir, "session", warnings):
                session = self._load_record(path, "session", Session.from_dict, warnings)
                if session is None:
                    continue
                ids = by_project.setdefault(session.project_id, [])
                if session.id not in sessions:
                    ids.append(session.id)
                sessions[session.id] = session

        return sessions, by_project

    def _load_grouped(
        self,
        directory: Path,
        kind: str,
        build: Callable[[Any], T],
        warnings: list[LoadWarning],
        sort_key: Callable[[T], Any],
    ) -> dict[str, list[T]]:
        """Load ``<directory>/<owner id>/<record>.json`` into lists keyed by owner id."""
        grouped: dict[str, list[T]] = {}

        for owner_dir in self._subdirs(directory, kind, warnings):
            records = []
            for path in self._json_files(owner_dir, kind, warnings):
                record = self._load_record(path, kind, build, warnings)
                if record is not None:
                    records.append(record)
            if records:
                records.sort(key=sort_key)
                grouped[owner_dir.name] = records

        return grouped

    def _load_session_lists(
        self,
        directory: Path,
        kind: str,
        build: Callable[[Any], T],
        warnings: list[LoadWarning],
    ) -> dict[str, list[T]]:
        """Load ``<directory>/<session id>.json`` arrays. Empty arrays are left out."""
        by_session: dict[str, list[T]] = {}

        for path in self._json_files(directory, kind, warnings):
            entries = self._load_record(path, kind, lambda data: _build_list(data, build), warnings)
            if entries:
                by_session[path.stem] = entries

        return by_session

    def _drop_orphans(self, index: StorageIndex) -> None:
        """Remove messages without a loaded session and parts without a loaded message."""
        for session_id in [sid for sid in index.messages_by_session if sid not in index.sessions]:
            logger.debug("Dropping messages of unknown session %s", session_id)
            del index.messages_by_session[session_id]

        message_ids = {m.id for msgs in index.messages_by_session.values() for m in msgs}
        for message_id in [mid for mid in index.parts_by_message if mid not in message_ids]:
            logger.debug("Dropping parts of unknown message %s", message_id)
            del index.parts_by_message[message_id]

    # ── Private helpers ──────────────────────────────────────────────

    def _load_record(
        self,
        path: Path,
        kind: str,
        build: Callable[[Any], T],
        warnings: list[LoadWarning],
    ) -> Optional[T]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return build(data)
        except (OSError, ValueError, RecursionError) as e:
            # ValueError covers JSONDecodeError, UnicodeDecodeError and RecordError;
            # RecursionError comes from pathologically nested JSON
            self._warn(warnings, path, kind, str(e))
            return None

    def _json_files(self, directory: Path, kind: str, warnings: list[LoadWarning]) -> list[Path]:
        return [p for p in self._list_dir(directory, kind, warnings) if p.suffix == ".json" and p.is_file()]

    def _subdirs(self, directory: Path, kind: str, warnings: list[LoadWarning]) -> list[Path]:
        return [p for p in self._list_dir(directory, kind, warnings) if p.is_dir()]

    def _list_dir(self, directory: Path, kind: str, warnings: list[LoadWarning]) -> list[Path]:
        """Sorted directory listing; a missing sub-tree is simply empty."""
        if not directory.is_dir():
            return []
        try:
            return sorted(directory.iterdir())
        except OSError as e:
            self._warn(warnings, directory, kind, str(e))
            return []

    def _warn(self, warnings: list[LoadWarning], path: Path, kind: str, cause: str) -> None:
        warning = LoadWarning(path=path, kind=kind, cause=cause)
        logger.debug("Failed to read %s file %s: %s", kind, path, cause)
        warnings.append(warning)


def _build_list(data: Any, build: Callable[[Any], T]) -> list[T]:
    if not isinstance(data, list):
        raise RecordError(f"expected an array, got {type(data).__name__}")
    return [build(item) for item in data]


def load_storage(base_path: Optional[Path] = None) -> LoadResult:
    """Load the storage directory at ``base_path`` (or the default location)."""
    return StoreLoader(base_path).load()
