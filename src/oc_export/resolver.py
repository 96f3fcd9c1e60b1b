"""Conversation resolver.

Turns the loader's flat StorageIndex into per-project trees of resolved
sessions. Sub-agent sessions (those with a ``parentID``) never appear at the
top level: each one is inlined into its parent's timeline at the point it
was created, recursively.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from .core import (
    ConversationItem,
    Message,
    Project,
    ResolvedMessage,
    ResolvedProject,
    ResolvedSession,
    Session,
    SubAgentBlock,
    TokenTotals,
    time_sort_key,
)
from .loader import StorageIndex

logger = logging.getLogger(__name__)


class MatchStatus(enum.Enum):
    MATCHED = "matched"
    NO_PROJECT_MATCHED = "no_project_matched"
    NO_SESSION_MATCHED = "no_session_matched"


@dataclass
class Resolution:
    """Resolved projects plus whether the selection matched anything."""

    projects: list[ResolvedProject] = field(default_factory=list)
    status: MatchStatus = MatchStatus.MATCHED

    @property
    def nothing_matched(self) -> bool:
        return self.status is not MatchStatus.MATCHED

    @property
    def session_count(self) -> int:
        return sum(len(p.sessions) for p in self.projects)


def project_matches(project: Project, project_filter: str) -> bool:
    """Match on worktree substring, project ID prefix, or display name."""
    return (
        project_filter in project.worktree
        or project.id.startswith(project_filter)
        or project.display_name.lower() == project_filter.lower()
    )


def resolve(
    index: StorageIndex,
    project_filter: Optional[str] = None,
    session_filter: Optional[str] = None,
    since_ms: Optional[int] = None,
) -> Resolution:
    """Build resolved projects from the index.

    Args:
        index: Loaded storage index. Never modified.
        project_filter: Worktree substring, project ID prefix, or display name.
        session_filter: Exact ID of a top-level session.
        since_ms: Inclusive lower bound on top-level session creation time.
            Sessions with an unknown creation time are excluded.
    """
    resolved_projects = []
    matched_any_project = False

    for project in index.projects:
        if project_filter is not None and not project_matches(project, project_filter):
            continue
        matched_any_project = True

        resolver = _ProjectResolver(index, index.sessions_for(project.id))
        sessions = []
        for session in resolver.top_level:
            if session_filter is not None and session.id != session_filter:
                continue
            if since_ms is not None and (session.created is None or session.created < since_ms):
                continue
            sessions.append(resolver.resolve_session(session))

        if sessions:
            resolved_projects.append(ResolvedProject(project=project, sessions=sessions))

    if resolved_projects:
        status = MatchStatus.MATCHED
    elif matched_any_project:
        status = MatchStatus.NO_SESSION_MATCHED
    else:
        status = MatchStatus.NO_PROJECT_MATCHED

    logger.debug("Resolved %d projects (%s)", len(resolved_projects), status.value)
    return Resolution(projects=resolved_projects, status=status)


def sum_tokens(messages: list[Message]) -> TokenTotals:
    """Sum whatever token counters the messages carry; absent counters add zero."""
    totals = TokenTotals()
    for message in messages:
        totals.add(message.tokens)
    return totals


def interleave(
    messages: list[Message],
    children: list[Session],
) -> list[Union[Message, Session]]:
    """Merge time-ordered messages with time-ordered child sessions.

    Each child is placed immediately before the first message created at or
    after it (a tie puts the child first). Children left over, including
    those with no creation time, go at the end. Messages with no creation
    time do not pull children ahead of themselves.
    """
    merged: list[Union[Message, Session]] = []
    child_idx = 0

    for message in messages:
        if message.created is not None:
            while child_idx < len(children):
                child_time = children[child_idx].created
                if child_time is None or child_time > message.created:
                    break
                merged.append(children[child_idx])
                child_idx += 1
        merged.append(message)

    for child in children[child_idx:]:
        merged.append(child)

    return merged


class _ProjectResolver:
    """Resolves the sessions of one project against the shared index."""

    def __init__(self, index: StorageIndex, sessions: list[Session]):
        self._index = index
        ordered = sorted(sessions, key=lambda s: time_sort_key(s.created))

        self.top_level = [s for s in ordered if not s.is_sub_agent]
        # parent session id -> direct sub-agent sessions, oldest first
        self._children: dict[str, list[Session]] = {}
        for session in ordered:
            if session.parent_id is not None:
                self._children.setdefault(session.parent_id, []).append(session)

    def resolve_session(self, session: Session) -> ResolvedSession:
        messages = self._index.messages_for(session.id)
        return ResolvedSession(
            session=session,
            items=self._build_items(session, messages, visited={session.id}),
            diffs=self._index.diffs_for(session.id),
            todos=self._index.todos_for(session.id),
            token_totals=sum_tokens(messages),
        )

    def _build_items(
        self,
        session: Session,
        messages: list[Message],
        visited: set[str],
    ) -> list[ConversationItem]:
        items: list[ConversationItem] = []
        children = self._children.get(session.id, [])

        for entry in interleave(messages, children):
            if isinstance(entry, Message):
                items.append(ResolvedMessage(message=entry, parts=self._index.parts_for(entry.id)))
                continue
            if entry.id in visited:
                logger.warning("Session %s is its own ancestor; not inlining it again", entry.id)
                continue
            items.append(self._resolve_sub_agent(entry, visited | {entry.id}))

        return items

    def _resolve_sub_agent(self, session: Session, visited: set[str]) -> SubAgentBlock:
        messages = self._index.messages_for(session.id)
        return SubAgentBlock(
            session=session,
            items=self._build_items(session, messages, visited),
            token_totals=sum_tokens(messages),
        )
