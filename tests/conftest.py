"""Shared test fixtures for oc-export."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest


def ms(hour: int, minute: int = 0, second: int = 0) -> int:
    """Millisecond timestamp on 2025-01-22 (UTC)."""
    return int(datetime(2025, 1, 22, hour, minute, second, tzinfo=timezone.utc).timestamp() * 1000)


class StorageBuilder:
    """Writes records into a synthetic OpenCode storage directory."""

    ms = staticmethod(ms)

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _write(self, relative: str, data) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def project(self, project_id: str, worktree: str, created: int | None = None, **extra) -> Path:
        data = {"id": project_id, "worktree": worktree, **extra}
        if created is not None:
            data["time"] = {"created": created, "updated": created}
        return self._write(f"project/{project_id}.json", data)

    def session(self, session_id: str, project_id: str, created: int | None = None, **extra) -> Path:
        data = {"id": session_id, "projectID": project_id, **extra}
        if created is not None:
            data["time"] = {"created": created, "updated": created}
        return self._write(f"session/{project_id}/{session_id}.json", data)

    def message(self, message_id: str, session_id: str, role: str, created: int | None = None, **extra) -> Path:
        data = {"id": message_id, "sessionID": session_id, "role": role, **extra}
        if created is not None:
            data["time"] = {"created": created}
        return self._write(f"message/{session_id}/{message_id}.json", data)

    def part(self, part_id: str, message_id: str, session_id: str, part_type: str, **extra) -> Path:
        data = {"id": part_id, "sessionID": session_id, "messageID": message_id, "type": part_type, **extra}
        return self._write(f"part/{message_id}/{part_id}.json", data)

    def diffs(self, session_id: str, entries: list) -> Path:
        return self._write(f"session_diff/{session_id}.json", entries)

    def todos(self, session_id: str, entries: list) -> Path:
        return self._write(f"todo/{session_id}.json", entries)

    def raw(self, relative: str, text: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path


@pytest.fixture
def storage_builder(tmp_path):
    """An empty storage directory with a builder for records."""
    return StorageBuilder(tmp_path / "storage")


@pytest.fixture
def tmp_storage(storage_builder):
    """A storage directory with one project holding a parent session, a
    sub-agent, a nested sub-agent, plus a global project."""
    b = storage_builder

    b.project("global", "/", created=ms(7))
    b.project("prj_api", "/Users/testuser/dev/api-server", created=ms(6), vcs="git")

    b.session(
        "ses_001", "prj_api", created=ms(8),
        slug="debug-api", title="Debug API endpoint", version="1.1.34",
        summary={"additions": 4, "deletions": 1, "files": 1},
    )
    b.session("ses_002", "prj_api", created=ms(8, 1), parentID="ses_001", title="Explore codebase", slug="explore")
    b.session("ses_003", "prj_api", created=ms(8, 1, 30), parentID="ses_002", title="Grep helper")
    b.session("ses_010", "global", created=ms(9), title="Scratch question")

    # Parent timeline
    b.message(
        "msg_001", "ses_001", "user", created=ms(8),
        model={"providerID": "anthropic", "modelID": "claude-sonnet-4"},
    )
    b.message(
        "msg_002", "ses_001", "assistant", created=ms(8, 0, 30),
        parentID="msg_001", modelID="claude-sonnet-4", providerID="anthropic", mode="build",
        tokens={"input": 1200, "output": 300, "reasoning": 0, "cache": {"read": 50, "write": 10}},
    )
    b.message(
        "msg_003", "ses_001", "assistant", created=ms(8, 2),
        parentID="msg_001", modelID="claude-sonnet-4",
        tokens={"input": 800, "output": 200, "cache": {"read": 0, "write": 0}},
    )

    b.part("prt_001", "msg_001", "ses_001", "text", text="Why is the /api/users endpoint returning 500?")
    b.part("prt_002a", "msg_002", "ses_001", "step-start", snapshot="abc123")
    b.part("prt_002b", "msg_002", "ses_001", "reasoning", text="Probably the query.")
    b.part(
        "prt_002c", "msg_002", "ses_001", "tool",
        tool="bash", callID="call_1",
        state={
            "status": "completed",
            "input": {"command": "tail -n 5 logs/api.log", "description": "Show recent errors"},
            "output": "ERROR relation users does not exist",
            "title": "tail logs",
        },
    )
    b.part(
        "prt_002d", "msg_002", "ses_001", "step-finish",
        reason="tool-calls", tokens={"input": 1200, "output": 300},
    )
    b.part("prt_003a", "msg_003", "ses_001", "text", text="The migration never ran.")
    b.part("prt_003b", "msg_003", "ses_001", "patch", hash="def456", files=["src/db.ts"])
    b.part("prt_003c", "msg_003", "ses_001", "agent-handoff", name="future-thing")

    # Sub-agent timeline
    b.message("msg_101", "ses_002", "user", created=ms(8, 1))
    b.message(
        "msg_102", "ses_002", "assistant", created=ms(8, 1, 45),
        modelID="claude-haiku", tokens={"input": 90, "output": 9},
    )
    b.part("prt_101", "msg_101", "ses_002", "text", text="Find where users are queried.")
    b.part("prt_102", "msg_102", "ses_002", "text", text="src/db.ts line 15.")

    # Nested sub-agent timeline
    b.message("msg_201", "ses_003", "user", created=ms(8, 1, 30))
    b.part("prt_201", "msg_201", "ses_003", "text", text="grep SELECT")

    b.message("msg_301", "ses_010", "user", created=ms(9))
    b.part("prt_301", "msg_301", "ses_010", "text", text="What is a monad?")

    b.diffs("ses_001", [
        {"file": "src/db.ts", "before": "a", "after": "b", "additions": 4, "deletions": 1, "status": "modified"},
    ])
    b.todos("ses_001", [
        {"id": "1", "content": "Check logs", "status": "completed", "priority": "high"},
        {"id": "2", "content": "Run migration", "status": "in_progress", "priority": "medium"},
        {"id": "3", "content": "Add test", "status": "pending"},
    ])
    b.diffs("ses_010", [])
    b.todos("ses_010", [])

    return b.root
