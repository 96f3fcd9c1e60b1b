"""Tests for record parsing in the core data model."""

import pytest

from oc_export.core import (
    DiffEntry,
    Message,
    Part,
    PatchPart,
    Project,
    RecordError,
    Session,
    StepFinishPart,
    TextPart,
    TodoEntry,
    Tokens,
    TokenTotals,
    ToolPart,
    UnknownPart,
)


class TestProject:
    def test_from_dict(self):
        project = Project.from_dict({
            "id": "4b0ea68d7af9a6031a7ffda7ad66e0cb83315750",
            "worktree": "/Users/testuser/dev/api-server",
            "vcs": "git",
            "time": {"created": 1000, "updated": 2000},
        })
        assert project.vcs == "git"
        assert project.created == 1000
        assert project.display_name == "api-server"

    def test_display_name_ignores_trailing_slash(self):
        project = Project(id="abc", worktree="/Users/testuser/dev/webapp/")
        assert project.display_name == "webapp"

    def test_global_project_display_name(self):
        assert Project(id="global", worktree="/").display_name == "_global"

    def test_display_name_falls_back_to_id(self):
        assert Project(id="0123456789abcdef", worktree="/").display_name == "01234567"

    def test_display_name_never_a_relative_segment(self):
        assert Project(id="0123456789abcdef", worktree="/srv/app/..").display_name == "01234567"
        assert Project(id="0123456789abcdef", worktree=".").display_name == "01234567"

    def test_missing_worktree_is_an_error(self):
        with pytest.raises(RecordError, match="worktree"):
            Project.from_dict({"id": "abc"})

    def test_non_object_is_an_error(self):
        with pytest.raises(RecordError):
            Project.from_dict(["not", "a", "project"])


class TestSession:
    def test_sub_agent_flag(self):
        child = Session.from_dict({"id": "ses_2", "projectID": "p", "parentID": "ses_1"})
        parent = Session.from_dict({"id": "ses_1", "projectID": "p"})
        assert child.is_sub_agent
        assert not parent.is_sub_agent

    def test_missing_time_is_unknown(self):
        session = Session.from_dict({"id": "ses_1", "projectID": "p"})
        assert session.created is None
        assert session.updated is None

    def test_file_stem_prefers_slug(self):
        session = Session(id="ses_1", project_id="p", slug="brave-otter", title="Fix it")
        assert session.file_stem("2025-01-22") == "2025-01-22_brave-otter"

    def test_file_stem_sanitizes_title(self):
        session = Session(id="ses_1", project_id="p", title="Fix auth: tokens & sessions!")
        assert session.file_stem("2025-01-22") == "2025-01-22_Fix-auth--tokens---sessions"

    def test_file_stem_truncates(self):
        session = Session(id="ses_1", project_id="p", title="x" * 100)
        assert session.file_stem("unknown") == "unknown_" + "x" * 60


class TestMessage:
    def test_assistant_model_and_tokens(self):
        message = Message.from_dict({
            "id": "msg_1",
            "sessionID": "ses_1",
            "role": "assistant",
            "modelID": "claude-sonnet-4",
            "tokens": {"input": 10, "output": 5, "cache": {"read": 3}},
            "time": {"created": 100, "completed": 150},
        })
        assert message.effective_model == "claude-sonnet-4"
        assert message.tokens == Tokens(input=10, output=5, cache_read=3)
        assert message.completed == 150

    def test_user_model_is_nested(self):
        message = Message.from_dict({
            "id": "msg_1",
            "sessionID": "ses_1",
            "role": "user",
            "model": {"providerID": "anthropic", "modelID": "claude-haiku"},
        })
        assert message.effective_model == "claude-haiku"
        assert message.tokens is None

    def test_missing_role_is_an_error(self):
        with pytest.raises(RecordError, match="role"):
            Message.from_dict({"id": "msg_1", "sessionID": "ses_1"})


class TestPart:
    def _part(self, **fields):
        return Part.from_dict({"id": "prt_1", "sessionID": "ses_1", "messageID": "msg_1", **fields})

    def test_text(self):
        assert self._part(type="text", text="hello").kind == TextPart(text="hello")

    def test_tool(self):
        part = self._part(
            type="tool",
            tool="grep",
            callID="c1",
            state={"status": "error", "input": {"pattern": "x"}, "error": "boom"},
        )
        assert isinstance(part.kind, ToolPart)
        assert part.kind.tool == "grep"
        assert part.kind.state.status == "error"
        assert part.kind.state.input == {"pattern": "x"}
        assert part.kind.state.error == "boom"

    def test_tool_without_state_is_an_error(self):
        with pytest.raises(RecordError, match="state"):
            self._part(type="tool", tool="grep")

    def test_step_finish_tokens(self):
        part = self._part(type="step-finish", reason="stop", tokens={"output": 42})
        assert part.kind == StepFinishPart(reason="stop", tokens=Tokens(output=42))

    def test_patch_files(self):
        part = self._part(type="patch", hash="h", files=["a.py", "b.py"])
        assert part.kind == PatchPart(hash="h", files=("a.py", "b.py"))

    def test_unknown_type_is_preserved(self):
        part = self._part(type="compaction", auto=True)
        assert isinstance(part.kind, UnknownPart)
        assert part.kind.type == "compaction"
        assert part.kind.raw["auto"] is True

    def test_missing_type_is_an_error(self):
        with pytest.raises(RecordError, match="type"):
            self._part(text="no type")


class TestSideRecords:
    def test_diff_entry(self):
        diff = DiffEntry.from_dict({"file": "a.py", "additions": 3, "deletions": 0, "status": "added"})
        assert diff.additions == 3
        assert diff.before is None

    def test_todo_entry(self):
        todo = TodoEntry.from_dict({"id": "1", "content": "Write docs", "status": "pending"})
        assert todo.priority is None

    def test_todo_requires_status(self):
        with pytest.raises(RecordError):
            TodoEntry.from_dict({"id": "1", "content": "Write docs"})


def test_token_totals_treat_absent_as_zero():
    totals = TokenTotals()
    totals.add(Tokens(input=10, output=5))
    totals.add(Tokens(output=7))
    totals.add(None)
    assert totals == TokenTotals(input=10, output=12)
