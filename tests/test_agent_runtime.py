"""
Tests for the in-sandbox agent runtime script.
"""

import json

import pytest

from vibeforge.core.agent import runtime


def printed(capsys) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().out.splitlines()]


class TestDetectMessageType:
    """Tests for keyword classification."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Here's my plan: add a toggle", "plan"),
            ("What I'll do is add a header", "plan"),
            ("Should I use blue for the button?", "question"),
            ("Would you like a footer too?", "question"),
            ("Updating the header colors", "progress"),
            ("Creating a new settings page", "progress"),
            ("All set, check the preview", "message"),
            ("Should I keep going", "message"),
        ],
    )
    def test_classification(self, text, expected) -> None:
        assert runtime.detect_message_type(text) == expected


class TestToolEvent:
    """Tests for tool call events."""

    def test_file_edit_is_progress(self) -> None:
        event = runtime.tool_event("Edit", {"file_path": "/workspace/repo/src/App.tsx"})

        assert event == {
            "type": "progress",
            "content": "Updating App.tsx",
            "metadata": {"path": "/workspace/repo/src/App.tsx", "tool": "Edit"},
        }

    def test_notebook_path(self) -> None:
        event = runtime.tool_event("NotebookEdit", {"notebook_path": "/w/a.ipynb"})
        assert event["metadata"]["path"] == "/w/a.ipynb"

    def test_other_tools(self) -> None:
        event = runtime.tool_event("Bash", {"command": "ls"})

        assert event["type"] == "tool_use"
        assert event["metadata"] == {"tool": "Bash", "input": {"command": "ls"}}

    def test_write_without_path(self) -> None:
        assert runtime.tool_event("Write", {})["type"] == "tool_use"


class TestSystemPrompt:
    """Tests for the agent system prompt."""

    def test_without_preview(self) -> None:
        assert runtime.system_prompt(None) == runtime.SYSTEM_PROMPT

    def test_with_preview(self) -> None:
        prompt = runtime.system_prompt("https://ws-1.preview.test")

        assert prompt.startswith(runtime.SYSTEM_PROMPT)
        assert "https://ws-1.preview.test" in prompt


class TestMain:
    """Tests for the script entry point."""

    def test_missing_prompt(self, monkeypatch, capsys) -> None:
        monkeypatch.delenv("PROMPT", raising=False)

        assert runtime.main([]) == 2
        assert printed(capsys) == [{"type": "error", "content": "No prompt given"}]

    def test_failure_reported_on_stdout(self, monkeypatch, capsys) -> None:
        async def failing_query(prompt, working_dir, preview_url=None):
            raise RuntimeError("sdk unavailable")

        monkeypatch.setattr(runtime, "run_query", failing_query)

        assert runtime.main(["Add dark mode"]) == 0
        assert printed(capsys) == [
            {"type": "error", "content": "sdk unavailable"},
            {"type": "done", "content": ""},
        ]

    def test_success(self, monkeypatch, capsys, tmp_path) -> None:
        calls = []

        async def fake_query(prompt, working_dir, preview_url=None):
            calls.append((prompt, working_dir, preview_url))
            runtime.emit({"type": "message", "content": "hi"})

        monkeypatch.setattr(runtime, "run_query", fake_query)
        monkeypatch.setenv("WORKSPACE_DIR", str(tmp_path))
        monkeypatch.setenv("PREVIEW_URL", "https://p.test")

        assert runtime.main(["go"]) == 0
        assert calls == [("go", str(tmp_path), "https://p.test")]
        assert [e["type"] for e in printed(capsys)] == ["message", "done"]
