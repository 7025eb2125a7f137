"""
Tests for plan extraction.
"""

import pytest

from vibeforge.core.agent.errors import PlanParseError
from vibeforge.core.agent.models import AgentEvent, AgentEventType
from vibeforge.core.agent.plan_parser import is_plan_chunk, parse_plan

FENCED = """I looked at the theme setup.

```json
{
  "type": "plan",
  "summary": "Add a dark mode toggle",
  "changes": [
    {"description": "Add theme context", "files": ["src/theme.tsx"]},
    {"description": "Add toggle to header"}
  ],
  "considerations": "Persist the choice in localStorage"
}
```

Let me know what you think."""


class TestParsePlan:
    """Tests for parse_plan."""

    def test_fenced_block(self) -> None:
        plan = parse_plan(FENCED)

        assert plan.summary == "Add a dark mode toggle"
        assert [c.description for c in plan.changes] == ["Add theme context", "Add toggle to header"]
        assert plan.changes[0].files == ["src/theme.tsx"]
        assert plan.changes[1].files is None
        assert plan.considerations == "Persist the choice in localStorage"

    def test_inline_object(self) -> None:
        text = 'Sure. {"type": "plan", "summary": "Inline plan", "changes": []} Ready when you are.'
        assert parse_plan(text).summary == "Inline plan"

    def test_summary_only_object(self) -> None:
        assert parse_plan('Plan: {"summary": "Bare summary"}').summary == "Bare summary"

    def test_wrapped_plan(self) -> None:
        text = '{"type": "plan", "plan": {"summary": "Wrapped", "changes": [{"description": "x"}]}}'
        plan = parse_plan(text)
        assert plan.summary == "Wrapped"
        assert len(plan.changes) == 1

    def test_considerations_list_is_joined(self) -> None:
        plan = parse_plan('{"summary": "S", "considerations": ["one", "two"]}')
        assert plan.considerations == "one\ntwo"

    def test_text_split_across_chunks(self) -> None:
        chunks = ['{"type": "plan", ', '"summary": "Split", ', '"changes": []}']
        assert parse_plan("".join(chunks)).summary == "Split"

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty(self, text) -> None:
        with pytest.raises(PlanParseError, match="Agent returned no plan"):
            parse_plan(text)

    @pytest.mark.parametrize(
        "text",
        [
            "I am not sure what to change.",
            '{"type": "plan", "summary": ""}',
            '```json\n["not", "an", "object"]\n```',
            '{"type": "plan", "summary": "unterminated"',
        ],
    )
    def test_invalid(self, text) -> None:
        with pytest.raises(PlanParseError, match="Failed to generate a valid plan"):
            parse_plan(text)


class TestIsPlanChunk:
    """Tests for plan chunk detection."""

    def test_explicit_plan_event(self) -> None:
        assert is_plan_chunk(AgentEvent(type=AgentEventType.PLAN, content="anything"))

    def test_marker_in_message(self) -> None:
        event = AgentEvent(type=AgentEventType.MESSAGE, content='{"type": "plan", "summary": "x"}')
        assert is_plan_chunk(event)

    def test_marker_in_result(self) -> None:
        event = AgentEvent(type=AgentEventType.RESULT, content='{"type":"plan"}')
        assert is_plan_chunk(event)

    def test_tool_use_never_counts(self) -> None:
        event = AgentEvent(type=AgentEventType.TOOL_USE, content='"type": "plan"')
        assert not is_plan_chunk(event)

    def test_plain_message(self) -> None:
        assert not is_plan_chunk(AgentEvent(type=AgentEventType.MESSAGE, content="Reading files"))

    def test_continuation_of_open_plan(self) -> None:
        event = AgentEvent(type=AgentEventType.MESSAGE, content='"changes": []}')
        assert is_plan_chunk(event, '{"type": "plan", "summary": "x", ')

    def test_message_after_closed_plan(self) -> None:
        event = AgentEvent(type=AgentEventType.MESSAGE, content="Let me know!")
        assert not is_plan_chunk(event, '{"type": "plan", "summary": "a } in text"}')
