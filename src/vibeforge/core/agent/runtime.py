"""
Agent runtime executed inside sandboxes.

This file is uploaded to each workspace next to the repository checkout and
run as a script:

    python vibeforge_agent.py "<prompt>"

It drives the Claude Agent SDK in the repository directory and prints one
JSON object per line on stdout for the host to relay:

    {"type": "message", "content": "..."}
    {"type": "progress", "content": "Updating App.tsx", "metadata": {"path": "..."}}

It must only depend on the standard library and claude-agent-sdk, since
vibeforge itself is not installed in the sandbox.

Environment:
    WORKSPACE_DIR: Repository directory (default: current directory)
    PREVIEW_URL: Live preview URL mentioned to the agent, if set
"""

import asyncio
import json
import os
import sys
from typing import Any

SYSTEM_PROMPT = """You are a product builder assistant helping non-technical users build features for their applications.

## Your Role
- You help users describe and build features in plain language
- You NEVER show code directly to users - only results and previews
- You communicate in simple, non-technical language

## Plan Mode
Before making ANY changes you must present a plan and wait for approval.
When asked for a plan, reply with a JSON object of the form
{"type": "plan", "summary": "...", "changes": [{"description": "...", "files": ["..."]}], "considerations": "..."}
inside a ```json fenced block.

## During Build
- Provide progress updates in plain language
- Focus on what's happening, not how
- If something fails, explain the issue simply and suggest solutions

## Communication Style
- Use simple, friendly language
- Avoid technical jargon (no "components", "state", "props", etc.)
- Focus on what the user will SEE and EXPERIENCE"""

ALLOWED_TOOLS = ["Read", "Edit", "Write", "Glob", "Grep", "Bash"]
FILE_TOOLS = frozenset({"Edit", "Write", "MultiEdit", "NotebookEdit"})

_PLAN_HINTS = ("what i'll do", "plan:", "here's my plan", "i propose")
_QUESTION_HINTS = ("do you want", "should i", "would you like", "can you clarify")
_PROGRESS_HINTS = ("working on", "updating", "creating", "modifying")


def detect_message_type(text: str) -> str:
    """
    Classify assistant text by keywords.

    Returns:
        "plan", "question", "progress" or "message"
    """
    lowered = text.lower()
    if any(hint in lowered for hint in _PLAN_HINTS):
        return "plan"
    if "?" in text and any(hint in lowered for hint in _QUESTION_HINTS):
        return "question"
    if any(hint in lowered for hint in _PROGRESS_HINTS):
        return "progress"
    return "message"


def tool_event(name: str, tool_input: dict[str, Any]) -> dict[str, Any]:
    """
    Event for one tool call.

    File-editing tools become progress events carrying the edited path;
    everything else is reported as tool_use.
    """
    path = tool_input.get("file_path") or tool_input.get("notebook_path")
    if name in FILE_TOOLS and path:
        return {
            "type": "progress",
            "content": f"Updating {os.path.basename(path)}",
            "metadata": {"path": path, "tool": name},
        }
    return {"type": "tool_use", "content": "Working...", "metadata": {"tool": name, "input": tool_input}}


def system_prompt(preview_url: str | None = None) -> str:
    if not preview_url:
        return SYSTEM_PROMPT
    return (
        f"{SYSTEM_PROMPT}\n\n## Preview URL\n"
        f"The user can see a live preview of their application at: {preview_url}\n"
        "When you make changes, remind them to check the preview to see the results."
    )


def message_events(message: Any) -> list[dict[str, Any]]:
    """Translate one SDK message into runtime events."""
    from claude_agent_sdk import AssistantMessage, ResultMessage, SystemMessage
    from claude_agent_sdk.types import TextBlock, ThinkingBlock, ToolUseBlock

    events: list[dict[str, Any]] = []
    if isinstance(message, SystemMessage):
        events.append({"type": "thinking", "content": str(message.subtype or "initializing")})
    elif isinstance(message, AssistantMessage):
        for block in message.content:
            if isinstance(block, TextBlock) and block.text:
                events.append({"type": detect_message_type(block.text), "content": block.text})
            elif isinstance(block, ThinkingBlock):
                events.append({"type": "thinking", "content": block.thinking})
            elif isinstance(block, ToolUseBlock):
                events.append(tool_event(block.name, dict(block.input or {})))
    elif isinstance(message, ResultMessage):
        if message.is_error:
            events.append({"type": "error", "content": str(message.result or "Agent run failed")})
        else:
            events.append({"type": "result", "content": str(message.result or "Done")})
    return events


def emit(event: dict[str, Any]) -> None:
    print(json.dumps(event), flush=True)


async def run_query(prompt: str, working_dir: str, preview_url: str | None = None) -> None:
    """Run one agent query and print its events."""
    from claude_agent_sdk import ClaudeAgentOptions, query

    options = ClaudeAgentOptions(
        allowed_tools=ALLOWED_TOOLS,
        permission_mode="acceptEdits",
        system_prompt=system_prompt(preview_url),
        cwd=working_dir,
    )
    async for message in query(prompt=prompt, options=options):
        for event in message_events(message):
            emit(event)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    prompt = args[0] if args else os.environ.get("PROMPT", "")
    if not prompt:
        emit({"type": "error", "content": "No prompt given"})
        return 2

    working_dir = os.environ.get("WORKSPACE_DIR") or os.getcwd()
    try:
        asyncio.run(run_query(prompt, working_dir, os.environ.get("PREVIEW_URL")))
    except Exception as exc:
        # Reported on stdout; the host turns it into an error event
        emit({"type": "error", "content": str(exc) or type(exc).__name__})
    emit({"type": "done", "content": ""})
    return 0


if __name__ == "__main__":
    sys.exit(main())
