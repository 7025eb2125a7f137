"""
Agent backends.

An agent backend takes a prompt for a workspace and yields AgentEvents.
SandboxAgentBackend runs the agent runtime inside the workspace through the
provider's run_code() and decodes the runtime's JSON lines.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Protocol, runtime_checkable

from vibeforge.core.sandbox import bootstrap
from vibeforge.core.sandbox.models import CodeExecutionEvent, ExecutionEventType
from vibeforge.core.sandbox.provider import SandboxProvider

from .models import AgentEvent, AgentEventType

logger = logging.getLogger(__name__)


@runtime_checkable
class AgentBackend(Protocol):
    """Source of agent events for a prompt."""

    def stream(self, workspace_id: str, prompt: str) -> AsyncIterator[AgentEvent]:
        """
        Run a prompt in a workspace.

        Events arrive in emission order and the stream ends with exactly
        one done event, after any error event.
        """
        ...


class LineBuffer:
    """Reassembles stdout chunks into complete lines."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [line for line in lines if line.strip()]

    def flush(self) -> list[str]:
        rest, self._pending = self._pending, ""
        return [rest] if rest.strip() else []


class SandboxAgentBackend:
    """
    Agent backend that runs the uploaded runtime inside a workspace.

    stdout lines that decode as runtime events pass through; other lines
    become message events. stderr is only logged.
    """

    def __init__(
        self,
        provider: SandboxProvider,
        *,
        workspace_dir: str | None = None,
        env_vars: dict[str, str] | None = None,
    ) -> None:
        self._provider = provider
        self._workspace_dir = workspace_dir or getattr(
            provider, "workspace_dir", "/workspace/repo"
        )
        self._env_vars = dict(env_vars or {})

    @property
    def provider(self) -> SandboxProvider:
        return self._provider

    def set_env(self, name: str, value: str) -> None:
        self._env_vars[name] = value

    async def stream(self, workspace_id: str, prompt: str) -> AsyncIterator[AgentEvent]:
        code = bootstrap.runtime_invocation(prompt, self._workspace_dir)
        env = {"WORKSPACE_DIR": self._workspace_dir, **self._env_vars}
        lines = LineBuffer()

        execution = self._provider.run_code(workspace_id, code, language="python", env_vars=env)
        async with aclosing(execution):
            async for raw in execution:
                if raw.type == ExecutionEventType.STDOUT:
                    for line in lines.feed(raw.content):
                        event = self._decode(line)
                        if event is not None:
                            yield event
                elif raw.type != ExecutionEventType.DONE:
                    event = self._translate(raw)
                    if event is not None:
                        yield event

        for line in lines.flush():
            event = self._decode(line)
            if event is not None:
                yield event
        yield AgentEvent(type=AgentEventType.DONE)

    def _decode(self, line: str) -> AgentEvent | None:
        event = AgentEvent.from_line(line)
        if event.type == AgentEventType.DONE:
            # The runtime's own end marker; the stream's done comes from run_code
            return None
        return event

    def _translate(self, raw: CodeExecutionEvent) -> AgentEvent | None:
        if raw.type == ExecutionEventType.STDERR:
            logger.debug("Agent stderr: %s", raw.content.rstrip())
            return None
        if raw.type == ExecutionEventType.RESULT:
            return AgentEvent(type=AgentEventType.RESULT, content=raw.content, metadata=raw.metadata)
        return AgentEvent(type=AgentEventType.ERROR, content=raw.content, metadata=raw.metadata)
