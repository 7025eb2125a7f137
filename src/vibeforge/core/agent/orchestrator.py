"""
Agent orchestrator.

Drives one session through plan -> review -> build. Each phase is an async
generator of StreamEvents that the caller renders as it arrives:

    orchestrator = await create_orchestrator(ctx, store=store, backend=backend)
    async for event in orchestrator.generate_plan("add dark mode"):
        ...

Every phase stream starts with one phase_change event and ends with exactly
one done event; a failure produces one error event before done and leaves
the session in error. Phase methods never raise.

A build only starts on a session whose latest plan was approved, and when a
SandboxService is given the workspace is brought back to running first.

Stopping a phase early, either by closing its generator or by calling
cancel(), reverts the session: planning goes back to idle, building goes to
error since the workspace may be half modified. The agent stream is also
watched: if no agent event arrives within phase_timeout_seconds the phase
fails with a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Optional

from vibeforge.core.config.models import VibeforgeConfig
from vibeforge.core.sandbox.errors import SandboxError
from vibeforge.core.sandbox.provider import SandboxProvider, as_checkpoint_provider
from vibeforge.core.services.sandbox import SandboxService
from vibeforge.core.skills import load_skills
from vibeforge.core.store.models import (
    ApprovalStatus,
    Checkpoint,
    CheckpointType,
    Message,
    MessageRole,
    Repository,
    Sandbox,
    Session,
    SessionStatus,
)
from vibeforge.core.store.protocol import RecordStore, StoreError

from .approvals import create_pending_approval, latest_approval, pending_approval
from .backend import AgentBackend, SandboxAgentBackend
from .errors import AgentBackendError, OrchestratorError, PhaseTimeout
from .models import (
    AgentEvent,
    AgentEventType,
    Phase,
    Plan,
    RepoContext,
    StreamEvent,
    StreamEventType,
)
from .plan_parser import is_plan_chunk, parse_plan
from .prompts import build_execution_prompt, build_plan_prompt

logger = logging.getLogger(__name__)


class PhaseCancelled(OrchestratorError):
    """The running phase was cancelled by the caller."""

    def __init__(self, phase: Phase) -> None:
        self.phase = phase
        super().__init__(f"{phase.value.capitalize()} was cancelled")


@dataclass(frozen=True)
class OrchestrationContext:
    """Identifiers of the session an orchestrator works on."""

    session_id: str
    repository_id: str
    sandbox_id: str
    workspace_id: str
    user_id: Optional[str] = None


# Status a session is left in when a phase stops early
_CANCEL_STATUS = {
    Phase.PLANNING: SessionStatus.IDLE,
    Phase.BUILDING: SessionStatus.ERROR,
}

_BUILD_PASSTHROUGH = {
    AgentEventType.TOOL_USE: StreamEventType.TOOL_USE,
    AgentEventType.THINKING: StreamEventType.THINKING,
}

_MESSAGE_TYPES = {
    AgentEventType.MESSAGE: StreamEventType.MESSAGE,
    AgentEventType.QUESTION: StreamEventType.MESSAGE,
    AgentEventType.RESULT: StreamEventType.MESSAGE,
    AgentEventType.PLAN: StreamEventType.PLAN,
    AgentEventType.PROGRESS: StreamEventType.PROGRESS,
    AgentEventType.TOOL_USE: StreamEventType.TOOL_USE,
    AgentEventType.THINKING: StreamEventType.THINKING,
    AgentEventType.ERROR: StreamEventType.ERROR,
}


async def _pull(iterator: AsyncIterator[AgentEvent]) -> AgentEvent:
    return await iterator.__anext__()


def _event(
    type: StreamEventType,
    content: str = "",
    phase: Optional[Phase] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> StreamEvent:
    return StreamEvent(type=type, content=content, phase=phase, metadata=metadata)


class AgentOrchestrator:
    """
    Plan/build state machine for one session.

    Attributes:
        repo_context: Repository description used in planning prompts
        preview_url: Live preview URL, empty when unknown
    """

    def __init__(
        self,
        context: OrchestrationContext,
        *,
        store: RecordStore,
        backend: AgentBackend,
        provider: Optional[SandboxProvider] = None,
        sandboxes: Optional[SandboxService] = None,
        config: Optional[VibeforgeConfig] = None,
    ) -> None:
        self.context = context
        self._store = store
        self._backend = backend
        self._provider = provider
        self._sandboxes = sandboxes
        self._config = config or VibeforgeConfig()
        self._cancel_requested = asyncio.Event()
        self.repo_context: Optional[RepoContext] = None
        self.preview_url = ""

    @property
    def session_id(self) -> str:
        return self.context.session_id

    async def initialize(self) -> None:
        """
        Load the repository context and the preview URL.

        A missing preview URL is not an error: builds run without one.
        """
        repository = await self._store.get(Repository, self.context.repository_id)
        if repository is not None:
            details = repository.context
            self.repo_context = RepoContext(
                name=repository.name,
                description=details.description if details else None,
                tech_stack=details.tech_stack if details else [],
                conventions=details.conventions if details else [],
            )

        sandbox = await self._store.get(Sandbox, self.context.sandbox_id)
        if sandbox is not None and sandbox.preview_url:
            self.preview_url = sandbox.preview_url
        elif self._provider is not None:
            try:
                self.preview_url = await self._provider.get_preview_url(self.context.workspace_id)
            except SandboxError as e:
                logger.warning("Could not get preview URL for %s: %s", self.context.workspace_id, e)

        if self.preview_url and isinstance(self._backend, SandboxAgentBackend):
            self._backend.set_env("PREVIEW_URL", self.preview_url)

    def cancel(self) -> None:
        """Stop the running phase at the next agent event boundary."""
        self._cancel_requested.set()

    # ==========================================================================
    # Phases
    # ==========================================================================

    async def generate_plan(self, request: str) -> AsyncIterator[StreamEvent]:
        """
        Ask the agent for a plan and store it for review.

        Refused without any state change while a plan is awaiting approval
        or another phase is running on the session.

        Yields:
            phase_change(planning), thinking/message/plan events, then
            phase_change(plan_review) and done; or error and done
        """
        existing = await pending_approval(self._store, self.session_id)
        if existing is not None:
            yield _event(
                StreamEventType.ERROR,
                "A plan is already awaiting approval",
                Phase.PLAN_REVIEW,
                {"approval_id": existing.id},
            )
            yield _event(StreamEventType.DONE, "Plan generation refused", Phase.PLAN_REVIEW)
            return

        session = await self._store.get(Session, self.session_id)
        if session is not None and session.status.is_active:
            yield _event(
                StreamEventType.ERROR,
                f"Session is already {session.status.value}",
                Phase(session.status.value),
                {"status": session.status.value},
            )
            yield _event(StreamEventType.DONE, "Plan generation refused", Phase(session.status.value))
            return

        events = self._run_phase(Phase.PLANNING, "Starting plan generation", self._plan(request))
        async with aclosing(events):
            async for event in events:
                yield event

    async def execute_plan(self, plan: Plan) -> AsyncIterator[StreamEvent]:
        """
        Have the agent implement an approved plan.

        Only runs when the session's latest approval is approved and the
        session is in building; otherwise it is refused without any state
        change.

        Yields:
            phase_change(building), preview_url, progress/file_change/
            tool_use events, checkpoint, then phase_change(ready) and done;
            or error and done
        """
        session = await self._store.get(Session, self.session_id)
        approval = await latest_approval(self._store, self.session_id)
        if (
            session is None
            or session.status != SessionStatus.BUILDING
            or approval is None
            or approval.status != ApprovalStatus.APPROVED
        ):
            metadata = {
                "status": session.status.value if session else None,
                "approval_id": approval.id if approval else None,
            }
            logger.warning("Session %s: refusing to build an unapproved plan", self.session_id)
            yield _event(StreamEventType.ERROR, "Plan has not been approved", Phase.BUILDING, metadata)
            yield _event(StreamEventType.DONE, "Build refused", Phase.BUILDING)
            return

        events = self._run_phase(Phase.BUILDING, "Starting build", self._build(plan))
        async with aclosing(events):
            async for event in events:
                yield event

    async def handle_message(self, text: str) -> AsyncIterator[StreamEvent]:
        """
        Relay a follow-up message to the agent.

        The session status is left untouched.
        """
        self._cancel_requested.clear()
        yield _event(StreamEventType.THINKING, "Processing your message...")
        try:
            async for agent_event in self._agent_events(text, None):
                yield self._relay(agent_event)
        except Exception as e:
            logger.warning("Message handling failed for session %s: %s", self.session_id, e)
            yield _event(StreamEventType.ERROR, str(e))
        yield _event(StreamEventType.DONE, "Message processed")

    # ==========================================================================
    # Phase bodies
    # ==========================================================================

    async def _plan(self, request: str) -> AsyncIterator[StreamEvent]:
        phase = Phase.PLANNING
        yield _event(StreamEventType.THINKING, "Analyzing your request...", phase)

        skills = await load_skills(self._store, self.context.repository_id, request)
        prompt = build_plan_prompt(request, self.repo_context, skills, self.preview_url)

        plan_text = ""
        transcript = ""
        async for agent_event in self._agent_events(prompt, phase):
            if agent_event.type == AgentEventType.ERROR:
                raise AgentBackendError(agent_event.content or "Agent failed")
            if is_plan_chunk(agent_event, plan_text):
                plan_text += agent_event.content
                yield _event(StreamEventType.PLAN, agent_event.content, phase, agent_event.metadata)
                continue
            transcript += agent_event.content + "\n"
            stream_type = _BUILD_PASSTHROUGH.get(agent_event.type, StreamEventType.MESSAGE)
            yield _event(stream_type, agent_event.content, phase, agent_event.metadata)

        # A plan sent as a bare summary object never carries the marker
        plan = parse_plan(plan_text or transcript)
        message, approval = await create_pending_approval(self._store, self.session_id, plan)

        yield _event(
            StreamEventType.PHASE_CHANGE,
            "Plan ready for review",
            Phase.PLAN_REVIEW,
            {"message_id": message.id, "approval_id": approval.id, "plan": plan.model_dump(exclude_none=True)},
        )
        yield _event(StreamEventType.DONE, "Plan generation complete", Phase.PLAN_REVIEW)

    async def _build(self, plan: Plan) -> AsyncIterator[StreamEvent]:
        phase = Phase.BUILDING
        if self._sandboxes is not None:
            # Raises SandboxExpired when an ephemeral workspace is gone
            sandbox = await self._sandboxes.ensure_running(self.context.sandbox_id, self.context.workspace_id)
            if sandbox.preview_url and sandbox.preview_url != self.preview_url:
                self.preview_url = sandbox.preview_url
                if isinstance(self._backend, SandboxAgentBackend):
                    self._backend.set_env("PREVIEW_URL", self.preview_url)
        if self.preview_url:
            yield _event(StreamEventType.PREVIEW_URL, self.preview_url, phase)

        changed_files: list[str] = []
        async for agent_event in self._agent_events(build_execution_prompt(plan), phase):
            if agent_event.type == AgentEventType.ERROR:
                raise AgentBackendError(agent_event.content or "Agent failed")
            path = (agent_event.metadata or {}).get("path")
            if agent_event.type == AgentEventType.PROGRESS and path:
                if path not in changed_files:
                    changed_files.append(path)
                yield _event(StreamEventType.FILE_CHANGE, agent_event.content, phase, agent_event.metadata)
                continue
            stream_type = _BUILD_PASSTHROUGH.get(agent_event.type, StreamEventType.PROGRESS)
            yield _event(stream_type, agent_event.content, phase, agent_event.metadata)

        checkpoint = await self._auto_checkpoint(plan)
        if checkpoint is not None:
            yield _event(
                StreamEventType.CHECKPOINT,
                "Checkpoint created",
                phase,
                {"checkpoint_id": checkpoint.id, "label": checkpoint.label},
            )

        await self._store.insert(
            Message(
                session_id=self.session_id,
                role=MessageRole.ASSISTANT,
                content=f"Build completed successfully. {len(changed_files)} files were updated.",
                phase=phase.value,
                metadata={"changed_files": changed_files},
            )
        )
        await self._set_status(SessionStatus.READY)

        yield _event(StreamEventType.PHASE_CHANGE, "Build complete", Phase.READY, {"changed_files": changed_files})
        yield _event(StreamEventType.DONE, "Build execution complete", Phase.READY)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    async def _run_phase(
        self,
        phase: Phase,
        start_message: str,
        body: AsyncIterator[StreamEvent],
    ) -> AsyncIterator[StreamEvent]:
        """Wrap a phase body with status bookkeeping and failure handling."""
        self._cancel_requested.clear()
        yield _event(StreamEventType.PHASE_CHANGE, start_message, phase)

        settled = False
        try:
            await self._set_status(SessionStatus(phase.value))
            async with aclosing(body):
                async for event in body:
                    yield event
            settled = True
        except PhaseCancelled as e:
            settled = True
            logger.info("Session %s: %s", self.session_id, e)
            await self._set_status(_CANCEL_STATUS[phase])
            yield _event(StreamEventType.ERROR, str(e), phase)
            yield _event(StreamEventType.DONE, f"{phase.value.capitalize()} stopped", phase)
        except Exception as e:
            settled = True
            logger.warning("Session %s %s failed: %s", self.session_id, phase.value, e)
            await self._set_status(SessionStatus.ERROR)
            yield _event(StreamEventType.ERROR, str(e) or type(e).__name__, phase)
            yield _event(StreamEventType.DONE, f"{phase.value.capitalize()} failed", phase)
        finally:
            if not settled:
                # Consumer closed the stream or the task was cancelled
                logger.info("Session %s %s stopped by caller", self.session_id, phase.value)
                await self._set_status(_CANCEL_STATUS[phase])

    async def _agent_events(self, prompt: str, phase: Optional[Phase]) -> AsyncIterator[AgentEvent]:
        """
        Stream agent events up to (not including) done.

        Raises:
            PhaseCancelled: If cancel() was called
            PhaseTimeout: If the agent stays silent past the phase deadline
        """
        timeout = self._config.orchestrator.phase_timeout_seconds
        label = phase.value if phase else "message"
        stream = self._backend.stream(self.context.workspace_id, prompt)

        async with aclosing(stream):
            while True:
                if self._cancel_requested.is_set():
                    raise self._cancelled(phase)
                next_event = asyncio.create_task(_pull(stream))
                cancelled = asyncio.create_task(self._cancel_requested.wait())
                try:
                    done, _ = await asyncio.wait(
                        {next_event, cancelled},
                        timeout=timeout,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                finally:
                    cancelled.cancel()
                    if not next_event.done():
                        next_event.cancel()
                        await asyncio.wait({next_event})

                if next_event not in done:
                    if self._cancel_requested.is_set():
                        raise self._cancelled(phase)
                    raise PhaseTimeout(label, timeout)
                if next_event.cancelled():
                    raise OrchestratorError(f"{label} agent stream was cancelled")
                try:
                    event = next_event.result()
                except StopAsyncIteration:
                    return
                if event.type == AgentEventType.DONE:
                    return
                yield event

    @staticmethod
    def _cancelled(phase: Optional[Phase]) -> OrchestratorError:
        if phase is None:
            return OrchestratorError("Message handling was cancelled")
        return PhaseCancelled(phase)

    async def _auto_checkpoint(self, plan: Plan) -> Optional[Checkpoint]:
        """Snapshot the workspace after a build. Failures are logged only."""
        provider = as_checkpoint_provider(self._provider) if self._provider is not None else None
        if provider is None:
            logger.debug("Provider does not support checkpoints; skipping auto checkpoint")
            return None

        label = f"Build: {plan.summary[: self._config.orchestrator.checkpoint_label_max]}"
        try:
            provider_checkpoint_id = await provider.create_checkpoint(self.context.workspace_id, label)
            return await self._store.insert(
                Checkpoint(
                    session_id=self.session_id,
                    sandbox_id=self.context.sandbox_id,
                    label=label,
                    type=CheckpointType.AUTO,
                    provider_checkpoint_id=provider_checkpoint_id,
                )
            )
        except (SandboxError, StoreError) as e:
            logger.warning("Could not create checkpoint for session %s: %s", self.session_id, e)
            return None

    def _relay(self, agent_event: AgentEvent) -> StreamEvent:
        stream_type = _MESSAGE_TYPES.get(agent_event.type, StreamEventType.MESSAGE)
        if agent_event.type == AgentEventType.PROGRESS and (agent_event.metadata or {}).get("path"):
            stream_type = StreamEventType.FILE_CHANGE
        return _event(stream_type, agent_event.content, metadata=agent_event.metadata)

    async def _set_status(self, status: SessionStatus) -> None:
        await self._store.update(Session, self.session_id, status=status)


async def create_orchestrator(
    context: OrchestrationContext,
    *,
    store: RecordStore,
    backend: AgentBackend,
    provider: Optional[SandboxProvider] = None,
    sandboxes: Optional[SandboxService] = None,
    config: Optional[VibeforgeConfig] = None,
) -> AgentOrchestrator:
    """Create an orchestrator and load its repository context."""
    orchestrator = AgentOrchestrator(
        context, store=store, backend=backend, provider=provider, sandboxes=sandboxes, config=config
    )
    await orchestrator.initialize()
    return orchestrator
