"""
Daytona sandbox provider.

Daytona workspaces are persistent: they survive this process, can be
stopped to save cost and started again later, and are looked up by id
through the SDK whenever the local handle cache misses.

Checkpoints are git snapshots of the checkout (a commit plus a
``vibeforge-ckpt-*`` tag); restoring resets the working tree to the tag
and re-initializes the interpreter context.

Requires:
    - daytona Python package (pip install 'vibeforge[daytona]')
    - DAYTONA_API_KEY in the environment
"""

from __future__ import annotations

import logging
import re
import shlex
import uuid
from collections.abc import AsyncIterator
from typing import Any

from vibeforge.core.config.models import VibeforgeConfig

from . import bootstrap
from .base import RemoteSandboxProvider, output_text
from .errors import (
    CheckpointError,
    ProviderOperationError,
    ProvisioningError,
    UnsupportedOperation,
    is_already_running_error,
    is_not_found_error,
)
from .handles import HandleRegistry, InMemoryHandleRegistry
from .models import (
    CodeExecutionEvent,
    CommandResult,
    CreateWorkspaceOptions,
    ExecutionEventType,
    FileInfo,
    ProviderType,
    SandboxCapabilities,
    SandboxWorkspace,
    WorkspaceStatus,
)
from .provider import OutputCallback, register_provider
from .streaming import EventChannel, stream_execution

logger = logging.getLogger(__name__)

CHECKPOINT_TAG_PREFIX = "vibeforge-ckpt-"
_CHECKPOINT_ID = re.compile(r"^vibeforge-ckpt-[0-9a-f]{12}$")

_STATE_MAP = {
    "started": WorkspaceStatus.RUNNING,
    "running": WorkspaceStatus.RUNNING,
    "creating": WorkspaceStatus.CREATING,
    "starting": WorkspaceStatus.CREATING,
    "restoring": WorkspaceStatus.CREATING,
    "pending_build": WorkspaceStatus.CREATING,
    "building_snapshot": WorkspaceStatus.CREATING,
    "stopped": WorkspaceStatus.PAUSED,
    "stopping": WorkspaceStatus.PAUSED,
    "archived": WorkspaceStatus.PAUSED,
    "archiving": WorkspaceStatus.PAUSED,
    "destroyed": WorkspaceStatus.STOPPED,
    "destroying": WorkspaceStatus.STOPPED,
    "error": WorkspaceStatus.ERROR,
    "build_failed": WorkspaceStatus.ERROR,
}


def _state_of(sandbox: Any) -> WorkspaceStatus:
    state = getattr(sandbox, "state", None)
    value = str(getattr(state, "value", state) or "").lower()
    return _STATE_MAP.get(value, WorkspaceStatus.PAUSED)


@register_provider(ProviderType.DAYTONA.value)
class DaytonaProvider(RemoteSandboxProvider):
    """
    Daytona-backed provider.

    Two handle caches are kept: live sandbox objects and interpreter
    contexts. Both are rebuilt from the SDK on a cache miss.
    """

    provider_type = ProviderType.DAYTONA
    display_name = "Daytona"
    default_workspace_dir = "/workspace/repo"
    required_env = ("DAYTONA_API_KEY",)
    provider_capabilities = SandboxCapabilities(
        persistent=True,
        pause_resume=True,
        checkpoints=True,
    )

    def __init__(
        self,
        config: VibeforgeConfig | None = None,
        *,
        sdk: Any = None,
        handles: HandleRegistry[Any] | None = None,
        contexts: HandleRegistry[Any] | None = None,
    ) -> None:
        super().__init__(config, sdk=sdk, handles=handles)
        self._contexts: HandleRegistry[Any] = (
            contexts if contexts is not None else InMemoryHandleRegistry()
        )
        self._daytona: Any = None

    def _load_sdk(self) -> Any:
        try:
            import daytona
        except ImportError as e:
            raise ProviderOperationError(
                "daytona is not installed. Install it with: pip install 'vibeforge[daytona]'"
            ) from e
        return daytona

    def _api(self) -> Any:
        if self._daytona is None:
            self._daytona = self._client().AsyncDaytona()
        return self._daytona

    async def _sandbox(self, workspace_id: str) -> Any:
        sandbox = self._handles.get(workspace_id)
        if sandbox is None:
            sandbox = await self._api().get(workspace_id)
            self._handles.put(workspace_id, sandbox)
        return sandbox

    async def _exec(self, sandbox: Any, command: str, **kwargs: Any) -> CommandResult:
        response = await sandbox.process.exec(command, **kwargs)
        return CommandResult(
            stdout=str(getattr(response, "result", "") or ""),
            exit_code=int(getattr(response, "exit_code", 0) or 0),
        )

    async def _init_context(self, sandbox: Any, workspace_id: str) -> Any:
        """Create a fresh interpreter context with the agent runtime imported."""
        ctx = await sandbox.code_interpreter.create_context(cwd=self.workspace_dir)
        self._contexts.put(workspace_id, ctx)
        result = await sandbox.code_interpreter.run_code(
            bootstrap.runtime_import(self.workspace_dir), context=ctx
        )
        if getattr(result, "error", None):
            logger.warning("[Daytona %s] Could not import agent runtime: %s", workspace_id, result.error)
        return ctx

    async def _context(self, sandbox: Any, workspace_id: str) -> Any:
        ctx = self._contexts.get(workspace_id)
        if ctx is None:
            ctx = await self._init_context(sandbox, workspace_id)
        return ctx

    async def _preview(self, sandbox: Any, port: int | None = None) -> str:
        link = await sandbox.get_preview_link(port or self._config.sandbox.preview_port)
        return str(link.url)

    async def create_workspace(self, options: CreateWorkspaceOptions) -> SandboxWorkspace:
        sdk = self._client()
        workdir = self.workspace_dir
        env = bootstrap.default_env(workdir, options.env_vars)
        try:
            params = sdk.CreateSandboxFromSnapshotParams(language="python", env_vars=env)
            sandbox = await self._api().create(
                params, timeout=options.timeout or self._config.sandbox.create_timeout_seconds
            )
        except Exception as e:
            raise ProvisioningError(f"Daytona sandbox creation failed: {e}") from e

        workspace_id = str(sandbox.id)
        self._handles.put(workspace_id, sandbox)

        try:
            for label, command in bootstrap.setup_steps(options, workdir):
                logger.info("[Daytona %s] %s", workspace_id, label)
                result = await self._exec(sandbox, command)
                if not result.ok:
                    raise ProvisioningError(
                        f"{label} failed (exit {result.exit_code}): {result.stdout[-500:]}",
                        workspace_id,
                    )

            await sandbox.fs.upload_file(
                bootstrap.read_agent_runtime().encode(), bootstrap.runtime_path(workdir)
            )
            ctx = await self._init_context(sandbox, workspace_id)
            preview_url = await self._preview(sandbox)
        except Exception as e:
            logger.warning("[Daytona %s] Bootstrap failed, deleting sandbox: %s", workspace_id, e)
            await self._teardown(sandbox, workspace_id)
            if isinstance(e, ProvisioningError):
                raise
            raise ProvisioningError(f"Daytona bootstrap failed: {e}", workspace_id) from e

        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=preview_url,
            provider_type=self.provider_type,
            context_id=getattr(ctx, "id", None),
        )

    async def _teardown(self, sandbox: Any, workspace_id: str) -> None:
        self._handles.pop(workspace_id)
        self._contexts.pop(workspace_id)
        try:
            await sandbox.delete()
        except Exception as e:
            logger.error("[Daytona %s] Teardown failed: %s", workspace_id, e)

    async def get_workspace(self, workspace_id: str) -> SandboxWorkspace | None:
        try:
            sandbox = await self._sandbox(workspace_id)
        except Exception as e:
            logger.debug("[Daytona %s] Lookup failed: %s", workspace_id, e)
            return None

        status = _state_of(sandbox)
        preview_url = ""
        if status == WorkspaceStatus.RUNNING:
            try:
                preview_url = await self._preview(sandbox)
            except Exception as e:
                logger.debug("[Daytona %s] No preview link: %s", workspace_id, e)
        ctx = self._contexts.get(workspace_id)
        return SandboxWorkspace(
            id=workspace_id,
            status=status,
            preview_url=preview_url,
            provider_type=self.provider_type,
            context_id=getattr(ctx, "id", None),
        )

    async def resume_workspace(self, workspace_id: str) -> SandboxWorkspace:
        """
        Start the workspace and rebuild its interpreter context.

        Start is always attempted, whatever the cached state says; an
        "already running" answer counts as success.
        """
        try:
            sandbox = await self._sandbox(workspace_id)
            try:
                await sandbox.start()
            except Exception as e:
                if not is_already_running_error(e):
                    raise
                logger.debug("[Daytona %s] Already running", workspace_id)
            self._contexts.pop(workspace_id)
            ctx = await self._init_context(sandbox, workspace_id)
            preview_url = await self._preview(sandbox)
        except Exception as e:
            if is_not_found_error(e):
                self._handles.pop(workspace_id)
                raise UnsupportedOperation(
                    self.display_name, "resume", f"workspace {workspace_id} no longer exists"
                ) from e
            raise self._wrap("resume", e) from e

        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=preview_url,
            provider_type=self.provider_type,
            context_id=getattr(ctx, "id", None),
        )

    async def pause_workspace(self, workspace_id: str) -> None:
        try:
            sandbox = await self._sandbox(workspace_id)
            await sandbox.stop()
        except Exception as e:
            raise self._wrap("pause", e) from e
        self._contexts.pop(workspace_id)

    async def delete_workspace(self, workspace_id: str) -> None:
        try:
            sandbox = await self._sandbox(workspace_id)
            await sandbox.delete()
        except Exception as e:
            if not is_not_found_error(e):
                raise self._wrap("delete", e) from e
            logger.debug("[Daytona %s] Already deleted", workspace_id)
        self._handles.pop(workspace_id)
        self._contexts.pop(workspace_id)

    async def execute_command(
        self,
        workspace_id: str,
        command: str,
        *,
        cwd: str | None = None,
        env_vars: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        kwargs: dict[str, Any] = {}
        if cwd:
            kwargs["cwd"] = cwd
        if env_vars:
            kwargs["env"] = env_vars
        if timeout:
            kwargs["timeout"] = int(timeout)
        try:
            sandbox = await self._sandbox(workspace_id)
            return await self._exec(sandbox, command, **kwargs)
        except Exception as e:
            raise self._wrap("execute_command", e) from e

    def run_code(
        self,
        workspace_id: str,
        code: str,
        *,
        language: str | None = None,
        env_vars: dict[str, str] | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> AsyncIterator[CodeExecutionEvent]:
        async def execute(channel: EventChannel[CodeExecutionEvent]) -> None:
            if language not in (None, "python"):
                raise UnsupportedOperation(self.display_name, f"run_code({language})")
            sandbox = await self._sandbox(workspace_id)
            ctx = await self._context(sandbox, workspace_id)

            def stdout(message: Any) -> None:
                text = output_text(message)
                if text:
                    if on_stdout:
                        on_stdout(text)
                    channel.send_nowait(CodeExecutionEvent(type=ExecutionEventType.STDOUT, content=text))

            def stderr(message: Any) -> None:
                text = output_text(message)
                if text:
                    if on_stderr:
                        on_stderr(text)
                    channel.send_nowait(CodeExecutionEvent(type=ExecutionEventType.STDERR, content=text))

            result = await sandbox.code_interpreter.run_code(
                code,
                context=ctx,
                envs=env_vars,
                on_stdout=stdout,
                on_stderr=stderr,
            )
            error = getattr(result, "error", None)
            if error:
                name = getattr(error, "name", "Error")
                value = getattr(error, "value", error)
                raise ProviderOperationError(f"{name}: {value}")

        return stream_execution(execute, maxsize=self._config.orchestrator.channel_size)

    async def get_preview_url(self, workspace_id: str, port: int | None = None) -> str:
        try:
            sandbox = await self._sandbox(workspace_id)
            return await self._preview(sandbox, port)
        except Exception as e:
            raise self._wrap("get_preview_url", e) from e

    async def read_file(self, workspace_id: str, path: str) -> str:
        try:
            sandbox = await self._sandbox(workspace_id)
            content = await sandbox.fs.download_file(path)
        except Exception as e:
            raise self._wrap("read_file", e) from e
        if isinstance(content, bytes):
            return content.decode("utf-8")
        return str(content)

    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        try:
            sandbox = await self._sandbox(workspace_id)
            await sandbox.fs.upload_file(content.encode("utf-8"), path)
        except Exception as e:
            raise self._wrap("write_file", e) from e

    async def list_files(self, workspace_id: str, path: str) -> list[FileInfo]:
        try:
            sandbox = await self._sandbox(workspace_id)
            entries = await sandbox.fs.list_files(path)
        except Exception as e:
            raise self._wrap("list_files", e) from e
        return [
            FileInfo(
                path=bootstrap.join_path(path, entry.name),
                type="directory" if getattr(entry, "is_dir", False) else "file",
                size=getattr(entry, "size", None),
            )
            for entry in entries
        ]

    # Checkpoints

    async def create_checkpoint(self, workspace_id: str, label: str) -> str:
        """
        Commit the working tree and tag the commit.

        Returns:
            The tag name, used as the opaque checkpoint id
        """
        tag = f"{CHECKPOINT_TAG_PREFIX}{uuid.uuid4().hex[:12]}"
        workdir = shlex.quote(self.workspace_dir)
        command = (
            f"cd {workdir} && git add -A && "
            "git -c user.name=vibeforge -c user.email=vibeforge@localhost "
            f"commit --allow-empty -q -m {shlex.quote(label or tag)} && "
            f"git tag {tag}"
        )
        try:
            result = await self.execute_command(workspace_id, command)
        except ProviderOperationError as e:
            raise CheckpointError(f"Checkpoint failed: {e}") from e
        if not result.ok:
            raise CheckpointError(f"Checkpoint failed (exit {result.exit_code}): {result.stdout[-500:]}")
        logger.info("[Daytona %s] Created checkpoint %s", workspace_id, tag)
        return tag

    async def restore_checkpoint(self, workspace_id: str, checkpoint_id: str) -> None:
        """Reset the checkout to a checkpoint tag and rebuild the context."""
        if not _CHECKPOINT_ID.match(checkpoint_id):
            raise CheckpointError(f"Not a Daytona checkpoint id: {checkpoint_id}")
        workdir = shlex.quote(self.workspace_dir)
        command = f"cd {workdir} && git reset --hard -q {checkpoint_id} && git clean -fdq"
        try:
            result = await self.execute_command(workspace_id, command)
            if not result.ok:
                raise CheckpointError(
                    f"Restore failed (exit {result.exit_code}): {result.stdout[-500:]}"
                )
            sandbox = await self._sandbox(workspace_id)
            self._contexts.pop(workspace_id)
            await self._init_context(sandbox, workspace_id)
        except CheckpointError:
            raise
        except Exception as e:
            raise CheckpointError(f"Restore failed: {e}") from e
        logger.info("[Daytona %s] Restored checkpoint %s", workspace_id, checkpoint_id)
