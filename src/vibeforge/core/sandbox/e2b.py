"""
E2B sandbox provider.

E2B code interpreter sandboxes are ephemeral: they cannot be paused or
resumed, and resume only succeeds for a sandbox this process still holds.
Other operations reconnect by sandbox id when the handle is not cached, so
a workspace created by an earlier process can still be used and deleted
until it times out.

Requires:
    - e2b-code-interpreter Python package (pip install 'vibeforge[e2b]')
    - E2B_API_KEY in the environment
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from . import bootstrap
from .base import RemoteSandboxProvider, output_text
from .errors import ProviderOperationError, ProvisioningError, UnsupportedOperation, is_not_found_error
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


def _command_result(value: Any) -> CommandResult:
    return CommandResult(
        stdout=str(getattr(value, "stdout", "") or ""),
        stderr=str(getattr(value, "stderr", "") or ""),
        exit_code=int(getattr(value, "exit_code", 0) or 0),
    )


@register_provider(ProviderType.E2B.value)
class E2BProvider(RemoteSandboxProvider):
    """E2B-backed provider (ephemeral, no pause or checkpoints)."""

    provider_type = ProviderType.E2B
    display_name = "E2B"
    default_workspace_dir = "/home/user/repo"
    required_env = ("E2B_API_KEY",)
    provider_capabilities = SandboxCapabilities()

    def _load_sdk(self) -> Any:
        try:
            from e2b_code_interpreter import AsyncSandbox
        except ImportError as e:
            raise ProviderOperationError(
                "e2b-code-interpreter is not installed. "
                "Install it with: pip install 'vibeforge[e2b]'"
            ) from e
        return AsyncSandbox

    async def _sandbox(self, workspace_id: str) -> Any:
        """
        Return the handle for a workspace, reconnecting when it is not cached.

        Raises:
            UnsupportedOperation: If the sandbox no longer exists
        """
        sandbox = self._handles.get(workspace_id)
        if sandbox is not None:
            return sandbox
        try:
            sandbox = await self._client().connect(workspace_id)
        except Exception as e:
            if is_not_found_error(e):
                raise UnsupportedOperation(
                    self.display_name, "lookup", f"workspace {workspace_id} has expired"
                ) from e
            raise self._wrap("connect", e) from e
        logger.info("[E2B %s] Reconnected to sandbox", workspace_id)
        self._handles.put(workspace_id, sandbox)
        return sandbox

    async def _run(self, sandbox: Any, command: str, **kwargs: Any) -> CommandResult:
        """Run a command; a non-zero exit is returned, not raised."""
        try:
            return _command_result(await sandbox.commands.run(command, **kwargs))
        except Exception as e:
            # CommandExitException carries the finished command's output
            if getattr(e, "exit_code", None) is not None:
                return _command_result(e)
            raise

    def _preview(self, sandbox: Any, port: int | None = None) -> str:
        host = sandbox.get_host(port or self._config.sandbox.preview_port)
        return f"https://{host}"

    async def create_workspace(self, options: CreateWorkspaceOptions) -> SandboxWorkspace:
        workdir = self.workspace_dir
        env = bootstrap.default_env(workdir, options.env_vars)
        try:
            sandbox = await self._client().create(
                timeout=int(options.timeout or self._config.sandbox.create_timeout_seconds),
                envs=env,
            )
        except Exception as e:
            raise ProvisioningError(f"E2B sandbox creation failed: {e}") from e

        workspace_id = str(sandbox.sandbox_id)
        self._handles.put(workspace_id, sandbox)

        try:
            for label, command in bootstrap.setup_steps(options, workdir):
                logger.info("[E2B %s] %s", workspace_id, label)
                result = await self._run(sandbox, command, timeout=0)
                if not result.ok:
                    detail = (result.stderr or result.stdout)[-500:]
                    raise ProvisioningError(
                        f"{label} failed (exit {result.exit_code}): {detail}", workspace_id
                    )
            await sandbox.files.write(
                bootstrap.runtime_path(workdir), bootstrap.read_agent_runtime()
            )
            preview_url = self._preview(sandbox)
        except Exception as e:
            logger.warning("[E2B %s] Bootstrap failed, killing sandbox: %s", workspace_id, e)
            self._handles.pop(workspace_id)
            try:
                await sandbox.kill()
            except Exception as kill_error:
                logger.error("[E2B %s] Teardown failed: %s", workspace_id, kill_error)
            if isinstance(e, ProvisioningError):
                raise
            raise ProvisioningError(f"E2B bootstrap failed: {e}", workspace_id) from e

        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=preview_url,
            provider_type=self.provider_type,
        )

    async def get_workspace(self, workspace_id: str) -> SandboxWorkspace | None:
        try:
            sandbox = await self._sandbox(workspace_id)
        except UnsupportedOperation:
            return None
        try:
            preview_url = self._preview(sandbox)
        except Exception as e:
            logger.debug("[E2B %s] No preview host: %s", workspace_id, e)
            preview_url = ""
        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=preview_url,
            provider_type=self.provider_type,
        )

    async def resume_workspace(self, workspace_id: str) -> SandboxWorkspace:
        """
        Return a held workspace as running.

        Raises:
            UnsupportedOperation: If the workspace is unknown or has expired
        """
        sandbox = self._handles.get(workspace_id)
        if sandbox is None:
            raise UnsupportedOperation(
                self.display_name, "resume", f"workspace {workspace_id} cannot be recovered"
            )
        try:
            running = await sandbox.is_running()
        except Exception as e:
            raise self._wrap("resume", e) from e
        if not running:
            self._handles.pop(workspace_id)
            raise UnsupportedOperation(
                self.display_name, "resume", f"workspace {workspace_id} has expired"
            )
        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=self._preview(sandbox),
            provider_type=self.provider_type,
        )

    async def pause_workspace(self, workspace_id: str) -> None:
        logger.warning("E2B does not support pausing; workspace %s keeps running", workspace_id)

    async def delete_workspace(self, workspace_id: str) -> None:
        sandbox = self._handles.pop(workspace_id)
        try:
            if sandbox is not None:
                await sandbox.kill()
            elif not await self._client().kill(workspace_id):
                logger.debug("[E2B %s] Already gone", workspace_id)
        except Exception as e:
            if not is_not_found_error(e):
                raise self._wrap("delete", e) from e
            logger.debug("[E2B %s] Already gone", workspace_id)

    async def execute_command(
        self,
        workspace_id: str,
        command: str,
        *,
        cwd: str | None = None,
        env_vars: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        sandbox = await self._sandbox(workspace_id)
        kwargs: dict[str, Any] = {}
        if cwd:
            kwargs["cwd"] = cwd
        if env_vars:
            kwargs["envs"] = env_vars
        if timeout:
            kwargs["timeout"] = timeout
        try:
            return await self._run(sandbox, command, **kwargs)
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
            sandbox = await self._sandbox(workspace_id)

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

            kwargs: dict[str, Any] = {"on_stdout": stdout, "on_stderr": stderr, "timeout": 0}
            if language:
                kwargs["language"] = language
            if env_vars:
                kwargs["envs"] = env_vars
            execution = await sandbox.run_code(code, **kwargs)

            error = getattr(execution, "error", None)
            if error:
                raise ProviderOperationError(
                    f"{getattr(error, 'name', 'Error')}: {getattr(error, 'value', error)}"
                )
            text = getattr(execution, "text", None)
            if text:
                await channel.send(CodeExecutionEvent(type=ExecutionEventType.RESULT, content=str(text)))

        return stream_execution(execute, maxsize=self._config.orchestrator.channel_size)

    async def get_preview_url(self, workspace_id: str, port: int | None = None) -> str:
        sandbox = await self._sandbox(workspace_id)
        try:
            return self._preview(sandbox, port)
        except Exception as e:
            raise self._wrap("get_preview_url", e) from e

    async def read_file(self, workspace_id: str, path: str) -> str:
        sandbox = await self._sandbox(workspace_id)
        try:
            return str(await sandbox.files.read(path))
        except Exception as e:
            raise self._wrap("read_file", e) from e

    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        sandbox = await self._sandbox(workspace_id)
        try:
            await sandbox.files.write(path, content)
        except Exception as e:
            raise self._wrap("write_file", e) from e

    async def list_files(self, workspace_id: str, path: str) -> list[FileInfo]:
        sandbox = await self._sandbox(workspace_id)
        try:
            entries = await sandbox.files.list(path)
        except Exception as e:
            raise self._wrap("list_files", e) from e
        files = []
        for entry in entries:
            kind = getattr(entry, "type", None)
            kind = str(getattr(kind, "value", kind) or "").lower()
            files.append(
                FileInfo(
                    path=bootstrap.join_path(path, entry.name),
                    type="directory" if kind in ("dir", "directory") else "file",
                    size=getattr(entry, "size", None),
                )
            )
        return files
