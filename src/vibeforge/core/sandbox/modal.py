"""
Modal sandbox provider.

Modal sandboxes are ephemeral containers with optional GPU. Like E2B they
cannot be paused; a sandbox created by an earlier process is reattached by
id for commands, previews and deletion while it is still up. They have no
built-in preview routing: a port only gets a public URL when it is listed
in ``modal.tunnel_ports`` so it is exposed through an encrypted tunnel at
creation time.

Requires:
    - modal Python package (pip install 'vibeforge[modal]')
    - MODAL_TOKEN_ID and MODAL_TOKEN_SECRET in the environment
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import AsyncIterator
from typing import Any

from . import bootstrap
from .base import RemoteSandboxProvider
from .errors import ProviderOperationError, ProvisioningError, UnsupportedOperation, is_not_found_error
from .models import (
    CodeExecutionEvent,
    CommandResult,
    CreateWorkspaceOptions,
    ExecutionEventType,
    ProviderType,
    SandboxCapabilities,
    SandboxWorkspace,
    WorkspaceStatus,
)
from .provider import OutputCallback, register_provider
from .streaming import EventChannel, stream_execution

logger = logging.getLogger(__name__)

IMAGE_PACKAGES = ("git", "curl", "nodejs", "npm")


def _with_env(command: str, env_vars: dict[str, str] | None) -> str:
    if not env_vars:
        return command
    exports = " ".join(f"{k}={shlex.quote(v)}" for k, v in env_vars.items())
    return f"export {exports}; {command}"


@register_provider(ProviderType.MODAL.value)
class ModalProvider(RemoteSandboxProvider):
    """Modal-backed provider (ephemeral, GPU capable)."""

    provider_type = ProviderType.MODAL
    display_name = "Modal"
    default_workspace_dir = "/workspace/repo"
    required_env = ("MODAL_TOKEN_ID", "MODAL_TOKEN_SECRET")
    provider_capabilities = SandboxCapabilities(gpu=True, preview_tunnel_required=True)

    def _load_sdk(self) -> Any:
        try:
            import modal
        except ImportError as e:
            raise ProviderOperationError(
                "modal is not installed. Install it with: pip install 'vibeforge[modal]'"
            ) from e
        return modal

    async def _sandbox(self, workspace_id: str) -> Any:
        """
        Return the handle for a workspace, looking it up by id when not cached.

        Raises:
            UnsupportedOperation: If the sandbox is gone or has exited
        """
        sandbox = self._handles.get(workspace_id)
        if sandbox is not None:
            return sandbox
        try:
            sandbox = await self._client().Sandbox.from_id.aio(workspace_id)
            exit_code = await sandbox.poll.aio()
        except Exception as e:
            if is_not_found_error(e):
                raise UnsupportedOperation(
                    self.display_name, "lookup", f"workspace {workspace_id} no longer exists"
                ) from e
            raise self._wrap("lookup", e) from e
        if exit_code is not None:
            raise UnsupportedOperation(self.display_name, "lookup", f"workspace {workspace_id} has exited")
        logger.info("[Modal %s] Reattached to sandbox", workspace_id)
        self._handles.put(workspace_id, sandbox)
        return sandbox

    async def _exec(
        self,
        sandbox: Any,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        kwargs: dict[str, Any] = {}
        if cwd:
            kwargs["workdir"] = cwd
        if timeout:
            kwargs["timeout"] = int(timeout)
        process = await sandbox.exec.aio("bash", "-c", command, **kwargs)
        stdout = await process.stdout.read.aio()
        stderr = await process.stderr.read.aio()
        exit_code = await process.wait.aio()
        return CommandResult(stdout=stdout or "", stderr=stderr or "", exit_code=int(exit_code or 0))

    def _image(self, modal: Any) -> Any:
        return (
            modal.Image.from_registry(self._config.modal.image)
            .apt_install(*IMAGE_PACKAGES)
            .pip_install("claude-agent-sdk")
        )

    async def _tunnel_url(self, sandbox: Any, port: int) -> str:
        if port not in self._config.modal.tunnel_ports:
            raise UnsupportedOperation(
                self.display_name,
                "preview",
                f"port {port} is not tunneled; add it to modal.tunnel_ports",
            )
        tunnels = await sandbox.tunnels.aio()
        return str(tunnels[port].url)

    async def create_workspace(self, options: CreateWorkspaceOptions) -> SandboxWorkspace:
        modal = self._client()
        settings = self._config.modal
        workdir = self.workspace_dir
        env = bootstrap.default_env(workdir, options.env_vars)
        try:
            app = await modal.App.lookup.aio(settings.app_name, create_if_missing=True)
            kwargs: dict[str, Any] = {
                "app": app,
                "image": self._image(modal),
                "timeout": int(options.timeout or self._config.sandbox.create_timeout_seconds),
                "secrets": [modal.Secret.from_dict(env)],
            }
            if settings.gpu:
                kwargs["gpu"] = settings.gpu
            if settings.tunnel_ports:
                kwargs["encrypted_ports"] = list(settings.tunnel_ports)
            sandbox = await modal.Sandbox.create.aio(**kwargs)
        except Exception as e:
            raise ProvisioningError(f"Modal sandbox creation failed: {e}") from e

        workspace_id = str(sandbox.object_id)
        self._handles.put(workspace_id, sandbox)

        try:
            for label, command in bootstrap.setup_steps(options, workdir):
                logger.info("[Modal %s] %s", workspace_id, label)
                result = await self._exec(sandbox, command)
                if not result.ok:
                    detail = (result.stderr or result.stdout)[-500:]
                    raise ProvisioningError(
                        f"{label} failed (exit {result.exit_code}): {detail}", workspace_id
                    )
            await self._write(sandbox, bootstrap.runtime_path(workdir), bootstrap.read_agent_runtime())
        except Exception as e:
            logger.warning("[Modal %s] Bootstrap failed, terminating sandbox: %s", workspace_id, e)
            self._handles.pop(workspace_id)
            try:
                await sandbox.terminate.aio()
            except Exception as term_error:
                logger.error("[Modal %s] Teardown failed: %s", workspace_id, term_error)
            if isinstance(e, ProvisioningError):
                raise
            raise ProvisioningError(f"Modal bootstrap failed: {e}", workspace_id) from e

        metadata: dict[str, Any] = {"gpu": settings.gpu}
        port = self._config.sandbox.preview_port
        preview_url = ""
        if port in settings.tunnel_ports:
            try:
                preview_url = await self._tunnel_url(sandbox, port)
            except Exception as e:
                logger.warning("[Modal %s] Tunnel lookup failed: %s", workspace_id, e)
                metadata["preview"] = f"tunnel lookup failed: {e}"
        else:
            metadata["preview"] = f"port {port} is not tunneled; add it to modal.tunnel_ports"

        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=preview_url,
            provider_type=self.provider_type,
            metadata=metadata,
        )

    async def get_workspace(self, workspace_id: str) -> SandboxWorkspace | None:
        try:
            await self._sandbox(workspace_id)
        except UnsupportedOperation:
            return None
        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            provider_type=self.provider_type,
        )

    async def resume_workspace(self, workspace_id: str) -> SandboxWorkspace:
        """
        Return a held workspace as running.

        Raises:
            UnsupportedOperation: If the workspace is unknown or has exited
        """
        sandbox = self._handles.get(workspace_id)
        if sandbox is None:
            raise UnsupportedOperation(
                self.display_name, "resume", f"workspace {workspace_id} cannot be recovered"
            )
        try:
            exit_code = await sandbox.poll.aio()
        except Exception as e:
            raise self._wrap("resume", e) from e
        if exit_code is not None:
            self._handles.pop(workspace_id)
            raise UnsupportedOperation(
                self.display_name, "resume", f"workspace {workspace_id} has exited"
            )
        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            provider_type=self.provider_type,
        )

    async def pause_workspace(self, workspace_id: str) -> None:
        logger.warning("Modal does not support pausing; workspace %s keeps running", workspace_id)

    async def delete_workspace(self, workspace_id: str) -> None:
        sandbox = self._handles.pop(workspace_id)
        try:
            if sandbox is None:
                sandbox = await self._client().Sandbox.from_id.aio(workspace_id)
            await sandbox.terminate.aio()
        except Exception as e:
            if not is_not_found_error(e):
                raise self._wrap("delete", e) from e
            logger.debug("[Modal %s] Already gone", workspace_id)

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
        try:
            return await self._exec(sandbox, _with_env(command, env_vars), cwd=cwd, timeout=timeout)
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
            command = _with_env(f"python3 -c {shlex.quote(code)}", env_vars)
            process = await sandbox.exec.aio("bash", "-c", command, workdir=self.workspace_dir)

            async for chunk in process.stdout:
                if chunk:
                    if on_stdout:
                        on_stdout(chunk)
                    await channel.send(CodeExecutionEvent(type=ExecutionEventType.STDOUT, content=chunk))

            stderr = await process.stderr.read.aio()
            if stderr:
                if on_stderr:
                    on_stderr(stderr)
                await channel.send(CodeExecutionEvent(type=ExecutionEventType.STDERR, content=stderr))

            exit_code = await process.wait.aio()
            if exit_code:
                raise ProviderOperationError(f"python exited with code {exit_code}")

        return stream_execution(execute, maxsize=self._config.orchestrator.channel_size)

    async def get_preview_url(self, workspace_id: str, port: int | None = None) -> str:
        sandbox = await self._sandbox(workspace_id)
        port = port or self._config.sandbox.preview_port
        try:
            return await self._tunnel_url(sandbox, port)
        except UnsupportedOperation:
            raise
        except Exception as e:
            raise self._wrap("get_preview_url", e) from e

    async def read_file(self, workspace_id: str, path: str) -> str:
        result = await self.execute_command(workspace_id, f"cat {shlex.quote(path)}")
        if not result.ok:
            raise ProviderOperationError(f"Modal read_file failed for {path}: {result.stderr.strip()}")
        return result.stdout

    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        sandbox = await self._sandbox(workspace_id)
        try:
            await self._write(sandbox, path, content)
        except ProviderOperationError:
            raise
        except Exception as e:
            raise self._wrap("write_file", e) from e

    async def _write(self, sandbox: Any, path: str, content: str) -> None:
        """Write through the sandbox filesystem API."""
        parent = path.rsplit("/", 1)[0]
        if parent:
            result = await self._exec(sandbox, f"mkdir -p {shlex.quote(parent)}")
            if not result.ok:
                raise ProviderOperationError(f"Modal write_file failed for {path}: {result.stderr.strip()}")
        handle = await sandbox.open.aio(path, "w")
        try:
            await handle.write.aio(content)
        finally:
            await handle.close.aio()
