"""
Sandbox provider protocol and class registry.

This module defines the SandboxProvider protocol that every remote
workspace backend (Daytona, E2B, Modal) implements, plus the narrower
CheckpointProvider protocol for backends that can snapshot a workspace.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol, runtime_checkable

from .models import (
    CodeExecutionEvent,
    CommandResult,
    CreateWorkspaceOptions,
    FileInfo,
    ProviderType,
    SandboxCapabilities,
    SandboxWorkspace,
)

OutputCallback = Callable[[str], None]


@runtime_checkable
class SandboxProvider(Protocol):
    """
    Protocol for remote workspace provider implementations.

    Providers are responsible for:
    - Reporting availability (credentials present) without network calls
    - Creating a workspace from a git repository and bootstrapping it
    - Pausing, resuming and deleting workspaces
    - Running commands and streaming code execution
    - Starting the dev server and resolving its preview URL
    - Reading, writing and listing files

    Every SDK exception is converted into a SandboxError subclass before it
    leaves the provider.
    """

    @property
    def type(self) -> ProviderType:
        """Provider type identifier."""
        ...

    @property
    def name(self) -> str:
        """Human readable provider name."""
        ...

    @property
    def capabilities(self) -> SandboxCapabilities:
        """
        Get provider capabilities.

        Returns:
            SandboxCapabilities describing what this provider supports
        """
        ...

    def is_available(self) -> bool:
        """
        Check whether credentials for the provider are configured.

        Never raises and never touches the network.

        Returns:
            True if provider can be used
        """
        ...

    async def create_workspace(self, options: CreateWorkspaceOptions) -> SandboxWorkspace:
        """
        Create and bootstrap a workspace from a repository.

        Clones the repository, checks out the branch, installs
        dependencies and prepares the agent runtime. If any step fails
        the partially created remote resource is torn down.

        Args:
            options: Repository and environment options

        Returns:
            The running workspace

        Raises:
            ProvisioningError: If creation or bootstrap fails
        """
        ...

    async def get_workspace(self, workspace_id: str) -> SandboxWorkspace | None:
        """
        Look up a workspace.

        Returns:
            The workspace, or None when the provider does not know it
        """
        ...

    async def resume_workspace(self, workspace_id: str) -> SandboxWorkspace:
        """
        Bring a workspace back to running.

        Idempotent: resuming a running workspace succeeds.

        Raises:
            UnsupportedOperation: If the provider cannot resume this workspace
            ProviderOperationError: If the provider call fails
        """
        ...

    async def pause_workspace(self, workspace_id: str) -> None:
        """Stop billing for a workspace while keeping its state, when supported."""
        ...

    async def delete_workspace(self, workspace_id: str) -> None:
        """Delete a workspace. Deleting an unknown workspace is a no-op."""
        ...

    async def execute_command(
        self,
        workspace_id: str,
        command: str,
        *,
        cwd: str | None = None,
        env_vars: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run a shell command and wait for it.

        Non-zero exit codes are reported in the result, not raised.
        """
        ...

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
        """
        Stream a code execution inside the workspace.

        Events arrive in emission order. A failure produces one error
        event, and every stream ends with exactly one done event.
        """
        ...

    async def start_dev_server(
        self,
        workspace_id: str,
        *,
        command: str | None = None,
        port: int | None = None,
    ) -> str:
        """
        Launch the dev server in the background and return its preview URL.

        Candidate commands are tried in order when none is given.

        Raises:
            NoDevServerFound: If every candidate fails
        """
        ...

    async def get_preview_url(self, workspace_id: str, port: int | None = None) -> str:
        """Resolve the public URL for a port in the workspace."""
        ...

    async def read_file(self, workspace_id: str, path: str) -> str: ...

    async def write_file(self, workspace_id: str, path: str, content: str) -> None: ...

    async def list_files(self, workspace_id: str, path: str) -> list[FileInfo]: ...


@runtime_checkable
class CheckpointProvider(Protocol):
    """Narrower protocol for providers that can snapshot a workspace."""

    async def create_checkpoint(self, workspace_id: str, label: str) -> str:
        """
        Snapshot the workspace.

        Returns:
            Opaque provider checkpoint id
        """
        ...

    async def restore_checkpoint(self, workspace_id: str, checkpoint_id: str) -> None:
        """Return the workspace to a snapshot taken earlier."""
        ...


def supports_checkpoints(provider: Any) -> bool:
    """
    Check whether a provider declares and implements checkpoints.

    Both the capability flag and the CheckpointProvider protocol must
    agree; a provider that only has one of them is treated as lacking the
    capability.
    """
    capabilities = getattr(provider, "capabilities", None)
    if capabilities is None or not capabilities.checkpoints:
        return False
    return isinstance(provider, CheckpointProvider)


def as_checkpoint_provider(provider: Any) -> CheckpointProvider | None:
    """Return the provider narrowed to CheckpointProvider, or None."""
    if supports_checkpoints(provider):
        return provider
    return None


# Provider class registry
_provider_classes: dict[str, type] = {}


def register_provider(name: str) -> Callable[[type], type]:
    """
    Decorator to register a sandbox provider implementation.

    Usage:
        @register_provider("daytona")
        class DaytonaProvider:
            ...

    Args:
        name: Provider type value (e.g., 'daytona', 'e2b')

    Returns:
        Decorator function
    """

    def decorator(provider_class: type) -> type:
        _provider_classes[name] = provider_class
        return provider_class

    return decorator


def get_provider_class(name: str) -> type | None:
    """Return the registered class for a provider type, if any."""
    return _provider_classes.get(name)


def list_provider_classes() -> dict[str, type]:
    """Return a copy of the provider class registry."""
    return dict(_provider_classes)
