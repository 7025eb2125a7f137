"""
Remote sandbox providers.

This package provides a pluggable provider layer for remote workspaces
(Daytona, E2B, Modal) behind one SandboxProvider protocol.

Example usage:
    from vibeforge.core.config import load_config
    from vibeforge.core.sandbox import CreateWorkspaceOptions, ProviderRegistry

    registry = ProviderRegistry.from_config(load_config())
    provider = registry.get_default()

    workspace = await provider.create_workspace(
        CreateWorkspaceOptions(repo_url="https://github.com/acme/app")
    )
    result = await provider.execute_command(workspace.id, "git status")

    async for event in provider.run_code(workspace.id, "print('hi')"):
        print(event.type, event.content)

    await provider.delete_workspace(workspace.id)
"""

from .daytona import DaytonaProvider
from .e2b import E2BProvider
from .errors import (
    CheckpointError,
    NoDevServerFound,
    ProviderOperationError,
    ProvisioningError,
    SandboxError,
    SandboxExpired,
    SandboxStartError,
    UnsupportedOperation,
    WorkspaceNotFound,
    is_already_running_error,
)
from .handles import HandleRegistry, InMemoryHandleRegistry
from .modal import ModalProvider
from .models import (
    CodeExecutionEvent,
    CommandResult,
    CreateWorkspaceOptions,
    ExecutionEventType,
    FileInfo,
    ProviderInfo,
    ProviderType,
    SandboxCapabilities,
    SandboxWorkspace,
    WorkspaceStatus,
)
from .provider import (
    CheckpointProvider,
    SandboxProvider,
    as_checkpoint_provider,
    register_provider,
    supports_checkpoints,
)
from .registry import (
    DefaultProviderRequired,
    ProviderDisabled,
    ProviderRegistry,
    ProviderUnavailable,
    RegistryError,
    UnknownProvider,
)
from .streaming import EventChannel, stream_execution

__all__ = [
    # Models
    "CodeExecutionEvent",
    "CommandResult",
    "CreateWorkspaceOptions",
    "ExecutionEventType",
    "FileInfo",
    "ProviderInfo",
    "ProviderType",
    "SandboxCapabilities",
    "SandboxWorkspace",
    "WorkspaceStatus",
    # Protocols
    "CheckpointProvider",
    "SandboxProvider",
    "as_checkpoint_provider",
    "register_provider",
    "supports_checkpoints",
    # Providers
    "DaytonaProvider",
    "E2BProvider",
    "ModalProvider",
    # Registry
    "DefaultProviderRequired",
    "ProviderDisabled",
    "ProviderRegistry",
    "ProviderUnavailable",
    "RegistryError",
    "UnknownProvider",
    # Errors
    "CheckpointError",
    "NoDevServerFound",
    "ProviderOperationError",
    "ProvisioningError",
    "SandboxError",
    "SandboxExpired",
    "SandboxStartError",
    "UnsupportedOperation",
    "WorkspaceNotFound",
    "is_already_running_error",
    # Infrastructure
    "EventChannel",
    "HandleRegistry",
    "InMemoryHandleRegistry",
    "stream_execution",
]
