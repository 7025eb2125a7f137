"""
Sandbox data models.

This module defines Pydantic models for remote workspaces, command and
code execution results, and provider capability discovery.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ProviderType(str, Enum):
    """Supported sandbox providers."""

    DAYTONA = "daytona"
    E2B = "e2b"
    MODAL = "modal"


class WorkspaceStatus(str, Enum):
    """
    Remote workspace lifecycle state.

    creating -> running <-> paused -> stopped; error is terminal.
    """

    CREATING = "creating"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


class SandboxCapabilities(BaseModel):
    """
    Sandbox provider capabilities.

    Defines what lifecycle features a provider supports so callers can
    branch on capability instead of catching failures.
    """

    persistent: bool = Field(
        default=False,
        description="Workspace survives the process that created it",
    )
    pause_resume: bool = Field(
        default=False,
        description="Can stop billing and later resume the same workspace",
    )
    checkpoints: bool = Field(
        default=False,
        description="Supports creating/restoring point-in-time snapshots",
    )
    gpu: bool = Field(
        default=False,
        description="Supports GPU acceleration",
    )
    preview_tunnel_required: bool = Field(
        default=False,
        description="Preview URLs need extra tunnel setup",
    )

    def has(self, capability: str) -> bool:
        """
        Check if provider has a specific capability.

        Args:
            capability: Capability name to check

        Returns:
            True if capability is supported
        """
        return bool(getattr(self, capability, False))


class SandboxWorkspace(BaseModel):
    """
    One remote compute unit.

    Owned by the provider instance that created it; persisted Sandbox
    records only reference it by id.
    """

    id: str = Field(description="Provider-specific workspace id")
    status: WorkspaceStatus = Field(description="Current lifecycle state")
    preview_url: str = Field(default="", description="Preview URL for the running app")
    provider_type: ProviderType = Field(description="Provider that owns the workspace")
    context_id: str | None = Field(
        default=None,
        description="Code interpreter context id (if the provider has one)",
    )
    metadata: dict[str, Any] = Field(default_factory=dict, description="Provider extras")


class CreateWorkspaceOptions(BaseModel):
    """Options for creating a workspace from a git repository."""

    repo_url: str = Field(description="Repository URL to clone")
    branch: str | None = Field(default=None, description="Branch to check out")
    git_token: str | None = Field(default=None, description="Token for private repos")
    env_vars: dict[str, str] = Field(default_factory=dict, description="Extra environment")
    timeout: float | None = Field(default=None, description="Creation/lifetime timeout (seconds)")


class CommandResult(BaseModel):
    """Result of a single synchronous command."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        """Check if the command exited successfully."""
        return self.exit_code == 0


class FileInfo(BaseModel):
    """A directory entry inside a workspace."""

    path: str
    type: Literal["file", "directory"] = "file"
    size: int | None = None


class ExecutionEventType(str, Enum):
    """Raw event vocabulary produced by run_code."""

    STDOUT = "stdout"
    STDERR = "stderr"
    RESULT = "result"
    ERROR = "error"
    DONE = "done"


class CodeExecutionEvent(BaseModel):
    """One unit of output from a streaming code execution."""

    type: ExecutionEventType
    content: str = ""
    metadata: dict[str, Any] | None = None


class ProviderInfo(BaseModel):
    """Provider metadata for capability discovery (UI, CLI)."""

    type: ProviderType
    name: str
    available: bool
    enabled: bool
    is_default: bool
    capabilities: SandboxCapabilities
