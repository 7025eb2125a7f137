"""
Sandbox error taxonomy.

Provider SDK exceptions never leave a provider: they are caught at the
provider boundary and re-raised as one of the types below, so callers can
branch on the kind of failure (retry with a fresh workspace, recreate,
surface to the user) without knowing which vendor is in use.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base exception for sandbox provider errors."""


class ProvisioningError(SandboxError):
    """Creating or bootstrapping a remote workspace failed.

    Fatal for that workspace: the caller must retry with a fresh one.
    Partially created remote resources have already been torn down.
    """

    def __init__(self, message: str, workspace_id: str | None = None) -> None:
        self.workspace_id = workspace_id
        super().__init__(message)


class UnsupportedOperation(SandboxError):
    """The provider lacks the capability for this operation.

    Distinct from a real failure: callers should branch (e.g. recreate the
    workspace) rather than retry.
    """

    def __init__(self, provider: str, operation: str, detail: str | None = None) -> None:
        self.provider = provider
        self.operation = operation
        message = f"{provider} does not support {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class WorkspaceNotFound(SandboxError):
    """The workspace id is unknown to the provider."""

    def __init__(self, provider: str, workspace_id: str) -> None:
        self.provider = provider
        self.workspace_id = workspace_id
        super().__init__(f"{provider} workspace not found: {workspace_id}")


class ProviderOperationError(SandboxError):
    """A provider SDK call failed for a reason outside the taxonomy."""


class NoDevServerFound(SandboxError):
    """Every candidate dev server command failed to start."""

    def __init__(self, tried: list[str]) -> None:
        self.tried = list(tried)
        super().__init__(f"Could not start dev server (tried: {', '.join(tried) or 'nothing'})")


class CheckpointError(SandboxError):
    """Creating or restoring a checkpoint failed."""


class SandboxExpired(SandboxError):
    """An ephemeral workspace is gone and cannot be brought back."""

    def __init__(self, sandbox_id: str | None = None) -> None:
        self.sandbox_id = sandbox_id
        super().__init__("Sandbox expired. Please create a new session.")


class SandboxStartError(SandboxError):
    """A workspace could not be brought to the running state."""


_ALREADY_RUNNING_MARKERS = ("already running", "already started")


def is_already_running_error(exc: BaseException) -> bool:
    """Check whether a provider error only says the workspace is already up."""
    message = str(exc).lower()
    return any(marker in message for marker in _ALREADY_RUNNING_MARKERS)


def is_not_found_error(exc: BaseException) -> bool:
    """Check whether a provider SDK error means the remote resource is gone."""
    if "notfound" in type(exc).__name__.lower():
        return True
    message = str(exc).lower()
    return "not found" in message or "404" in message
