"""
Process-local cache of live provider SDK handles.

Open sandbox connections and interpreter contexts are cached per workspace
id so repeated operations do not re-attach to the remote side. The cache is
not durable: after a restart every entry is gone even though the remote
workspace may still exist.

Losing a handle is recoverable: persistent providers transparently
re-acquire it through an SDK lookup by id. Losing the remote resource is
not: ephemeral providers cannot look workspaces up again, so a missing
handle means the workspace is gone for this process.

The registry is an explicit, injectable object so tests can substitute a
fake and a multi-process deployment could back it with a shared cache.
"""

from __future__ import annotations

from typing import Generic, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class HandleRegistry(Protocol[T]):
    """Keyed store of live handles, keyed by workspace id."""

    def get(self, workspace_id: str) -> T | None:
        """Return the cached handle, or None."""
        ...

    def put(self, workspace_id: str, handle: T) -> None:
        """Cache a handle, replacing any previous one."""
        ...

    def pop(self, workspace_id: str) -> T | None:
        """Remove and return a handle (None if absent)."""
        ...

    def __contains__(self, workspace_id: object) -> bool: ...

    def clear(self) -> None:
        """Forget every handle (simulates a process restart)."""
        ...


class InMemoryHandleRegistry(Generic[T]):
    """Default dict-backed HandleRegistry."""

    def __init__(self) -> None:
        self._handles: dict[str, T] = {}

    def get(self, workspace_id: str) -> T | None:
        return self._handles.get(workspace_id)

    def put(self, workspace_id: str, handle: T) -> None:
        self._handles[workspace_id] = handle

    def pop(self, workspace_id: str) -> T | None:
        return self._handles.pop(workspace_id, None)

    def __contains__(self, workspace_id: object) -> bool:
        return workspace_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def clear(self) -> None:
        self._handles.clear()
