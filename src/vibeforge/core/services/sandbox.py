"""
Sandbox service: map sessions to running remote workspaces.

The service owns the Session/Repository -> Sandbox mapping. It reuses one
sandbox per repository, creates and bootstraps a workspace on first use,
and brings existing workspaces back to the running state.

Usage:
    >>> service = SandboxService(store=store, registry=registry)
    >>> result = await service.ensure_sandbox(session_id, user_id="u1")
    >>> await service.ensure_running(result.sandbox.id, result.sandbox.workspace_id)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from vibeforge.core.sandbox.errors import (
    SandboxError,
    SandboxExpired,
    SandboxStartError,
    UnsupportedOperation,
    is_already_running_error,
)
from vibeforge.core.sandbox.models import CreateWorkspaceOptions, ProviderType, WorkspaceStatus
from vibeforge.core.sandbox.provider import SandboxProvider
from vibeforge.core.sandbox.registry import ProviderRegistry
from vibeforge.core.store.models import GitConnection, Repository, Sandbox, Session, utcnow
from vibeforge.core.store.protocol import RecordStore

logger = logging.getLogger(__name__)


# ============================================================================
# Typed exceptions
# ============================================================================


class SandboxServiceError(Exception):
    """Base exception for SandboxService errors."""


class SessionNotFound(SandboxServiceError):
    """The session id does not exist."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class RepositoryNotFound(SandboxServiceError):
    """The session's repository does not exist."""

    def __init__(self, repository_id: str) -> None:
        self.repository_id = repository_id
        super().__init__(f"Repository not found: {repository_id}")


class SandboxNotFound(SandboxServiceError):
    """The sandbox record does not exist."""

    def __init__(self, sandbox_id: str) -> None:
        self.sandbox_id = sandbox_id
        super().__init__(f"Sandbox not found: {sandbox_id}")


# ============================================================================
# Service outputs
# ============================================================================


@dataclass(frozen=True)
class EnsureSandboxResult:
    """
    Outcome of ensure_sandbox.

    Attributes:
        sandbox: The sandbox record linked to the session.
        created: True when a new remote workspace was just bootstrapped.
    """

    sandbox: Sandbox
    created: bool = False


# ============================================================================
# SandboxService
# ============================================================================


class SandboxService:
    """
    Get-or-create and lifecycle operations for session sandboxes.

    ensure_sandbox calls for the same repository are serialised with a
    process-local lock, so concurrent callers in one process share one
    sandbox. Callers in different processes are not coordinated.
    """

    def __init__(self, *, store: RecordStore, registry: ProviderRegistry) -> None:
        self._store = store
        self._registry = registry
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, repository_id: str) -> asyncio.Lock:
        lock = self._locks.get(repository_id)
        if lock is None:
            lock = self._locks[repository_id] = asyncio.Lock()
        return lock

    def _provider(self, provider_type: ProviderType | str | None) -> SandboxProvider:
        if provider_type is None:
            return self._registry.get_default()
        return self._registry.get(provider_type)

    async def _sandbox(self, sandbox_id: str) -> Sandbox:
        sandbox = await self._store.get(Sandbox, sandbox_id)
        if sandbox is None:
            raise SandboxNotFound(sandbox_id)
        return sandbox

    async def ensure_sandbox(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        provider: ProviderType | str | None = None,
    ) -> EnsureSandboxResult:
        """
        Return the sandbox for a session, creating one when needed.

        In priority order:
        1. The sandbox the session already references (no provider calls).
        2. Any sandbox of the session's repository, linked to the session.
        3. A newly created workspace, persisted and linked.

        Args:
            session_id: Session to resolve
            user_id: User whose git credential is used for cloning
            provider: Provider for a new workspace (registry default if None)

        Returns:
            EnsureSandboxResult with created=True for a new workspace

        Raises:
            SessionNotFound: If the session does not exist
            RepositoryNotFound: If the session's repository does not exist
            RegistryError: If the provider cannot be used
            ProvisioningError: If the workspace could not be created
        """
        session = await self._store.get(Session, session_id)
        if session is None:
            raise SessionNotFound(session_id)

        existing = await self._linked_sandbox(session)
        if existing is not None:
            return EnsureSandboxResult(sandbox=existing)

        async with self._lock_for(session.repository_id):
            # Another caller may have finished while we waited
            session = await self._store.get(Session, session_id)
            if session is None:
                raise SessionNotFound(session_id)
            existing = await self._linked_sandbox(session)
            if existing is not None:
                return EnsureSandboxResult(sandbox=existing)

            shared = await self._store.find_one(Sandbox, repository_id=session.repository_id)
            if shared is not None:
                await self._store.update(Session, session_id, sandbox_id=shared.id)
                logger.info("Linked session %s to repository sandbox %s", session_id, shared.id)
                return EnsureSandboxResult(sandbox=shared)

            repository = await self._store.get(Repository, session.repository_id)
            if repository is None:
                raise RepositoryNotFound(session.repository_id)

            sandbox = await self._create(repository, session, user_id, provider)
            await self._store.update(Session, session_id, sandbox_id=sandbox.id)
            return EnsureSandboxResult(sandbox=sandbox, created=True)

    async def _linked_sandbox(self, session: Session) -> Optional[Sandbox]:
        if not session.sandbox_id:
            return None
        sandbox = await self._store.get(Sandbox, session.sandbox_id)
        if sandbox is not None and sandbox.workspace_id:
            return sandbox
        return None

    async def _git_token(self, repository: Repository, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        connection = await self._store.find_one(
            GitConnection, user_id=user_id, provider=repository.provider
        )
        if connection is None:
            logger.info("No %s connection for user %s; cloning anonymously", repository.provider, user_id)
            return None
        return connection.access_token

    async def _create(
        self,
        repository: Repository,
        session: Session,
        user_id: Optional[str],
        provider_type: ProviderType | str | None,
    ) -> Sandbox:
        provider = self._provider(provider_type)
        options = CreateWorkspaceOptions(
            repo_url=repository.url,
            branch=session.branch or repository.default_branch,
            git_token=await self._git_token(repository, user_id or session.user_id),
        )
        logger.info("Creating %s workspace for repository %s", provider.name, repository.id)
        workspace = await provider.create_workspace(options)
        sandbox = Sandbox(
            repository_id=repository.id,
            provider=provider.type,
            workspace_id=workspace.id,
            status=workspace.status,
            preview_url=workspace.preview_url,
            context_id=workspace.context_id,
        )
        return await self._store.insert(sandbox)

    async def ensure_running(
        self,
        sandbox_id: str,
        workspace_id: str,
        provider_type: ProviderType | str | None = None,
    ) -> Sandbox:
        """
        Bring a workspace to running, always by resuming.

        Resume is attempted without checking status first; an "already
        running" answer counts as success.

        Raises:
            SandboxExpired: If the provider cannot resume the workspace
            SandboxStartError: If resuming failed for any other reason
        """
        if provider_type is None:
            provider_type = (await self._sandbox(sandbox_id)).provider
        provider = self._provider(provider_type)

        preview_url: Optional[str] = None
        context_id: Optional[str] = None
        try:
            workspace = await provider.resume_workspace(workspace_id)
            preview_url = workspace.preview_url or None
            context_id = workspace.context_id
        except UnsupportedOperation as e:
            logger.warning("Workspace %s cannot be resumed: %s", workspace_id, e)
            raise SandboxExpired(sandbox_id) from e
        except SandboxError as e:
            if not is_already_running_error(e):
                raise SandboxStartError(f"Failed to start sandbox {sandbox_id}: {e}") from e
            logger.debug("Workspace %s already running", workspace_id)

        changes: dict[str, object] = {"status": WorkspaceStatus.RUNNING, "last_active_at": utcnow()}
        if preview_url:
            changes["preview_url"] = preview_url
        if context_id:
            changes["context_id"] = context_id
        return await self._store.update(Sandbox, sandbox_id, **changes)

    async def pause_sandbox(self, sandbox_id: str) -> Sandbox:
        """Pause a sandbox's workspace and record it as paused."""
        sandbox = await self._sandbox(sandbox_id)
        provider = self._provider(sandbox.provider)
        await provider.pause_workspace(sandbox.workspace_id)
        status = WorkspaceStatus.PAUSED if provider.capabilities.pause_resume else sandbox.status
        return await self._store.update(Sandbox, sandbox_id, status=status)

    async def delete_sandbox(self, sandbox_id: str) -> None:
        """Delete the remote workspace, the record, and unlink sessions."""
        sandbox = await self._sandbox(sandbox_id)
        provider = self._provider(sandbox.provider)
        await provider.delete_workspace(sandbox.workspace_id)
        async with self._store.transaction() as tx:
            for session in await tx.find(Session, sandbox_id=sandbox_id):
                await tx.update(Session, session.id, sandbox_id=None)
            await tx.delete(Sandbox, sandbox_id)
        logger.info("Deleted sandbox %s", sandbox_id)

    async def touch_sandbox(self, sandbox_id: str) -> Sandbox:
        """Record activity on a sandbox."""
        return await self._store.update(Sandbox, sandbox_id, last_active_at=utcnow())

    async def get_preview_url(self, sandbox_id: str, port: Optional[int] = None) -> str:
        """Resolve the preview URL from the provider and remember it."""
        sandbox = await self._sandbox(sandbox_id)
        provider = self._provider(sandbox.provider)
        url = await provider.get_preview_url(sandbox.workspace_id, port)
        if url != sandbox.preview_url:
            await self._store.update(Sandbox, sandbox_id, preview_url=url)
        return url

    def provider_for(self, sandbox: Sandbox) -> SandboxProvider:
        """Provider instance that owns a sandbox's workspace."""
        return self._provider(sandbox.provider)
