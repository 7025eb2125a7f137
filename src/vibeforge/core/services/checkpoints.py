"""
Checkpoint service.

Creates, lists and restores workspace checkpoints for a session. The
provider's checkpoint id is stored as-is and handed back unchanged on
restore.

Restore policy: restoring never runs while an agent phase is active
(planning or building) and never touches approvals. With keep_status the
session is left as it is; with reset_to_idle it returns to idle so the
user starts a fresh request from the restored code.
"""

from __future__ import annotations

import logging
from typing import Optional

from vibeforge.core.config.models import RestorePolicy
from vibeforge.core.sandbox.errors import CheckpointError, UnsupportedOperation
from vibeforge.core.sandbox.provider import as_checkpoint_provider
from vibeforge.core.store.models import (
    Checkpoint,
    CheckpointType,
    Sandbox,
    Session,
    SessionStatus,
)
from vibeforge.core.store.protocol import RecordStore

from .sandbox import SandboxNotFound, SandboxService, SessionNotFound

logger = logging.getLogger(__name__)


class CheckpointNotFound(CheckpointError):
    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class CheckpointService:
    """Checkpoint operations on top of SandboxService."""

    def __init__(
        self,
        *,
        store: RecordStore,
        sandboxes: SandboxService,
        restore_policy: RestorePolicy = RestorePolicy.KEEP_STATUS,
    ) -> None:
        self._store = store
        self._sandboxes = sandboxes
        self._restore_policy = restore_policy

    async def create_checkpoint(
        self,
        session_id: str,
        label: str,
        *,
        type: CheckpointType = CheckpointType.MANUAL,
    ) -> Checkpoint:
        """
        Snapshot the session's workspace and record it.

        Raises:
            SessionNotFound: If the session does not exist
            CheckpointError: If the session has no sandbox or the snapshot fails
            UnsupportedOperation: If the provider cannot take checkpoints
        """
        session = await self._store.get(Session, session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if not session.sandbox_id:
            raise CheckpointError(f"Session {session_id} has no sandbox")

        sandbox = await self._store.get(Sandbox, session.sandbox_id)
        if sandbox is None:
            raise SandboxNotFound(session.sandbox_id)
        provider = self._sandboxes.provider_for(sandbox)
        checkpoints = as_checkpoint_provider(provider)
        if checkpoints is None:
            raise UnsupportedOperation(provider.name, "checkpoints")

        provider_checkpoint_id = await checkpoints.create_checkpoint(sandbox.workspace_id, label)
        record = Checkpoint(
            session_id=session_id,
            sandbox_id=sandbox.id,
            label=label,
            type=type,
            provider_checkpoint_id=provider_checkpoint_id,
        )
        logger.info("Checkpoint %s created for session %s", record.id, session_id)
        return await self._store.insert(record)

    async def list_checkpoints(self, session_id: str) -> list[Checkpoint]:
        """Checkpoints of a session, newest first."""
        checkpoints = await self._store.find(Checkpoint, session_id=session_id)
        return sorted(checkpoints, key=lambda c: c.created_at, reverse=True)

    async def restore_checkpoint(
        self,
        checkpoint_id: str,
        policy: Optional[RestorePolicy] = None,
    ) -> Session:
        """
        Return a session's workspace to a checkpoint.

        Args:
            checkpoint_id: Checkpoint record id
            policy: Override of the configured restore policy

        Returns:
            The session after the policy was applied

        Raises:
            CheckpointNotFound: If the record does not exist
            CheckpointError: If a phase is running or the provider fails
            UnsupportedOperation: If the provider cannot restore checkpoints
        """
        checkpoint = await self._store.get(Checkpoint, checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFound(checkpoint_id)
        session = await self._store.get(Session, checkpoint.session_id)
        if session is None:
            raise SessionNotFound(checkpoint.session_id)
        if session.status.is_active:
            raise CheckpointError(
                f"Cannot restore while session {session.id} is {session.status.value}"
            )

        sandbox_id = checkpoint.sandbox_id or session.sandbox_id
        if not sandbox_id:
            raise CheckpointError(f"Checkpoint {checkpoint_id} has no sandbox")
        sandbox = await self._store.get(Sandbox, sandbox_id)
        if sandbox is None:
            raise SandboxNotFound(sandbox_id)
        provider = self._sandboxes.provider_for(sandbox)
        checkpoints = as_checkpoint_provider(provider)
        if checkpoints is None:
            raise UnsupportedOperation(provider.name, "checkpoints")

        await checkpoints.restore_checkpoint(sandbox.workspace_id, checkpoint.provider_checkpoint_id)
        logger.info("Restored checkpoint %s on sandbox %s", checkpoint_id, sandbox.id)

        if (policy or self._restore_policy) == RestorePolicy.RESET_TO_IDLE:
            return await self._store.update(Session, session.id, status=SessionStatus.IDLE)
        return session
