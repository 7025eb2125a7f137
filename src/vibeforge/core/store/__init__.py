"""
Record persistence.

Pydantic record models plus the RecordStore protocol and its in-memory
implementation.
"""

from .memory import InMemoryStore
from .models import (
    Approval,
    ApprovalStatus,
    Checkpoint,
    CheckpointType,
    GitConnection,
    Message,
    MessageRole,
    Repository,
    RepositoryContext,
    Sandbox,
    Session,
    SessionStatus,
    SkillRecord,
    generate_id,
)
from .protocol import DuplicateRecord, RecordNotFound, RecordStore, StoreError

__all__ = [
    # Models
    "Approval",
    "ApprovalStatus",
    "Checkpoint",
    "CheckpointType",
    "GitConnection",
    "Message",
    "MessageRole",
    "Repository",
    "RepositoryContext",
    "Sandbox",
    "Session",
    "SessionStatus",
    "SkillRecord",
    "generate_id",
    # Store
    "DuplicateRecord",
    "InMemoryStore",
    "RecordNotFound",
    "RecordStore",
    "StoreError",
]
