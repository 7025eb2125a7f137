"""
Persistent record models.

These Pydantic models describe the records vibeforge reads and writes
through a RecordStore: repositories, git credentials, sandboxes, sessions,
messages, plan approvals, checkpoints and custom skills.
"""

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from vibeforge.core.sandbox.models import ProviderType, WorkspaceStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str = "") -> str:
    """
    Generate a short random record id.

    Args:
        prefix: Optional prefix such as "ses" or "apr"

    Returns:
        ``<prefix>_<hex>`` or just the hex part when prefix is empty
    """
    token = secrets.token_hex(8)
    return f"{prefix}_{token}" if prefix else token


class SessionStatus(str, Enum):
    """
    Build session lifecycle.

    idle -> planning -> plan_review -> building -> ready; any active
    state can fall into error. plan_review -> idle on rejection.
    """

    IDLE = "idle"
    PLANNING = "planning"
    PLAN_REVIEW = "plan_review"
    BUILDING = "building"
    REVIEWING = "reviewing"
    READY = "ready"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        """Check if an agent phase is currently running."""
        return self in (SessionStatus.PLANNING, SessionStatus.BUILDING)


class ApprovalStatus(str, Enum):
    """Plan approval state; approved and rejected are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self != ApprovalStatus.PENDING


class CheckpointType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class RepositoryContext(BaseModel):
    """Analysed facts about a repository, used to build agent prompts."""

    tech_stack: list[str] = Field(default_factory=list, description="Detected technologies")
    structure: Optional[str] = Field(default=None, description="Summary of the file layout")
    conventions: list[str] = Field(default_factory=list, description="Coding conventions")
    description: Optional[str] = Field(default=None, description="What the app does")


class Repository(BaseModel):
    """A connected git repository."""

    id: str = Field(default_factory=lambda: generate_id("repo"))
    name: str
    url: str
    provider: str = Field(default="github", description="Git host, matched to GitConnection")
    default_branch: str = "main"
    organization_id: Optional[str] = None
    context: Optional[RepositoryContext] = None
    created_at: datetime = Field(default_factory=utcnow)


class GitConnection(BaseModel):
    """A user's credential for a git host."""

    id: str = Field(default_factory=lambda: generate_id("git"))
    user_id: str
    provider: str = "github"
    access_token: str
    created_at: datetime = Field(default_factory=utcnow)


class Sandbox(BaseModel):
    """Persisted reference to a remote workspace."""

    id: str = Field(default_factory=lambda: generate_id("sbx"))
    repository_id: str
    provider: ProviderType
    workspace_id: str = Field(description="Provider workspace id")
    status: WorkspaceStatus = WorkspaceStatus.RUNNING
    preview_url: str = ""
    context_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """A conversational build session on one repository."""

    id: str = Field(default_factory=lambda: generate_id("ses"))
    repository_id: str
    user_id: Optional[str] = None
    title: Optional[str] = None
    branch: Optional[str] = None
    sandbox_id: Optional[str] = None
    status: SessionStatus = SessionStatus.IDLE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    """One chat message in a session."""

    id: str = Field(default_factory=lambda: generate_id("msg"))
    session_id: str
    role: MessageRole
    content: str
    phase: Optional[str] = Field(default=None, description="Phase the message was produced in")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Approval(BaseModel):
    """Review record for a generated plan."""

    id: str = Field(default_factory=lambda: generate_id("apr"))
    session_id: str
    message_id: str = Field(description="Message holding the plan")
    status: ApprovalStatus = ApprovalStatus.PENDING
    reviewer_id: Optional[str] = None
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    decided_at: Optional[datetime] = None


class Checkpoint(BaseModel):
    """A restorable snapshot of a session's workspace."""

    id: str = Field(default_factory=lambda: generate_id("ckpt"))
    session_id: str
    sandbox_id: Optional[str] = None
    label: str
    type: CheckpointType = CheckpointType.MANUAL
    provider_checkpoint_id: str = Field(description="Opaque id returned by the provider")
    created_at: datetime = Field(default_factory=utcnow)


class SkillRecord(BaseModel):
    """Custom organisation or repository skill."""

    id: str = Field(default_factory=lambda: generate_id("skill"))
    name: str
    slug: str = ""
    description: str = ""
    content: str
    triggers: list[str] = Field(default_factory=list)
    organization_id: Optional[str] = None
    repository_id: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
