"""
Agent orchestration.

Runs the plan -> review -> build workflow against an agent backend and
streams typed events to the caller.
"""

from .approvals import (
    approve_plan,
    create_pending_approval,
    latest_approval,
    load_plan,
    pending_approval,
    reject_plan,
)
from .backend import AgentBackend, SandboxAgentBackend
from .errors import (
    AgentBackendError,
    ApprovalConflict,
    ApprovalError,
    ApprovalNotFound,
    OrchestratorError,
    PhaseTimeout,
    PlanParseError,
)
from .models import (
    AgentEvent,
    AgentEventType,
    Phase,
    Plan,
    PlanChange,
    RepoContext,
    StreamEvent,
    StreamEventType,
)
from .orchestrator import AgentOrchestrator, OrchestrationContext, PhaseCancelled, create_orchestrator
from .plan_parser import is_plan_chunk, parse_plan
from .prompts import build_execution_prompt, build_plan_prompt

__all__ = [
    "AgentBackend",
    "AgentBackendError",
    "AgentEvent",
    "AgentEventType",
    "AgentOrchestrator",
    "ApprovalConflict",
    "ApprovalError",
    "ApprovalNotFound",
    "OrchestrationContext",
    "OrchestratorError",
    "Phase",
    "PhaseCancelled",
    "PhaseTimeout",
    "Plan",
    "PlanChange",
    "PlanParseError",
    "RepoContext",
    "SandboxAgentBackend",
    "StreamEvent",
    "StreamEventType",
    "approve_plan",
    "build_execution_prompt",
    "build_plan_prompt",
    "create_orchestrator",
    "create_pending_approval",
    "is_plan_chunk",
    "latest_approval",
    "load_plan",
    "parse_plan",
    "pending_approval",
    "reject_plan",
]
