"""Orchestration errors."""


class OrchestratorError(Exception):
    """Base exception for orchestration errors."""


class PlanParseError(OrchestratorError):
    """Agent output did not contain a valid plan."""


class AgentBackendError(OrchestratorError):
    """The agent backend reported a failure."""


class PhaseTimeout(OrchestratorError):
    """The agent went silent for longer than the phase deadline."""

    def __init__(self, phase: str, seconds: float) -> None:
        self.phase = phase
        self.seconds = seconds
        super().__init__(f"{phase} timed out after {seconds:g}s without agent output")


class ApprovalError(OrchestratorError):
    """Base exception for approval errors."""


class ApprovalNotFound(ApprovalError):
    def __init__(self, approval_id: str) -> None:
        self.approval_id = approval_id
        super().__init__(f"Approval not found: {approval_id}")


class ApprovalConflict(ApprovalError):
    """
    The approval cannot move to the requested state.

    Raised for a second pending approval in a session and for deciding an
    approval that already has the opposite outcome.
    """
