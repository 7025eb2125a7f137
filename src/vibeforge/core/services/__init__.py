"""
Service layer.

Services wrap the record store and the provider registry behind typed
async APIs that the orchestrator and the CLI call.
"""

from .checkpoints import CheckpointNotFound, CheckpointService
from .github import GitHubClient, GitHubError, PullRequest
from .pull_requests import PullRequestError, PullRequestRefused, PullRequestResult, PullRequestService
from .sandbox import (
    EnsureSandboxResult,
    RepositoryNotFound,
    SandboxNotFound,
    SandboxService,
    SandboxServiceError,
    SessionNotFound,
)

__all__ = [
    "CheckpointNotFound",
    "CheckpointService",
    "EnsureSandboxResult",
    "GitHubClient",
    "GitHubError",
    "PullRequest",
    "PullRequestError",
    "PullRequestRefused",
    "PullRequestResult",
    "PullRequestService",
    "RepositoryNotFound",
    "SandboxNotFound",
    "SandboxService",
    "SandboxServiceError",
    "SessionNotFound",
]
