"""
Pull request service: publish a finished build as a GitHub pull request.

Once a session is ready its workspace holds the agent's uncommitted
changes. Opening a pull request commits them on a head branch inside the
sandbox, pushes that branch with the user's git token, and opens the pull
request through the GitHub API.

Usage:
    >>> service = PullRequestService(store=store, sandboxes=sandboxes)
    >>> pr = await service.open_pull_request(session_id, user_id="u1")
    >>> pr.url
    'https://github.com/acme/web/pull/7'
"""

from __future__ import annotations

import json
import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from vibeforge.core.sandbox.bootstrap import build_clone_url, sanitize_branch
from vibeforge.core.sandbox.errors import ProvisioningError
from vibeforge.core.sandbox.models import CommandResult
from vibeforge.core.sandbox.provider import SandboxProvider
from vibeforge.core.store.models import (
    GitConnection,
    Message,
    MessageRole,
    Repository,
    Session,
    SessionStatus,
)
from vibeforge.core.store.protocol import RecordStore

from .github import GitHubClient, GitHubError, parse_repo
from .sandbox import RepositoryNotFound, SandboxService, SessionNotFound

logger = logging.getLogger(__name__)

COMMIT_AUTHOR_NAME = "vibeforge"
COMMIT_AUTHOR_EMAIL = "vibeforge@users.noreply.github.com"
HEAD_BRANCH_PREFIX = "vibeforge/session-"


class PullRequestError(Exception):
    """Opening a pull request failed."""


class PullRequestRefused(PullRequestError):
    """The session cannot be published in its current state."""


@dataclass(frozen=True)
class PullRequestResult:
    url: str
    number: int
    title: str
    head: str
    base: str


def build_description(plan: Optional[dict[str, Any]], session_id: str) -> str:
    """Markdown pull request body from a stored plan."""
    plan = plan or {}
    sections = ["## Summary", plan.get("summary") or "Changes made with vibeforge", ""]
    changes = [c.get("description") for c in plan.get("changes") or [] if isinstance(c, dict)]
    changes = [c for c in changes if c]
    if changes:
        sections.append("## Changes")
        sections.extend(f"- {change}" for change in changes)
        sections.append("")
    sections.extend(["---", f"*Generated by vibeforge session `{session_id}`*"])
    return "\n".join(sections)


def head_branch(session: Session, base: str) -> str:
    """
    Branch the pull request is opened from.

    The session's own branch when it differs from the base, otherwise a
    per-session branch.

    Raises:
        PullRequestError: If the branch name is unusable
    """
    if session.branch and session.branch != base:
        branch = sanitize_branch(session.branch)
    else:
        branch = f"{HEAD_BRANCH_PREFIX}{session.id}"
    if not branch or branch.startswith("-"):
        raise PullRequestError(f"Invalid branch name: {session.branch!r}")
    return branch


class PullRequestService:
    """Publishes ready sessions as pull requests."""

    def __init__(
        self,
        *,
        store: RecordStore,
        sandboxes: SandboxService,
        github: Callable[[str], GitHubClient] = GitHubClient,
    ) -> None:
        """
        Args:
            store: Record store
            sandboxes: Service resolving the session's workspace
            github: Factory building an API client from an access token
        """
        self._store = store
        self._sandboxes = sandboxes
        self._github = github

    async def open_pull_request(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PullRequestResult:
        """
        Commit the session's changes, push them and open a pull request.

        Args:
            session_id: A session in the ready status
            user_id: User whose git connection is used (session owner if None)
            title: Pull request title (plan summary, then session title, if None)
            description: Pull request body (built from the plan if None)

        Returns:
            The opened pull request

        Raises:
            SessionNotFound: If the session does not exist
            RepositoryNotFound: If the session's repository does not exist
            PullRequestRefused: If the session is not ready, the user has no
                git connection, or there is nothing to commit
            PullRequestError: If a git step or the API call fails
            SandboxError: If the workspace cannot be brought up
        """
        session = await self._store.get(Session, session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status != SessionStatus.READY:
            raise PullRequestRefused(
                f"Cannot create a pull request in {session.status.value} status. Build must complete first."
            )
        repository = await self._store.get(Repository, session.repository_id)
        if repository is None:
            raise RepositoryNotFound(session.repository_id)

        try:
            owner, repo = parse_repo(repository.url)
        except GitHubError as e:
            raise PullRequestRefused(str(e)) from e

        user_id = user_id or session.user_id
        connection = None
        if user_id:
            connection = await self._store.find_one(
                GitConnection, user_id=user_id, provider=repository.provider
            )
        if connection is None:
            raise PullRequestRefused(
                f"No {repository.provider} connection found. Please connect your account."
            )

        sandbox = (await self._sandboxes.ensure_sandbox(session_id, user_id=user_id)).sandbox
        sandbox = await self._sandboxes.ensure_running(sandbox.id, sandbox.workspace_id)
        provider = self._sandboxes.provider_for(sandbox)

        plan = await self._latest_plan(session_id)
        base = repository.default_branch or "main"
        head = head_branch(session, base)
        title = title or (plan or {}).get("summary") or session.title or f"vibeforge session {session_id}"
        body = description or build_description(plan, session_id)

        try:
            push_url = build_clone_url(repository.url, connection.access_token)
        except ProvisioningError as e:
            raise PullRequestRefused(str(e)) from e

        git = _Git(provider, sandbox.workspace_id, connection.access_token)
        await git.run("checkout", f"git checkout -B {shlex.quote(head)}")
        await git.run("add", "git add -A")
        status = await git.run("status", "git status --porcelain")
        if not status.stdout.strip():
            raise PullRequestRefused("No changes to commit")
        message = f"{title}\n\nGenerated by vibeforge session: {session_id}"
        await git.run(
            "commit",
            f"git -c user.name={shlex.quote(COMMIT_AUTHOR_NAME)} "
            f"-c user.email={shlex.quote(COMMIT_AUTHOR_EMAIL)} "
            f"commit -m {shlex.quote(message)}",
        )
        await git.run("push", f"git push {shlex.quote(push_url)} {shlex.quote(head)}")

        client = self._github(connection.access_token)
        try:
            pr = await client.create_pull_request(owner, repo, title=title, body=body, head=head, base=base)
        except GitHubError as e:
            raise PullRequestError(f"Failed to create pull request: {e}") from e

        await self._store.insert(
            Message(
                session_id=session_id,
                role=MessageRole.SYSTEM,
                content=f"Pull request created: {pr.html_url}",
                metadata={"pr_url": pr.html_url, "pr_number": pr.number},
            )
        )
        return PullRequestResult(url=pr.html_url, number=pr.number, title=title, head=head, base=base)

    async def _latest_plan(self, session_id: str) -> Optional[dict[str, Any]]:
        messages = [
            m for m in await self._store.find(Message, session_id=session_id) if m.metadata.get("type") == "plan"
        ]
        if not messages:
            return None
        latest = sorted(messages, key=lambda m: m.created_at)[-1]
        try:
            plan = json.loads(latest.content)
        except ValueError:
            logger.warning("Plan message %s is not valid JSON", latest.id)
            return None
        return plan if isinstance(plan, dict) else None


class _Git:
    """Runs git commands in a workspace, keeping the token out of errors."""

    def __init__(self, provider: SandboxProvider, workspace_id: str, token: str) -> None:
        self._provider = provider
        self._workspace_id = workspace_id
        self._token = token
        self._cwd = getattr(provider, "workspace_dir", "/workspace/repo")

    async def run(self, step: str, command: str) -> CommandResult:
        result = await self._provider.execute_command(self._workspace_id, command, cwd=self._cwd)
        if not result.ok:
            detail = (result.stderr or result.stdout).strip().replace(self._token, "***")
            raise PullRequestError(f"git {step} failed (exit {result.exit_code}): {detail}")
        return result
