"""
Vibeforge CLI - Build command.

Runs the whole plan -> approve -> build flow for one request against a
fresh sandbox, keeping session state in memory.
"""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import typer
from rich.panel import Panel

from vibeforge.core.agent import (
    OrchestrationContext,
    Plan,
    SandboxAgentBackend,
    StreamEvent,
    StreamEventType,
    approve_plan,
    create_orchestrator,
    load_plan,
    reject_plan,
)
from vibeforge.core.config import VibeforgeConfig
from vibeforge.core.sandbox.errors import SandboxError
from vibeforge.core.sandbox.registry import ProviderRegistry
from vibeforge.core.services import (
    GitHubClient,
    PullRequestError,
    PullRequestService,
    SandboxService,
    SandboxServiceError,
)
from vibeforge.core.store import Approval, GitConnection, InMemoryStore, Repository, Session

from . import common
from .common import console

logger = logging.getLogger(__name__)

CLI_USER = "cli"


@dataclass
class StreamOutcome:
    """What a rendered phase stream ended with."""

    failed: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


def repo_name(repo_url: str) -> str:
    """Repository name from its URL ("https://host/acme/web.git" -> "web")."""
    path = urlsplit(repo_url).path.rstrip("/")
    name = path.rsplit("/", 1)[-1]
    return name.removesuffix(".git") or repo_url


def render_event(event: StreamEvent) -> None:
    """Print one stream event for a human."""
    content = event.content
    if event.type == StreamEventType.PHASE_CHANGE:
        console.print(f"[bold cyan]>> {content}[/bold cyan]")
    elif event.type in (StreamEventType.THINKING, StreamEventType.TOOL_USE):
        console.print(content, style="dim", markup=False, highlight=False)
    elif event.type == StreamEventType.MESSAGE:
        console.print(content, markup=False, highlight=False)
    elif event.type == StreamEventType.PROGRESS:
        console.print(f"  - {content}", markup=False, highlight=False)
    elif event.type == StreamEventType.FILE_CHANGE:
        console.print(f"  * {content}", style="green", markup=False, highlight=False)
    elif event.type == StreamEventType.CHECKPOINT:
        label = (event.metadata or {}).get("label", "")
        console.print(f"Checkpoint saved: {label}", style="magenta", markup=False, highlight=False)
    elif event.type == StreamEventType.PREVIEW_URL:
        console.print(f"Preview: {content}", style="blue", markup=False, highlight=False)
    elif event.type == StreamEventType.ERROR:
        console.print(f"Error: {content}", style="red", markup=False, highlight=False)


async def consume(stream: AsyncIterator[StreamEvent], as_json: bool) -> StreamOutcome:
    """Render a phase stream and report how it ended."""
    outcome = StreamOutcome()
    async for event in stream:
        if as_json:
            print(event.to_wire(), flush=True)
        elif event.type != StreamEventType.PLAN:
            render_event(event)
        if event.type == StreamEventType.ERROR:
            outcome.failed = True
        elif event.type == StreamEventType.PHASE_CHANGE and event.metadata:
            outcome.metadata = dict(event.metadata)
    return outcome


def show_plan(plan: Plan) -> None:
    lines = [f"[bold]{plan.summary}[/bold]", ""]
    for i, change in enumerate(plan.changes, start=1):
        files = f" [dim]({', '.join(change.files)})[/dim]" if change.files else ""
        lines.append(f"{i}. {change.description}{files}")
    if plan.considerations:
        lines.extend(["", f"[yellow]{plan.considerations}[/yellow]"])
    console.print(Panel("\n".join(lines), title="Proposed plan", border_style="cyan"))


@dataclass
class BuildRequest:
    request: str
    repo_url: str
    branch: str | None
    git_token: str | None
    provider: str
    auto_approve: bool
    keep: bool
    as_json: bool
    open_pr: bool = False


async def open_pull_request(store: InMemoryStore, service: SandboxService, session_id: str, as_json: bool) -> bool:
    """Publish a finished build as a pull request."""
    publisher = PullRequestService(store=store, sandboxes=service, github=GitHubClient)
    try:
        pr = await publisher.open_pull_request(session_id, user_id=CLI_USER)
    except (PullRequestError, SandboxError, SandboxServiceError) as e:
        console.print(f"[red]Could not open a pull request: {e}[/red]")
        return False
    if as_json:
        print(json.dumps({"type": "pull_request", "url": pr.url, "number": pr.number}), flush=True)
    else:
        console.print(f"[green]Pull request opened:[/green] {pr.url}")
    return True


async def run_build(config: VibeforgeConfig, registry: ProviderRegistry, req: BuildRequest) -> bool:
    """
    Plan, approve and build one request.

    Returns:
        True if the flow finished without an error (a rejected plan counts)
    """
    store = InMemoryStore()
    repository = await store.insert(
        Repository(name=repo_name(req.repo_url), url=req.repo_url, default_branch=req.branch or "main")
    )
    if req.git_token:
        await store.insert(
            GitConnection(user_id=CLI_USER, provider=repository.provider, access_token=req.git_token)
        )
    session = await store.insert(
        Session(repository_id=repository.id, user_id=CLI_USER, branch=req.branch, title=req.request[:80])
    )

    service = SandboxService(store=store, registry=registry)
    if not req.as_json:
        console.print("[bold]Preparing sandbox...[/bold]")
    try:
        sandbox = (await service.ensure_sandbox(session.id, user_id=CLI_USER, provider=req.provider)).sandbox
    except (SandboxError, SandboxServiceError) as e:
        console.print(f"[red]Could not prepare a sandbox: {e}[/red]")
        return False

    try:
        provider = service.provider_for(sandbox)
        orchestrator = await create_orchestrator(
            OrchestrationContext(
                session_id=session.id,
                repository_id=repository.id,
                sandbox_id=sandbox.id,
                workspace_id=sandbox.workspace_id,
                user_id=CLI_USER,
            ),
            store=store,
            backend=SandboxAgentBackend(provider),
            provider=provider,
            sandboxes=service,
            config=config,
        )

        planned = await consume(orchestrator.generate_plan(req.request), req.as_json)
        approval_id = planned.metadata.get("approval_id")
        if planned.failed or not approval_id:
            return False

        approval = await store.get(Approval, approval_id)
        if approval is None:
            return False
        plan = await load_plan(store, approval)
        if not req.as_json:
            show_plan(plan)

        if not (req.auto_approve or typer.confirm("Build this plan?", default=True)):
            await reject_plan(store, session.id, approval_id, reviewer_id=CLI_USER)
            console.print("[yellow]Plan rejected[/yellow]")
            return True

        await approve_plan(store, session.id, approval_id, reviewer_id=CLI_USER)
        built = await consume(orchestrator.execute_plan(plan), req.as_json)
        if built.failed:
            return False
        if req.open_pr:
            return await open_pull_request(store, service, session.id, req.as_json)
        return True
    finally:
        if req.keep:
            console.print(f"[dim]Sandbox kept: {sandbox.workspace_id} ({sandbox.provider.value})[/dim]")
        else:
            try:
                await service.delete_sandbox(sandbox.id)
            except SandboxError as e:
                logger.warning("Could not delete sandbox %s: %s", sandbox.workspace_id, e)
                console.print(f"[yellow]Could not delete sandbox {sandbox.workspace_id}: {e}[/yellow]")


def build(
    ctx: typer.Context,
    request: str = typer.Argument(..., help="What to build, in plain language"),
    repo_url: str = typer.Option(..., "--repo-url", "-r", help="Repository URL to clone"),
    branch: str | None = typer.Option(None, "--branch", "-b", help="Branch to work on"),
    git_token: str | None = typer.Option(
        None,
        "--git-token",
        envvar="GIT_TOKEN",
        help="Access token for private repositories",
    ),
    provider: str | None = typer.Option(None, "--provider", "-p", help="Sandbox provider"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Approve the plan without asking"),
    keep: bool = typer.Option(False, "--keep", help="Keep the sandbox after the build"),
    as_json: bool = typer.Option(False, "--json", help="Print raw stream events as JSON lines"),
    pr: bool = typer.Option(False, "--pr", help="Open a pull request with the changes after the build"),
) -> None:
    """
    Plan and build a feature in a fresh sandbox.

    The agent first proposes a plan. Nothing is changed until the plan is
    approved; rejecting it ends the run.

    Examples:
        vibeforge build "add dark mode" --repo-url https://github.com/acme/web
        vibeforge build "add a contact form" -r https://github.com/acme/web -y --keep
        vibeforge build "fix the footer" -r https://github.com/acme/web -y --pr --git-token $GIT_TOKEN
    """
    if pr and not git_token:
        console.print("[red]--pr needs a git token (--git-token or GIT_TOKEN)[/red]")
        raise typer.Exit(1)
    config, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    req = BuildRequest(
        request=request,
        repo_url=repo_url,
        branch=branch,
        git_token=git_token,
        provider=sandbox_provider.type.value,
        auto_approve=yes,
        keep=keep,
        as_json=as_json,
        open_pr=pr,
    )
    if not common.run_async(run_build, config, registry, req):
        raise typer.Exit(1)
