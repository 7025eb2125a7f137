"""
Vibeforge CLI - Sandbox commands.

Create and manage remote workspaces directly against a provider.
"""

from typing import NoReturn

import typer
from rich.panel import Panel

from vibeforge.core.sandbox.errors import SandboxError
from vibeforge.core.sandbox.models import CreateWorkspaceOptions, SandboxWorkspace

from . import common
from .common import console

app = typer.Typer(
    name="sandbox",
    help="Manage remote sandboxes",
    no_args_is_help=True,
)

ProviderOption = typer.Option(
    None,
    "--provider",
    "-p",
    help="Provider to use (daytona, e2b, modal); defaults to the configured default",
)


def _fail(ctx: typer.Context, action: str, error: Exception) -> NoReturn:
    console.print(f"[red]Failed to {action}: {error}[/red]")
    if common.is_debug(ctx):
        import traceback

        console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(1)


def _show_workspace(workspace: SandboxWorkspace) -> None:
    lines = [
        f"[bold]ID:[/bold]       {workspace.id}",
        f"[bold]Provider:[/bold] {workspace.provider_type.value}",
        f"[bold]Status:[/bold]   {workspace.status.value}",
    ]
    if workspace.preview_url:
        lines.append(f"[bold]Preview:[/bold]  {workspace.preview_url}")
    note = workspace.metadata.get("preview")
    if note:
        lines.append(f"[dim]{note}[/dim]")
    console.print(Panel("\n".join(lines), title="Sandbox", border_style="cyan"))


@app.command()
def create(
    ctx: typer.Context,
    repo_url: str = typer.Argument(..., help="Repository URL to clone"),
    branch: str | None = typer.Option(None, "--branch", "-b", help="Branch to check out"),
    git_token: str | None = typer.Option(
        None,
        "--git-token",
        envvar="GIT_TOKEN",
        help="Access token for private repositories",
    ),
    provider: str | None = ProviderOption,
) -> None:
    """
    Create a sandbox from a repository.

    Examples:
        vibeforge sandbox create https://github.com/acme/web
        vibeforge sandbox create https://github.com/acme/web -b feature -p e2b
    """
    _, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    options = CreateWorkspaceOptions(repo_url=repo_url, branch=branch, git_token=git_token)

    console.print(f"[bold]Creating {sandbox_provider.name} sandbox...[/bold]")
    try:
        workspace = common.run_async(sandbox_provider.create_workspace, options)
    except SandboxError as e:
        _fail(ctx, "create sandbox", e)
    _show_workspace(workspace)


@app.command(name="exec")
def exec_command(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    command: str = typer.Argument(..., help="Shell command to run"),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory"),
    provider: str | None = ProviderOption,
) -> None:
    """Run a shell command in a sandbox and exit with its exit code."""
    _, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    try:
        result = common.run_async(
            lambda: sandbox_provider.execute_command(workspace_id, command, cwd=cwd)
        )
    except SandboxError as e:
        _fail(ctx, "run command", e)

    if result.stdout:
        console.print(result.stdout, end="", markup=False, highlight=False)
    if result.stderr:
        console.print(result.stderr, style="yellow", end="", markup=False, highlight=False)
    if not result.ok:
        raise typer.Exit(result.exit_code)


@app.command()
def pause(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    provider: str | None = ProviderOption,
) -> None:
    """Pause a sandbox (persistent providers only)."""
    _, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    if not sandbox_provider.capabilities.pause_resume:
        console.print(f"[yellow]{sandbox_provider.name} sandboxes cannot be paused[/yellow]")
        return
    try:
        common.run_async(sandbox_provider.pause_workspace, workspace_id)
    except SandboxError as e:
        _fail(ctx, "pause sandbox", e)
    console.print(f"[green]Paused {workspace_id}[/green]")


@app.command()
def resume(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    provider: str | None = ProviderOption,
) -> None:
    """Resume a paused sandbox."""
    _, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    try:
        workspace = common.run_async(sandbox_provider.resume_workspace, workspace_id)
    except SandboxError as e:
        _fail(ctx, "resume sandbox", e)
    _show_workspace(workspace)


@app.command()
def delete(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    provider: str | None = ProviderOption,
) -> None:
    """Delete a sandbox and everything in it."""
    _, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    if not yes and not typer.confirm(f"Delete sandbox {workspace_id}?"):
        raise typer.Exit(0)
    try:
        common.run_async(sandbox_provider.delete_workspace, workspace_id)
    except SandboxError as e:
        _fail(ctx, "delete sandbox", e)
    console.print(f"[green]Deleted {workspace_id}[/green]")


@app.command()
def preview(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    port: int | None = typer.Option(None, "--port", help="Port to expose"),
    start: bool = typer.Option(False, "--start", help="Start the dev server first"),
    provider: str | None = ProviderOption,
) -> None:
    """Show the preview URL of a sandbox, optionally starting the dev server."""
    _, registry = common.load_registry()
    sandbox_provider = common.get_provider(registry, provider)
    try:
        if start:
            url = common.run_async(lambda: sandbox_provider.start_dev_server(workspace_id, port=port))
        else:
            url = common.run_async(sandbox_provider.get_preview_url, workspace_id, port)
    except SandboxError as e:
        _fail(ctx, "get preview URL", e)
    console.print(url, markup=False, highlight=False)
