"""
Vibeforge CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer

from vibeforge import __version__
from vibeforge.cli import build, providers, sandbox
from vibeforge.cli.common import console
from vibeforge.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_KEY = "Key Commands"
PANEL_SANDBOX = "Manage Sandboxes"

app = typer.Typer(
    name="vibeforge",
    help="Plan and build features with an AI agent inside remote sandboxes",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"vibeforge {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """
    Vibeforge - describe a feature, review the plan, watch it get built.

    Quick Start:
        1. export DAYTONA_API_KEY=...     # or E2B_API_KEY, MODAL_TOKEN_ID/SECRET
        2. export ANTHROPIC_API_KEY=...
        3. vibeforge providers            # Check what is available
        4. vibeforge build "add dark mode" --repo-url https://github.com/acme/web

    Sandboxes:
        vibeforge sandbox create URL      # Create a sandbox from a repository
        vibeforge sandbox exec ID "ls"    # Run a command in it
        vibeforge sandbox delete ID       # Clean up
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()

    if debug:
        logging.basicConfig(level=logging.DEBUG)

    ctx.obj = {"debug": debug}


# =============================================================================
# Key Commands
# =============================================================================

app.command(name="build", rich_help_panel=PANEL_KEY)(build.build)
app.command(name="providers", rich_help_panel=PANEL_KEY)(providers.providers)


# =============================================================================
# Manage Sandboxes
# =============================================================================

app.add_typer(sandbox.app, name="sandbox", rich_help_panel=PANEL_SANDBOX)


__all__ = ["app", "main"]
