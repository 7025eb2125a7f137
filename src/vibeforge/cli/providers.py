"""
Vibeforge CLI - Provider discovery.
"""

import typer
from rich.table import Table

from . import common
from .common import console


def _flag(value: bool) -> str:
    return "[green]yes[/green]" if value else "[dim]no[/dim]"


def providers(ctx: typer.Context) -> None:
    """
    List sandbox providers and what they support.

    A provider is available when its credentials are set in the
    environment (or a .env file).
    """
    _, registry = common.load_registry()

    table = Table(title="Sandbox providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Available")
    table.add_column("Enabled")
    table.add_column("Pause/resume")
    table.add_column("Checkpoints")
    table.add_column("GPU")
    table.add_column("Preview")

    for info in registry.info():
        name = f"{info.name} ({info.type.value})"
        if info.is_default:
            name += " [bold]*[/bold]"
        caps = info.capabilities
        table.add_row(
            name,
            _flag(info.available),
            _flag(info.enabled),
            _flag(caps.pause_resume),
            _flag(caps.checkpoints),
            _flag(caps.gpu),
            "tunnel required" if caps.preview_tunnel_required else "direct",
        )

    console.print(table)
    console.print("[dim]* default provider[/dim]")
