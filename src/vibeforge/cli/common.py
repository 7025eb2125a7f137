"""Helpers shared by the CLI commands."""

import asyncio
from typing import Any

import typer
from rich.console import Console

from vibeforge.core.config import VibeforgeConfig, load_config
from vibeforge.core.sandbox.provider import SandboxProvider
from vibeforge.core.sandbox.registry import ProviderRegistry, RegistryError

console = Console()


def run_async(func: Any, *args: Any) -> Any:
    """Run an async function from Typer's sync command context."""
    return asyncio.run(func(*args))


def build_registry(config: VibeforgeConfig) -> ProviderRegistry:
    """Provider registry used by the commands; replaced in tests."""
    return ProviderRegistry.from_config(config)


def is_debug(ctx: typer.Context) -> bool:
    return bool(ctx.obj.get("debug", False)) if ctx.obj else False


def get_provider(registry: ProviderRegistry, provider: str | None) -> SandboxProvider:
    """
    Resolve a provider or exit with a readable message.

    Raises:
        typer.Exit: If the provider cannot be used
    """
    try:
        return registry.get(provider) if provider else registry.get_default()
    except RegistryError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def load_registry() -> tuple[VibeforgeConfig, ProviderRegistry]:
    config = load_config()
    return config, build_registry(config)
