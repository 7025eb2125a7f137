"""
Shared implementation for remote sandbox providers.

RemoteSandboxProvider carries the parts of the SandboxProvider contract
that do not depend on a vendor SDK: configuration, credential checks, the
lazy SDK client, the handle cache, dev server candidate selection, and
file listing through ``ls``. Subclasses implement the SDK calls.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from vibeforge.core.config.env import has_env
from vibeforge.core.config.models import VibeforgeConfig

from . import bootstrap
from .errors import NoDevServerFound, ProviderOperationError
from .handles import HandleRegistry, InMemoryHandleRegistry
from .models import CommandResult, FileInfo, ProviderType, SandboxCapabilities

logger = logging.getLogger(__name__)


class RemoteSandboxProvider(ABC):
    """
    Base class for SDK-backed providers.

    Subclasses set the class attributes and implement the SDK-specific
    SandboxProvider methods.
    """

    provider_type: ClassVar[ProviderType]
    display_name: ClassVar[str]
    default_workspace_dir: ClassVar[str] = "/workspace/repo"
    required_env: ClassVar[tuple[str, ...]] = ()
    provider_capabilities: ClassVar[SandboxCapabilities] = SandboxCapabilities()

    def __init__(
        self,
        config: VibeforgeConfig | None = None,
        *,
        sdk: Any = None,
        handles: HandleRegistry[Any] | None = None,
    ) -> None:
        """
        Args:
            config: Loaded configuration (defaults when omitted)
            sdk: SDK entry point override; the real SDK is imported lazily
                on first use when omitted
            handles: Cache of live SDK handles keyed by workspace id
        """
        self._config = config or VibeforgeConfig()
        self._sdk = sdk
        self._handles: HandleRegistry[Any] = handles if handles is not None else InMemoryHandleRegistry()

    @property
    def type(self) -> ProviderType:
        return self.provider_type

    @property
    def name(self) -> str:
        return self.display_name

    @property
    def capabilities(self) -> SandboxCapabilities:
        return self.provider_capabilities

    @property
    def workspace_dir(self) -> str:
        return self._config.sandbox.workspace_dir or self.default_workspace_dir

    @property
    def handles(self) -> HandleRegistry[Any]:
        return self._handles

    def is_available(self) -> bool:
        """Check that the provider's credentials are set. Never raises."""
        return has_env(*self.required_env)

    @abstractmethod
    def _load_sdk(self) -> Any:
        """Import and return the vendor SDK entry point."""

    def _client(self) -> Any:
        if self._sdk is None:
            self._sdk = self._load_sdk()
        return self._sdk

    def _wrap(self, operation: str, exc: Exception) -> ProviderOperationError:
        logger.debug("%s %s failed", self.display_name, operation, exc_info=exc)
        return ProviderOperationError(f"{self.display_name} {operation} failed: {exc}")

    # Dev server

    @abstractmethod
    async def execute_command(
        self,
        workspace_id: str,
        command: str,
        *,
        cwd: str | None = None,
        env_vars: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a shell command; a non-zero exit is returned, not raised."""

    @abstractmethod
    async def get_preview_url(self, workspace_id: str, port: int | None = None) -> str:
        """Public URL for a port of the workspace."""

    async def start_dev_server(
        self,
        workspace_id: str,
        *,
        command: str | None = None,
        port: int | None = None,
    ) -> str:
        """
        Launch a dev server in the background and return its preview URL.

        Candidates are tried in order: a candidate fails when its launch
        command fails or the server log shows a startup error after the
        grace period.

        Raises:
            NoDevServerFound: If every candidate fails
        """
        settings = self._config.sandbox
        port = port or settings.preview_port
        candidates = [command] if command else list(settings.dev_commands)
        tried: list[str] = []

        for candidate in candidates:
            tried.append(candidate)
            launch = bootstrap.dev_server_command(candidate, self.workspace_dir, port)
            try:
                result = await self.execute_command(workspace_id, launch)
            except ProviderOperationError as e:
                logger.info("Dev server candidate %r could not be launched: %s", candidate, e)
                continue
            if not result.ok:
                logger.info("Dev server candidate %r exited with %d", candidate, result.exit_code)
                continue

            if settings.dev_server_wait_seconds:
                await asyncio.sleep(settings.dev_server_wait_seconds)

            failed = await self.execute_command(workspace_id, bootstrap.dev_server_failed_command())
            if failed.ok:
                logger.info("Dev server candidate %r failed to start", candidate)
                await self.execute_command(
                    workspace_id, f"pkill -f {shlex.quote(candidate)} || true"
                )
                continue

            url = await self.get_preview_url(workspace_id, port)
            logger.info("Dev server started with %r on port %d", candidate, port)
            return url

        raise NoDevServerFound(tried)

    # Files

    async def list_files(self, workspace_id: str, path: str) -> list[FileInfo]:
        """List a directory via ``ls -la``."""
        result = await self.execute_command(workspace_id, f"ls -la {shlex.quote(path)}")
        if not result.ok:
            raise ProviderOperationError(
                f"{self.display_name} list_files failed for {path}: {result.stderr.strip()}"
            )
        return bootstrap.parse_ls_output(result.stdout, path)


def output_text(message: Any) -> str:
    """Interpreter callbacks receive either plain text or an output message."""
    if isinstance(message, str):
        return message
    for attr in ("output", "line"):
        value = getattr(message, attr, None)
        if value:
            return str(value)
    return ""
