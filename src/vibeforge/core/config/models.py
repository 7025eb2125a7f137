"""
Configuration data models for vibeforge.

These models define the structure of .vibeforge.json and
~/.config/vibeforge/config.json files, with validation and type safety
via Pydantic.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RestorePolicy(str, Enum):
    """What restoring a checkpoint does to the owning session."""

    KEEP_STATUS = "keep_status"
    RESET_TO_IDLE = "reset_to_idle"


class ProviderToggle(BaseModel):
    """Enablement flag for a single sandbox provider."""

    enabled: bool = Field(default=True, description="Allow this provider to be selected")


class SandboxSettings(BaseModel):
    """
    Sandbox provider selection and workspace bootstrap settings.

    Controls which provider is used by default and how a fresh workspace
    is prepared (clone, dependency install, dev server).
    """

    default_provider: str = Field(
        default="daytona",
        pattern="^(daytona|e2b|modal)$",
        description="Provider used when the caller does not pick one",
    )
    providers: dict[str, ProviderToggle] = Field(
        default_factory=lambda: {
            "daytona": ProviderToggle(),
            "e2b": ProviderToggle(),
            "modal": ProviderToggle(),
        },
        description="Per-provider enablement flags",
    )
    workspace_dir: Optional[str] = Field(
        default=None,
        description="Repository checkout path inside the sandbox (provider default if unset)",
    )
    preview_port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port the dev server listens on",
    )
    dev_commands: list[str] = Field(
        default_factory=lambda: ["npm run dev", "yarn dev", "pnpm dev", "npm start"],
        description="Dev server commands tried in order",
    )
    dev_server_wait_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Grace period after launching a dev server command",
    )
    create_timeout_seconds: int = Field(
        default=1800,
        ge=1,
        description="Lifetime/creation timeout handed to ephemeral providers",
    )

    def is_enabled(self, provider: str) -> bool:
        """Return True unless the provider is explicitly disabled."""
        toggle = self.providers.get(provider)
        return toggle is None or toggle.enabled


class ModalSettings(BaseModel):
    """
    Modal-specific settings.

    Modal sandboxes have no built-in preview routing; a port only gets a
    public URL when it is listed in tunnel_ports.
    """

    app_name: str = Field(default="vibeforge-sandbox", description="Modal app namespace")
    image: str = Field(default="python:3.12-slim", description="Registry image for sandboxes")
    gpu: Optional[str] = Field(default="T4", description="GPU type (None for CPU only)")
    tunnel_ports: list[int] = Field(
        default_factory=list,
        description="Ports exposed through encrypted tunnels",
    )


class OrchestratorSettings(BaseModel):
    """
    Agent orchestration settings.

    Limits and policies for the plan -> review -> build state machine.
    """

    phase_timeout_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Watchdog: a phase fails when its agent stream stalls past this",
    )
    checkpoint_label_max: int = Field(
        default=50,
        ge=1,
        description="Max characters of the plan summary used in checkpoint labels",
    )
    restore_policy: RestorePolicy = Field(
        default=RestorePolicy.KEEP_STATUS,
        description="Session status handling when a checkpoint is restored",
    )
    channel_size: int = Field(
        default=256,
        ge=1,
        description="Bound of the event channel between a remote run and its reader",
    )


class VibeforgeConfig(BaseModel):
    """
    Complete vibeforge configuration.

    Merged from defaults, user config, project config and environment
    variables. See loader.py for the precedence chain.
    """

    model_config = ConfigDict(extra="ignore")

    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    modal: ModalSettings = Field(default_factory=ModalSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)

    @field_validator("sandbox", mode="before")
    @classmethod
    def _lowercase_provider(cls, value: object) -> object:
        if isinstance(value, dict) and isinstance(value.get("default_provider"), str):
            value = {**value, "default_provider": value["default_provider"].lower()}
        return value
