"""
Configuration models and loading.

This module provides Pydantic models for vibeforge configuration
with multi-layer merging: defaults < user < project < env vars.
"""

from .env import has_env, load_layered_env
from .loader import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import (
    ModalSettings,
    OrchestratorSettings,
    ProviderToggle,
    RestorePolicy,
    SandboxSettings,
    VibeforgeConfig,
)

__all__ = [
    # Models
    "ModalSettings",
    "OrchestratorSettings",
    "ProviderToggle",
    "RestorePolicy",
    "SandboxSettings",
    "VibeforgeConfig",
    # Loader functions
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    # Environment
    "has_env",
    "load_layered_env",
]
