"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import RestorePolicy, VibeforgeConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per process
_config_cache: VibeforgeConfig | None = None

_PROVIDER_NAMES = ("daytona", "e2b", "modal")


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """
    Get path to user configuration file.

    Returns:
        Path to ~/.config/vibeforge/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "vibeforge" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Get path to project configuration file.

    Args:
        cwd: Working directory to search from (defaults to current directory)

    Returns:
        Path to .vibeforge.json in the project root
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".vibeforge.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`.
    Nested dicts are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 2}})
        {'a': 1, 'b': {'x': 10, 'y': 2}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.

    Supported env vars:
        VIBEFORGE_SANDBOX_PROVIDER - overrides sandbox.default_provider
        SANDBOX_PROVIDER - legacy alias, used when the above is unset
        VIBEFORGE_PHASE_TIMEOUT - overrides orchestrator.phase_timeout_seconds
        VIBEFORGE_RESTORE_POLICY - overrides orchestrator.restore_policy

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    provider = os.environ.get("VIBEFORGE_SANDBOX_PROVIDER") or os.environ.get(
        "SANDBOX_PROVIDER"
    )
    if provider:
        provider = provider.strip().lower()
        if provider in _PROVIDER_NAMES:
            result["sandbox"] = {**result.get("sandbox", {}), "default_provider": provider}
        else:
            logger.warning("Invalid sandbox provider '%s' in environment, ignoring", provider)

    if timeout_str := os.environ.get("VIBEFORGE_PHASE_TIMEOUT"):
        try:
            timeout = float(timeout_str)
            if timeout <= 0:
                logger.warning("VIBEFORGE_PHASE_TIMEOUT must be > 0, got %s, ignoring", timeout)
            else:
                result["orchestrator"] = {
                    **result.get("orchestrator", {}),
                    "phase_timeout_seconds": timeout,
                }
        except ValueError:
            logger.warning("Invalid VIBEFORGE_PHASE_TIMEOUT value '%s', ignoring", timeout_str)

    if policy_str := os.environ.get("VIBEFORGE_RESTORE_POLICY"):
        try:
            policy = RestorePolicy(policy_str.strip().lower())
            result["orchestrator"] = {
                **result.get("orchestrator", {}),
                "restore_policy": policy.value,
            }
        except ValueError:
            logger.warning("Invalid VIBEFORGE_RESTORE_POLICY value '%s', ignoring", policy_str)

    return result


def get_default_config() -> dict[str, Any]:
    """
    Get hardcoded default configuration.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "sandbox": {
            "default_provider": "daytona",
            "providers": {name: {"enabled": True} for name in _PROVIDER_NAMES},
        },
        "orchestrator": {"phase_timeout_seconds": 3600.0, "restore_policy": "keep_status"},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> VibeforgeConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (VIBEFORGE_*)
        2. Project config (.vibeforge.json)
        3. User config (~/.config/vibeforge/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .vibeforge.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated VibeforgeConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = VibeforgeConfig(**merged)
    _config_cache = config

    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
