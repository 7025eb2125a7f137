"""Environment loading helpers.

Provider credentials (DAYTONA_API_KEY, E2B_API_KEY, MODAL_TOKEN_ID,
MODAL_TOKEN_SECRET) and the agent key (ANTHROPIC_API_KEY) are read from the
process environment only. To make local setups easy they may also live in
.env files, which are merged into os.environ without ever replacing values
that were exported in the shell.

Precedence implemented here:
  os.environ (pre-existing) > project .env / .env.local > user .env
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    return {str(k): str(v) for k, v in dotenv_values(path).items() if k is not None and v is not None}


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """Load environment variables from user + project .env files.

    Args:
        project_dir: base directory for project env paths (defaults to cwd)
        user_env_paths: explicit user env file paths
        project_env_paths: explicit project env file paths

    Returns:
        The keys that were added to os.environ by this call.
    """
    if project_dir is None:
        project_dir = Path.cwd()

    if user_env_paths is None:
        xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        user_env_paths = [xdg_home / "vibeforge" / ".env"]

    if project_env_paths is None:
        project_env_paths = [project_dir / ".env", project_dir / ".env.local"]

    loaded: set[str] = set()
    for p in user_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ:
                os.environ[k] = v
                loaded.add(k)

    # Project files may override user files, never the shell.
    for p in project_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ or k in loaded:
                os.environ[k] = v
                loaded.add(k)

    return loaded


def has_env(*names: str) -> bool:
    """Return True when every named variable is set to a non-empty value."""
    return all(os.environ.get(name) for name in names)
