"""
Provider-agnostic workspace bootstrap helpers.

Every provider prepares a fresh workspace the same way: clone the
repository (with the git token injected when one is given), check out the
branch, install dependencies, then later launch a dev server in the
background. The shell commands for those steps live here so the three
providers only differ in how they run them.
"""

from __future__ import annotations

import os
import posixpath
import re
import shlex
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from .errors import ProvisioningError
from .models import CreateWorkspaceOptions, FileInfo

DEFAULT_PREVIEW_PORT = 3000
DEV_SERVER_LOG = "/tmp/dev-server.log"
AGENT_LOG = "/tmp/vibeforge-agent.log"
DEFAULT_BRANCHES = frozenset({"main", "master"})

# Agent runtime shipped into each workspace (see vibeforge.core.agent.runtime)
AGENT_RUNTIME_PATH = Path(__file__).resolve().parent.parent / "agent" / "runtime.py"
AGENT_RUNTIME_REMOTE_NAME = "vibeforge_agent.py"
AGENT_RUNTIME_INSTALL = "pip install --quiet claude-agent-sdk"

_BRANCH_UNSAFE = re.compile(r"[^a-zA-Z0-9_\-./]")


def build_clone_url(repo_url: str, git_token: str | None = None) -> str:
    """
    Return the URL to clone from, with the token injected when given.

    Args:
        repo_url: https repository URL
        git_token: Optional access token for private repositories

    Returns:
        ``https://<token>@host/path`` or the original URL

    Raises:
        ProvisioningError: If a token is given for a non-https URL
    """
    if not git_token:
        return repo_url
    parts = urlsplit(repo_url)
    if parts.scheme != "https" or not parts.hostname:
        raise ProvisioningError(f"Cannot use a git token with non-https URL: {redact_url(repo_url)}")
    netloc = f"{git_token}@{parts.hostname}"
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit(("https", netloc, parts.path, parts.query, ""))


def redact_url(url: str) -> str:
    """Strip credentials from a URL before logging it."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))


def sanitize_branch(branch: str) -> str:
    """Drop characters that are not valid in a plain branch name."""
    return _BRANCH_UNSAFE.sub("", branch)


def clone_command(repo_url: str, workspace_dir: str, git_token: str | None = None) -> str:
    url = build_clone_url(repo_url, git_token)
    return f"git clone {shlex.quote(url)} {shlex.quote(workspace_dir)}"


def checkout_command(branch: str | None, workspace_dir: str) -> str | None:
    """
    Return the checkout command, or None when no checkout is needed.

    Default branches (main, master) are already checked out by the clone.

    Raises:
        ProvisioningError: If the branch name starts with a dash
    """
    if not branch or branch in DEFAULT_BRANCHES:
        return None
    safe = sanitize_branch(branch)
    if not safe:
        return None
    if safe.startswith("-"):
        raise ProvisioningError(f"Invalid branch name: {branch!r}")
    return f"cd {shlex.quote(workspace_dir)} && git checkout {safe}"


def install_command(workspace_dir: str) -> str:
    """
    Dependency install command.

    Prefers the package manager whose lockfile is present and falls back to
    trying npm, yarn and pnpm in turn. Never fails, so a repository without
    a package.json still bootstraps.
    """
    d = shlex.quote(workspace_dir)
    return (
        f"cd {d} && "
        "if [ -f pnpm-lock.yaml ]; then pnpm install; "
        "elif [ -f yarn.lock ]; then yarn install; "
        "elif [ -f package.json ]; then npm install; "
        "fi || npm install || yarn install || pnpm install || true"
    )


def setup_steps(options: CreateWorkspaceOptions, workspace_dir: str) -> list[tuple[str, str]]:
    """
    Ordered (label, command) pairs that prepare a fresh workspace.

    Every step must exit 0 except dependency install, which never fails.
    """
    steps = [
        ("install agent runtime", AGENT_RUNTIME_INSTALL),
        ("clone", clone_command(options.repo_url, workspace_dir, options.git_token)),
    ]
    checkout = checkout_command(options.branch, workspace_dir)
    if checkout:
        steps.append(("checkout", checkout))
    steps.append(("install dependencies", install_command(workspace_dir)))
    return steps


def dev_server_command(command: str, workspace_dir: str, port: int) -> str:
    """Background launch command for a dev server candidate."""
    return (
        f"cd {shlex.quote(workspace_dir)} && "
        f"PORT={port} nohup {command} > {DEV_SERVER_LOG} 2>&1 &"
    )


def dev_server_failed_command() -> str:
    """
    Command that exits 0 when the dev server log shows a startup failure.

    Catches the common cases of a candidate that cannot run at all (no such
    script, package manager not installed).
    """
    return (
        f"grep -qiE 'missing script|command not found|not found: |ERR_PNPM_NO_SCRIPT' {DEV_SERVER_LOG}"
    )


def default_env(workspace_dir: str, extra: dict[str, str] | None = None) -> dict[str, str]:
    """
    Environment variables every workspace starts with.

    The agent key is taken from the local environment; caller values win.
    """
    env = {
        "ANTHROPIC_API_KEY": os.environ.get("ANTHROPIC_API_KEY", ""),
        "WORKSPACE_DIR": workspace_dir,
    }
    if extra:
        env.update(extra)
    return env


def read_agent_runtime() -> str:
    """Source of the agent runtime uploaded into workspaces."""
    return AGENT_RUNTIME_PATH.read_text()


def runtime_dir(workspace_dir: str) -> str:
    """Directory the agent runtime is uploaded to: next to the checkout, not in it."""
    return posixpath.dirname(workspace_dir.rstrip("/")) or "/"


def runtime_path(workspace_dir: str) -> str:
    return posixpath.join(runtime_dir(workspace_dir), AGENT_RUNTIME_REMOTE_NAME)


def runtime_import(workspace_dir: str) -> str:
    """Python snippet that makes the uploaded runtime importable."""
    return (
        "import sys\n"
        f"sys.path.insert(0, {runtime_dir(workspace_dir)!r})\n"
        "import vibeforge_agent\n"
    )


def runtime_invocation(prompt: str, workspace_dir: str) -> str:
    """
    Python snippet that runs the uploaded agent runtime with a prompt.

    Used as the code for provider run_code() calls.

    The runtime runs in its own process so the snippet works the same in an
    interpreter that already has an event loop. Its stdout is relayed line by
    line; its stderr goes to AGENT_LOG and is surfaced only on failure.
    """
    return (
        "import subprocess, sys\n"
        f"_log = open({AGENT_LOG!r}, 'w')\n"
        "_proc = subprocess.Popen(\n"
        f"    [sys.executable, {runtime_path(workspace_dir)!r}, {prompt!r}],\n"
        f"    cwd={workspace_dir!r}, stdout=subprocess.PIPE, stderr=_log, text=True,\n"
        ")\n"
        "for _line in _proc.stdout:\n"
        "    print(_line, end='', flush=True)\n"
        "_proc.wait()\n"
        "_log.close()\n"
        "if _proc.returncode:\n"
        f"    sys.stderr.write(open({AGENT_LOG!r}).read()[-2000:])\n"
        "    raise RuntimeError('agent exited with code %d' % _proc.returncode)\n"
    )


def parse_ls_output(output: str, directory: str) -> list[FileInfo]:
    """
    Parse ``ls -la`` output into FileInfo entries.

    The ``.`` and ``..`` entries and the ``total`` line are skipped.

    Args:
        output: Raw ls -la stdout
        directory: Directory that was listed

    Returns:
        Entries with normalised paths
    """
    entries: list[FileInfo] = []
    for line in output.splitlines():
        fields = line.split(None, 8)
        if len(fields) < 9 or line.startswith("total"):
            continue
        name = fields[8]
        if name in (".", ".."):
            continue
        if " -> " in name:
            name = name.split(" -> ", 1)[0]
        try:
            size = int(fields[4])
        except ValueError:
            size = None
        entries.append(
            FileInfo(
                path=join_path(directory, name),
                type="directory" if fields[0].startswith("d") else "file",
                size=size,
            )
        )
    return entries


def join_path(directory: str, name: str) -> str:
    return re.sub(r"/+", "/", f"{directory}/{name}")
