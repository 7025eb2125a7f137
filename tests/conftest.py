"""
Pytest configuration and shared fixtures.

Provides fake provider SDKs (Daytona, E2B, Modal) that record the calls
made against them, an in-memory fake SandboxProvider, a scripted agent
backend, and store fixtures used across the test suite.
"""

import asyncio
import itertools
from collections.abc import AsyncIterator, Callable
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from vibeforge.core.agent.models import AgentEvent, AgentEventType
from vibeforge.core.config import clear_cache
from vibeforge.core.config.models import VibeforgeConfig
from vibeforge.core.sandbox.models import (
    CodeExecutionEvent,
    CommandResult,
    CreateWorkspaceOptions,
    ExecutionEventType,
    FileInfo,
    ProviderType,
    SandboxCapabilities,
    SandboxWorkspace,
    WorkspaceStatus,
)
from vibeforge.core.sandbox.registry import ProviderRegistry
from vibeforge.core.store import InMemoryStore, Repository, Sandbox, Session

ENV_VARS = (
    "VIBEFORGE_SANDBOX_PROVIDER",
    "SANDBOX_PROVIDER",
    "VIBEFORGE_PHASE_TIMEOUT",
    "VIBEFORGE_RESTORE_POLICY",
    "DAYTONA_API_KEY",
    "E2B_API_KEY",
    "MODAL_TOKEN_ID",
    "MODAL_TOKEN_SECRET",
    "ANTHROPIC_API_KEY",
    "GIT_TOKEN",
    "PROMPT",
    "WORKSPACE_DIR",
    "PREVIEW_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from the developer's environment and config files."""
    for name in ENV_VARS:
        # setenv first so values written during the test are removed afterwards
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def config():
    """Configuration with no dev server grace period."""
    return VibeforgeConfig(sandbox={"dev_server_wait_seconds": 0})


# ==============================================================================
# Daytona SDK fake
# ==============================================================================


class NotFoundError(Exception):
    """Mirrors the SDK's not-found error class name."""


ExecHandler = Callable[[str], tuple[int, str]]


def ok_handler(command: str) -> tuple[int, str]:
    return 0, ""


class FakeDaytonaProcess:
    def __init__(self, sandbox: "FakeDaytonaSandbox") -> None:
        self._sandbox = sandbox

    async def exec(self, command: str, **kwargs: Any) -> SimpleNamespace:
        self._sandbox.commands.append(command)
        self._sandbox.exec_kwargs.append(kwargs)
        if self._sandbox.exec_error is not None:
            raise self._sandbox.exec_error
        exit_code, output = self._sandbox.exec_handler(command)
        return SimpleNamespace(result=output, exit_code=exit_code)


class FakeCodeInterpreter:
    def __init__(self, sandbox: "FakeDaytonaSandbox") -> None:
        self._sandbox = sandbox
        self._ids = itertools.count(1)
        self.runs: list[dict[str, Any]] = []

    async def create_context(self, cwd: str | None = None) -> SimpleNamespace:
        return SimpleNamespace(id=f"ctx-{next(self._ids)}", cwd=cwd)

    async def run_code(
        self,
        code: str,
        context: Any = None,
        envs: dict[str, str] | None = None,
        on_stdout: Any = None,
        on_stderr: Any = None,
    ) -> SimpleNamespace:
        self.runs.append({"code": code, "context": context, "envs": envs})
        if on_stdout is not None:
            for chunk in self._sandbox.stdout_chunks:
                on_stdout(SimpleNamespace(output=chunk))
        if on_stderr is not None:
            for chunk in self._sandbox.stderr_chunks:
                on_stderr(chunk)
        return SimpleNamespace(error=self._sandbox.code_error if on_stdout else None)


class FakeFileSystem:
    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.listing: list[SimpleNamespace] = []

    async def upload_file(self, content: bytes, path: str) -> None:
        self.files[path] = content

    async def download_file(self, path: str) -> bytes:
        if path not in self.files:
            raise NotFoundError(f"file not found: {path}")
        return self.files[path]

    async def list_files(self, path: str) -> list[SimpleNamespace]:
        return self.listing


class FakeDaytonaSandbox:
    def __init__(self, sandbox_id: str) -> None:
        self.id = sandbox_id
        self.state = "started"
        self.commands: list[str] = []
        self.exec_kwargs: list[dict[str, Any]] = []
        self.exec_handler: ExecHandler = ok_handler
        self.exec_error: Exception | None = None
        self.stdout_chunks: list[str] = []
        self.stderr_chunks: list[str] = []
        self.code_error: Any = None
        self.start_error: Exception | None = None
        self.deleted = False
        self.process = FakeDaytonaProcess(self)
        self.code_interpreter = FakeCodeInterpreter(self)
        self.fs = FakeFileSystem()

    async def get_preview_link(self, port: int) -> SimpleNamespace:
        return SimpleNamespace(url=f"https://{port}-{self.id}.proxy.daytona.test")

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.state = "started"

    async def stop(self) -> None:
        self.state = "stopped"

    async def delete(self) -> None:
        self.deleted = True
        self.state = "destroyed"


class FakeDaytonaAPI:
    def __init__(self) -> None:
        self.sandboxes: dict[str, FakeDaytonaSandbox] = {}
        self.created: list[tuple[Any, Any]] = []
        self.lookups: list[str] = []
        self.prepare: Callable[[FakeDaytonaSandbox], None] = lambda sandbox: None
        self.create_error: Exception | None = None
        self._ids = itertools.count(1)

    async def create(self, params: Any, timeout: Any = None) -> FakeDaytonaSandbox:
        if self.create_error is not None:
            raise self.create_error
        sandbox = FakeDaytonaSandbox(f"dtn-{next(self._ids)}")
        self.prepare(sandbox)
        self.sandboxes[sandbox.id] = sandbox
        self.created.append((params, timeout))
        return sandbox

    async def get(self, sandbox_id: str) -> FakeDaytonaSandbox:
        self.lookups.append(sandbox_id)
        sandbox = self.sandboxes.get(sandbox_id)
        if sandbox is None or sandbox.deleted:
            raise NotFoundError(f"Sandbox {sandbox_id} not found")
        return sandbox


@pytest.fixture
def daytona_api():
    return FakeDaytonaAPI()


@pytest.fixture
def daytona_sdk(daytona_api):
    """Module-shaped stand-in for the daytona package."""
    return SimpleNamespace(
        AsyncDaytona=lambda: daytona_api,
        CreateSandboxFromSnapshotParams=lambda **kwargs: SimpleNamespace(**kwargs),
    )


# ==============================================================================
# E2B SDK fake
# ==============================================================================


class CommandExitException(Exception):
    """Mirrors the SDK error raised for a non-zero exit."""

    def __init__(self, stdout: str, stderr: str, exit_code: int) -> None:
        super().__init__(f"exit status {exit_code}")
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class FakeE2BCommands:
    def __init__(self, sandbox: "FakeE2BSandbox") -> None:
        self._sandbox = sandbox

    async def run(self, command: str, **kwargs: Any) -> SimpleNamespace:
        self._sandbox.ran.append(command)
        exit_code, output = self._sandbox.exec_handler(command)
        if exit_code:
            raise CommandExitException(output, "boom", exit_code)
        return SimpleNamespace(stdout=output, stderr="", exit_code=0)


class FakeE2BFiles:
    def __init__(self) -> None:
        self.files: dict[str, str] = {}

    async def read(self, path: str) -> str:
        return self.files[path]

    async def write(self, path: str, content: str) -> None:
        self.files[path] = content

    async def list(self, path: str) -> list[SimpleNamespace]:
        return [
            SimpleNamespace(name="src", type="dir", size=None),
            SimpleNamespace(name="package.json", type="file", size=42),
        ]


class FakeE2BSandbox:
    def __init__(self, sandbox_id: str) -> None:
        self.sandbox_id = sandbox_id
        self.ran: list[str] = []
        self.exec_handler: ExecHandler = ok_handler
        self.stdout_chunks: list[str] = []
        self.code_runs: list[dict[str, Any]] = []
        self.running = True
        self.killed = False
        self.commands = FakeE2BCommands(self)
        self.files = FakeE2BFiles()

    def get_host(self, port: int) -> str:
        return f"{port}-{self.sandbox_id}.e2b.test"

    async def kill(self) -> None:
        self.killed = True
        self.running = False

    async def is_running(self) -> bool:
        return self.running

    async def run_code(self, code: str, **kwargs: Any) -> SimpleNamespace:
        self.code_runs.append({"code": code, **kwargs})
        for chunk in self.stdout_chunks:
            kwargs["on_stdout"](SimpleNamespace(line=chunk))
        return SimpleNamespace(error=None, text="42")


class FakeE2BSDK:
    """Stands in for e2b_code_interpreter.AsyncSandbox."""

    def __init__(self) -> None:
        self.sandboxes: list[FakeE2BSandbox] = []
        self.create_kwargs: list[dict[str, Any]] = []
        self.connects: list[str] = []
        self.kills: list[str] = []
        self.prepare: Callable[[FakeE2BSandbox], None] = lambda sandbox: None
        self._ids = itertools.count(1)

    def _live(self, sandbox_id: str) -> FakeE2BSandbox | None:
        for sandbox in self.sandboxes:
            if sandbox.sandbox_id == sandbox_id and sandbox.running:
                return sandbox
        return None

    async def create(self, **kwargs: Any) -> FakeE2BSandbox:
        sandbox = FakeE2BSandbox(f"e2b-{next(self._ids)}")
        self.prepare(sandbox)
        self.sandboxes.append(sandbox)
        self.create_kwargs.append(kwargs)
        return sandbox

    async def connect(self, sandbox_id: str) -> FakeE2BSandbox:
        self.connects.append(sandbox_id)
        sandbox = self._live(sandbox_id)
        if sandbox is None:
            raise NotFoundError(f"Sandbox {sandbox_id} not found")
        return sandbox

    async def kill(self, sandbox_id: str) -> bool:
        """Class-level kill by id; False when the sandbox does not exist."""
        self.kills.append(sandbox_id)
        sandbox = self._live(sandbox_id)
        if sandbox is None:
            return False
        await sandbox.kill()
        return True


@pytest.fixture
def e2b_sdk():
    return FakeE2BSDK()


# ==============================================================================
# Modal SDK fake
# ==============================================================================


class Aio:
    """Callable exposing Modal's ``.aio`` async variant."""

    def __init__(self, fn: Callable[..., Any]) -> None:
        self.aio = fn


class FakeModalStream:
    def __init__(self, chunks: list[str]) -> None:
        self._chunks = chunks

        async def read() -> str:
            return "".join(self._chunks)

        self.read = Aio(read)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        for chunk in self._chunks:
            yield chunk


class FakeModalProcess:
    def __init__(self, stdout: list[str], stderr: list[str], exit_code: int) -> None:
        self.stdout = FakeModalStream(stdout)
        self.stderr = FakeModalStream(stderr)

        async def wait() -> int:
            return exit_code

        self.wait = Aio(wait)


class FakeModalFile:
    def __init__(self, files: dict[str, str], path: str) -> None:
        self.closed = False
        files[path] = ""

        async def write(data: str) -> None:
            files[path] += data

        async def close() -> None:
            self.closed = True

        self.write = Aio(write)
        self.close = Aio(close)


class FakeModalSandbox:
    def __init__(self, object_id: str, tunnel_ports: list[int]) -> None:
        self.object_id = object_id
        self.commands: list[str] = []
        self.exec_kwargs: list[dict[str, Any]] = []
        self.exec_handler: ExecHandler = ok_handler
        self.python_stdout: list[str] = []
        self.exit_code: int | None = None
        self.terminated = False
        self._tunnel_ports = tunnel_ports
        self.files: dict[str, str] = {}
        self.opened: list[FakeModalFile] = []

        async def exec_(*args: str, **kwargs: Any) -> FakeModalProcess:
            command = args[-1]
            self.commands.append(command)
            self.exec_kwargs.append(kwargs)
            if "python3 -c" in command:
                return FakeModalProcess(self.python_stdout, [], 0)
            exit_code, output = self.exec_handler(command)
            return FakeModalProcess([output] if output else [], ["failed"] if exit_code else [], exit_code)

        async def poll() -> int | None:
            return self.exit_code

        async def terminate() -> None:
            self.terminated = True
            self.exit_code = 0

        async def tunnels() -> dict[int, SimpleNamespace]:
            return {p: SimpleNamespace(url=f"https://{self.object_id}-{p}.modal.test") for p in self._tunnel_ports}

        async def open_(path: str, mode: str = "r") -> FakeModalFile:
            handle = FakeModalFile(self.files, path)
            self.opened.append(handle)
            return handle

        self.exec = Aio(exec_)
        self.poll = Aio(poll)
        self.terminate = Aio(terminate)
        self.tunnels = Aio(tunnels)
        self.open = Aio(open_)


class FakeImage:
    def __init__(self, name: str) -> None:
        self.name = name
        self.apt: list[str] = []
        self.pip: list[str] = []

    def apt_install(self, *packages: str) -> "FakeImage":
        self.apt.extend(packages)
        return self

    def pip_install(self, *packages: str) -> "FakeImage":
        self.pip.extend(packages)
        return self


class FakeModalSDK:
    """Module-shaped stand-in for the modal package."""

    def __init__(self) -> None:
        self.sandboxes: list[FakeModalSandbox] = []
        self.create_kwargs: list[dict[str, Any]] = []
        self.lookups: list[str] = []
        self.prepare: Callable[[FakeModalSandbox], None] = lambda sandbox: None
        self._ids = itertools.count(1)

        async def lookup(name: str, create_if_missing: bool = False) -> SimpleNamespace:
            return SimpleNamespace(name=name)

        async def create(**kwargs: Any) -> FakeModalSandbox:
            sandbox = FakeModalSandbox(f"sb-{next(self._ids)}", list(kwargs.get("encrypted_ports", [])))
            self.prepare(sandbox)
            self.sandboxes.append(sandbox)
            self.create_kwargs.append(kwargs)
            return sandbox

        async def from_id(sandbox_id: str) -> FakeModalSandbox:
            self.lookups.append(sandbox_id)
            for sandbox in self.sandboxes:
                if sandbox.object_id == sandbox_id:
                    return sandbox
            raise NotFoundError(f"Sandbox {sandbox_id} not found")

        self.App = SimpleNamespace(lookup=Aio(lookup))
        self.Image = SimpleNamespace(from_registry=FakeImage)
        self.Secret = SimpleNamespace(from_dict=lambda values: {"secret": dict(values)})
        self.Sandbox = SimpleNamespace(create=Aio(create), from_id=Aio(from_id))


@pytest.fixture
def modal_sdk():
    return FakeModalSDK()


# ==============================================================================
# Fake provider and agent backend
# ==============================================================================


class FakeProvider:
    """In-memory SandboxProvider that records every call."""

    def __init__(
        self,
        provider_type: ProviderType = ProviderType.DAYTONA,
        *,
        capabilities: SandboxCapabilities | None = None,
        available: bool = True,
    ) -> None:
        self._type = provider_type
        self._capabilities = capabilities or SandboxCapabilities()
        self._available = available
        self.workspace_dir = "/workspace/repo"
        self.created: list[CreateWorkspaceOptions] = []
        self.deleted: list[str] = []
        self.paused: list[str] = []
        self.commands: list[str] = []
        self.code_runs: list[dict[str, Any]] = []
        self.stdout_scripts: list[list[str]] = []
        self.resume_error: Exception | None = None
        self.checkpoint_error: Exception | None = None
        self.checkpoints: list[tuple[str, str]] = []
        self.restored: list[tuple[str, str]] = []
        self.create_delay = 0.0
        self.command_handler: Callable[[str], CommandResult] | None = None
        self._ids = itertools.count(1)

    @property
    def type(self) -> ProviderType:
        return self._type

    @property
    def name(self) -> str:
        return f"Fake {self._type.value}"

    @property
    def capabilities(self) -> SandboxCapabilities:
        return self._capabilities

    def is_available(self) -> bool:
        return self._available

    async def create_workspace(self, options: CreateWorkspaceOptions) -> SandboxWorkspace:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        self.created.append(options)
        workspace_id = f"ws-{next(self._ids)}"
        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=f"https://{workspace_id}.preview.test",
            provider_type=self._type,
        )

    async def get_workspace(self, workspace_id: str) -> SandboxWorkspace | None:
        return SandboxWorkspace(id=workspace_id, status=WorkspaceStatus.RUNNING, provider_type=self._type)

    async def resume_workspace(self, workspace_id: str) -> SandboxWorkspace:
        if self.resume_error is not None:
            raise self.resume_error
        return SandboxWorkspace(
            id=workspace_id,
            status=WorkspaceStatus.RUNNING,
            preview_url=f"https://{workspace_id}.resumed.test",
            provider_type=self._type,
        )

    async def pause_workspace(self, workspace_id: str) -> None:
        self.paused.append(workspace_id)

    async def delete_workspace(self, workspace_id: str) -> None:
        self.deleted.append(workspace_id)

    async def execute_command(
        self,
        workspace_id: str,
        command: str,
        *,
        cwd: str | None = None,
        env_vars: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        self.commands.append(command)
        if self.command_handler is not None:
            return self.command_handler(command)
        if command.startswith("exit "):
            return CommandResult(stderr="failed\n", exit_code=int(command.split()[1]))
        return CommandResult(stdout=f"ran: {command}\n")

    async def run_code(
        self,
        workspace_id: str,
        code: str,
        *,
        language: str | None = None,
        env_vars: dict[str, str] | None = None,
        on_stdout: Any = None,
        on_stderr: Any = None,
    ) -> AsyncIterator[CodeExecutionEvent]:
        self.code_runs.append({"code": code, "language": language, "env_vars": env_vars})
        chunks = self.stdout_scripts.pop(0) if self.stdout_scripts else []
        for chunk in chunks:
            yield CodeExecutionEvent(type=ExecutionEventType.STDOUT, content=chunk)
        yield CodeExecutionEvent(type=ExecutionEventType.DONE)

    async def start_dev_server(self, workspace_id: str, *, command: str | None = None, port: int | None = None) -> str:
        return f"https://{workspace_id}.preview.test"

    async def get_preview_url(self, workspace_id: str, port: int | None = None) -> str:
        return f"https://{workspace_id}-{port or 3000}.preview.test"

    async def read_file(self, workspace_id: str, path: str) -> str:
        return ""

    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        return None

    async def list_files(self, workspace_id: str, path: str) -> list[FileInfo]:
        return []

    async def create_checkpoint(self, workspace_id: str, label: str) -> str:
        if self.checkpoint_error is not None:
            raise self.checkpoint_error
        checkpoint_id = f"ckpt-{len(self.checkpoints) + 1}"
        self.checkpoints.append((workspace_id, label))
        return checkpoint_id

    async def restore_checkpoint(self, workspace_id: str, checkpoint_id: str) -> None:
        self.restored.append((workspace_id, checkpoint_id))


CHECKPOINTING = SandboxCapabilities(persistent=True, pause_resume=True, checkpoints=True)


@pytest.fixture
def fake_provider():
    return FakeProvider(capabilities=CHECKPOINTING)


@pytest.fixture
def registry(fake_provider):
    return ProviderRegistry([fake_provider], default=fake_provider.type)


class ScriptedBackend:
    """
    Agent backend replaying one scripted event list per stream() call.

    A script ending with the HANG marker waits forever after its events.
    """

    HANG = object()

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = list(scripts)
        self.prompts: list[str] = []

    async def stream(self, workspace_id: str, prompt: str) -> AsyncIterator[AgentEvent]:
        self.prompts.append(prompt)
        script = self._scripts.pop(0) if self._scripts else []
        for item in script:
            if item is ScriptedBackend.HANG:
                await asyncio.Event().wait()
            else:
                yield item
        yield AgentEvent(type=AgentEventType.DONE)


def agent(type: str, content: str = "", **metadata: Any) -> AgentEvent:
    """Shorthand for building agent events in scripts."""
    return AgentEvent(type=type, content=content, metadata=metadata or None)


# ==============================================================================
# Store fixtures
# ==============================================================================


@pytest.fixture
def store():
    return InMemoryStore()


@pytest_asyncio.fixture
async def repository(store):
    return await store.insert(Repository(name="web", url="https://github.com/acme/web"))


@pytest_asyncio.fixture
async def session(store, repository):
    return await store.insert(Session(repository_id=repository.id, user_id="u1"))


@pytest_asyncio.fixture
async def linked_sandbox(store, repository, session):
    """A sandbox record linked to the session fixture."""
    sandbox = await store.insert(
        Sandbox(
            repository_id=repository.id,
            provider=ProviderType.DAYTONA,
            workspace_id="ws-existing",
            preview_url="https://ws-existing.preview.test",
        )
    )
    await store.update(Session, session.id, sandbox_id=sandbox.id)
    return sandbox
