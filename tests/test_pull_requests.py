"""
Tests for publishing sessions as GitHub pull requests.
"""

import json

import httpx
import pytest
import pytest_asyncio

from vibeforge.core.sandbox.errors import SandboxExpired, UnsupportedOperation
from vibeforge.core.sandbox.models import CommandResult
from vibeforge.core.services import (
    GitHubClient,
    GitHubError,
    PullRequestError,
    PullRequestRefused,
    PullRequestService,
    SandboxService,
)
from vibeforge.core.services.github import parse_repo
from vibeforge.core.services.pull_requests import build_description
from vibeforge.core.store import GitConnection, Message, MessageRole, Session, SessionStatus

PLAN = {
    "summary": "Add dark mode",
    "changes": [{"description": "Add a theme toggle", "files": ["src/Header.tsx"]}],
}


class GitHubAPI:
    """Records requests made through a mock transport and answers them."""

    def __init__(self, status: int = 201, payload: dict | None = None) -> None:
        self.status = status
        self.payload = payload if payload is not None else {
            "number": 7,
            "html_url": "https://github.com/acme/web/pull/7",
        }
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)

    def client(self, token: str) -> GitHubClient:
        return GitHubClient(token, transport=httpx.MockTransport(self.handler))

    @property
    def sent(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def api():
    return GitHubAPI()


@pytest.fixture
def service(store, registry, api):
    sandboxes = SandboxService(store=store, registry=registry)
    return PullRequestService(store=store, sandboxes=sandboxes, github=api.client)


@pytest_asyncio.fixture
async def ready_session(store, session, linked_sandbox):
    """A built session with a stored plan and a GitHub connection."""
    await store.insert(GitConnection(user_id="u1", access_token="ghp_secret"))
    await store.insert(
        Message(
            session_id=session.id,
            role=MessageRole.ASSISTANT,
            content=json.dumps(PLAN),
            metadata={"type": "plan"},
        )
    )
    return await store.update(Session, session.id, status=SessionStatus.READY)


class TestParseRepo:
    """Tests for reading owner and name from repository URLs."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/web",
            "https://github.com/acme/web.git",
            "https://github.com/acme/web/",
            "git@github.com:acme/web.git",
        ],
    )
    def test_github_urls(self, url) -> None:
        assert parse_repo(url) == ("acme", "web")

    def test_other_host(self) -> None:
        with pytest.raises(GitHubError, match="Not a GitHub repository URL"):
            parse_repo("https://gitlab.com/acme/web")


class TestGitHubClient:
    """Tests for the REST client."""

    @pytest.mark.asyncio
    async def test_create_pull_request(self, api) -> None:
        pr = await api.client("tok").create_pull_request(
            "acme", "web", title="T", body="B", head="feature", base="main"
        )

        request = api.requests[0]
        assert pr.number == 7
        assert pr.html_url == "https://github.com/acme/web/pull/7"
        assert request.method == "POST"
        assert request.url.path == "/repos/acme/web/pulls"
        assert request.headers["Authorization"] == "Bearer tok"
        assert api.sent == {"title": "T", "body": "B", "head": "feature", "base": "main"}

    @pytest.mark.asyncio
    async def test_error_uses_api_message(self) -> None:
        api = GitHubAPI(status=422, payload={"message": "Validation Failed"})

        with pytest.raises(GitHubError, match="Validation Failed") as exc_info:
            await api.client("tok").create_pull_request("acme", "web", title="T", body="", head="a", base="b")

        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = GitHubClient("tok", transport=httpx.MockTransport(unreachable))

        with pytest.raises(GitHubError, match="Network error"):
            await client.create_pull_request("acme", "web", title="T", body="", head="a", base="b")


class TestDescription:
    """Tests for the generated pull request body."""

    def test_from_plan(self) -> None:
        body = build_description(PLAN, "ses_1")

        assert body.startswith("## Summary\nAdd dark mode\n")
        assert "## Changes\n- Add a theme toggle\n" in body
        assert "`ses_1`" in body

    def test_without_plan(self) -> None:
        body = build_description(None, "ses_1")

        assert "Changes made with vibeforge" in body
        assert "## Changes" not in body


class TestOpenPullRequest:
    """Tests for PullRequestService.open_pull_request."""

    @pytest.mark.asyncio
    async def test_commits_pushes_and_opens(self, store, ready_session, fake_provider, api, service) -> None:
        pr = await service.open_pull_request(ready_session.id)

        head = f"vibeforge/session-{ready_session.id}"
        assert pr.url == "https://github.com/acme/web/pull/7"
        assert pr.number == 7
        assert (pr.title, pr.head, pr.base) == ("Add dark mode", head, "main")
        assert fake_provider.commands[0] == f"git checkout -B {head}"
        assert fake_provider.commands[1:3] == ["git add -A", "git status --porcelain"]
        assert "commit -m 'Add dark mode" in fake_provider.commands[3]
        assert fake_provider.commands[4] == f"git push https://ghp_secret@github.com/acme/web {head}"
        assert api.sent["head"] == head
        assert api.sent["base"] == "main"
        assert "- Add a theme toggle" in api.sent["body"]
        assert api.requests[0].headers["Authorization"] == "Bearer ghp_secret"

        notes = [m for m in await store.find(Message, session_id=ready_session.id) if m.role == MessageRole.SYSTEM]
        assert notes[0].content == "Pull request created: https://github.com/acme/web/pull/7"
        assert notes[0].metadata == {"pr_url": pr.url, "pr_number": 7}

    @pytest.mark.asyncio
    async def test_explicit_title_and_session_branch(self, store, ready_session, api, service) -> None:
        await store.update(Session, ready_session.id, branch="feature/dark")

        pr = await service.open_pull_request(ready_session.id, title="Dark theme", description="Body")

        assert pr.head == "feature/dark"
        assert api.sent == {"title": "Dark theme", "body": "Body", "head": "feature/dark", "base": "main"}

    @pytest.mark.asyncio
    async def test_refused_before_build_completes(self, store, ready_session, fake_provider, api, service) -> None:
        await store.update(Session, ready_session.id, status=SessionStatus.BUILDING)

        with pytest.raises(PullRequestRefused, match="Build must complete first"):
            await service.open_pull_request(ready_session.id)

        assert fake_provider.commands == []
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_refused_without_git_connection(self, store, session, linked_sandbox, service) -> None:
        await store.update(Session, session.id, status=SessionStatus.READY)

        with pytest.raises(PullRequestRefused, match="No github connection found"):
            await service.open_pull_request(session.id)

    @pytest.mark.asyncio
    async def test_refused_without_changes(self, ready_session, fake_provider, api, service) -> None:
        def clean_tree(command: str) -> CommandResult:
            return CommandResult()

        fake_provider.command_handler = clean_tree

        with pytest.raises(PullRequestRefused, match="No changes to commit"):
            await service.open_pull_request(ready_session.id)

        assert not any(c.startswith("git push") for c in fake_provider.commands)
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_push_failure_hides_token(self, ready_session, fake_provider, api, service) -> None:
        def rejected_push(command: str) -> CommandResult:
            if command.startswith("git push"):
                return CommandResult(stderr="remote rejected https://ghp_secret@github.com/acme/web", exit_code=1)
            return CommandResult(stdout="M src/Header.tsx\n")

        fake_provider.command_handler = rejected_push

        with pytest.raises(PullRequestError, match="git push failed") as exc_info:
            await service.open_pull_request(ready_session.id)

        assert "ghp_secret" not in str(exc_info.value)
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_api_failure(self, store, ready_session, registry) -> None:
        api = GitHubAPI(status=422, payload={"message": "A pull request already exists"})
        sandboxes = SandboxService(store=store, registry=registry)
        service = PullRequestService(store=store, sandboxes=sandboxes, github=api.client)

        with pytest.raises(PullRequestError, match="already exists"):
            await service.open_pull_request(ready_session.id)

        notes = [m for m in await store.find(Message, session_id=ready_session.id) if m.role == MessageRole.SYSTEM]
        assert notes == []

    @pytest.mark.asyncio
    async def test_expired_sandbox(self, ready_session, fake_provider, service) -> None:
        fake_provider.resume_error = UnsupportedOperation("Fake", "resume")

        with pytest.raises(SandboxExpired):
            await service.open_pull_request(ready_session.id)

        assert fake_provider.commands == []
