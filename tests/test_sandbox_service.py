"""
Tests for SandboxService.
"""

import asyncio

import pytest

from vibeforge.core.sandbox.errors import (
    ProviderOperationError,
    SandboxExpired,
    SandboxStartError,
    UnsupportedOperation,
)
from vibeforge.core.sandbox.models import SandboxCapabilities, WorkspaceStatus
from vibeforge.core.sandbox.registry import ProviderRegistry
from vibeforge.core.services import (
    RepositoryNotFound,
    SandboxNotFound,
    SandboxService,
    SessionNotFound,
)
from vibeforge.core.store import GitConnection, Repository, Sandbox, Session

from conftest import FakeProvider


@pytest.fixture
def service(store, registry):
    return SandboxService(store=store, registry=registry)


class TestEnsureSandbox:
    """Tests for get-or-create."""

    @pytest.mark.asyncio
    async def test_creates_and_links(self, service, store, session, fake_provider) -> None:
        result = await service.ensure_sandbox(session.id)

        assert result.created
        assert result.sandbox.workspace_id == "ws-1"
        assert result.sandbox.preview_url == "https://ws-1.preview.test"
        assert (await store.get(Session, session.id)).sandbox_id == result.sandbox.id
        options = fake_provider.created[0]
        assert options.repo_url == "https://github.com/acme/web"
        assert options.branch == "main"
        assert options.git_token is None

    @pytest.mark.asyncio
    async def test_second_call_reuses(self, service, session, fake_provider) -> None:
        first = await service.ensure_sandbox(session.id)
        second = await service.ensure_sandbox(session.id)

        assert not second.created
        assert second.sandbox.id == first.sandbox.id
        assert len(fake_provider.created) == 1

    @pytest.mark.asyncio
    async def test_linked_sandbox_makes_no_provider_calls(
        self, service, session, linked_sandbox, fake_provider
    ) -> None:
        result = await service.ensure_sandbox(session.id)

        assert result.sandbox.id == linked_sandbox.id
        assert fake_provider.created == []

    @pytest.mark.asyncio
    async def test_repository_sandbox_is_shared(
        self, service, store, repository, linked_sandbox, fake_provider
    ) -> None:
        other = await store.insert(Session(repository_id=repository.id, user_id="u2"))

        result = await service.ensure_sandbox(other.id)

        assert result.sandbox.id == linked_sandbox.id
        assert (await store.get(Session, other.id)).sandbox_id == linked_sandbox.id
        assert fake_provider.created == []

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_once(self, service, store, repository, fake_provider) -> None:
        fake_provider.create_delay = 0.01
        first = await store.insert(Session(repository_id=repository.id))
        second = await store.insert(Session(repository_id=repository.id))

        results = await asyncio.gather(
            service.ensure_sandbox(first.id),
            service.ensure_sandbox(second.id),
        )

        assert len(fake_provider.created) == 1
        assert results[0].sandbox.id == results[1].sandbox.id
        assert len(await store.find(Sandbox)) == 1

    @pytest.mark.asyncio
    async def test_uses_git_connection(self, service, store, session, fake_provider) -> None:
        await store.insert(GitConnection(user_id="u1", access_token="ghp_secret"))

        await service.ensure_sandbox(session.id)

        assert fake_provider.created[0].git_token == "ghp_secret"

    @pytest.mark.asyncio
    async def test_explicit_user_wins(self, service, store, session, fake_provider) -> None:
        await store.insert(GitConnection(user_id="u1", access_token="first"))
        await store.insert(GitConnection(user_id="u9", access_token="second"))

        await service.ensure_sandbox(session.id, user_id="u9")

        assert fake_provider.created[0].git_token == "second"

    @pytest.mark.asyncio
    async def test_session_branch(self, service, store, session, fake_provider) -> None:
        await store.update(Session, session.id, branch="feature/dark")
        await service.ensure_sandbox(session.id)
        assert fake_provider.created[0].branch == "feature/dark"

    @pytest.mark.asyncio
    async def test_unknown_session(self, service) -> None:
        with pytest.raises(SessionNotFound):
            await service.ensure_sandbox("ses_missing")

    @pytest.mark.asyncio
    async def test_unknown_repository(self, service, store) -> None:
        orphan = await store.insert(Session(repository_id="repo_missing"))
        with pytest.raises(RepositoryNotFound):
            await service.ensure_sandbox(orphan.id)


class TestEnsureRunning:
    """Tests for resuming workspaces."""

    @pytest.mark.asyncio
    async def test_resume_updates_record(self, service, linked_sandbox) -> None:
        updated = await service.ensure_running(linked_sandbox.id, linked_sandbox.workspace_id)

        assert updated.status == WorkspaceStatus.RUNNING
        assert updated.preview_url == "https://ws-existing.resumed.test"
        assert updated.last_active_at >= linked_sandbox.last_active_at

    @pytest.mark.asyncio
    async def test_already_running_is_success(self, service, linked_sandbox, fake_provider) -> None:
        fake_provider.resume_error = ProviderOperationError("Sandbox is already running")

        updated = await service.ensure_running(linked_sandbox.id, linked_sandbox.workspace_id)

        assert updated.status == WorkspaceStatus.RUNNING
        assert updated.preview_url == linked_sandbox.preview_url

    @pytest.mark.asyncio
    async def test_unsupported_resume_means_expired(self, service, linked_sandbox, fake_provider) -> None:
        fake_provider.resume_error = UnsupportedOperation("Fake", "resume")

        with pytest.raises(SandboxExpired, match="create a new session"):
            await service.ensure_running(linked_sandbox.id, linked_sandbox.workspace_id)

    @pytest.mark.asyncio
    async def test_other_failure(self, service, linked_sandbox, fake_provider) -> None:
        fake_provider.resume_error = ProviderOperationError("quota exceeded")

        with pytest.raises(SandboxStartError, match="quota exceeded"):
            await service.ensure_running(linked_sandbox.id, linked_sandbox.workspace_id)

    @pytest.mark.asyncio
    async def test_unknown_sandbox(self, service) -> None:
        with pytest.raises(SandboxNotFound):
            await service.ensure_running("sbx_missing", "ws-1")


class TestLifecycle:
    """Tests for pause, delete, touch and preview."""

    @pytest.mark.asyncio
    async def test_pause(self, service, linked_sandbox, fake_provider) -> None:
        paused = await service.pause_sandbox(linked_sandbox.id)

        assert fake_provider.paused == ["ws-existing"]
        assert paused.status == WorkspaceStatus.PAUSED

    @pytest.mark.asyncio
    async def test_pause_without_capability_keeps_status(self, store, linked_sandbox) -> None:
        provider = FakeProvider(capabilities=SandboxCapabilities())
        service = SandboxService(store=store, registry=ProviderRegistry([provider]))

        paused = await service.pause_sandbox(linked_sandbox.id)

        assert paused.status == WorkspaceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_delete_unlinks_sessions(self, service, store, session, linked_sandbox, fake_provider) -> None:
        await service.delete_sandbox(linked_sandbox.id)

        assert fake_provider.deleted == ["ws-existing"]
        assert await store.get(Sandbox, linked_sandbox.id) is None
        assert (await store.get(Session, session.id)).sandbox_id is None

    @pytest.mark.asyncio
    async def test_touch(self, service, linked_sandbox) -> None:
        touched = await service.touch_sandbox(linked_sandbox.id)
        assert touched.last_active_at >= linked_sandbox.last_active_at

    @pytest.mark.asyncio
    async def test_preview_url_is_remembered(self, service, store, linked_sandbox) -> None:
        url = await service.get_preview_url(linked_sandbox.id, 5173)

        assert url == "https://ws-existing-5173.preview.test"
        assert (await store.get(Sandbox, linked_sandbox.id)).preview_url == url

    @pytest.mark.asyncio
    async def test_provider_for(self, service, linked_sandbox, fake_provider) -> None:
        assert service.provider_for(linked_sandbox) is fake_provider

    @pytest.mark.asyncio
    async def test_repository_default_branch(self, service, store, fake_provider) -> None:
        repo = await store.insert(Repository(name="api", url="https://github.com/acme/api", default_branch="develop"))
        session = await store.insert(Session(repository_id=repo.id))

        await service.ensure_sandbox(session.id)

        assert fake_provider.created[0].branch == "develop"
