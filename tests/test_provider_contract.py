"""
Behaviour every sandbox provider shares, run against each fake SDK.
"""

import pytest

from vibeforge.core.sandbox import DaytonaProvider, E2BProvider, ModalProvider, SandboxProvider
from vibeforge.core.sandbox.base import RemoteSandboxProvider
from vibeforge.core.sandbox.models import CreateWorkspaceOptions, ExecutionEventType

OPTIONS = CreateWorkspaceOptions(repo_url="https://github.com/acme/web")


@pytest.fixture(params=["daytona", "e2b", "modal"])
def provider(request, config, daytona_sdk, e2b_sdk, modal_sdk):
    if request.param == "daytona":
        return DaytonaProvider(config, sdk=daytona_sdk)
    if request.param == "e2b":
        return E2BProvider(config, sdk=e2b_sdk)
    return ModalProvider(config, sdk=modal_sdk)


class TestProviderContract:
    """Tests for the SandboxProvider contract."""

    def test_satisfies_protocol(self, provider) -> None:
        assert isinstance(provider, SandboxProvider)

    def test_unavailable_without_credentials(self, provider) -> None:
        assert provider.is_available() is False

    @pytest.mark.asyncio
    async def test_stream_ends_with_one_done(self, provider) -> None:
        workspace = await provider.create_workspace(OPTIONS)

        events = [e async for e in provider.run_code(workspace.id, "print('hi')")]

        assert events[-1].type == ExecutionEventType.DONE
        assert sum(e.type == ExecutionEventType.DONE for e in events) == 1

    @pytest.mark.asyncio
    async def test_failed_stream_has_error_before_done(self, provider) -> None:
        events = [e async for e in provider.run_code("missing-workspace", "1", language="cobol")]

        assert [e.type for e in events] == [ExecutionEventType.ERROR, ExecutionEventType.DONE]

    @pytest.mark.asyncio
    async def test_delete_unknown_is_noop(self, provider) -> None:
        await provider.delete_workspace("missing-workspace")

    @pytest.mark.asyncio
    async def test_pause_never_raises_for_live_workspace(self, provider) -> None:
        workspace = await provider.create_workspace(OPTIONS)
        await provider.pause_workspace(workspace.id)

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_not_raised(self, provider, daytona_api, e2b_sdk, modal_sdk) -> None:
        workspace = await provider.create_workspace(OPTIONS)
        for sandbox in [*daytona_api.sandboxes.values(), *e2b_sdk.sandboxes, *modal_sdk.sandboxes]:
            sandbox.exec_handler = lambda cmd: (7, "")

        result = await provider.execute_command(workspace.id, "exit 7")

        assert result.exit_code == 7
        assert not result.ok


class TestRemoteBase:
    """Tests for the shared SDK-backed base class."""

    def test_base_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            RemoteSandboxProvider()

    def test_subclass_must_implement_sdk_calls(self) -> None:
        class HalfDone(RemoteSandboxProvider):
            def _load_sdk(self):
                return None

        with pytest.raises(TypeError, match="execute_command"):
            HalfDone()
