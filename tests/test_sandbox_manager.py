"""Tests for E2B sandbox lifecycle management."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from e2b import NotFoundException

from analysis_infra.sandbox import manager as manager_module
from analysis_infra.sandbox.manager import (
    SandboxConnectError,
    SandboxManager,
    SandboxNotFoundError,
)
from analysis_infra.sandbox.types import SandboxConfig, SandboxHandle, SandboxStatus


class FakeCommandExit(Exception):
    def __init__(self, exit_code: int, error: str | None = None):
        super().__init__(error)
        self.exit_code = exit_code
        self.error = error


def make_remote(sandbox_id: str = "sbx-1") -> MagicMock:
    remote = MagicMock()
    remote.sandbox_id = sandbox_id
    remote.set_timeout = AsyncMock()
    remote.beta_pause = AsyncMock()
    remote.kill = AsyncMock(return_value=True)
    remote.commands.run = AsyncMock()
    return remote


@pytest.fixture
def async_sandbox(monkeypatch):
    fake = MagicMock()
    fake.create = AsyncMock(return_value=make_remote())
    fake.connect = AsyncMock(return_value=make_remote("sbx-old"))
    fake.kill = AsyncMock(return_value=True)
    monkeypatch.setattr(manager_module, "AsyncSandbox", fake)
    return fake


@pytest.fixture
def manager():
    return SandboxManager(api_key="e2b-key", template="analyzer", timeout_seconds=1800)


class TestCreateAndConnect:
    @pytest.mark.asyncio
    async def test_create_passes_config(self, manager, async_sandbox):
        handle = await manager.create(
            SandboxConfig(timeout_seconds=600, envs={"A": "1"}, metadata={"job_id": "job-1"})
        )

        async_sandbox.create.assert_awaited_once_with(
            template="analyzer",
            timeout=600,
            envs={"A": "1"},
            metadata={"job_id": "job-1"},
            api_key="e2b-key",
        )
        assert handle.sandbox_id == "sbx-1"
        assert handle.reconnected is False

    @pytest.mark.asyncio
    async def test_connect_extends_timeout(self, manager, async_sandbox):
        handle = await manager.connect("sbx-old", 900)

        async_sandbox.connect.assert_awaited_once_with("sbx-old", api_key="e2b-key")
        handle.sandbox.set_timeout.assert_awaited_once_with(900)
        assert handle.reconnected is True

    @pytest.mark.asyncio
    async def test_connect_to_expired_sandbox(self, manager, async_sandbox):
        async_sandbox.connect.side_effect = NotFoundException("sandbox not found")

        with pytest.raises(SandboxNotFoundError):
            await manager.connect("sbx-gone")

    @pytest.mark.asyncio
    async def test_connect_other_failure(self, manager, async_sandbox):
        async_sandbox.connect.side_effect = TimeoutError("slow")

        with pytest.raises(SandboxConnectError):
            await manager.connect("sbx-old")


class TestPauseAndKill:
    @pytest.mark.asyncio
    async def test_pause(self, manager):
        handle = SandboxHandle("sbx-1", 60, make_remote())

        assert await manager.pause(handle) is True
        assert handle.status == SandboxStatus.PAUSED

    @pytest.mark.asyncio
    async def test_pause_failure_is_reported_not_raised(self, manager):
        remote = make_remote()
        remote.beta_pause.side_effect = RuntimeError("pause unsupported")
        handle = SandboxHandle("sbx-1", 60, remote)

        assert await manager.pause(handle) is False
        assert handle.status == SandboxStatus.RUNNING

    @pytest.mark.asyncio
    async def test_kill_is_idempotent(self, manager):
        remote = make_remote()
        handle = SandboxHandle("sbx-1", 60, remote)

        await manager.kill(handle)
        await manager.kill(handle)
        await manager.kill(None)

        remote.kill.assert_awaited_once()
        assert handle.status == SandboxStatus.KILLED

    @pytest.mark.asyncio
    async def test_kill_swallows_remote_errors(self, manager):
        remote = make_remote()
        remote.kill.side_effect = RuntimeError("network")
        handle = SandboxHandle("sbx-1", 60, remote)

        await manager.kill(handle)

        assert handle.status == SandboxStatus.KILLED

    @pytest.mark.asyncio
    async def test_kill_by_id(self, manager, async_sandbox):
        assert await manager.kill_by_id("sbx-1") is True
        async_sandbox.kill.assert_awaited_once_with("sbx-1", api_key="e2b-key")

    @pytest.mark.asyncio
    async def test_kill_by_id_missing(self, manager, async_sandbox):
        async_sandbox.kill.side_effect = NotFoundException("gone")
        assert await manager.kill_by_id("sbx-1") is False


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_returns_exit_code(self, manager):
        remote = make_remote()
        process = MagicMock(pid=12)
        process.wait = AsyncMock(return_value=MagicMock(exit_code=0, error=None))
        remote.commands.run.return_value = process
        on_stdout, on_stderr = AsyncMock(), AsyncMock()

        result = await manager.run_command(
            SandboxHandle("sbx-1", 60, remote), "echo hi", on_stdout, on_stderr, envs={"K": "V"}
        )

        assert result.exit_code == 0
        remote.commands.run.assert_awaited_once_with(
            "echo hi",
            background=True,
            envs={"K": "V"},
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            timeout=SandboxManager.COMMAND_TIMEOUT_SECONDS,
        )

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_a_result(self, manager, monkeypatch):
        monkeypatch.setattr(manager_module, "CommandExitException", FakeCommandExit)
        remote = make_remote()
        process = MagicMock(pid=12)
        process.wait = AsyncMock(side_effect=FakeCommandExit(3, "analyzer crashed"))
        remote.commands.run.return_value = process

        result = await manager.run_command(
            SandboxHandle("sbx-1", 60, remote), "false", AsyncMock(), AsyncMock()
        )

        assert result.exit_code == 3
        assert result.error == "analyzer crashed"
