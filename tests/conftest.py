"""Shared fixtures and fakes for the analysis service tests."""

import json
from typing import Any

import httpx
import pytest

from analysis_infra.analysis.model_resolver import ModelResolver
from analysis_infra.config import Settings
from analysis_infra.db.models import ModelRecord, TeamRecord, UserRecord
from analysis_infra.db.session import Database
from analysis_infra.db.store import FeedbackStore, InstallationStore, JobStore, SettingsStore
from analysis_infra.sandbox.manager import SandboxNotFoundError
from analysis_infra.sandbox.types import CommandResult, SandboxHandle, SandboxStatus
from analysis_infra.streaming.buffer import BufferStore


class MockResponse:
    """Stand-in for httpx.Response with just what the code under test reads."""

    def __init__(self, status_code: int, json_data: Any = None):
        self.status_code = status_code
        self._json_data = json_data
        self.content = json.dumps(json_data).encode() if json_data is not None else b""
        self.request = httpx.Request("GET", "https://api.github.com")

    def json(self) -> Any:
        return self._json_data

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {self.status_code}",
                request=self.request,
                response=httpx.Response(self.status_code, request=self.request),
            )


class FakeRedis:
    """In-memory subset of redis.asyncio.Redis used by BufferStore."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.fail_appends = False

    @staticmethod
    def _encode(value: Any) -> bytes:
        if isinstance(value, bytes):
            return value
        return str(value).encode("utf-8")

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False):
        if nx and key in self.data:
            return None
        self.data[key] = self._encode(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def getdel(self, key: str) -> bytes | None:
        self.ttls.pop(key, None)
        return self.data.pop(key, None)

    async def append(self, key: str, value: Any) -> int:
        if self.fail_appends:
            raise ConnectionError("redis unavailable")
        self.data[key] = self.data.get(key, b"") + self._encode(value)
        return len(self.data[key])

    async def expire(self, key: str, seconds: int) -> bool:
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    async def incrby(self, key: str, amount: int) -> int:
        value = int(self.data.get(key, b"0")) + amount
        self.data[key] = str(value).encode()
        return value

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


class FakeSandbox:
    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id


class FakeSandboxManager:
    """
    Scripted SandboxManager.

    run_command replays `output` through the handlers and returns `exit_code`,
    or raises `run_error` when set.
    """

    def __init__(
        self,
        output: list[tuple[str, str]] | None = None,
        exit_code: int = 0,
        live_sandboxes: set[str] | None = None,
    ):
        self.output = output or []
        self.exit_code = exit_code
        self.live_sandboxes = live_sandboxes or set()
        self.run_error: Exception | None = None
        self.on_run = None
        self.created: list[SandboxHandle] = []
        self.connected: list[str] = []
        self.paused: list[str] = []
        self.killed: list[str] = []
        self.killed_by_id: list[str] = []
        self.commands: list[tuple[str, dict]] = []

    async def create(self, config) -> SandboxHandle:
        sandbox_id = f"sbx-{len(self.created) + 1}"
        handle = SandboxHandle(sandbox_id, config.timeout_seconds, FakeSandbox(sandbox_id))
        self.created.append(handle)
        return handle

    async def connect(self, sandbox_id: str, timeout_seconds: int | None = None) -> SandboxHandle:
        if sandbox_id not in self.live_sandboxes:
            raise SandboxNotFoundError(f"Sandbox {sandbox_id} not found")
        self.connected.append(sandbox_id)
        return SandboxHandle(sandbox_id, timeout_seconds or 3600, FakeSandbox(sandbox_id), True)

    async def pause(self, handle: SandboxHandle) -> bool:
        self.paused.append(handle.sandbox_id)
        handle.status = SandboxStatus.PAUSED
        return True

    async def kill(self, handle: SandboxHandle | None) -> None:
        if handle is None or handle.status == SandboxStatus.KILLED:
            return
        self.killed.append(handle.sandbox_id)
        handle.status = SandboxStatus.KILLED

    async def kill_by_id(self, sandbox_id: str) -> bool:
        self.killed_by_id.append(sandbox_id)
        return True

    async def run_command(self, handle, command, on_stdout, on_stderr, envs=None, timeout_seconds=3600):
        self.commands.append((command, envs or {}))
        for stream, text in self.output:
            await (on_stdout if stream == "stdout" else on_stderr)(text)
        if self.on_run is not None:
            await self.on_run()
        if self.run_error is not None:
            raise self.run_error
        return CommandResult(exit_code=self.exit_code)


class FakeRepositoryAuthenticator:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def authenticate(self, repo_url: str, user_id: str) -> str:
        self.calls.append((repo_url, user_id))
        if self.error is not None:
            raise self.error
        return repo_url.replace("https://", "https://x-access-token:ghs_testtoken@") + ".git"


@pytest.fixture
def settings():
    return Settings(
        google_api_key="test-google-key",
        github_webhook_secret="webhook-secret",
        bot_login="beetles-ai[bot]",
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def buffer(redis):
    return BufferStore(redis, ttl_seconds=600)


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def jobs(db):
    return JobStore(db)


@pytest.fixture
def accounts(db):
    return SettingsStore(db)


@pytest.fixture
def installations(db):
    return InstallationStore(db)


@pytest.fixture
def feedback(db):
    return FeedbackStore(db)


@pytest.fixture
def models(settings, accounts):
    return ModelResolver(settings, accounts)


@pytest.fixture
def pr_model(db):
    """A PR model configured for user-1 and team-1."""
    defaults = {"defaultModelPr": "model-pr"}
    with db.session() as session:
        session.add(UserRecord(id="user-1", email="dev@acme.test", settings=defaults))
        session.add(TeamRecord(id="team-1", name="Acme", settings=defaults))
        session.add(
            ModelRecord(
                id="model-pr", name="Gemini Flash", model_id="gemini-2.0-flash", provider="google"
            )
        )
    return "Gemini Flash"
