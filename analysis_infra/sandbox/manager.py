"""
Sandbox lifecycle management on E2B.

A job gets one sandbox: reconnected from a previous run when that session is
still alive, otherwise freshly created. After the run the sandbox is paused
and the handle is killed in the job's cleanup path.
"""

from collections.abc import Awaitable, Callable

from e2b import CommandExitException, NotFoundException
from e2b_code_interpreter import AsyncSandbox

from ..log_config import get_logger
from .types import CommandResult, SandboxConfig, SandboxHandle, SandboxStatus

log = get_logger("sandbox_manager", service="api")

OutputHandler = Callable[[str], Awaitable[None]]


class SandboxError(Exception):
    """Base class for sandbox lifecycle failures."""

    pass


class SandboxNotFoundError(SandboxError):
    """The sandbox no longer exists (expired or killed)."""

    pass


class SandboxConnectError(SandboxError):
    """Reconnecting to an existing sandbox failed for another reason."""

    pass


class SandboxManager:
    """
    Creates, reconnects, pauses and destroys E2B sandboxes.

    kill() and kill_by_id() never raise: they are called from cleanup paths
    where a failure must not replace the job's real outcome.
    """

    DEFAULT_TIMEOUT_SECONDS = 60 * 60
    COMMAND_TIMEOUT_SECONDS = 60 * 60

    def __init__(
        self,
        api_key: str | None = None,
        template: str | None = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.template = template
        self.timeout_seconds = timeout_seconds

    async def create(self, config: SandboxConfig) -> SandboxHandle:
        template = config.template or self.template
        timeout = config.timeout_seconds or self.timeout_seconds
        sandbox = await AsyncSandbox.create(
            template=template,
            timeout=timeout,
            envs=config.envs,
            metadata=config.metadata or None,
            api_key=self.api_key,
        )
        log.info("sandbox.created", sandbox_id=sandbox.sandbox_id, template=template)
        return SandboxHandle(sandbox_id=sandbox.sandbox_id, timeout_seconds=timeout, sandbox=sandbox)

    async def connect(self, sandbox_id: str, timeout_seconds: int | None = None) -> SandboxHandle:
        """Reconnect to a running or paused sandbox.

        Raises:
            SandboxNotFoundError: the sandbox expired or was destroyed
            SandboxConnectError: any other reconnect failure
        """
        timeout = timeout_seconds or self.timeout_seconds
        try:
            sandbox = await AsyncSandbox.connect(sandbox_id, api_key=self.api_key)
            await sandbox.set_timeout(timeout)
        except NotFoundException as e:
            raise SandboxNotFoundError(f"Sandbox {sandbox_id} not found: {e}") from e
        except Exception as e:
            raise SandboxConnectError(f"Failed to connect to sandbox {sandbox_id}: {e}") from e

        log.info("sandbox.reconnected", sandbox_id=sandbox_id)
        return SandboxHandle(
            sandbox_id=sandbox_id,
            timeout_seconds=timeout,
            sandbox=sandbox,
            reconnected=True,
        )

    async def pause(self, handle: SandboxHandle) -> bool:
        """Pause the sandbox so a later job can reconnect to it."""
        try:
            await handle.sandbox.beta_pause()
        except Exception as e:
            log.warn("sandbox.pause_error", exc=e, sandbox_id=handle.sandbox_id)
            return False
        handle.status = SandboxStatus.PAUSED
        log.info("sandbox.paused", sandbox_id=handle.sandbox_id)
        return True

    async def kill(self, handle: SandboxHandle | None) -> None:
        if handle is None or handle.status == SandboxStatus.KILLED:
            return
        try:
            await handle.sandbox.kill()
            log.info("sandbox.killed", sandbox_id=handle.sandbox_id)
        except NotFoundException:
            log.debug("sandbox.already_gone", sandbox_id=handle.sandbox_id)
        except Exception as e:
            log.warn("sandbox.kill_error", exc=e, sandbox_id=handle.sandbox_id)
        finally:
            handle.status = SandboxStatus.KILLED

    async def kill_by_id(self, sandbox_id: str) -> bool:
        """Destroy a sandbox known only by id. Returns True if it was killed."""
        try:
            killed = await AsyncSandbox.kill(sandbox_id, api_key=self.api_key)
        except NotFoundException:
            log.debug("sandbox.already_gone", sandbox_id=sandbox_id)
            return False
        except Exception as e:
            log.warn("sandbox.kill_error", exc=e, sandbox_id=sandbox_id)
            return False
        log.info("sandbox.killed", sandbox_id=sandbox_id, killed=bool(killed))
        return bool(killed)

    async def run_command(
        self,
        handle: SandboxHandle,
        command: str,
        on_stdout: OutputHandler,
        on_stderr: OutputHandler,
        envs: dict[str, str] | None = None,
        timeout_seconds: int = COMMAND_TIMEOUT_SECONDS,
    ) -> CommandResult:
        """Run a long command in the background and wait for it to exit.

        A non-zero exit is returned as a result, not raised.
        """
        process = await handle.sandbox.commands.run(
            command,
            background=True,
            envs=envs or None,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            timeout=timeout_seconds,
        )
        log.info("sandbox.command_started", sandbox_id=handle.sandbox_id, pid=process.pid)
        try:
            result = await process.wait()
        except CommandExitException as e:
            return CommandResult(exit_code=e.exit_code, error=e.error)
        return CommandResult(exit_code=result.exit_code, error=result.error)
