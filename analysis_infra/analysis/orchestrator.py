"""
Analysis orchestrator - runs one analysis job end to end.

Flow:
1. Resolve the model for the job's kind from team (or user) settings
2. Authenticate repository access
3. Create the job record (or adopt the one written by the PR trigger, or
   promote a draft)
4. Reconnect to the repository's previous sandbox, else create one
5. Persist the sandbox id
6. Initialize the log buffer
7. Build the provider-specific analyzer command
8. Run it in the background, streaming output through LogStream
9. Wait for the exit code
10. Skip finalize if the job was interrupted meanwhile
11. Pause the sandbox
12. Finalize (completed on exit 0, error otherwise)
13. Always kill the sandbox handle

A stop request is observed by re-reading the job status right before each
finalize; the remote command itself is not cancelled.
"""

from ..auth.internal import AuthConfigurationError, generate_job_token
from ..auth.repository import RepositoryAuthenticator
from ..config import Settings
from ..db.models import new_id
from ..db.store import JobStore, SettingsStore
from ..errors import AnalysisError, RepositoryAuthError
from ..log_config import StructuredLogger, get_logger
from ..notifications import Notifier, spawn_detached
from ..sandbox.command import build_analysis_command, sandbox_envs
from ..sandbox.manager import SandboxError, SandboxManager
from ..sandbox.types import SandboxConfig, SandboxHandle
from ..streaming.buffer import BufferStore
from ..streaming.pipeline import LogStream
from ..types import (
    AnalysisCallbacks,
    AnalysisRequest,
    AnalysisResult,
    JobMetadata,
    JobStatus,
    ResolvedModel,
)
from .finalizer import Finalizer
from .model_resolver import ModelResolver


class AnalysisOrchestrator:
    """Owns the job status state machine and the job's sandbox."""

    INTERRUPTED_MESSAGE = "Analysis was interrupted"

    def __init__(
        self,
        settings: Settings,
        jobs: JobStore,
        accounts: SettingsStore,
        buffer: BufferStore,
        sandboxes: SandboxManager,
        finalizer: Finalizer,
        repo_auth: RepositoryAuthenticator,
        notifier: Notifier | None = None,
    ):
        self.settings = settings
        self.jobs = jobs
        self.accounts = accounts
        self.buffer = buffer
        self.sandboxes = sandboxes
        self.finalizer = finalizer
        self.repo_auth = repo_auth
        self.notifier = notifier
        self.models = ModelResolver(settings, accounts)
        self.log = get_logger("orchestrator", service="api")

    async def resolve_model(self, request: AnalysisRequest) -> ResolvedModel:
        return await self.models.resolve(request)

    async def run(
        self,
        request: AnalysisRequest,
        callbacks: AnalysisCallbacks | None = None,
    ) -> AnalysisResult:
        job_id = request.job_id or new_id()
        log = self.log.bind(job_id=job_id, kind=request.kind.value)
        stream = LogStream(job_id, self.buffer, callbacks)

        log.info("analysis.start", repo_url=request.repo_url, user_id=request.user_id)

        try:
            model = await self.resolve_model(request)
        except AnalysisError as e:
            log.warn("analysis.config_error", exc=e)
            await stream.progress(f"❌ {e}")
            return AnalysisResult(success=False, job_id=job_id, error=str(e))

        try:
            auth_repo_url = await self.repo_auth.authenticate(request.repo_url, request.user_id)
        except RepositoryAuthError as e:
            log.warn("analysis.auth_error", exc=e)
            await stream.progress(f"❌ {e}")
            return AnalysisResult(success=False, job_id=job_id, error=str(e))

        metadata = request.metadata(model.name)
        handle: SandboxHandle | None = None
        exit_code: int | None = None

        try:
            if not await self._ensure_record(job_id, metadata, log):
                return self._interrupted(job_id, None, None)

            await stream.progress("🔧 Preparing sandbox...")
            handle = await self._acquire_sandbox(request, job_id, log)
            await self.jobs.set_sandbox_id(job_id, handle.sandbox_id)

            await stream.init(self.settings.buffer_ttl_seconds)

            command = build_analysis_command(
                self.settings,
                provider=model.provider,
                repo_url=auth_repo_url,
                job_id=job_id,
                user_id=request.user_id,
                model_id=model.model_id,
                kind=request.kind,
                github_repository_id=request.github_repository_id,
                branch=request.branch,
                data=self._command_data(request, job_id, log),
            )

            await stream.progress("🚀 Running analysis...")
            result = await self.sandboxes.run_command(
                handle,
                command.command,
                on_stdout=stream.stdout,
                on_stderr=stream.stderr,
                envs=command.envs,
                timeout_seconds=int(self.settings.command_timeout_seconds),
            )
            exit_code = result.exit_code
            log.info("analysis.command_exited", exit_code=exit_code, sandbox_id=handle.sandbox_id)

            if await self._is_interrupted(job_id, log):
                log.info("analysis.finalize_skipped", reason="interrupted", exit_code=exit_code)
                return self._interrupted(job_id, exit_code, handle.sandbox_id)

            await self.sandboxes.pause(handle)

            status = JobStatus.COMPLETED if exit_code == 0 else JobStatus.ERROR
            await self._finalize(stream, log, job_id, status, exit_code, metadata)
            self._notify(job_id, request, status)

            if status == JobStatus.COMPLETED:
                await stream.progress("✅ Analysis completed")
            else:
                await stream.progress(f"❌ Analysis exited with code {exit_code}")
            log.info("analysis.finished", outcome=status.value, exit_code=exit_code)
            return AnalysisResult(
                success=status == JobStatus.COMPLETED,
                job_id=job_id,
                exit_code=exit_code,
                sandbox_id=handle.sandbox_id,
                error=None if status == JobStatus.COMPLETED else f"Analysis exited with code {exit_code}",
            )
        except Exception as e:
            log.error("analysis.error", exc=e)
            sandbox_id = handle.sandbox_id if handle else None

            if await self._is_interrupted(job_id, log):
                log.info("analysis.finalize_skipped", reason="interrupted")
                return self._interrupted(job_id, exit_code, sandbox_id)

            final_exit_code = exit_code if exit_code is not None else -1
            await self._finalize(
                stream, log, job_id, JobStatus.ERROR, final_exit_code, metadata, error_message=str(e)
            )
            self._notify(job_id, request, JobStatus.ERROR)
            await stream.progress(f"❌ Analysis failed: {e}")
            return AnalysisResult(
                success=False,
                job_id=job_id,
                exit_code=final_exit_code,
                sandbox_id=sandbox_id,
                error=str(e),
            )
        finally:
            await self.sandboxes.kill(handle)

    async def _ensure_record(self, job_id: str, metadata: JobMetadata, log: StructuredLogger) -> bool:
        """Create or promote the job record. False if it is already interrupted."""
        existing = await self.jobs.get(job_id)
        if existing is None:
            await self.jobs.create(job_id, metadata, JobStatus.RUNNING)
            log.info("analysis.record_created")
            return True
        if existing.status == JobStatus.INTERRUPTED:
            log.info("analysis.already_interrupted")
            return False
        if existing.status == JobStatus.DRAFT:
            await self.jobs.mark_running(job_id)
        return True

    async def _acquire_sandbox(
        self, request: AnalysisRequest, job_id: str, log: StructuredLogger
    ) -> SandboxHandle:
        previous = await self.jobs.latest_for_repository(
            request.repo_url, request.repository_ref, exclude_job_id=job_id
        )
        if previous is not None and previous.sandbox_id:
            try:
                return await self.sandboxes.connect(
                    previous.sandbox_id, int(self.settings.sandbox_timeout_seconds)
                )
            except SandboxError as e:
                log.info("sandbox.reconnect_failed", exc=e, previous_sandbox_id=previous.sandbox_id)

        return await self.sandboxes.create(
            SandboxConfig(
                template=self.settings.e2b_sandbox_template,
                timeout_seconds=int(self.settings.sandbox_timeout_seconds),
                envs=sandbox_envs(self.settings),
                metadata={"job_id": job_id},
            )
        )

    def _command_data(self, request: AnalysisRequest, job_id: str, log: StructuredLogger) -> dict:
        data = dict(request.data)
        if self.settings.api_base_url:
            try:
                data["callback"] = {
                    "base_url": self.settings.api_base_url,
                    "token": generate_job_token(job_id),
                }
            except AuthConfigurationError as e:
                log.warn("analysis.callback_disabled", exc=e)
        return data

    async def _is_interrupted(self, job_id: str, log: StructuredLogger) -> bool:
        try:
            return await self.jobs.get_status(job_id) == JobStatus.INTERRUPTED
        except Exception as e:
            # The store refuses to overwrite interrupted, so finalizing is still safe
            log.warn("analysis.status_check_error", exc=e)
            return False

    async def _finalize(
        self,
        stream: LogStream,
        log: StructuredLogger,
        job_id: str,
        status: JobStatus,
        exit_code: int | None,
        metadata: JobMetadata,
        error_message: str | None = None,
    ) -> None:
        try:
            await self.finalizer.finalize(job_id, status, exit_code, metadata, error_message)
        except Exception as e:
            log.error("analysis.persist_error", exc=e, status=status.value)
            await stream.progress(f"⚠️ Failed to save analysis results: {e}")

    def _notify(self, job_id: str, request: AnalysisRequest, status: JobStatus) -> None:
        if self.notifier is None:
            return
        spawn_detached(
            self.notifier.analysis_finished(job_id, request.user_id, request.repo_url, status),
            self.log.bind(job_id=job_id),
            "notify.error",
        )

    def _interrupted(self, job_id: str, exit_code: int | None, sandbox_id: str | None) -> AnalysisResult:
        return AnalysisResult(
            success=False,
            job_id=job_id,
            exit_code=exit_code,
            sandbox_id=sandbox_id,
            error=self.INTERRUPTED_MESSAGE,
            interrupted=True,
        )
