"""
Stop procedure for running analyses.

Marks a running job interrupted: the interruption line is appended to its
log buffer, the sandbox is destroyed best-effort and the job is finalized
with status interrupted. The orchestrator notices the status at its next
checkpoint and does not overwrite it.
"""

from ..db.models import AnalysisRecord
from ..db.store import JobStore
from ..log_config import get_logger
from ..sandbox.manager import SandboxManager
from ..streaming.buffer import BufferStore
from ..types import AnalysisKind, JobMetadata, JobStatus
from .finalizer import Finalizer

INTERRUPTED_LINE = "⛔ Analysis interrupted by user"

log = get_logger("stop", service="api")


def metadata_from_record(record: AnalysisRecord) -> JobMetadata:
    return JobMetadata(
        kind=AnalysisKind(record.kind),
        user_id=record.user_id,
        team_id=record.team_id,
        repo_url=record.repo_url,
        repository_ref=record.repository_ref,
        model=record.model,
        prompt=record.prompt,
        pr_number=record.pr_number,
        pr_url=record.pr_url,
        pr_title=record.pr_title,
    )


class StopProcedure:
    def __init__(
        self,
        jobs: JobStore,
        buffer: BufferStore,
        sandboxes: SandboxManager,
        finalizer: Finalizer,
    ):
        self.jobs = jobs
        self.buffer = buffer
        self.sandboxes = sandboxes
        self.finalizer = finalizer

    async def stop_job(self, job_id: str) -> JobStatus | None:
        """
        Interrupt a running job.

        Returns the job's resulting status, or None if the job does not exist.
        Jobs that are not running are left untouched.
        """
        record = await self.jobs.get(job_id)
        if record is None:
            return None
        if record.status != JobStatus.RUNNING:
            log.info("stop.not_running", job_id=job_id, status=record.status)
            return JobStatus(record.status)

        try:
            await self.buffer.append(job_id, INTERRUPTED_LINE)
        except Exception as e:
            log.warn("stop.buffer_error", exc=e, job_id=job_id)

        if record.sandbox_id:
            await self.sandboxes.kill_by_id(record.sandbox_id)

        try:
            result = await self.finalizer.finalize(
                job_id, JobStatus.INTERRUPTED, None, metadata_from_record(record)
            )
        except Exception as e:
            log.error("stop.finalize_error", exc=e, job_id=job_id)
        else:
            if not result.written:
                # The run finished first; report what it stored
                status = await self.jobs.get_status(job_id)
                log.info("stop.lost_race", job_id=job_id, status=status)
                return status

        log.info("stop.interrupted", job_id=job_id, sandbox_id=record.sandbox_id)
        return JobStatus.INTERRUPTED

    async def stop_pull_request(self, repo_url: str, pr_number: int, head_sha: str | None) -> list[str]:
        """Interrupt every running job for a pull request. Returns the stopped job ids."""
        stopped = []
        for record in await self.jobs.running_for_pull_request(repo_url, pr_number):
            if await self.stop_job(record.id) == JobStatus.INTERRUPTED:
                stopped.append(record.id)
        log.info(
            "stop.pull_request",
            repo_url=repo_url,
            pr_number=pr_number,
            head_sha=head_sha,
            stopped_count=len(stopped),
        )
        return stopped
