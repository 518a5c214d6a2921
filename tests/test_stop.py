"""Tests for interrupting running analyses."""

import pytest

from analysis_infra.analysis.finalizer import Finalizer, decompress_logs
from analysis_infra.analysis.stop import INTERRUPTED_LINE, StopProcedure
from analysis_infra.types import AnalysisKind, JobMetadata, JobStatus
from tests.conftest import FakeSandboxManager

REPO_URL = "https://github.com/acme/app"


def metadata(pr_number=42) -> JobMetadata:
    return JobMetadata(
        kind=AnalysisKind.PR_ANALYSIS,
        user_id="user-1",
        repo_url=REPO_URL,
        model="Gemini Flash",
        prompt="Review",
        pr_number=pr_number,
    )


@pytest.fixture
def sandboxes():
    return FakeSandboxManager()


@pytest.fixture
def stop(jobs, buffer, sandboxes):
    return StopProcedure(jobs, buffer, sandboxes, Finalizer(buffer, jobs))


class TestStopJob:
    @pytest.mark.asyncio
    async def test_interrupts_running_job(self, stop, jobs, buffer, sandboxes):
        await jobs.create("job-1", metadata())
        await jobs.set_sandbox_id("job-1", "sbx-1")
        await buffer.init("job-1")
        await buffer.append("job-1", "Analyzing...")

        status = await stop.stop_job("job-1")

        assert status == JobStatus.INTERRUPTED
        record = await jobs.get("job-1")
        assert record.status == JobStatus.INTERRUPTED
        assert record.exit_code is None
        assert decompress_logs(record) == f"Analyzing...\n{INTERRUPTED_LINE}\n".encode()
        assert sandboxes.killed_by_id == ["sbx-1"]
        assert await buffer.read("job-1") is None

    @pytest.mark.asyncio
    async def test_finished_job_is_untouched(self, stop, jobs, sandboxes):
        await jobs.create("job-1", metadata())
        await jobs.upsert_final("job-1", {"status": JobStatus.COMPLETED, "exit_code": 0})

        assert await stop.stop_job("job-1") == JobStatus.COMPLETED
        assert await jobs.get_status("job-1") == JobStatus.COMPLETED
        assert sandboxes.killed_by_id == []

    @pytest.mark.asyncio
    async def test_reports_status_of_run_that_finished_first(self, jobs, buffer, sandboxes):
        await jobs.create("job-1", metadata())

        class RunFinishesFirst(Finalizer):
            async def finalize(self, job_id, status, *args, **kwargs):
                await jobs.upsert_final(job_id, {"status": JobStatus.COMPLETED, "exit_code": 0})
                return await super().finalize(job_id, status, *args, **kwargs)

        stop = StopProcedure(jobs, buffer, sandboxes, RunFinishesFirst(buffer, jobs))

        assert await stop.stop_job("job-1") == JobStatus.COMPLETED
        assert await jobs.get_status("job-1") == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_job(self, stop):
        assert await stop.stop_job("missing") is None

    @pytest.mark.asyncio
    async def test_job_without_sandbox(self, stop, jobs, sandboxes):
        await jobs.create("job-1", metadata())

        assert await stop.stop_job("job-1") == JobStatus.INTERRUPTED
        assert sandboxes.killed_by_id == []


class TestStopPullRequest:
    @pytest.mark.asyncio
    async def test_stops_only_running_jobs_of_that_pr(self, stop, jobs):
        await jobs.create("job-a", metadata())
        await jobs.create("job-b", metadata())
        await jobs.create("job-other", metadata(pr_number=7))
        await jobs.upsert_final("job-b", {"status": JobStatus.ERROR, "exit_code": 1})

        stopped = await stop.stop_pull_request(REPO_URL, 42, "abc1234")

        assert stopped == ["job-a"]
        assert await jobs.get_status("job-b") == JobStatus.ERROR
        assert await jobs.get_status("job-other") == JobStatus.RUNNING
