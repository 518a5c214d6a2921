"""Tests for log compression and job finalization."""

import gzip
from unittest.mock import AsyncMock

import pytest

from analysis_infra.analysis.finalizer import (
    COMPRESSION_ALGORITHM,
    Finalizer,
    compress_logs,
    decompress_logs,
)
from analysis_infra.errors import FinalizeError
from analysis_infra.types import AnalysisKind, JobMetadata, JobStatus


def make_metadata(**overrides) -> JobMetadata:
    values = {
        "kind": AnalysisKind.FULL_REPO_ANALYSIS,
        "user_id": "user-1",
        "repo_url": "https://github.com/acme/app",
        "model": "Gemini Flash",
        "prompt": "Find bugs",
    }
    values.update(overrides)
    return JobMetadata(**values)


@pytest.fixture
def finalizer(buffer, jobs):
    return Finalizer(buffer, jobs)


class TestCompression:
    def test_empty_buffer_stays_empty(self):
        assert compress_logs(b"") == b""

    def test_gzip_round_trip(self):
        raw = "héllo wörld ✅\n".encode() * 100
        compressed = compress_logs(raw)
        assert gzip.decompress(compressed) == raw
        assert len(compressed) < len(raw)


class TestFinalizer:
    @pytest.mark.asyncio
    async def test_writes_compressed_logs_and_status(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await buffer.init("job-1")
        await buffer.append("job-1", "line one")
        await buffer.append("job-1", "line two")

        result = await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        record = await jobs.get("job-1")
        assert result.written is True
        assert record.status == JobStatus.COMPLETED
        assert record.exit_code == 0
        assert decompress_logs(record) == b"line one\nline two\n"
        assert record.compression == {
            "algorithm": COMPRESSION_ALGORITHM,
            "original_bytes": result.original_bytes,
            "compressed_bytes": result.compressed_bytes,
        }
        assert await buffer.read("job-1") is None

    @pytest.mark.asyncio
    async def test_empty_buffer_stores_empty_logs(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await buffer.init("job-1")

        await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        record = await jobs.get("job-1")
        assert record.compressed_logs == b""
        assert decompress_logs(record) == b""

    @pytest.mark.asyncio
    async def test_non_integer_exit_code_is_stored_as_null(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await buffer.init("job-1")

        await finalizer.finalize("job-1", JobStatus.ERROR, "137")

        assert (await jobs.get("job-1")).exit_code is None

    @pytest.mark.asyncio
    async def test_comment_count_is_added_once(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await buffer.init("job-1")
        await buffer.increment_comment_counter("job-1", 2)

        await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)
        await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        record = await jobs.get("job-1")
        assert record.reply_comments_posted == 2

    @pytest.mark.asyncio
    async def test_second_finalize_keeps_stored_logs(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await buffer.init("job-1")
        await buffer.append("job-1", "kept")

        await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)
        await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        assert decompress_logs(await jobs.get("job-1")) == b"kept\n"

    @pytest.mark.asyncio
    async def test_creates_missing_record_from_metadata(self, finalizer, buffer, jobs):
        await buffer.init("job-1")
        await buffer.append("job-1", "output")

        await finalizer.finalize("job-1", JobStatus.ERROR, 1, make_metadata(), "boom")

        record = await jobs.get("job-1")
        assert record.status == JobStatus.ERROR
        assert record.error_message == "boom"
        assert record.repo_url == "https://github.com/acme/app"

    @pytest.mark.asyncio
    async def test_missing_record_without_metadata_fails_and_clears_buffer(
        self, finalizer, buffer
    ):
        await buffer.init("job-1")
        await buffer.append("job-1", "output")

        with pytest.raises(FinalizeError):
            await finalizer.finalize("job-1", JobStatus.COMPLETED, 0, make_metadata(model=None))

        assert await buffer.read("job-1") is None

    @pytest.mark.asyncio
    async def test_write_failure_propagates_after_buffer_delete(self, buffer):
        failing_jobs = AsyncMock()
        failing_jobs.upsert_final.side_effect = RuntimeError("database down")
        finalizer = Finalizer(buffer, failing_jobs)
        await buffer.init("job-1")

        with pytest.raises(RuntimeError, match="database down"):
            await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        assert await buffer.read("job-1") is None

    @pytest.mark.asyncio
    async def test_does_not_overwrite_interrupted(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await finalizer.finalize("job-1", JobStatus.INTERRUPTED)
        await buffer.init("job-1")

        result = await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        assert result.written is False
        assert await jobs.get_status("job-1") == JobStatus.INTERRUPTED

    @pytest.mark.asyncio
    async def test_refused_write_puts_comment_count_back(self, finalizer, buffer, jobs):
        await jobs.create("job-1", make_metadata())
        await finalizer.finalize("job-1", JobStatus.INTERRUPTED)
        await buffer.increment_comment_counter("job-1", 3)

        result = await finalizer.finalize("job-1", JobStatus.COMPLETED, 0)

        assert result.written is False
        assert result.reply_comments_posted == 0
        assert await buffer.take_comment_count("job-1") == 3
        assert (await jobs.get("job-1")).reply_comments_posted == 0
