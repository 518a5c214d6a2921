"""
Finalize a job: compress its buffered logs and write the permanent record.

The buffer is consumed once. Its key is deleted after the write, and also
when the write fails, so an abandoned buffer cannot grow without bound.
"""

import asyncio
import gzip
from typing import Any, NamedTuple

from ..db.models import AnalysisRecord
from ..db.store import JobStore
from ..log_config import get_logger
from ..streaming.buffer import BufferStore
from ..types import JobMetadata, JobStatus

COMPRESSION_ALGORITHM = "gzip"

log = get_logger("finalizer")


class FinalizeResult(NamedTuple):
    """What finalize wrote (or declined to write)."""

    written: bool
    original_bytes: int
    compressed_bytes: int
    reply_comments_posted: int


def compress_logs(raw: bytes) -> bytes:
    """gzip the buffer. An empty buffer stays empty."""
    if not raw:
        return b""
    return gzip.compress(raw)


def decompress_logs(record: AnalysisRecord) -> bytes:
    if not record.compressed_logs:
        return b""
    algorithm = (record.compression or {}).get("algorithm", COMPRESSION_ALGORITHM)
    if algorithm != COMPRESSION_ALGORITHM:
        raise ValueError(f"Unsupported log compression: {algorithm}")
    return gzip.decompress(record.compressed_logs)


def _as_exit_code(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class Finalizer:
    def __init__(self, buffer: BufferStore, jobs: JobStore):
        self.buffer = buffer
        self.jobs = jobs

    async def finalize(
        self,
        job_id: str,
        status: JobStatus,
        exit_code: Any = None,
        metadata: JobMetadata | None = None,
        error_message: str | None = None,
    ) -> FinalizeResult:
        """Persist the terminal state of a job.

        The comment counter is read and cleared atomically and added to the
        record, so finalizing the same job twice never counts a comment twice.
        When the buffer is already gone the stored logs are left untouched.

        Raises whatever the record write raised, after deleting the buffer.
        """
        try:
            raw = await self.buffer.read(job_id)
            comments = await self.buffer.take_comment_count(job_id)

            fields: dict[str, Any] = {"status": status, "exit_code": _as_exit_code(exit_code)}
            if error_message is not None:
                fields["error_message"] = error_message

            original_bytes = compressed_bytes = 0
            if raw is None:
                log.warn("finalize.buffer_missing", job_id=job_id)
            else:
                compressed = await asyncio.to_thread(compress_logs, raw)
                original_bytes, compressed_bytes = len(raw), len(compressed)
                fields["compressed_logs"] = compressed
                fields["compression"] = {
                    "algorithm": COMPRESSION_ALGORITHM,
                    "original_bytes": original_bytes,
                    "compressed_bytes": compressed_bytes,
                }

            try:
                written = await self.jobs.upsert_final(
                    job_id, fields, metadata, reply_comments=comments
                )
            except Exception as e:
                log.error("finalize.write_error", exc=e, job_id=job_id, status=status.value)
                raise

            if written:
                log.info(
                    "finalize.completed",
                    job_id=job_id,
                    status=status.value,
                    exit_code=fields["exit_code"],
                    original_bytes=original_bytes,
                    compressed_bytes=compressed_bytes,
                    reply_comments_posted=comments,
                )
            else:
                log.info("finalize.refused", job_id=job_id, status=status.value)
                await self._restore_comment_count(job_id, comments)
                comments = 0
            return FinalizeResult(written, original_bytes, compressed_bytes, comments)
        finally:
            try:
                await self.buffer.delete(job_id)
            except Exception as e:
                log.warn("finalize.buffer_delete_error", exc=e, job_id=job_id)

    async def _restore_comment_count(self, job_id: str, comments: int) -> None:
        """Put back comments taken for a write that was refused."""
        if not comments:
            return
        try:
            await self.buffer.increment_comment_counter(job_id, comments)
        except Exception as e:
            log.warn("finalize.counter_restore_error", exc=e, job_id=job_id, comments=comments)
