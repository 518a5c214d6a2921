"""
Per-job output pipeline.

Raw sandbox output -> redact -> Redis buffer + caller callbacks.

LogStream serializes appends per job so the buffer keeps the order in which
chunks arrived. ChunkChannel adapts the callback contract to an async
iterator so an HTTP handler can stream chunks while the job runs.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

from ..log_config import get_logger
from ..types import AnalysisCallbacks, ChunkCallback
from .buffer import BufferStore
from .redaction import redact

STDERR_PREFIX = "⚠️ "


@dataclass(frozen=True)
class LogChunk:
    """A redacted piece of output tagged with its stream."""

    stream: str
    text: str


class LogStream:
    """Redacting fan-out of one job's output to the buffer and callbacks."""

    def __init__(
        self,
        job_id: str,
        buffer: BufferStore,
        callbacks: AnalysisCallbacks | None = None,
    ):
        self.job_id = job_id
        self.buffer = buffer
        self.callbacks = callbacks or AnalysisCallbacks()
        self.chunks_written = 0
        self._lock = asyncio.Lock()
        self.log = get_logger("log_stream", job_id=job_id)

    async def init(self, ttl_seconds: int | None = None) -> None:
        await self.buffer.init(self.job_id, ttl_seconds)
        await self.buffer.init_comment_counter(self.job_id, ttl_seconds)

    async def stdout(self, chunk: str) -> None:
        await self._publish("stdout", redact(chunk), self.callbacks.on_stdout)

    async def stderr(self, chunk: str) -> None:
        await self._publish("stderr", STDERR_PREFIX + redact(chunk), self.callbacks.on_stderr)

    async def progress(self, message: str) -> None:
        """Report a status message to the caller only. Progress is not buffered."""
        await self._deliver("progress", redact(message), self.callbacks.on_progress)

    async def _publish(self, stream: str, text: str, callback: ChunkCallback | None) -> None:
        async with self._lock:
            try:
                await self.buffer.append(self.job_id, text)
                self.chunks_written += 1
            except Exception as e:
                self.log.warn("log_stream.buffer_error", exc=e, stream=stream)
            await self._deliver(stream, text, callback)

    async def _deliver(self, stream: str, text: str, callback: ChunkCallback | None) -> None:
        if callback is None:
            return
        try:
            await callback(text)
        except Exception as e:
            self.log.warn("log_stream.callback_error", exc=e, stream=stream)


class ChunkChannel:
    """Bounded async channel of LogChunk items.

    Producers block when the consumer falls behind. Once the consumer calls
    detach() every further chunk is dropped so a disconnected client can never
    stall the job.
    """

    _DONE = object()

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._detached = False

    def callbacks(self) -> AnalysisCallbacks:
        async def on_stdout(text: str) -> None:
            await self.put(LogChunk("stdout", text))

        async def on_stderr(text: str) -> None:
            await self.put(LogChunk("stderr", text))

        async def on_progress(text: str) -> None:
            await self.put(LogChunk("progress", text))

        return AnalysisCallbacks(on_stdout=on_stdout, on_stderr=on_stderr, on_progress=on_progress)

    async def put(self, chunk: LogChunk) -> None:
        if self._detached:
            return
        await self._queue.put(chunk)

    async def close(self) -> None:
        """Signal end of stream to the consumer."""
        if not self._detached:
            await self._queue.put(self._DONE)

    def detach(self) -> None:
        """Stop accepting chunks and release any blocked producer."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[LogChunk]:
        while True:
            item = await self._queue.get()
            if item is self._DONE:
                return
            yield item
