"""
Run an analysis while streaming its output to an HTTP client.

The orchestrator runs as its own task and feeds a ChunkChannel. When the
client goes away the channel is detached and the run is awaited to the end,
so a disconnect never cuts a job short or leaves it unfinalized.
"""

import asyncio
import json
from collections.abc import AsyncIterator

from ..config import Settings, get_settings
from ..log_config import get_logger
from ..resources import build_orchestrator, open_resources
from ..streaming.pipeline import ChunkChannel
from ..types import AnalysisRequest, AnalysisResult

log = get_logger("streaming_run", service="api")

RESULT_PREFIX = "__RESULT__ "


def format_result_line(result: AnalysisResult) -> str:
    return RESULT_PREFIX + json.dumps(result.model_dump(mode="json")) + "\n"


async def stream_analysis(
    request: AnalysisRequest, settings: Settings | None = None
) -> AsyncIterator[str]:
    channel = ChunkChannel()
    async with open_resources(settings or get_settings()) as resources:
        orchestrator = build_orchestrator(resources)

        async def run() -> AnalysisResult:
            try:
                return await orchestrator.run(request, channel.callbacks())
            except Exception as e:
                log.error("stream.run_error", exc=e, job_id=request.job_id)
                return AnalysisResult(success=False, job_id=request.job_id, error=str(e))
            finally:
                await channel.close()

        task = asyncio.create_task(run())
        try:
            async for chunk in channel:
                yield chunk.text if chunk.text.endswith("\n") else chunk.text + "\n"
            result = await task
            yield format_result_line(result)
        finally:
            if not task.done():
                log.info("stream.client_disconnected", job_id=request.job_id)
                channel.detach()
                await asyncio.shield(task)
