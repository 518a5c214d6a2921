"""
Launchers hand a prepared AnalysisRequest to something that runs it.

In production the run is spawned as its own Modal function so the webhook
call returns immediately; the in-process launcher is used for local runs.
"""

from collections.abc import Awaitable, Callable

import modal

from ..log_config import get_logger
from ..notifications import spawn_detached
from ..types import AnalysisRequest, AnalysisResult

log = get_logger("launcher", service="api")


class ModalAnalysisLauncher:
    """Spawns the deployed run_analysis_job function."""

    FUNCTION_NAME = "run_analysis_job"

    def __init__(self, app_name: str):
        self.app_name = app_name

    async def launch(self, request: AnalysisRequest) -> None:
        function = modal.Function.from_name(self.app_name, self.FUNCTION_NAME)
        call = await function.spawn.aio(request.model_dump(mode="json"))
        log.info(
            "launcher.spawned",
            job_id=request.job_id,
            function_call_id=call.object_id,
            app_name=self.app_name,
        )


class TaskAnalysisLauncher:
    """Runs the analysis as a detached task on the current event loop."""

    def __init__(self, run: Callable[[AnalysisRequest], Awaitable[AnalysisResult]]):
        self.run = run

    async def launch(self, request: AnalysisRequest) -> None:
        spawn_detached(self.run(request), log.bind(job_id=request.job_id), "launcher.run_error")
        log.info("launcher.task_started", job_id=request.job_id)
