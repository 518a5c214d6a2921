"""
Best-effort notifications.

Nothing here may affect a job's outcome: notifications run as detached tasks
and every failure ends in the log. open_resources() drains them before it
closes the clients they use.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, Protocol

import httpx

from .config import Settings
from .db.store import SettingsStore
from .log_config import StructuredLogger, get_logger
from .types import JobStatus

log = get_logger("notifications")

DRAIN_TIMEOUT_SECONDS = 30.0

_background_tasks: set[asyncio.Task[None]] = set()


async def _guarded(coro: Coroutine[Any, Any, Any], logger: StructuredLogger, event: str) -> None:
    try:
        await coro
    except Exception as e:
        logger.warn(event, exc=e)


def spawn_detached(
    coro: Coroutine[Any, Any, Any],
    logger: StructuredLogger | None = None,
    event: str = "background_task.error",
) -> asyncio.Task[None]:
    """Run coro without awaiting it; errors are logged under event."""
    task = asyncio.create_task(_guarded(coro, logger or log, event))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks(timeout: float = DRAIN_TIMEOUT_SECONDS) -> int:
    """Wait up to timeout seconds for detached tasks of the running loop.

    Returns how many were still pending when the timeout expired.
    """
    loop = asyncio.get_running_loop()
    pending = {t for t in _background_tasks if t.get_loop() is loop and not t.done()}
    if not pending:
        return 0
    _, still_pending = await asyncio.wait(pending, timeout=timeout)
    if still_pending:
        log.warn("background_task.drain_timeout", pending_count=len(still_pending))
    return len(still_pending)


class Notifier(Protocol):
    async def analysis_finished(
        self, job_id: str, user_id: str, repo_url: str, status: JobStatus
    ) -> None: ...


class MailNotifier:
    """Sends the 'analysis finished' email through an HTTP mail API."""

    SUBJECTS = {
        JobStatus.COMPLETED: "Your analysis is complete",
        JobStatus.ERROR: "Your analysis failed",
    }

    def __init__(self, settings: Settings, accounts: SettingsStore, http_client: httpx.AsyncClient):
        self.settings = settings
        self.accounts = accounts
        self.http_client = http_client

    async def analysis_finished(
        self, job_id: str, user_id: str, repo_url: str, status: JobStatus
    ) -> None:
        if not self.settings.mail_api_url or status not in self.SUBJECTS:
            return
        user = await self.accounts.get_user(user_id)
        if user is None or not user.email:
            log.debug("notify.no_recipient", job_id=job_id, user_id=user_id)
            return

        link = f"{self.settings.frontend_url.rstrip('/')}/analysis/{job_id}"
        response = await self.http_client.post(
            self.settings.mail_api_url,
            headers={"Authorization": f"Bearer {self.settings.mail_api_key or ''}"},
            json={
                "from": self.settings.mail_from,
                "to": [user.email],
                "subject": self.SUBJECTS[status],
                "html": (
                    f"<p>Analysis of <code>{repo_url}</code> finished with status "
                    f"<strong>{status.value}</strong>.</p>"
                    f'<p><a href="{link}">View results</a></p>'
                ),
            },
        )
        response.raise_for_status()
        log.info("notify.sent", job_id=job_id, status=status.value)
