"""
Process-wide resources and service wiring.

Every Modal function opens the resources it needs with open_resources() and
closes them on exit; nothing is created at import time. The build_* helpers
assemble the services on top of an AppResources.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from redis.asyncio import Redis

from .analysis.finalizer import Finalizer
from .analysis.launcher import ModalAnalysisLauncher
from .analysis.model_resolver import ModelResolver
from .analysis.orchestrator import AnalysisOrchestrator
from .analysis.stop import StopProcedure
from .auth.repository import GitHubRepositoryAuthenticator
from .completion import GeminiCompletionClient
from .config import APP_NAME, Settings
from .db.session import Database
from .db.store import FeedbackStore, InstallationStore, JobStore, SettingsStore
from .log_config import get_logger
from .notifications import MailNotifier, drain_background_tasks
from .replies.responder import CommentReplyResponder
from .sandbox.manager import SandboxManager
from .streaming.buffer import BufferStore
from .vcs.github import GitHubClientFactory
from .webhooks.pull_requests import AnalysisLauncher, PullRequestTrigger
from .webhooks.router import WebhookRouter

log = get_logger("resources")


@dataclass
class AppResources:
    settings: Settings
    redis: Redis
    db: Database
    http_client: httpx.AsyncClient
    jobs: JobStore
    accounts: SettingsStore
    installations: InstallationStore
    feedback: FeedbackStore
    buffer: BufferStore
    sandboxes: SandboxManager
    finalizer: Finalizer


@asynccontextmanager
async def open_resources(settings: Settings) -> AsyncIterator[AppResources]:
    redis = Redis.from_url(settings.redis_url)
    db = Database(settings.database_url)
    db.create_all()
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))

    jobs = JobStore(db)
    buffer = BufferStore(redis, settings.buffer_ttl_seconds)
    resources = AppResources(
        settings=settings,
        redis=redis,
        db=db,
        http_client=http_client,
        jobs=jobs,
        accounts=SettingsStore(db),
        installations=InstallationStore(db),
        feedback=FeedbackStore(db),
        buffer=buffer,
        sandboxes=SandboxManager(
            api_key=settings.e2b_api_key,
            template=settings.e2b_sandbox_template,
            timeout_seconds=int(settings.sandbox_timeout_seconds),
        ),
        finalizer=Finalizer(buffer, jobs),
    )
    log.debug("resources.opened")
    try:
        yield resources
    finally:
        try:
            await drain_background_tasks()
        finally:
            await http_client.aclose()
            await redis.aclose()
            db.dispose()
            log.debug("resources.closed")


def build_orchestrator(resources: AppResources) -> AnalysisOrchestrator:
    settings = resources.settings
    return AnalysisOrchestrator(
        settings=settings,
        jobs=resources.jobs,
        accounts=resources.accounts,
        buffer=resources.buffer,
        sandboxes=resources.sandboxes,
        finalizer=resources.finalizer,
        repo_auth=GitHubRepositoryAuthenticator(
            settings, resources.installations, resources.http_client
        ),
        notifier=MailNotifier(settings, resources.accounts, resources.http_client),
    )


def build_stop_procedure(resources: AppResources) -> StopProcedure:
    return StopProcedure(
        jobs=resources.jobs,
        buffer=resources.buffer,
        sandboxes=resources.sandboxes,
        finalizer=resources.finalizer,
    )


def build_webhook_router(
    resources: AppResources, launcher: AnalysisLauncher | None = None
) -> WebhookRouter:
    settings = resources.settings
    github = GitHubClientFactory(settings, resources.http_client)
    completion = GeminiCompletionClient(
        api_key=settings.google_api_key or "",
        model=settings.completion_model,
        http_client=resources.http_client,
    )
    trigger = PullRequestTrigger(
        settings,
        resources.installations,
        resources.jobs,
        ModelResolver(settings, resources.accounts),
        resources.buffer,
        launcher or ModalAnalysisLauncher(APP_NAME),
        github=github,
    )
    return WebhookRouter(
        settings=settings,
        installations=resources.installations,
        buffer=resources.buffer,
        trigger=trigger,
        stop=build_stop_procedure(resources),
        responder=CommentReplyResponder(settings, github, completion, resources.feedback),
        github=github,
    )
