"""
Pull request normalization and the PR analysis trigger.

Both webhook PR events and "@bot review" comments end up in
PullRequestTrigger.trigger(), which allocates the job id, writes the running
record and hands the run to an AnalysisLauncher. The record exists before the
run starts so a stop request can find it.
"""

from typing import Any, Protocol

from ..analysis.model_resolver import ModelResolver
from ..config import Settings
from ..db.models import new_id
from ..db.store import InstallationStore, JobStore
from ..errors import AnalysisError
from ..log_config import get_logger
from ..streaming.buffer import BufferStore
from ..types import AnalysisKind, AnalysisRequest, JobStatus, PullRequestData
from ..vcs.github import GitHubClientFactory
from .commands import is_bot_user

log = get_logger("pr_trigger", service="api")


def github_repo_url(full_name: str) -> str:
    return f"https://github.com/{full_name}"


def pr_data_from_api(
    pull_request: dict[str, Any],
    repository: dict[str, Any],
    installation_id: int | None,
    action: str | None = None,
) -> PullRequestData:
    """Normalize a GitHub pull request object (webhook or REST shape)."""
    user = pull_request.get("user") or {}
    head = pull_request.get("head") or {}
    base = pull_request.get("base") or {}
    return PullRequestData(
        repo_full_name=repository["full_name"],
        repo_url=github_repo_url(repository["full_name"]),
        github_repository_id=repository.get("id"),
        installation_id=installation_id,
        pr_number=pull_request["number"],
        pr_title=pull_request.get("title") or "",
        pr_body=pull_request.get("body"),
        pr_url=pull_request.get("html_url"),
        author_login=user.get("login") or "",
        author_type=user.get("type"),
        head_sha=head.get("sha") or "",
        head_ref=head.get("ref"),
        base_ref=base.get("ref"),
        base_sha=base.get("sha"),
        action=action,
        changed_files=pull_request.get("changed_files"),
        additions=pull_request.get("additions"),
        deletions=pull_request.get("deletions"),
    )


def build_pr_data(payload: dict[str, Any]) -> PullRequestData:
    """PullRequestData from a pull_request webhook payload."""
    installation = payload.get("installation") or {}
    return pr_data_from_api(
        payload["pull_request"],
        payload["repository"],
        installation.get("id"),
        action=payload.get("action"),
    )


class AnalysisLauncher(Protocol):
    async def launch(self, request: AnalysisRequest) -> None: ...


class PullRequestTrigger:
    """
    Starts PR analyses.

    Automatic triggers are deduplicated per (repository, PR, head commit) so a
    redelivered or repeated event cannot start a second run for the same
    commit. An explicit review request skips both the bot-author guard and
    the dedupe.
    """

    HEAD_CLAIM_TTL_SECONDS = 6 * 60 * 60
    UNRESOLVED_MODEL = "unresolved"

    def __init__(
        self,
        settings: Settings,
        installations: InstallationStore,
        jobs: JobStore,
        models: ModelResolver,
        buffer: BufferStore,
        launcher: AnalysisLauncher,
        github: GitHubClientFactory | None = None,
    ):
        self.settings = settings
        self.installations = installations
        self.jobs = jobs
        self.models = models
        self.buffer = buffer
        self.launcher = launcher
        self.github = github

    @staticmethod
    def head_claim_key(pr: PullRequestData) -> str:
        return f"pr_analysis:{pr.repo_full_name}#{pr.pr_number}:{pr.head_sha}"

    def bot_author_notice(self) -> str:
        alias = self.settings.bot_aliases[0] if self.settings.bot_aliases else "beetle-ai"
        return (
            "🤖 This pull request was opened by a bot, so the automatic review was skipped.\n\n"
            f"Comment `@{alias} review` to request a review manually."
        )

    async def trigger(self, pr: PullRequestData, skip_bot_check: bool = False) -> str | None:
        """Launch an analysis for the PR. Returns the job id, or None if skipped."""
        ctx = {"repo": pr.repo_full_name, "pr_number": pr.pr_number, "head_sha": pr.head_sha}

        if not skip_bot_check and is_bot_user(
            {"login": pr.author_login, "type": pr.author_type}, self.settings.bot_logins
        ):
            log.info("pr.skipped", reason="bot_author", author=pr.author_login, **ctx)
            await self._post_bot_author_notice(pr)
            return None

        repository = await self.installations.get_repository(pr.repo_full_name)
        if repository is None or not repository.analysis_enabled:
            log.info("pr.skipped", reason="repository_not_enabled", **ctx)
            return None

        installation = await self.installations.get_installation(repository.installation_id)
        if installation is None or not installation.user_id:
            log.info("pr.skipped", reason="no_owner", **ctx)
            return None

        claim_key = None
        if not skip_bot_check:
            claim_key = self.head_claim_key(pr)
            if not await self.buffer.claim(claim_key, self.HEAD_CLAIM_TTL_SECONDS):
                log.info("pr.skipped", reason="duplicate", **ctx)
                return None

        job_id = new_id()
        request = AnalysisRequest(
            repo_url=pr.repo_url,
            user_id=installation.user_id,
            team_id=installation.team_id,
            kind=AnalysisKind.PR_ANALYSIS,
            prompt=f"Review pull request #{pr.pr_number}: {pr.pr_title}",
            branch=pr.head_ref,
            repository_ref=repository.id,
            github_repository_id=repository.github_repository_id,
            job_id=job_id,
            pr_number=pr.pr_number,
            pr_url=pr.pr_url,
            pr_title=pr.pr_title,
            data={"pr": pr.model_dump(mode="json")},
        )

        try:
            model = await self.models.resolve(request)
        except AnalysisError as e:
            log.warn("pr.config_error", exc=e, job_id=job_id, **ctx)
            await self._record_error(request, self.UNRESOLVED_MODEL, str(e))
            if claim_key:
                await self.buffer.release(claim_key)
            return None

        await self.jobs.create(job_id, request.metadata(model.name), JobStatus.RUNNING)

        try:
            await self.buffer.init_comment_counter(job_id)
            await self.launcher.launch(request)
        except Exception as e:
            log.error("pr.launch_error", exc=e, job_id=job_id, **ctx)
            await self._record_error(request, model.name, f"Failed to start analysis: {e}")
            if claim_key:
                await self.buffer.release(claim_key)
            raise

        log.info("pr.analysis_launched", job_id=job_id, explicit=skip_bot_check, **ctx)
        return job_id

    async def _record_error(self, request: AnalysisRequest, model: str, message: str) -> None:
        try:
            await self.jobs.upsert_final(
                request.job_id,
                {"status": JobStatus.ERROR, "exit_code": None, "error_message": message},
                request.metadata(model),
            )
        except Exception as e:
            log.warn("pr.record_error", exc=e, job_id=request.job_id)

    async def _post_bot_author_notice(self, pr: PullRequestData) -> None:
        if self.github is None or pr.installation_id is None:
            return
        owner, repo = pr.repo_full_name.split("/", 1)
        try:
            client = await self.github.for_installation(pr.installation_id)
            await client.create_issue_comment(owner, repo, pr.pr_number, self.bot_author_notice())
        except Exception as e:
            log.warn("pr.bot_notice_error", exc=e, repo=pr.repo_full_name, pr_number=pr.pr_number)
