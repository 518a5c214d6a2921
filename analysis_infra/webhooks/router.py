"""
GitHub webhook routing.

accept() runs inside the HTTP request: it verifies the signature, parses the
payload and drops redelivered events. dispatch() does the actual work and
runs in a spawned function so GitHub gets its response quickly.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from ..analysis.stop import StopProcedure
from ..auth.webhook import verify_webhook_signature
from ..config import Settings
from ..db.store import InstallationStore
from ..log_config import get_logger
from ..replies.responder import CommentReplyResponder
from ..streaming.buffer import BufferStore
from ..vcs.github import GitHubClientFactory
from .commands import CommandParser, CommentCommand, is_bot_user
from .pull_requests import PullRequestTrigger, build_pr_data, github_repo_url, pr_data_from_api

log = get_logger("webhook_router", service="api")

PR_ANALYSIS_ACTIONS = {"opened", "reopened", "synchronize"}
DEFAULT_BRANCH_REFS = {"refs/heads/main", "refs/heads/master"}


class WebhookRouter:
    def __init__(
        self,
        settings: Settings,
        installations: InstallationStore,
        buffer: BufferStore,
        trigger: PullRequestTrigger,
        stop: StopProcedure,
        responder: CommentReplyResponder,
        github: GitHubClientFactory,
    ):
        self.settings = settings
        self.installations = installations
        self.buffer = buffer
        self.trigger = trigger
        self.stop = stop
        self.responder = responder
        self.github = github
        self.commands = CommandParser(settings.bot_aliases)

    @staticmethod
    def delivery_key(delivery_id: str) -> str:
        return f"webhook:delivery:{delivery_id}"

    async def accept(
        self,
        body: bytes,
        signature: str | None,
        delivery_id: str | None,
    ) -> dict[str, Any] | None:
        """
        Verify and parse an inbound delivery.

        Returns the payload, or None for a delivery already seen.

        Raises:
            WebhookSignatureError: signature missing or invalid
        """
        verify_webhook_signature(self.settings.github_webhook_secret, body, signature)
        payload = json.loads(body)
        if delivery_id:
            key = self.delivery_key(delivery_id)
            if not await self.buffer.claim(key, self.settings.webhook_dedupe_ttl_seconds):
                log.info("webhook.duplicate", delivery_id=delivery_id)
                return None
        return payload

    async def release_delivery(self, delivery_id: str | None) -> None:
        """Forget a claimed delivery so a redelivery of it is processed."""
        if not delivery_id:
            return
        try:
            await self.buffer.release(self.delivery_key(delivery_id))
        except Exception as e:
            log.warn("webhook.release_error", exc=e, delivery_id=delivery_id)

    async def hand_off(
        self,
        event: str,
        payload: dict[str, Any],
        delivery_id: str | None,
        spawn: Callable[[str, dict[str, Any]], Awaitable[Any]],
    ) -> None:
        """Pass an accepted delivery to spawn, releasing its claim if that fails."""
        try:
            await spawn(event, payload)
        except Exception as e:
            log.error("webhook.hand_off_error", exc=e, github_event=event, delivery_id=delivery_id)
            await self.release_delivery(delivery_id)
            raise

    async def dispatch(self, event: str, payload: dict[str, Any]) -> str:
        """Route one event. Returns a short outcome label for logging."""
        action = payload.get("action")
        handler = {
            "installation": self._on_installation,
            "push": self._on_push,
            "issues": self._on_issues,
            "pull_request": self._on_pull_request,
            "issue_comment": self._on_issue_comment,
            "pull_request_review_comment": self._on_review_comment,
        }.get(event)

        if handler is None:
            log.debug("webhook.ignored", github_event=event, action=action)
            return "ignored"

        outcome = await handler(payload)
        log.info("webhook.handled", github_event=event, action=action, outcome=outcome)
        return outcome

    async def _on_installation(self, payload: dict[str, Any]) -> str:
        installation = payload["installation"]
        account = installation.get("account") or {}
        if payload.get("action") == "created":
            await self.installations.upsert_installation(
                installation_id=installation["id"],
                account_login=account.get("login", ""),
                account_type=account.get("type"),
                sender_login=(payload.get("sender") or {}).get("login"),
                repositories=payload.get("repositories") or [],
            )
            return "installation_saved"
        if payload.get("action") == "deleted":
            await self.installations.delete_installation(installation["id"])
            return "installation_removed"
        return "ignored"

    async def _on_push(self, payload: dict[str, Any]) -> str:
        ref = payload.get("ref") or ""
        if ref not in DEFAULT_BRANCH_REFS:
            return "ignored"
        log.info(
            "webhook.push",
            repo=(payload.get("repository") or {}).get("full_name"),
            ref=ref,
            commits=len(payload.get("commits") or []),
        )
        return "push_logged"

    async def _on_issues(self, payload: dict[str, Any]) -> str:
        if payload.get("action") != "opened":
            return "ignored"
        full_name = payload["repository"]["full_name"]
        repository = await self.installations.get_repository(full_name)
        if repository is None or not repository.track_issues:
            return "ignored"

        issue = payload["issue"]
        owner, repo = full_name.split("/", 1)
        link = (
            f"{self.settings.frontend_url.rstrip('/')}/analysis/{full_name}"
            f"?issue={issue['number']}&autoStart=1"
        )
        body = (
            "🚀 Analyze and fix this issue with **[beetle-ai](https://github.com/apps/beetle-ai)**.\n"
            "\n"
            f"[Start now →]({link})"
        )
        try:
            client = await self.github.for_installation(payload["installation"]["id"])
            await client.create_issue_comment(owner, repo, issue["number"], body)
        except Exception as e:
            log.error("webhook.issue_comment_error", exc=e, repo=full_name, issue=issue["number"])
            return "error"
        return "issue_cta_posted"

    async def _on_pull_request(self, payload: dict[str, Any]) -> str:
        action = payload.get("action")
        if action in PR_ANALYSIS_ACTIONS:
            job_id = await self.trigger.trigger(build_pr_data(payload))
            return "analysis_launched" if job_id else "skipped"
        if action == "closed" and (payload.get("pull_request") or {}).get("merged"):
            await self.installations.mark_merged(
                payload["repository"]["full_name"], payload["pull_request"]["number"]
            )
            return "pr_merged"
        return "ignored"

    async def _on_issue_comment(self, payload: dict[str, Any]) -> str:
        issue = payload.get("issue") or {}
        if payload.get("action") != "created" or not issue.get("pull_request"):
            return "ignored"

        comment = payload.get("comment") or {}
        if is_bot_user(comment.get("user"), self.settings.bot_logins):
            return "ignored_bot"

        command = self.commands.parse(comment.get("body"))
        if command is None:
            return "ignored"

        repository = payload["repository"]
        owner, repo = repository["full_name"].split("/", 1)
        installation_id = payload["installation"]["id"]
        client = await self.github.for_installation(installation_id)
        pull_request = await client.get_pull_request(owner, repo, issue["number"])

        if command == CommentCommand.STOP:
            head_sha = (pull_request.get("head") or {}).get("sha")
            stopped = await self.stop.stop_pull_request(
                github_repo_url(repository["full_name"]), issue["number"], head_sha
            )
            message = (
                f"⛔ Stopped {len(stopped)} running analysis for `{(head_sha or '')[:7]}`."
                if stopped
                else "No running analysis to stop."
            )
            try:
                await client.create_issue_comment(owner, repo, issue["number"], message)
            except Exception as e:
                log.warn("webhook.stop_comment_error", exc=e, repo=repository["full_name"])
            return "stopped"

        pr_data = pr_data_from_api(pull_request, repository, installation_id, action="comment")
        job_id = await self.trigger.trigger(pr_data, skip_bot_check=True)
        return "analysis_launched" if job_id else "skipped"

    async def _on_review_comment(self, payload: dict[str, Any]) -> str:
        if payload.get("action") != "created":
            return "ignored"
        return await self.responder.handle(payload)
