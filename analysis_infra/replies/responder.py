"""
Answers human replies to the bot's own review comments.

Triggered by pull_request_review_comment events. The parent comment's author
decides whether a reply is addressed to the bot; an explicit @-mention of the
bot in the reply is accepted as a fallback for older comments whose author
cannot be matched.
"""

from typing import Any

import httpx

from ..completion import CompletionClient
from ..config import Settings
from ..db.store import FeedbackStore
from ..log_config import get_logger
from ..vcs.github import GitHubClientFactory
from ..webhooks.commands import CommandParser, is_bot_user
from .context import (
    ReplyIntent,
    build_reply_prompt,
    extract_reply_context,
    is_generic_reply,
    parse_intent,
    strip_intent,
)

log = get_logger("reply_responder", service="api")


class CommentReplyResponder:
    def __init__(
        self,
        settings: Settings,
        github: GitHubClientFactory,
        completion: CompletionClient,
        feedback: FeedbackStore | None = None,
    ):
        self.settings = settings
        self.github = github
        self.completion = completion
        self.feedback = feedback
        self.commands = CommandParser(settings.bot_aliases)

    def is_own_bot(self, user: dict[str, Any] | None) -> bool:
        login = ((user or {}).get("login") or "").lower()
        return bool(login) and login in self.settings.bot_logins

    async def handle(self, payload: dict[str, Any]) -> str:
        """Process one review-comment event. Returns a short outcome label."""
        comment = payload.get("comment") or {}
        repository = payload.get("repository") or {}
        pull_request = payload.get("pull_request") or {}
        reply_author = (comment.get("user") or {}).get("login")
        ctx = {"repo": repository.get("full_name"), "comment_id": comment.get("id")}

        if is_bot_user(comment.get("user"), self.settings.bot_logins):
            log.debug("reply.skipped", reason="bot_author", **ctx)
            return "ignored_bot"

        parent_id = comment.get("in_reply_to_id")
        if not parent_id:
            return "not_a_reply"

        installation_id = (payload.get("installation") or {}).get("id")
        if not installation_id or not repository.get("full_name"):
            log.warn("reply.skipped", reason="missing_installation", **ctx)
            return "no_installation"

        owner, repo = repository["full_name"].split("/", 1)
        client = await self.github.for_installation(installation_id)
        try:
            parent = await client.get_review_comment(owner, repo, parent_id)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                log.info("reply.skipped", reason="parent_missing", parent_id=parent_id, **ctx)
                return "parent_missing"
            raise

        reply_body = comment.get("body") or ""
        if not self.is_own_bot(parent.get("user")) and not self.commands.mentions_bot(reply_body):
            log.debug("reply.skipped", reason="not_for_bot", parent_id=parent_id, **ctx)
            return "not_for_bot"

        parent_body = parent.get("body") or ""
        context = extract_reply_context(parent_body)
        pr_number = pull_request.get("number")
        prompt = build_reply_prompt(
            repo_full_name=repository["full_name"],
            pr_number=pr_number,
            parent_body=parent_body,
            reply_body=reply_body,
            reply_author=reply_author,
            context=context,
            path=parent.get("path"),
            line=parent.get("line") or parent.get("original_line"),
            diff_hunk=parent.get("diff_hunk"),
        )

        generated = await self.completion.complete(prompt)
        intent = parse_intent(generated)
        text = strip_intent(generated)
        log.info("reply.generated", intent=intent.value if intent else None, length=len(text), **ctx)

        if intent in (ReplyIntent.FEEDBACK, ReplyIntent.SUGGESTION) and reply_author:
            await self._save_feedback(repository["full_name"], pr_number, parent_id, reply_author, intent, reply_body, context)

        if is_generic_reply(text):
            log.warn("reply.suppressed", preview=text[:120], length=len(text), **ctx)
            return "suppressed"

        if reply_author and not text.startswith(f"@{reply_author}"):
            text = f"@{reply_author} {text}"

        await client.create_review_comment_reply(owner, repo, pr_number, parent_id, text)
        log.info("reply.posted", parent_id=parent_id, **ctx)
        return "posted"

    async def _save_feedback(self, repo_full_name, pr_number, comment_id, author, intent, body, context) -> None:
        if self.feedback is None:
            return
        try:
            await self.feedback.save(
                repo_full_name=repo_full_name,
                pr_number=pr_number,
                comment_id=comment_id,
                reply_author=author,
                intent=intent.value,
                reply_body=body,
                file_path=context.file_path if context else None,
                severity=context.severity if context else None,
                issue_type=context.issue_type if context else None,
            )
        except Exception as e:
            log.warn("reply.feedback_error", exc=e, comment_id=comment_id)
