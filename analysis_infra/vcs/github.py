"""
Minimal GitHub REST client for the operations the service needs.

Clients are scoped to one installation; GitHubClientFactory mints the
installation token.
"""

from typing import Any

import httpx

from ..auth.github_app import GITHUB_API_URL, generate_installation_token
from ..config import Settings
from ..log_config import get_logger

log = get_logger("github")


class GitHubClient:
    HTTP_TIMEOUT = 30.0

    def __init__(self, token: str, http_client: httpx.AsyncClient, base_url: str = GITHUB_API_URL):
        self.token = token
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self.http_client.request(
            method,
            f"{self.base_url}{path}",
            headers={
                "Authorization": f"token {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self.HTTP_TIMEOUT,
            **kwargs,
        )
        if response.status_code >= 400:
            log.warn(
                "github.request_failed",
                http_method=method,
                http_path=path,
                http_status=response.status_code,
            )
        response.raise_for_status()
        return response.json() if response.content else None

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")

    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        return await self._request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body}
        )

    async def get_review_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/repos/{owner}/{repo}/pulls/comments/{comment_id}")

    async def create_review_comment_reply(
        self, owner: str, repo: str, pr_number: int, comment_id: int, body: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/comments/{comment_id}/replies",
            json={"body": body},
        )

    async def create_review_comment(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        *,
        body: str,
        commit_id: str,
        path: str,
        line: int,
        start_line: int | None = None,
        side: str = "RIGHT",
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "body": body,
            "commit_id": commit_id,
            "path": path,
            "line": line,
            "side": side,
        }
        if start_line is not None and start_line < line:
            payload["start_line"] = start_line
            payload["start_side"] = side
        return await self._request(
            "POST", f"/repos/{owner}/{repo}/pulls/{pr_number}/comments", json=payload
        )


class GitHubClientFactory:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    async def for_installation(self, installation_id: int) -> GitHubClient:
        if not (self.settings.github_app_id and self.settings.github_app_private_key):
            raise RuntimeError("GitHub App credentials are not configured")
        token = await generate_installation_token(
            app_id=self.settings.github_app_id,
            private_key=self.settings.github_app_private_key,
            installation_id=installation_id,
            client=self.http_client,
        )
        return GitHubClient(token, self.http_client)
