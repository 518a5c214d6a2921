"""Text completion client used to draft comment replies."""

from typing import Protocol

import httpx

from .log_config import get_logger

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"

log = get_logger("completion")


class CompletionError(Exception):
    """The completion service returned an error or an unusable response."""

    pass


class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str: ...


class GeminiCompletionClient:
    HTTP_TIMEOUT = 60.0

    def __init__(
        self,
        api_key: str,
        model: str,
        http_client: httpx.AsyncClient,
        base_url: str = GEMINI_API_URL,
    ):
        self.api_key = api_key
        self.model = model
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def complete(self, prompt: str) -> str:
        """
        Raises:
            CompletionError: request failed or the response has no text
        """
        try:
            response = await self.http_client.post(
                f"{self.base_url}/models/{self.model}:generateContent",
                headers={"x-goog-api-key": self.api_key},
                json={"contents": [{"role": "user", "parts": [{"text": prompt}]}]},
                timeout=self.HTTP_TIMEOUT,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        body = response.json()
        try:
            parts = body["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            log.warn("completion.empty_response", model=self.model)
            raise CompletionError("Completion response contained no candidates") from e
        return "".join(part.get("text", "") for part in parts).strip()
