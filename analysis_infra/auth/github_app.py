"""
GitHub App authentication.

Installation tokens are minted from a short-lived app JWT (RS256) and are
valid for about an hour.
"""

import time

import httpx
import jwt

GITHUB_API_URL = "https://api.github.com"
JWT_LIFETIME_SECONDS = 9 * 60


def create_app_jwt(app_id: str, private_key: str) -> str:
    now = int(time.time())
    payload = {
        # Backdated to tolerate clock drift
        "iat": now - 60,
        "exp": now + JWT_LIFETIME_SECONDS,
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key.replace("\\n", "\n"), algorithm="RS256")


async def generate_installation_token(
    app_id: str,
    private_key: str,
    installation_id: int | str,
    client: httpx.AsyncClient | None = None,
) -> str:
    """
    Exchange the app JWT for an installation access token.

    Raises:
        httpx.HTTPStatusError: GitHub rejected the request
    """
    app_jwt = create_app_jwt(app_id, private_key)
    headers = {
        "Authorization": f"Bearer {app_jwt}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    url = f"{GITHUB_API_URL}/app/installations/{installation_id}/access_tokens"

    if client is None:
        async with httpx.AsyncClient(timeout=30.0) as owned:
            response = await owned.post(url, headers=headers)
    else:
        response = await client.post(url, headers=headers)
    response.raise_for_status()
    return response.json()["token"]
