"""
Internal API authentication.

Callers send ``Authorization: Bearer <timestamp>.<signature>`` where the
signature is HMAC-SHA256 of the timestamp (milliseconds) keyed with
INTERNAL_API_SECRET. Tokens are accepted for TOKEN_MAX_AGE_SECONDS.
"""

import hashlib
import hmac
import os
import time

TOKEN_MAX_AGE_SECONDS = 5 * 60


class AuthConfigurationError(Exception):
    """Raised when INTERNAL_API_SECRET is not configured."""

    pass


def _get_secret() -> str:
    secret = os.environ.get("INTERNAL_API_SECRET")
    if not secret:
        raise AuthConfigurationError("INTERNAL_API_SECRET is not set")
    return secret


def _sign(secret: str, timestamp: str) -> str:
    return hmac.new(secret.encode(), timestamp.encode(), hashlib.sha256).hexdigest()


def generate_internal_token(now_ms: int | None = None) -> str:
    """Create a token for calling internal endpoints (used by tests and the sandbox)."""
    timestamp = str(now_ms if now_ms is not None else int(time.time() * 1000))
    return f"{timestamp}.{_sign(_get_secret(), timestamp)}"


def generate_job_token(job_id: str) -> str:
    """Token the sandbox uses to call back for its own job only."""
    return _sign(_get_secret(), f"job:{job_id}")


def verify_job_token(job_id: str, token: str | None) -> bool:
    if not token:
        return False
    return hmac.compare_digest(generate_job_token(job_id), token)


def verify_internal_token(authorization: str | None, now_ms: int | None = None) -> bool:
    """
    Check an Authorization header value.

    Raises:
        AuthConfigurationError: the shared secret is missing
    """
    secret = _get_secret()
    if not authorization or not authorization.startswith("Bearer "):
        return False

    token = authorization[len("Bearer ") :].strip()
    timestamp, _, signature = token.partition(".")
    if not timestamp.isdigit() or not signature:
        return False

    now = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(now - int(timestamp)) > TOKEN_MAX_AGE_SECONDS * 1000:
        return False

    return hmac.compare_digest(_sign(secret, timestamp), signature)
