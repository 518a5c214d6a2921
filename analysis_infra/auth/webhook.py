"""GitHub webhook signature verification (X-Hub-Signature-256)."""

import hashlib
import hmac

from ..errors import WebhookSignatureError

SIGNATURE_PREFIX = "sha256="


def sign_payload(secret: str, body: bytes) -> str:
    return SIGNATURE_PREFIX + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    """
    Raises:
        WebhookSignatureError: secret unset, header missing, or digest mismatch
    """
    if not secret:
        raise WebhookSignatureError("GITHUB_WEBHOOK_SECRET is not configured")
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        raise WebhookSignatureError("Missing X-Hub-Signature-256 header")
    if not hmac.compare_digest(sign_payload(secret, body), signature):
        raise WebhookSignatureError("Webhook signature mismatch")
