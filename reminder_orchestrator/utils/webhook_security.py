"""
Signature verification for inbound delivery-status callbacks.
"""
import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class WebhookSignatureVerification:
    verified: bool
    reason: Optional[str] = None


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _normalize_signature(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if normalized.startswith("sha256="):
        normalized = normalized[len("sha256="):].strip()
    return normalized.lower()


def verify_webhook_signature(secret: str, body: bytes, signature: Optional[str]) -> WebhookSignatureVerification:
    """
    Check ``x-webhook-signature`` against the raw body.

    An unset secret fails closed; callbacks are never accepted unsigned.
    """
    if not secret:
        return WebhookSignatureVerification(verified=False, reason="webhook_secret_missing")

    normalized = _normalize_signature(signature)
    if normalized is None:
        return WebhookSignatureVerification(verified=False, reason="signature_missing")

    if not hmac.compare_digest(normalized, compute_signature(secret, body)):
        return WebhookSignatureVerification(verified=False, reason="signature_mismatch")

    return WebhookSignatureVerification(verified=True)


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Base64 HMAC-SHA1 over the URL followed by each param name and value, sorted by name."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(
    auth_token: str,
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
) -> WebhookSignatureVerification:
    """
    Check ``X-Twilio-Signature`` for a status callback.

    An unset auth token fails closed like the webhook secret does.
    """
    if not auth_token:
        return WebhookSignatureVerification(verified=False, reason="twilio_auth_token_missing")

    if not signature:
        return WebhookSignatureVerification(verified=False, reason="signature_missing")

    expected = compute_twilio_signature(auth_token, url, params)
    if not hmac.compare_digest(signature.strip(), expected):
        return WebhookSignatureVerification(verified=False, reason="signature_mismatch")

    return WebhookSignatureVerification(verified=True)
