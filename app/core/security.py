"""Webhook signature checks and admin token comparison."""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Mapping

from app.core.exceptions import WebhookSignatureError

WEBHOOK_ID_HEADER = "webhook-id"
WEBHOOK_TIMESTAMP_HEADER = "webhook-timestamp"
WEBHOOK_SIGNATURE_HEADER = "webhook-signature"


def _webhook_key(secret: str) -> bytes:
    # "whsec_" secrets carry a base64 key; Polar secrets are used as raw bytes.
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_"):])
        except (binascii.Error, ValueError):
            raise WebhookSignatureError("Webhook secret is not valid base64")
    return secret.encode("utf-8")


def sign_webhook(payload: bytes, secret: str, msg_id: str, timestamp: int) -> str:
    """Return the "v1,<signature>" header value for payload."""
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(_webhook_key(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    payload: bytes,
    headers: Mapping[str, str],
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """
    Verify a Standard Webhooks signature (the scheme Polar signs with).
    Raises WebhookSignatureError; returns None when the payload is authentic.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    msg_id = lowered.get(WEBHOOK_ID_HEADER)
    timestamp_raw = lowered.get(WEBHOOK_TIMESTAMP_HEADER)
    signature_header = lowered.get(WEBHOOK_SIGNATURE_HEADER)
    if not msg_id or not timestamp_raw or not signature_header:
        raise WebhookSignatureError("Missing webhook signature headers")
    try:
        timestamp = int(timestamp_raw)
    except ValueError:
        raise WebhookSignatureError("Invalid webhook timestamp")
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("Webhook timestamp outside tolerance")

    expected = sign_webhook(payload, secret, msg_id, timestamp).split(",", 1)[1]
    for candidate in signature_header.split(" "):
        version, _, sig = candidate.partition(",")
        if version != "v1":
            continue
        if hmac.compare_digest(expected, sig):
            return
    raise WebhookSignatureError()


def verify_admin_token(provided: str | None, expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
