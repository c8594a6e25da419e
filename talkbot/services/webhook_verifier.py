"""Inbound webhook authentication and envelope parsing."""

import hashlib
import hmac
import json
import secrets
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from talkbot.logging_config import get_logger
from talkbot.schemas.webhook import InboundMessage, WebhookEnvelope
from talkbot.services.errors import AuthenticationError, ValidationError

logger = get_logger("webhook_verifier")

SIGNATURE_HEADER = "X-Nextcloud-Talk-Signature"
NONCE_HEADER = "X-Nextcloud-Talk-Random"


def compute_signature(nonce: str, payload: bytes | str, secret: str) -> str:
    """HMAC-SHA256 over nonce || payload, hex encoded."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), nonce.encode("utf-8") + payload, hashlib.sha256).hexdigest()


def generate_nonce() -> str:
    return secrets.token_hex(32)


def verify_signature(body: bytes, signature: Optional[str], nonce: Optional[str], secret: str) -> None:
    """Raise AuthenticationError unless the signature matches.

    Nothing about the payload is logged here: an unauthenticated body is untrusted.
    """
    if not secret:
        logger.error("Webhook secret is not configured")
        raise AuthenticationError("Webhook secret is not configured")
    if not signature or not nonce:
        logger.warning("Webhook rejected: missing signature headers")
        raise AuthenticationError("Missing signature headers")

    expected = compute_signature(nonce, body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        logger.warning("Webhook rejected: signature mismatch")
        raise AuthenticationError("Signature verification failed")


def _decode_message_text(content) -> Optional[str]:
    if isinstance(content, dict):
        message = content.get("message")
    else:
        try:
            decoded = json.loads(content)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Message content is not valid JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise ValidationError("Message content must be a JSON object")
        message = decoded.get("message")
    if message is None:
        return None
    return str(message)


def parse_envelope(body: bytes) -> InboundMessage:
    """Parse a verified webhook body into an InboundMessage."""
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    try:
        envelope = WebhookEnvelope.model_validate(payload)
    except PydanticValidationError as exc:
        logger.info(
            "Webhook envelope validation failed",
            extra={"context": {"payload_keys": list(payload.keys())[:20], "errors": exc.error_count()}},
        )
        raise ValidationError("Webhook envelope is missing required fields") from exc

    text = _decode_message_text(envelope.object.content)
    if not text or not text.strip() or not envelope.actor.id.strip() or not envelope.target.id.strip():
        raise ValidationError("Incomplete webhook data received")

    try:
        message_id = int(envelope.object.id or 0)
    except (TypeError, ValueError):
        message_id = 0

    return InboundMessage(
        actor_id=envelope.actor.id,
        actor_name=envelope.actor.name,
        room_token=envelope.target.id,
        text=text,
        message_id=message_id,
        callback_url=envelope.callback_url,
    )
