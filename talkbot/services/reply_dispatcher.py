import json
from typing import Optional

import httpx

from talkbot.config import Settings
from talkbot.logging_config import get_logger
from talkbot.services.webhook_verifier import compute_signature, generate_nonce

logger = get_logger("reply_dispatcher")

BOT_NONCE_HEADER = "X-Nextcloud-Talk-Bot-Random"
BOT_SIGNATURE_HEADER = "X-Nextcloud-Talk-Bot-Signature"


class ReplyDispatcher:
    """Signs and delivers replies. Failures are logged and reported, never retried here."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def platform_url(self, room_token: str) -> str:
        base = self.settings.platform_base_url.rstrip("/")
        return f"{base}/ocs/v2.php/apps/spreed/api/v1/bot/{room_token}/message"

    def send(self, room_token: str, message: str, reply_to: int = 0, callback_url: Optional[str] = None) -> bool:
        if not self.settings.bot_secret:
            logger.error("Cannot sign reply: bot secret is not configured", extra={"context": {"room_token": room_token}})
            return False

        nonce = generate_nonce()
        if callback_url:
            body = json.dumps({"message": message, "replyTo": reply_to, "success": True}, ensure_ascii=False)
            url = callback_url
            headers = {
                "Content-Type": "application/json",
                BOT_NONCE_HEADER: nonce,
                BOT_SIGNATURE_HEADER: compute_signature(nonce, body, self.settings.bot_secret),
            }
        else:
            body = json.dumps(
                {"message": message, "referenceId": generate_nonce()[:32], "replyTo": reply_to},
                ensure_ascii=False,
            )
            url = self.platform_url(room_token)
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "OCS-APIRequest": "true",
                BOT_NONCE_HEADER: nonce,
                # Talk verifies the bot signature over the message text only
                BOT_SIGNATURE_HEADER: compute_signature(nonce, message, self.settings.bot_secret),
            }

        try:
            with httpx.Client(timeout=self.settings.dispatch_timeout_seconds) as client:
                response = client.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.HTTPError as exc:
            logger.error(
                "Reply delivery failed",
                extra={"context": {"room_token": room_token, "error": str(exc), "callback": bool(callback_url)}},
            )
            return False

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(
                "Reply delivery rejected",
                extra={
                    "context": {
                        "room_token": room_token,
                        "status": response.status_code,
                        "callback": bool(callback_url),
                    }
                },
            )
            return False

        logger.info(
            "Reply delivered",
            extra={"context": {"room_token": room_token, "length": len(message), "callback": bool(callback_url)}},
        )
        return True
