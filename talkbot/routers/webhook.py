from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from talkbot.dependencies import get_pipeline
from talkbot.logging_config import get_logger
from talkbot.schemas.webhook import WebhookResponse
from talkbot.services.errors import (
    AuthenticationError,
    BotError,
    ConfigurationError,
    PersistenceError,
    ValidationError,
)
from talkbot.services.message_pipeline import MessagePipeline
from talkbot.services.webhook_verifier import NONCE_HEADER, SIGNATURE_HEADER

logger = get_logger("webhook")

router = APIRouter()


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(request: Request, pipeline: MessagePipeline = Depends(get_pipeline)):
    """Handle a Talk bot webhook. The raw body is needed for signature verification."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    nonce = request.headers.get(NONCE_HEADER)

    try:
        outcome = await run_in_threadpool(pipeline.handle_webhook, body, signature, nonce)
    except AuthenticationError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=AuthenticationError.public_message)
    except ValidationError as exc:
        logger.warning("Rejected webhook payload", extra={"context": {"reason": exc.message}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=ValidationError.public_message)
    except ConfigurationError as exc:
        logger.error("Bot is not configured", extra={"context": {"reason": exc.message}})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=ConfigurationError.public_message)
    except PersistenceError as exc:
        logger.error(
            "Turn failed on persistence",
            extra={"context": {"error_type": type(exc).__name__, "reason": exc.message}},
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
    except BotError as exc:
        logger.error("Webhook processing failed", extra={"context": {"error_type": type(exc).__name__}})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")

    return WebhookResponse(
        success=True,
        status=outcome.status,
        message=outcome.reply,
        persona=outcome.persona,
        stage=outcome.stage,
        delivered=outcome.delivered,
    )
