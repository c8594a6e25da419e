"""Per-webhook processing: verify, resolve, onboard or chat, reply."""

import time
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from talkbot.config import Settings
from talkbot.logging_config import LoggerAdapter, get_logger
from talkbot.schemas.onboarding import Completed
from talkbot.schemas.webhook import InboundMessage
from talkbot.services.bot_resolver import BotResolver, Resolution, ResolveAction
from talkbot.services.conversation_log import ROLE_ASSISTANT, ROLE_USER, ConversationLog
from talkbot.services.errors import ConcurrentUpdateError, PersistenceError
from talkbot.services.job_queue_service import (
    STATUS_DONE,
    STATUS_FAILED,
    enqueue_completion_job,
    mark_job_status,
)
from talkbot.services.onboarding_service import OnboardingOutcome, OnboardingService
from talkbot.services.persona_service import PersonaRepository
from talkbot.services.prompt_service import CompletionClient, PromptComposer
from talkbot.services.reply_dispatcher import ReplyDispatcher
from talkbot.services.retrieval_service import RetrievalEngine
from talkbot.services.session_store import RoomSessionStore
from talkbot.services.webhook_verifier import parse_envelope, verify_signature

logger = get_logger("pipeline")

STATUS_REPLIED = "replied"
STATUS_IGNORED = "ignored"
STATUS_ONBOARDING = "onboarding"
STATUS_RESET = "reset"
STATUS_REDIRECTED = "redirected"
STATUS_QUEUED = "queued"


@dataclass
class PipelineOutcome:
    status: str
    reply: Optional[str] = None
    delivered: Optional[bool] = None
    persona: Optional[str] = None
    stage: Optional[str] = None


class MessagePipeline:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        store: RoomSessionStore,
        personas: PersonaRepository,
        resolver: BotResolver,
        onboarding: OnboardingService,
        conversation_log: ConversationLog,
        retrieval: RetrievalEngine,
        composer: PromptComposer,
        completion: CompletionClient,
        dispatcher: ReplyDispatcher,
    ):
        self.db = db
        self.settings = settings
        self.store = store
        self.personas = personas
        self.resolver = resolver
        self.onboarding = onboarding
        self.conversation_log = conversation_log
        self.retrieval = retrieval
        self.composer = composer
        self.completion = completion
        self.dispatcher = dispatcher

    def handle_webhook(self, body: bytes, signature: Optional[str], nonce: Optional[str]) -> PipelineOutcome:
        """Authenticate first; nothing is read or written for an unauthenticated body."""
        verify_signature(body, signature, nonce, self.settings.bot_secret)
        message = parse_envelope(body)
        return self.handle(message)

    def handle(self, message: InboundMessage) -> PipelineOutcome:
        started = time.monotonic()
        log = LoggerAdapter(logger, {"room_token": message.room_token, "message_id": message.message_id})
        log.info("Webhook message received", extra={"context": {"actor_id": message.actor_id}})

        resolution, onboarding_outcome = self._resolve_with_retry(message, log)
        persona_name = resolution.persona.name if resolution.persona else None

        if resolution.action == ResolveAction.IGNORE:
            log.info("Message ignored: persona not mentioned")
            return PipelineOutcome(status=STATUS_IGNORED, persona=persona_name)

        if resolution.action in (ResolveAction.RESET, ResolveAction.REDIRECT):
            delivered = self._dispatch(message, resolution.reply)
            status = STATUS_RESET if resolution.action == ResolveAction.RESET else STATUS_REDIRECTED
            return PipelineOutcome(status=status, reply=resolution.reply, delivered=delivered, persona=persona_name)

        if onboarding_outcome is not None:
            delivered = self._dispatch(message, onboarding_outcome.reply)
            return PipelineOutcome(
                status=STATUS_ONBOARDING,
                reply=onboarding_outcome.reply,
                delivered=delivered,
                persona=persona_name,
                stage=onboarding_outcome.stage,
            )

        return self._chat(message, resolution, started, log)

    def _resolve_with_retry(
        self, message: InboundMessage, log: LoggerAdapter
    ) -> tuple[Resolution, Optional[OnboardingOutcome]]:
        """Resolve the room and run an onboarding step, retrying lost compare-and-swap races."""
        attempts = max(self.settings.session_conflict_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                resolution = self.resolver.resolve(message.room_token, message.text)
                if resolution.action != ResolveAction.PROCEED:
                    return resolution, None

                if not self.onboarding.is_complete(resolution.session):
                    outcome = self.onboarding.step(
                        resolution.session, resolution.persona, message.actor_id, message.text
                    )
                    return resolution, outcome

                self.store.commit()
                return resolution, None
            except ConcurrentUpdateError as exc:
                self.db.rollback()
                self.db.expire_all()
                log.warning(
                    "Room session conflict, retrying",
                    extra={"context": {"attempt": attempt, "error": exc.message}},
                )

        raise PersistenceError(f"Room {message.room_token} kept changing after {attempts} attempts")

    def _chat(self, message: InboundMessage, resolution: Resolution, started: float, log) -> PipelineOutcome:
        session = resolution.session
        persona = resolution.persona
        state = self.store.load_state(session)
        answers = state.answers if isinstance(state, Completed) else []

        prior_turns = self.conversation_log.recent_history(message.room_token, self.settings.history_limit)

        # The user turn must be durable before anything is sent; without it there is no reply
        user_turn_id = self.conversation_log.append(
            message.room_token,
            message.actor_id,
            ROLE_USER,
            message.text,
            persona_id=persona.id,
            metadata={"message_id": message.message_id, "actor_name": message.actor_name},
        )

        knowledge_context = self.retrieval.context_for(persona, answers, prior_turns, message.text)
        history = self.conversation_log.recent_history(message.room_token, self.settings.history_limit)
        messages = self.composer.compose(
            persona,
            is_group=bool(session.is_group),
            mention_mode=session.mention_mode,
            answers=answers,
            knowledge_context=knowledge_context,
            history=history,
        )

        if self.settings.completion_mode == "queue":
            job_id = enqueue_completion_job(
                self.db,
                room_token=message.room_token,
                payload_json={
                    "persona_id": persona.id,
                    "user_id": message.actor_id,
                    "messages": messages,
                    "reply_to": message.message_id,
                    "callback_url": message.callback_url,
                    "user_turn_id": user_turn_id,
                },
            )
            self._commit_turn(message.room_token)
            log.info("Completion job queued", extra={"context": {"job_id": job_id, "persona_id": persona.id}})
            return PipelineOutcome(status=STATUS_QUEUED, persona=persona.name)

        self._commit_turn(message.room_token)

        result = self.completion.complete(persona, messages)
        if result.ok:
            reply = result.value.content
            model = result.value.model
            tokens = result.value.total_tokens
        else:
            reply = self.settings.apology_message
            model = persona.default_model
            tokens = None
            log.warning("Replying with apology", extra={"context": {"error_code": result.error_code}})

        self._log_assistant_turn(
            message.room_token,
            persona.id,
            reply,
            model=model,
            tokens=tokens,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            metadata={"reply_to": message.message_id, "fallback": not result.ok},
        )

        delivered = self._dispatch(message, reply)
        return PipelineOutcome(status=STATUS_REPLIED, reply=reply, delivered=delivered, persona=persona.name)

    def _commit_turn(self, room_token: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to record user turn in room {room_token}: {exc}") from exc

    def _log_assistant_turn(self, room_token: str, persona_id: int, reply: str, **fields: Any) -> None:
        """Best effort: the reply still goes out if this write fails."""
        try:
            self.conversation_log.append(
                room_token,
                "assistant",
                ROLE_ASSISTANT,
                reply,
                persona_id=persona_id,
                model=fields.get("model"),
                tokens_used=fields.get("tokens"),
                processing_time_ms=fields.get("processing_time_ms"),
                metadata=fields.get("metadata"),
            )
            self.db.commit()
        except (PersistenceError, SQLAlchemyError) as exc:
            self.db.rollback()
            logger.error(
                "Failed to record assistant turn",
                extra={"context": {"room_token": room_token, "error": str(exc)}},
            )

    def _dispatch(self, message: InboundMessage, reply: str) -> bool:
        return self.dispatcher.send(
            message.room_token,
            reply,
            reply_to=message.message_id,
            callback_url=message.callback_url,
        )

    def run_completion_job(self, job: dict) -> bool:
        """Process one claimed CompletionJob: complete, log, dispatch, mark DONE or FAILED."""
        job_id = job["id"]
        payload = job.get("payload_json") or {}
        room_token = job["room_token"]
        started = time.monotonic()

        try:
            persona = self.personas.get(payload["persona_id"])
            if persona is None:
                mark_job_status(self.db, job_id=job_id, status=STATUS_FAILED, last_error="persona not found")
                return False

            result = self.completion.complete(persona, payload["messages"])
            reply = result.value.content if result.ok else self.settings.apology_message

            self._log_assistant_turn(
                room_token,
                persona.id,
                reply,
                model=result.value.model if result.ok else persona.default_model,
                tokens=result.value.total_tokens if result.ok else None,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                metadata={"reply_to": payload.get("reply_to", 0), "fallback": not result.ok, "job_id": job_id},
            )

            delivered = self.dispatcher.send(
                room_token,
                reply,
                reply_to=payload.get("reply_to", 0),
                callback_url=payload.get("callback_url"),
            )
            if delivered:
                mark_job_status(self.db, job_id=job_id, status=STATUS_DONE)
            else:
                mark_job_status(self.db, job_id=job_id, status=STATUS_FAILED, last_error="reply delivery failed")
            return delivered
        except Exception as exc:
            self.db.rollback()
            logger.error(
                "Completion job failed",
                extra={"context": {"job_id": job_id, "room_token": room_token, "error": str(exc)}},
            )
            mark_job_status(self.db, job_id=job_id, status=STATUS_FAILED, last_error=str(exc)[:1000])
            return False
