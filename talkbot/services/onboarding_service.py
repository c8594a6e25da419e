from dataclasses import dataclass
from typing import Optional

from talkbot.logging_config import get_logger
from talkbot.models import RoomSession
from talkbot.schemas.onboarding import Completed, ReusePrompt
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.errors import StateCorruptionError
from talkbot.services.session_store import RoomSessionStore
from talkbot.services.state_machine import OnboardingContext, advance, onboarding_progress

logger = get_logger("onboarding_service")


@dataclass
class OnboardingOutcome:
    reply: str
    stage: str
    advanced: bool
    completed: bool


class OnboardingService:
    """Runs one onboarding step and commits it before anything is sent."""

    def __init__(self, store: RoomSessionStore):
        self.store = store

    def is_complete(self, session: RoomSession) -> bool:
        return bool(session.onboarding_done)

    def _reuse_offer(self, session: RoomSession, user_id: str) -> Optional[ReusePrompt]:
        source = self.store.find_reusable_dm_session(user_id, session.persona_id, session.room_token)
        if source is None:
            return None
        try:
            source_state = self.store.load_state(source)
        except StateCorruptionError:
            logger.warning(
                "Ignoring corrupt onboarding state of reuse candidate",
                extra={"context": {"room_token": source.room_token}},
            )
            return None
        answers = source_state.answers if isinstance(source_state, Completed) else []
        return ReusePrompt(source_room_token=source.room_token, mention_mode=source.mention_mode, answers=answers)

    def step(self, session: RoomSession, persona: PersonaProfile, user_id: str, text: str) -> OnboardingOutcome:
        state = self.store.load_state(session)
        context = OnboardingContext(
            persona=persona,
            is_group=bool(session.is_group),
            find_reuse=lambda: self._reuse_offer(session, user_id),
        )
        result = advance(state, text, context, current_mention_mode=session.mention_mode)

        if result.advanced:
            self.store.save_state(
                session,
                result.state,
                is_group=result.is_group,
                mention_mode=result.mention_mode,
                onboarded_by=user_id if result.completed else None,
            )

        self.store.commit()

        logger.info(
            "Onboarding step",
            extra={
                "context": {
                    "room_token": session.room_token,
                    "persona_id": persona.id,
                    "from_stage": state.stage,
                    "to_stage": result.state.stage,
                    "advanced": result.advanced,
                }
            },
        )
        return OnboardingOutcome(
            reply=result.reply,
            stage=result.state.stage,
            advanced=result.advanced,
            completed=result.completed,
        )

    def progress(self, session: RoomSession, persona: PersonaProfile) -> dict:
        return onboarding_progress(self.store.load_state(session), persona, bool(session.is_group))

