import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from talkbot.config import Settings
from talkbot.logging_config import get_logger
from talkbot.models import RoomSession
from talkbot.schemas.onboarding import MENTION_ON_MENTION
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.conversation_log import ConversationLog
from talkbot.services.errors import ConfigurationError
from talkbot.services.mentions import mentions
from talkbot.services.persona_service import PersonaRepository
from talkbot.services.session_store import RoomSessionStore

logger = get_logger("bot_resolver")

RESET_CONFIRMATION = "This room has been reset. Send any message to set me up again."
REDIRECT_TEMPLATE = (
    "This room is assigned to {name}. Please mention {mention} to talk to me, "
    "or send {reset} to start over with another bot."
)


class ResolveAction(str, Enum):
    RESET = "reset"
    REDIRECT = "redirect"
    IGNORE = "ignore"
    PROCEED = "proceed"


@dataclass
class Resolution:
    action: ResolveAction
    reply: Optional[str] = None
    session: Optional[RoomSession] = None
    persona: Optional[PersonaProfile] = None


def contains_reset_token(text: str, reset_token: str) -> bool:
    token = (reset_token or "").strip()
    if not token or not text:
        return False
    return re.search(rf"(?<![\w/]){re.escape(token)}(?![\w-])", text, re.IGNORECASE) is not None


class BotResolver:
    """Decides which persona owns a room and whether the message goes further."""

    def __init__(
        self,
        store: RoomSessionStore,
        personas: PersonaRepository,
        conversation_log: ConversationLog,
        settings: Settings,
    ):
        self.store = store
        self.personas = personas
        self.conversation_log = conversation_log
        self.settings = settings

    def reset(self, room_token: str) -> Resolution:
        self.store.delete(room_token)
        self.conversation_log.delete_room(room_token)
        self.store.commit()
        logger.info("Room reset", extra={"context": {"room_token": room_token}})
        return Resolution(action=ResolveAction.RESET, reply=RESET_CONFIRMATION)

    def resolve(self, room_token: str, text: str) -> Resolution:
        if contains_reset_token(text, self.settings.reset_token):
            return self.reset(room_token)

        personas = self.personas.list_personas()
        if not personas:
            raise ConfigurationError("No bot persona is registered")

        session = self.store.get_or_create(room_token)

        if session.persona_id is not None:
            return self._resolve_bound(session, personas, text)

        chosen = self.select_persona(personas, text)
        self.store.bind_persona(session, chosen.id)
        logger.info(
            "Room bound to persona",
            extra={"context": {"room_token": room_token, "persona_id": chosen.id, "persona": chosen.name}},
        )
        return Resolution(action=ResolveAction.PROCEED, session=session, persona=chosen)

    @staticmethod
    def select_persona(personas: List[PersonaProfile], text: str) -> PersonaProfile:
        """First persona (creation order) mentioned in the text, else the oldest one."""
        for persona in personas:
            if mentions(text, persona.mention_name):
                return persona
        return personas[0]

    def _resolve_bound(self, session: RoomSession, personas: List[PersonaProfile], text: str) -> Resolution:
        bound = next((p for p in personas if p.id == session.persona_id), None)
        if bound is None:
            raise ConfigurationError(f"Room {session.room_token} is bound to unknown persona {session.persona_id}")

        addressed_bound = mentions(text, bound.mention_name)
        other = next((p for p in personas if p.id != bound.id and mentions(text, p.mention_name)), None)
        if other is not None:
            logger.info(
                "Redirecting mention of another persona",
                extra={
                    "context": {
                        "room_token": session.room_token,
                        "persona_id": bound.id,
                        "mentioned_persona_id": other.id,
                    }
                },
            )
            return Resolution(
                action=ResolveAction.REDIRECT,
                reply=REDIRECT_TEMPLATE.format(
                    name=bound.name, mention=bound.mention_name, reset=self.settings.reset_token
                ),
                session=session,
                persona=bound,
            )

        if session.onboarding_done and session.mention_mode == MENTION_ON_MENTION and not addressed_bound:
            return Resolution(action=ResolveAction.IGNORE, session=session, persona=bound)

        return Resolution(action=ResolveAction.PROCEED, session=session, persona=bound)
