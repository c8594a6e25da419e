from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from talkbot.config import Settings
from talkbot.logging_config import get_logger
from talkbot.models import BotPersona
from talkbot.schemas.persona import PersonaProfile

logger = get_logger("persona_service")

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


def to_profile(persona: BotPersona, settings: Settings) -> PersonaProfile:
    """Resolve nullable persona columns against the global defaults once."""
    return PersonaProfile(
        id=persona.id,
        name=persona.name,
        mention_name=persona.mention_name,
        system_prompt=persona.system_prompt or DEFAULT_SYSTEM_PROMPT,
        default_model=persona.default_model or settings.default_model,
        embedding_model=persona.embedding_model or settings.default_embedding_model,
        rag_top_k=persona.rag_top_k or settings.rag_top_k,
        max_tokens=persona.max_tokens or settings.max_tokens,
        temperature=float(persona.temperature) if persona.temperature is not None else settings.temperature,
        top_p=float(persona.top_p) if persona.top_p is not None else settings.top_p,
        group_questions=persona.onboarding_group_questions or [],
        dm_questions=persona.onboarding_dm_questions or [],
    )


class PersonaRepository:
    """Read-only access to personas configured by the admin panel."""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def list_personas(self) -> List[PersonaProfile]:
        """All valid personas, oldest first. Rows that fail validation are skipped."""
        rows = self.db.query(BotPersona).order_by(BotPersona.created_at.asc(), BotPersona.id.asc()).all()
        profiles = []
        for row in rows:
            try:
                profiles.append(to_profile(row, self.settings))
            except PydanticValidationError as exc:
                logger.error(
                    "Skipping invalid persona",
                    extra={"context": {"persona_id": row.id, "errors": exc.error_count()}},
                )
        return profiles

    def get(self, persona_id: int) -> Optional[PersonaProfile]:
        row = self.db.query(BotPersona).filter(BotPersona.id == persona_id).first()
        if row is None:
            return None
        return to_profile(row, self.settings)
