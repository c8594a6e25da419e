from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from talkbot.logging_config import get_logger
from talkbot.models import ConversationTurn
from talkbot.services.errors import PersistenceError

logger = get_logger("conversation_log")

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"


class ConversationLog:
    """Append-only turn history per room."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        room_token: str,
        user_id: str,
        role: str,
        content: str,
        *,
        persona_id: Optional[int] = None,
        model: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        tokens_used: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> int:
        if role not in (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM):
            raise ValueError(f"Invalid role: {role}")

        turn = ConversationTurn(
            room_token=room_token,
            user_id=user_id,
            persona_id=persona_id,
            role=role,
            content=content,
            model=model,
            processing_time_ms=processing_time_ms,
            tokens_used=tokens_used,
            turn_metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(turn)
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to append {role} turn in room {room_token}: {exc}") from exc
        return turn.id

    def recent_history(self, room_token: str, limit: int) -> List[ConversationTurn]:
        """Most recent `limit` turns, returned oldest first."""
        if limit <= 0:
            return []
        rows = (
            self.db.query(ConversationTurn)
            .filter(ConversationTurn.room_token == room_token)
            .order_by(ConversationTurn.created_at.desc(), ConversationTurn.id.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def delete_room(self, room_token: str) -> int:
        try:
            deleted = (
                self.db.query(ConversationTurn)
                .filter(ConversationTurn.room_token == room_token)
                .delete(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete history of room {room_token}: {exc}") from exc
        logger.info("Conversation history deleted", extra={"context": {"room_token": room_token, "turns": deleted}})
        return deleted
