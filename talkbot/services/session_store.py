from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from talkbot.logging_config import get_logger
from talkbot.models import RoomSession
from talkbot.schemas.onboarding import (
    MENTION_ALWAYS,
    MENTION_ON_MENTION,
    Completed,
    NotStarted,
    onboarding_state_adapter,
    stage_number,
)
from talkbot.services.errors import ConcurrentUpdateError, PersistenceError, StateCorruptionError
from talkbot.services.state_machine import InvalidTransitionError

logger = get_logger("session_store")


class RoomSessionStore:
    """Per-room binding and onboarding state with compare-and-swap updates."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, room_token: str) -> Optional[RoomSession]:
        return self.db.query(RoomSession).filter(RoomSession.room_token == room_token).first()

    def get_or_create(self, room_token: str) -> RoomSession:
        """Load the room session, creating it lazily on the first webhook."""
        session = self.get(room_token)
        if session is not None:
            return session

        now = datetime.now(timezone.utc)
        session = RoomSession(
            room_token=room_token,
            persona_id=None,
            is_group=True,
            mention_mode=MENTION_ON_MENTION,
            onboarding_done=False,
            onboarding_stage=0,
            state=NotStarted().model_dump(),
            created_at=now,
            updated_at=now,
        )
        self.db.add(session)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConcurrentUpdateError(f"Room session {room_token} was created concurrently") from exc

        logger.info("Room session created", extra={"context": {"room_token": room_token}})
        return session

    def load_state(self, session: RoomSession):
        """Parse the stored state blob. An unexpected shape is an error, not a fresh start."""
        raw = session.state
        if not raw:
            return Completed() if session.onboarding_done else NotStarted()
        try:
            return onboarding_state_adapter.validate_python(raw)
        except PydanticValidationError as exc:
            raise StateCorruptionError(f"Invalid onboarding state for room {session.room_token}") from exc

    def _flush(self, session: RoomSession) -> None:
        session.updated_at = datetime.now(timezone.utc)
        try:
            self.db.flush()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrentUpdateError(f"Room session {session.room_token} changed concurrently") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to save room session {session.room_token}: {exc}") from exc

    def bind_persona(self, session: RoomSession, persona_id: int) -> None:
        if session.persona_id is not None and session.persona_id != persona_id:
            raise InvalidTransitionError(f"room already bound to persona {session.persona_id}")
        session.persona_id = persona_id
        self._flush(session)

    def save_state(
        self,
        session: RoomSession,
        state,
        *,
        is_group: Optional[bool] = None,
        mention_mode: Optional[str] = None,
        onboarded_by: Optional[str] = None,
    ) -> None:
        """Persist an onboarding transition. The stage number may never go down."""
        new_stage = stage_number(state)
        if new_stage < (session.onboarding_stage or 0):
            raise InvalidTransitionError(
                f"stage {session.onboarding_stage} -> {new_stage} in room {session.room_token}"
            )

        if is_group is not None:
            session.is_group = is_group
        if mention_mode is not None:
            if mention_mode not in (MENTION_ALWAYS, MENTION_ON_MENTION):
                raise ValueError(f"Invalid mention mode: {mention_mode}")
            session.mention_mode = mention_mode
        if onboarded_by is not None:
            session.onboarded_by = onboarded_by

        session.state = state.model_dump()
        session.onboarding_stage = new_stage
        session.onboarding_done = isinstance(state, Completed)
        self._flush(session)

    def delete(self, room_token: str) -> int:
        """Remove the session entirely. Only the explicit reset command calls this."""
        try:
            return (
                self.db.query(RoomSession)
                .filter(RoomSession.room_token == room_token)
                .delete(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete room session {room_token}: {exc}") from exc

    def find_reusable_dm_session(self, user_id: str, persona_id: int, exclude_room: str) -> Optional[RoomSession]:
        """Most recent completed DM onboarding of this user with the same persona."""
        return (
            self.db.query(RoomSession)
            .filter(
                RoomSession.onboarded_by == user_id,
                RoomSession.persona_id == persona_id,
                RoomSession.is_group.is_(False),
                RoomSession.onboarding_done.is_(True),
                RoomSession.room_token != exclude_room,
            )
            .order_by(RoomSession.updated_at.desc())
            .first()
        )

    def commit(self) -> None:
        """Commit the unit of work; a lost CAS or creation race becomes ConcurrentUpdateError."""
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            raise ConcurrentUpdateError(f"Room session changed concurrently: {exc}") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to commit: {exc}") from exc
