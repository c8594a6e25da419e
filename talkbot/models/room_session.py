from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from talkbot.database import Base, JSONType


class RoomSession(Base):
    __tablename__ = "room_sessions"

    room_token = Column(Text, primary_key=True)
    persona_id = Column(Integer, ForeignKey("bot_personas.id"))
    is_group = Column(Boolean, nullable=False, default=True)
    mention_mode = Column(Text, nullable=False, default="on_mention")  # always, on_mention
    onboarding_done = Column(Boolean, nullable=False, default=False)
    onboarding_stage = Column(Integer, nullable=False, default=0)
    state = Column(JSONType, nullable=False, default=dict)
    onboarded_by = Column(Text)
    version = Column(Integer, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    # Every UPDATE becomes "... WHERE room_token = :t AND version = :v"
    __mapper_args__ = {"version_id_col": version}
