from sqlalchemy import Column, Index, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from talkbot.database import Base, JSONType


class ConversationTurn(Base):
    __tablename__ = "conversation_turns"
    __table_args__ = (Index("ix_conversation_turns_room_created", "room_token", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_token = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    persona_id = Column(Integer)
    role = Column(Text, nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False)
    model = Column(Text)
    processing_time_ms = Column(Integer)
    tokens_used = Column(Integer)
    turn_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
