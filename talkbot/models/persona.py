from sqlalchemy import Column, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from talkbot.database import Base, JSONType


class BotPersona(Base):
    """Bot identity managed by the admin panel. Read-only for the webhook core."""

    __tablename__ = "bot_personas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    mention_name = Column(Text, nullable=False)  # e.g. "@edu"
    system_prompt = Column(Text)
    default_model = Column(Text)
    embedding_model = Column(Text)
    rag_top_k = Column(Integer)
    max_tokens = Column(Integer)
    temperature = Column(Numeric(3, 2))
    top_p = Column(Numeric(3, 2))
    onboarding_group_questions = Column(JSONType, nullable=False, default=list)
    onboarding_dm_questions = Column(JSONType, nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
