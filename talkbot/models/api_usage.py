from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from talkbot.database import Base


class ApiUsage(Base):
    __tablename__ = "api_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(Text, nullable=False)  # embeddings, chat/completions
    model = Column(Text)
    tokens_used = Column(Integer)
    latency_ms = Column(Integer, nullable=False)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
