from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from talkbot.database import Base, JSONType


class CompletionJob(Base):
    __tablename__ = "completion_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_token = Column(Text, nullable=False)
    payload = Column(JSONType, nullable=False)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, DONE, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
