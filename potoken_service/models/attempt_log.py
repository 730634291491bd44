from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Text
from .base import Base


def utc_now():
    return datetime.now(timezone.utc)


class AttemptLog(Base):
    """
    One row per finished extraction attempt. The token itself is never stored.
    """
    __tablename__ = 'attempt_logs'

    id = Column(Integer, primary_key=True, index=True)
    trigger = Column(String, nullable=False) # scheduled, forced or on-demand
    status = Column(String, nullable=False) # success / failure
    error = Column(Text, nullable=True)
    token_length = Column(Integer, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), default=utc_now)
