"""User model: one row per chat user, holding the live session and counters."""
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from studybot.db.session import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)  # chat id
    address = Column(String(64), nullable=True)

    # live session; session_status NULL means no session was ever started
    session_status = Column(String(16), nullable=True)
    session_started_at = Column(DateTime(timezone=True), nullable=True)
    session_duration = Column(Integer, nullable=True)  # minutes
    session_generation = Column(Integer, nullable=False, default=0)

    completed_sessions = Column(Integer, nullable=False, default=0)
    badges_json = Column(Text, nullable=False, default="[]")  # cached tiers, JSON list

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)

    history = relationship("SessionHistory", back_populates="user", order_by="SessionHistory.generation")
