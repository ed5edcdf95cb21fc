"""SessionHistory model: one terminal entry per session instance."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from studybot.db.session import Base


class SessionHistory(Base):
    __tablename__ = "session_history"
    __table_args__ = (UniqueConstraint("user_id", "generation", name="uq_history_user_generation"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.user_id"), nullable=False, index=True)
    generation = Column(Integer, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    display_minutes = Column(Integer, nullable=False)
    kind = Column(String(16), nullable=False)  # pomodoro | extended
    outcome = Column(String(16), nullable=False)  # completed | cancelled | failed | expired
    tx_hash = Column(String(80), nullable=True)

    user = relationship("User", back_populates="history")
