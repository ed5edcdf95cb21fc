"""SQLAlchemy declarative base and model imports for Alembic."""
from studybot.db.session import Base

# Import all models so Alembic can see them
from studybot.models.history import SessionHistory  # noqa: F401
from studybot.models.user import User  # noqa: F401

__all__ = ["Base", "User", "SessionHistory"]
