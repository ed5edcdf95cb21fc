from studybot.models.user import User
from studybot.models.history import SessionHistory

__all__ = ["User", "SessionHistory"]
