# Repositories package for data access layer

from .base import BaseRepository

from .session import ChatSessionRepository
from .message import MessageRepository
from .ai_result import AIResultRepository

__all__ = [
    "BaseRepository",
    "ChatSessionRepository",
    "MessageRepository",
    "AIResultRepository",
]
