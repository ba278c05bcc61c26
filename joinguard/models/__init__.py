"""Модели данных."""
from joinguard.models.base import Base, async_session_factory, init_db, utcnow
from joinguard.models.banned_user import BannedUser
from joinguard.models.join_request import (
    JoinRequest,
    JoinRequestReply,
    JoinRequestStatus,
    ReplySender,
)

# Импорты для регистрации в Base.metadata
__all__ = [
    "Base",
    "init_db",
    "async_session_factory",
    "utcnow",
    "BannedUser",
    "JoinRequest",
    "JoinRequestReply",
    "JoinRequestStatus",
    "ReplySender",
]
