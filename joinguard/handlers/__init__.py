"""Обработчики бота."""
from joinguard.handlers.callbacks import get_moderation_handlers
from joinguard.handlers.errors import error_handler
from joinguard.handlers.join_requests import get_join_request_handler
from joinguard.handlers.members import get_new_members_handler
from joinguard.handlers.messages import content_from_message, get_message_handlers

__all__ = [
    "get_moderation_handlers",
    "get_join_request_handler",
    "get_new_members_handler",
    "get_message_handlers",
    "content_from_message",
    "error_handler",
]
