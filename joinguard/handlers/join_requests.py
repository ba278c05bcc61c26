"""Заявки на вступление в чат сообщества."""
from __future__ import annotations

from typing import Optional

from loguru import logger

from telegram import Update, User
from telegram.ext import ChatJoinRequestHandler, ContextTypes

from joinguard.services.content import ApplicantProfile
from joinguard.services.moderation import BOT_DATA_KEY


def profile_from_user(user: User) -> ApplicantProfile:
    return ApplicantProfile(
        applicant_id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        language_code=user.language_code,
    )


async def handle_join_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Новая заявка: регистрируем и уведомляем модераторов."""
    join_request = update.chat_join_request
    user = join_request.from_user
    logger.info(
        f"handle_join_request: user_id={user.id}, username={user.username}, chat_id={join_request.chat.id}"
    )

    await context.bot_data[BOT_DATA_KEY].on_join_requested(profile_from_user(user))


def get_join_request_handler(community_chat_id: Optional[int] = None) -> ChatJoinRequestHandler:
    """Заявки только из чата сообщества, если он задан."""
    return ChatJoinRequestHandler(handle_join_request, chat_id=community_chat_id)
