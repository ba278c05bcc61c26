"""Новые участники чата сообщества."""
from __future__ import annotations

from typing import Optional

from loguru import logger

from telegram import Update
from telegram.ext import ContextTypes, MessageHandler, filters

from joinguard.handlers.join_requests import profile_from_user
from joinguard.services.moderation import BOT_DATA_KEY


async def handle_new_members(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.message
    added_by = message.from_user
    logger.info(
        f"handle_new_members: chat_id={message.chat_id}, "
        f"members={[member.id for member in message.new_chat_members]}"
    )

    service = context.bot_data[BOT_DATA_KEY]
    for member in message.new_chat_members:
        if member.is_bot:
            continue
        inviter = None
        if added_by is not None and added_by.id != member.id:
            inviter = profile_from_user(added_by)
        await service.on_member_joined(profile_from_user(member), inviter)


def get_new_members_handler(community_chat_id: Optional[int] = None) -> MessageHandler:
    """Вступления в чат сообщества (по одобренной заявке или по приглашению)."""
    chat_filter = filters.StatusUpdate.NEW_CHAT_MEMBERS
    if community_chat_id is not None:
        chat_filter = chat_filter & filters.Chat(community_chat_id)
    return MessageHandler(chat_filter, handle_new_members)
