"""Личные сообщения пользователей и ответы модераторов."""
from __future__ import annotations

from typing import Optional

from loguru import logger

from telegram import Message, Update
from telegram.ext import ContextTypes, MessageHandler, filters

from joinguard.services.content import ApplicantContent, MediaContent, MediaKind, TextContent
from joinguard.services.moderation import BOT_DATA_KEY


def media_of(message: Message) -> Optional[tuple[MediaKind, str]]:
    """Тип медиа и file_id сообщения, если это медиа."""
    if message.photo:
        # Последний размер самый крупный
        return MediaKind.PHOTO, message.photo[-1].file_id
    if message.video:
        return MediaKind.VIDEO, message.video.file_id
    if message.video_note:
        return MediaKind.VIDEO_NOTE, message.video_note.file_id
    if message.voice:
        return MediaKind.VOICE, message.voice.file_id
    if message.audio:
        return MediaKind.AUDIO, message.audio.file_id
    # У анимаций Telegram заполняет и document
    if message.animation:
        return MediaKind.ANIMATION, message.animation.file_id
    if message.document:
        return MediaKind.DOCUMENT, message.document.file_id
    if message.sticker:
        return MediaKind.STICKER, message.sticker.file_id
    return None


def content_from_message(message: Message) -> Optional[ApplicantContent]:
    """Текст или медиа из сообщения; None для всего остального (опросы, геопозиция и т.п.)."""
    media = media_of(message)
    if media is not None:
        kind, file_id = media
        return MediaContent(kind=kind, file_id=file_id, caption=message.caption)
    if message.text:
        return TextContent(message.text)
    return None


async def handle_applicant_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Сообщение пользователя боту в личку."""
    message = update.effective_message
    user = update.effective_user
    content = content_from_message(message)
    if content is None:
        logger.debug(f"Сообщение пользователя {user.id} без текста и медиа пропущено")
        return

    route = await context.bot_data[BOT_DATA_KEY].on_applicant_message(user.id, content)
    logger.debug(f"Сообщение пользователя {user.id}: {route.value}")


async def handle_moderator_reply(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Ответ модератора в чате модераторов (текст вопроса или /cancel)."""
    message = update.effective_message
    user = update.effective_user
    handled = await context.bot_data[BOT_DATA_KEY].on_moderator_reply(user.id, message.text)
    if not handled:
        logger.debug(f"Ответ модератора {user.id} не относится к вопросам")


def get_message_handlers(moderator_chat_id: int) -> list:
    """Обработчики сообщений: ответы модераторов и личка пользователей."""
    return [
        MessageHandler(
            filters.Chat(moderator_chat_id) & filters.REPLY & filters.TEXT,
            handle_moderator_reply,
        ),
        MessageHandler(
            filters.ChatType.PRIVATE & ~filters.COMMAND,
            handle_applicant_message,
        ),
    ]
