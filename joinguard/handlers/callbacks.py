"""Нажатия на кнопки модерации."""
from __future__ import annotations

from loguru import logger

from telegram import Message, Update
from telegram.ext import CallbackQueryHandler, ContextTypes

from joinguard.handlers.messages import media_of
from joinguard.keyboards.moderation import CALLBACK_PATTERN
from joinguard.services.actions import parse_callback_data
from joinguard.services.content import SourceMessage
from joinguard.services.moderation import BOT_DATA_KEY


def source_from_message(message: Message) -> SourceMessage:
    """Снимок сообщения с кнопками: HTML-текст или подпись и тип медиа."""
    media = media_of(message)
    if media is not None:
        kind, _ = media
        return SourceMessage(
            chat_id=message.chat_id,
            message_id=message.message_id,
            body=message.caption_html,
            media_kind=kind,
        )
    return SourceMessage(
        chat_id=message.chat_id,
        message_id=message.message_id,
        body=message.text_html,
    )


async def handle_moderation_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Кнопки accept/ban/confirm/cancel/reject/ask."""
    query = update.callback_query
    try:
        tag, applicant_id = parse_callback_data(query.data)
    except ValueError:
        logger.error(f"Неверный формат callback_data: {query.data}")
        await query.answer()
        return

    if not isinstance(query.message, Message):
        # Сообщение слишком старое, редактировать нечего
        logger.warning(f"Callback {query.data} без доступного сообщения")
        await query.answer()
        return

    moderator = update.effective_user
    await context.bot_data[BOT_DATA_KEY].on_moderator_callback(
        query.id,
        tag,
        applicant_id,
        moderator.id,
        moderator.full_name,
        source_from_message(query.message),
    )


def get_moderation_handlers() -> list:
    """Хэндлеры кнопок модерации."""
    return [
        CallbackQueryHandler(handle_moderation_callback, pattern=CALLBACK_PATTERN),
    ]
