"""Глобальный обработчик ошибок."""
from __future__ import annotations

from loguru import logger

from telegram import Update
from telegram.ext import ContextTypes

from joinguard.services.moderation import BOT_DATA_KEY


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Ошибки обработчиков: в лог и в чат модераторов, бот продолжает работу."""
    applicant_id = None
    if isinstance(update, Update) and update.effective_user:
        applicant_id = update.effective_user.id

    service = context.bot_data.get(BOT_DATA_KEY)
    if service is None:
        logger.opt(exception=context.error).error(f"Ошибка до инициализации сервисов: {context.error}")
        return
    await service.reporter.report("обработка обновления", applicant_id, context.error)
