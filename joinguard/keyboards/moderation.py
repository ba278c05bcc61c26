"""Inline-кнопки для модерации заявок."""
from enum import Enum

from telegram import InlineKeyboardButton, InlineKeyboardMarkup


class CallbackTag(str, Enum):
    """Префиксы callback_data кнопок модерации."""

    ACCEPT = "accept"
    BAN = "ban"
    CONFIRM_ACCEPT = "confirm_accept"
    CONFIRM_BAN = "confirm_ban"
    CANCEL_ACCEPT = "cancel_accept"
    CANCEL_BAN = "cancel_ban"
    REJECT = "reject"
    ASK = "ask"
    CANCEL_ASK = "cancel_ask"


# Для CallbackQueryHandler(pattern=...)
CALLBACK_PATTERN = r"^(" + "|".join(tag.value for tag in CallbackTag) + r"):\d+$"


def callback_data(tag: CallbackTag, applicant_id: int) -> str:
    return f"{tag.value}:{applicant_id}"


def action_keyboard(applicant_id: int) -> InlineKeyboardMarkup:
    """Исходные кнопки действий по заявке."""
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("✅ Принять", callback_data=callback_data(CallbackTag.ACCEPT, applicant_id)),
            InlineKeyboardButton("❌ Отклонить", callback_data=callback_data(CallbackTag.REJECT, applicant_id)),
        ],
        [
            InlineKeyboardButton("❓ Задать вопрос", callback_data=callback_data(CallbackTag.ASK, applicant_id)),
            InlineKeyboardButton("🚫 Бан", callback_data=callback_data(CallbackTag.BAN, applicant_id)),
        ],
    ])


def confirm_accept_keyboard(applicant_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton(
                "✅ Подтвердить принятие", callback_data=callback_data(CallbackTag.CONFIRM_ACCEPT, applicant_id)
            ),
            InlineKeyboardButton("↩️ Отмена", callback_data=callback_data(CallbackTag.CANCEL_ACCEPT, applicant_id)),
        ]
    ])


def confirm_ban_keyboard(applicant_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("🚫 Забанить", callback_data=callback_data(CallbackTag.CONFIRM_BAN, applicant_id)),
            InlineKeyboardButton("↩️ Отмена", callback_data=callback_data(CallbackTag.CANCEL_BAN, applicant_id)),
        ]
    ])


def ask_only_keyboard(applicant_id: int) -> InlineKeyboardMarkup:
    """После решения по заявке остаётся только возможность задать вопрос."""
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("❓ Задать вопрос", callback_data=callback_data(CallbackTag.ASK, applicant_id))]
    ])


def question_prompt_keyboard(applicant_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton(
                "✖️ Отменить вопрос", callback_data=callback_data(CallbackTag.CANCEL_ASK, applicant_id)
            )
        ]
    ])
