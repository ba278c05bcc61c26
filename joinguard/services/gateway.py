"""Шлюз к Telegram Bot API с типизированными ошибками."""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from loguru import logger

from telegram import Bot, ForceReply, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, RetryAfter, TelegramError

from joinguard.services.content import MediaContent, MediaKind

T = TypeVar("T")

# Дольше этого не ждём, даже если Telegram просит
MAX_RETRY_AFTER_SECONDS = 60.0

ReplyMarkup = Optional[InlineKeyboardMarkup | ForceReply]

NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


class GatewayErrorKind(str, Enum):
    """Классы ошибок Telegram, с которыми работает ядро."""

    ALREADY_PROCESSED = "already-processed"
    NOT_FOUND = "not-found"
    USER_UNREACHABLE = "user-unreachable"
    RATE_LIMITED = "rate-limited"
    STALE_CALLBACK = "stale-callback"
    UNKNOWN = "unknown"


BENIGN_KINDS = frozenset(
    {
        GatewayErrorKind.ALREADY_PROCESSED,
        GatewayErrorKind.NOT_FOUND,
        GatewayErrorKind.USER_UNREACHABLE,
    }
)


class GatewayError(Exception):
    """Ошибка вызова Telegram, уже отнесённая к одному из классов."""

    def __init__(self, kind: GatewayErrorKind, detail: str = "", retry_after: Optional[float] = None):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail
        self.retry_after = retry_after

    @property
    def benign(self) -> bool:
        return self.kind in BENIGN_KINDS


# Подстроки из описаний ошибок Telegram (в нижнем регистре)
_BAD_REQUEST_MARKERS: list[tuple[str, GatewayErrorKind]] = [
    ("hide_requester_missing", GatewayErrorKind.NOT_FOUND),
    ("user_already_participant", GatewayErrorKind.ALREADY_PROCESSED),
    ("message is not modified", GatewayErrorKind.ALREADY_PROCESSED),
    ("query is too old", GatewayErrorKind.STALE_CALLBACK),
    ("query id is invalid", GatewayErrorKind.STALE_CALLBACK),
    ("member not found", GatewayErrorKind.NOT_FOUND),
    ("user not found", GatewayErrorKind.NOT_FOUND),
    ("participant_id_invalid", GatewayErrorKind.NOT_FOUND),
    ("user_id_invalid", GatewayErrorKind.USER_UNREACHABLE),
    ("peer_id_invalid", GatewayErrorKind.USER_UNREACHABLE),
    ("user is deactivated", GatewayErrorKind.USER_UNREACHABLE),
    ("chat not found", GatewayErrorKind.USER_UNREACHABLE),
]


def _retry_after_seconds(value: Any) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def classify_telegram_error(error: TelegramError) -> GatewayError:
    """Отнести исключение python-telegram-bot к классу GatewayErrorKind."""
    detail = error.message
    if isinstance(error, RetryAfter):
        return GatewayError(
            GatewayErrorKind.RATE_LIMITED,
            detail,
            retry_after=_retry_after_seconds(error.retry_after),
        )
    if isinstance(error, Forbidden):
        # bot was blocked by the user / can't initiate conversation / user is deactivated
        return GatewayError(GatewayErrorKind.USER_UNREACHABLE, detail)
    if isinstance(error, BadRequest):
        lowered = detail.lower()
        for marker, kind in _BAD_REQUEST_MARKERS:
            if marker in lowered:
                return GatewayError(kind, detail)
    return GatewayError(GatewayErrorKind.UNKNOWN, detail)


async def call_with_retry(operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    """Выполнить вызов шлюза с одной повторной попыткой при лимите запросов.

    Повторный RATE_LIMITED превращается в UNKNOWN.
    """
    try:
        return await operation(*args, **kwargs)
    except GatewayError as error:
        if error.kind is not GatewayErrorKind.RATE_LIMITED:
            raise
        delay = error.retry_after if error.retry_after is not None else 1.0
        delay = min(delay, MAX_RETRY_AFTER_SECONDS)
        logger.warning(f"Лимит запросов Telegram, повтор через {delay} с: {error.detail}")
        await asyncio.sleep(delay)

    try:
        return await operation(*args, **kwargs)
    except GatewayError as error:
        if error.kind is GatewayErrorKind.RATE_LIMITED:
            raise GatewayError(
                GatewayErrorKind.UNKNOWN, f"лимит запросов после повтора: {error.detail}"
            ) from error
        raise


@dataclass(frozen=True)
class ChatTarget:
    """Чат (и тред форума), куда отправляются сообщения."""
    chat_id: int
    thread_id: Optional[int] = None


@dataclass(frozen=True)
class MessageRef:
    """Ссылка на отправленное сообщение."""
    chat_id: int
    message_id: int


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except TelegramError as error:
        gateway_error = classify_telegram_error(error)
        logger.debug(f"{operation}: {gateway_error.kind.value} ({error.message})")
        raise gateway_error from error


class TelegramGateway:
    """Тонкая обёртка над telegram.Bot.

    Наружу выходят только GatewayError, строки ошибок Telegram разбираются здесь.
    """

    def __init__(self, bot: Bot, community_chat_id: int):
        self._bot = bot
        self._community_chat_id = community_chat_id

    async def approve_join_request(self, applicant_id: int) -> None:
        with _translate_errors("approve_join_request"):
            await self._bot.approve_chat_join_request(self._community_chat_id, applicant_id)

    async def decline_join_request(self, applicant_id: int) -> None:
        with _translate_errors("decline_join_request"):
            await self._bot.decline_chat_join_request(self._community_chat_id, applicant_id)

    async def ban_member(self, applicant_id: int) -> None:
        with _translate_errors("ban_member"):
            await self._bot.ban_chat_member(self._community_chat_id, applicant_id)

    async def get_member_status(self, applicant_id: int) -> str:
        """Статус пользователя в чате сообщества: left, member, kicked, ..."""
        with _translate_errors("get_member_status"):
            member = await self._bot.get_chat_member(self._community_chat_id, applicant_id)
        return str(member.status)

    async def send_message(
        self,
        target: ChatTarget | int,
        text: str,
        reply_markup: ReplyMarkup = None,
    ) -> MessageRef:
        if isinstance(target, int):
            target = ChatTarget(target)
        with _translate_errors("send_message"):
            message = await self._bot.send_message(
                chat_id=target.chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
                message_thread_id=target.thread_id,
                link_preview_options=NO_PREVIEW,
            )
        return MessageRef(message.chat_id, message.message_id)

    async def send_media(
        self,
        target: ChatTarget,
        media: MediaContent,
        caption: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> MessageRef:
        """Переслать медиа модераторам.

        Кружки и стикеры не поддерживают подпись, поэтому подпись и кнопки
        уходят отдельным сообщением, и возвращается ссылка на него.
        """
        if not media.kind.supports_caption:
            with _translate_errors("send_media"):
                if media.kind is MediaKind.VIDEO_NOTE:
                    await self._bot.send_video_note(
                        target.chat_id, media.file_id, message_thread_id=target.thread_id
                    )
                else:
                    await self._bot.send_sticker(
                        target.chat_id, media.file_id, message_thread_id=target.thread_id
                    )
            return await self.send_message(target, caption, reply_markup=reply_markup)

        senders = {
            MediaKind.PHOTO: self._bot.send_photo,
            MediaKind.VIDEO: self._bot.send_video,
            MediaKind.VOICE: self._bot.send_voice,
            MediaKind.AUDIO: self._bot.send_audio,
            MediaKind.DOCUMENT: self._bot.send_document,
            MediaKind.ANIMATION: self._bot.send_animation,
        }
        with _translate_errors("send_media"):
            message = await senders[media.kind](
                target.chat_id,
                media.file_id,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
                message_thread_id=target.thread_id,
            )
        return MessageRef(message.chat_id, message.message_id)

    async def edit_message_text(
        self, ref: MessageRef, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> None:
        with _translate_errors("edit_message_text"):
            await self._bot.edit_message_text(
                text=text,
                chat_id=ref.chat_id,
                message_id=ref.message_id,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
                link_preview_options=NO_PREVIEW,
            )

    async def edit_message_caption(
        self, ref: MessageRef, caption: str, reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> None:
        with _translate_errors("edit_message_caption"):
            await self._bot.edit_message_caption(
                chat_id=ref.chat_id,
                message_id=ref.message_id,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
            )

    async def edit_message_reply_markup(
        self, ref: MessageRef, reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> None:
        with _translate_errors("edit_message_reply_markup"):
            await self._bot.edit_message_reply_markup(
                chat_id=ref.chat_id,
                message_id=ref.message_id,
                reply_markup=reply_markup,
            )

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        with _translate_errors("answer_callback"):
            await self._bot.answer_callback_query(callback_id, text=text)
