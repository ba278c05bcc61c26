"""Данные, которые приходят из Telegram в ядро модерации."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class MediaKind(str, Enum):
    """Типы медиа, которые пересылаются модераторам."""

    PHOTO = "photo"
    VIDEO = "video"
    VIDEO_NOTE = "video_note"
    VOICE = "voice"
    AUDIO = "audio"
    DOCUMENT = "document"
    ANIMATION = "animation"
    STICKER = "sticker"

    @property
    def supports_caption(self) -> bool:
        return self not in (MediaKind.VIDEO_NOTE, MediaKind.STICKER)


# Подписи для медиа без текста
MEDIA_PLACEHOLDERS = {
    MediaKind.PHOTO: "🖼 Фото-сообщение",
    MediaKind.VIDEO: "📹 Видео-сообщение",
    MediaKind.VIDEO_NOTE: "⚪ Видео-кружок",
    MediaKind.VOICE: "🎤 Голосовое сообщение",
    MediaKind.AUDIO: "🎵 Аудио-сообщение",
    MediaKind.DOCUMENT: "📄 Документ",
    MediaKind.ANIMATION: "🎞 Анимация",
    MediaKind.STICKER: "🏷 Стикер",
}


@dataclass(frozen=True)
class TextContent:
    """Текстовое сообщение пользователя."""
    text: str


@dataclass(frozen=True)
class MediaContent:
    """Медиа-сообщение пользователя."""
    kind: MediaKind
    file_id: str
    caption: Optional[str] = None


ApplicantContent = Union[TextContent, MediaContent]


def content_as_text(content: ApplicantContent) -> str:
    """Текстовое представление сообщения для истории переписки."""
    if isinstance(content, TextContent):
        return content.text
    placeholder = MEDIA_PLACEHOLDERS[content.kind]
    return f"{placeholder}: {content.caption}" if content.caption else placeholder


@dataclass(frozen=True)
class ApplicantProfile:
    """Профиль пользователя, подавшего заявку."""
    applicant_id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


@dataclass(frozen=True)
class SourceMessage:
    """Сообщение модераторам, на кнопку которого нажали.

    body: HTML-текст или подпись сообщения; media_kind задан для медиа.
    """
    chat_id: int
    message_id: int
    body: Optional[str] = None
    media_kind: Optional[MediaKind] = None
    sender_name: Optional[str] = None

    @property
    def has_media(self) -> bool:
        return self.media_kind is not None

    def text_for_edit(self) -> str:
        """Текст, который останется в сообщении после редактирования.

        Если у медиа нет подписи, подставляется заглушка с типом медиа.
        """
        if self.body:
            return self.body
        if self.media_kind is not None:
            text = MEDIA_PLACEHOLDERS[self.media_kind]
        else:
            text = "📝 Сообщение"
        if self.sender_name:
            text += f" от {self.sender_name}"
        return text


# Верхние границы ID пользователей Telegram по периодам регистрации
_REGISTRATION_PERIODS: list[tuple[int, str]] = [
    (100_000_000, "2013-2014"),
    (200_000_000, "2015-2016"),
    (300_000_000, "2017-2018"),
    (400_000_000, "2019-2020"),
    (2_147_483_647, "2021 (до сентября)"),
    (5_000_000_000, "2021 (после сентября) - 2022"),
    (7_000_000_000, "2023"),
    (8_143_370_828, "2024"),
    (9_500_000_000, "2025 (прогноз)"),
]


def estimate_registration_period(user_id: int) -> str:
    """Примерный период регистрации аккаунта по его ID."""
    if user_id < 1:
        return "Неизвестный период"
    for upper_bound, period in _REGISTRATION_PERIODS:
        if user_id <= upper_bound:
            return period
    return "Неизвестный период"
