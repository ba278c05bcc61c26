"""Модель заявки на вступление в сообщество."""
from __future__ import annotations

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from joinguard.models.base import Base, utcnow


class JoinRequestStatus(str, PyEnum):
    """Статусы заявки на вступление."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    BANNED = "banned"

    @property
    def is_terminal(self) -> bool:
        return self is not JoinRequestStatus.PENDING


class ReplySender(str, PyEnum):
    """Автор сообщения в переписке по заявке."""

    ADMIN = "admin"
    USER = "user"


class JoinRequest(Base):
    """Заявка на вступление.

    Повторная заявка после отклонения создаёт новую запись,
    актуальной считается самая свежая по created_at.
    """

    __tablename__ = "join_requests"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # Снимок профиля на момент подачи заявки
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    language_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    registration_period: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[JoinRequestStatus] = mapped_column(
        Enum(JoinRequestStatus), default=JoinRequestStatus.PENDING, index=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Сообщение в чате модераторов с кнопками действий
    moderator_message_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Аудит: доставлено ли приветствие, прошёл ли вызов Telegram, уведомлён ли пользователь
    greeting_delivered: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    platform_ok: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    applicant_notified: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Связи
    replies: Mapped[list["JoinRequestReply"]] = relationship(
        "JoinRequestReply",
        back_populates="join_request",
        order_by="JoinRequestReply.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return self.display_name or (f"@{self.username}" if self.username else f"ID:{self.applicant_id}")


class JoinRequestReply(Base):
    """Сообщение из переписки модераторов с автором заявки."""

    __tablename__ = "join_request_replies"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    join_request_id: Mapped[int] = mapped_column(ForeignKey("join_requests.id"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[ReplySender] = mapped_column(Enum(ReplySender), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    join_request: Mapped["JoinRequest"] = relationship("JoinRequest", back_populates="replies")
