"""Модель списка заблокированных пользователей."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from joinguard.models.base import Base, utcnow


class BannedUser(Base):
    """Запись о бане: кто, кем и за что."""

    __tablename__ = "banned_users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    moderator_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    banned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
