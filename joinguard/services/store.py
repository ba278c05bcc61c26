"""Хранилище заявок на вступление и списка банов."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from loguru import logger

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from joinguard.models import (
    BannedUser,
    JoinRequest,
    JoinRequestReply,
    JoinRequestStatus,
    ReplySender,
)
from joinguard.models.base import async_session_factory, utcnow


class RequestStore:
    """Работа с заявками в БД.

    Все операции по applicant_id относятся к самой свежей заявке пользователя.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory):
        self._session_factory = session_factory

    @staticmethod
    async def _latest_id(session: AsyncSession, applicant_id: int) -> Optional[int]:
        result = await session.execute(
            select(JoinRequest.id)
            .where(JoinRequest.applicant_id == applicant_id)
            .order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def insert(self, join_request: JoinRequest) -> int:
        """Сохранить новую заявку. Возвращает её id."""
        logger.debug(f"insert called: applicant_id={join_request.applicant_id}")
        async with self._session_factory() as session:
            session.add(join_request)
            await session.commit()
            await session.refresh(join_request)
            logger.info(f"Заявка создана: id={join_request.id}, applicant_id={join_request.applicant_id}")
            return join_request.id

    async def find_by_applicant(self, applicant_id: int) -> Optional[JoinRequest]:
        """Получить самую свежую заявку пользователя."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(JoinRequest)
                .where(JoinRequest.applicant_id == applicant_id)
                .order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def update_status(
        self,
        applicant_id: int,
        new_status: JoinRequestStatus,
        expected_status: JoinRequestStatus = JoinRequestStatus.PENDING,
        **fields: Any,
    ) -> bool:
        """Сменить статус заявки, только если текущий статус равен expected_status.

        Дополнительные поля сливаются в запись тем же запросом.

        Returns:
            True, если запись обновлена; False, если заявки нет или статус уже другой
        """
        logger.debug(
            f"update_status called: applicant_id={applicant_id}, "
            f"{expected_status.value} -> {new_status.value}, fields={sorted(fields)}"
        )
        async with self._session_factory() as session:
            request_id = await self._latest_id(session, applicant_id)
            if request_id is None:
                return False
            result = await session.execute(
                update(JoinRequest)
                .where(JoinRequest.id == request_id, JoinRequest.status == expected_status)
                .values(status=new_status, updated_at=utcnow(), **fields)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            updated = result.rowcount > 0
            if not updated:
                logger.warning(
                    f"Статус заявки {request_id} не изменён: ожидался {expected_status.value}"
                )
            return updated

    async def update_fields(self, applicant_id: int, **fields: Any) -> bool:
        """Дописать поля в последнюю заявку, не трогая статус."""
        async with self._session_factory() as session:
            request_id = await self._latest_id(session, applicant_id)
            if request_id is None:
                return False
            result = await session.execute(
                update(JoinRequest)
                .where(JoinRequest.id == request_id)
                .values(updated_at=utcnow(), **fields)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def set_moderator_message(self, applicant_id: int, message_id: int) -> bool:
        """Запомнить сообщение модераторам с кнопками (только первое)."""
        async with self._session_factory() as session:
            request_id = await self._latest_id(session, applicant_id)
            if request_id is None:
                return False
            result = await session.execute(
                update(JoinRequest)
                .where(JoinRequest.id == request_id, JoinRequest.moderator_message_id.is_(None))
                .values(moderator_message_id=message_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def find_expired_pending(self, older_than: datetime) -> list[JoinRequest]:
        """Заявки в статусе pending, созданные раньше older_than."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(JoinRequest)
                .where(
                    JoinRequest.status == JoinRequestStatus.PENDING,
                    JoinRequest.created_at < older_than,
                )
                .order_by(JoinRequest.created_at)
            )
            requests = list(result.scalars().all())
            logger.debug(f"Просроченных заявок: {len(requests)}")
            return requests

    async def append_reply(self, applicant_id: int, message: str, sender: ReplySender) -> bool:
        """Добавить сообщение в историю переписки по заявке."""
        async with self._session_factory() as session:
            request_id = await self._latest_id(session, applicant_id)
            if request_id is None:
                logger.warning(f"append_reply: заявка пользователя {applicant_id} не найдена")
                return False
            session.add(
                JoinRequestReply(
                    join_request_id=request_id,
                    message=message,
                    sender=sender,
                    timestamp=utcnow(),
                )
            )
            await session.commit()
            return True

    async def record_ban(self, applicant_id: int, moderator_id: Optional[int], reason: str) -> BannedUser:
        """Добавить пользователя в список забаненных."""
        logger.info(f"record_ban: applicant_id={applicant_id}, moderator_id={moderator_id}")
        async with self._session_factory() as session:
            ban = BannedUser(
                applicant_id=applicant_id,
                moderator_id=moderator_id,
                reason=reason,
                banned_at=utcnow(),
            )
            session.add(ban)
            await session.commit()
            await session.refresh(ban)
            return ban

    async def is_banned(self, applicant_id: int) -> bool:
        """Проверить, есть ли пользователь в списке забаненных."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(BannedUser.id).where(BannedUser.applicant_id == applicant_id).limit(1)
            )
            return result.first() is not None
