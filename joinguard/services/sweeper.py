"""Периодическая автоотмена просроченных заявок."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from loguru import logger

from sqlalchemy.exc import SQLAlchemyError

from joinguard.models.base import utcnow
from joinguard.services.gateway import GatewayError, GatewayErrorKind, call_with_retry

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

    from joinguard.services.gateway import TelegramGateway
    from joinguard.services.lifecycle import LifecycleManager
    from joinguard.services.store import RequestStore


SWEEP_JOB_ID = "expire_join_requests"

# Статус участника, при котором заявка ещё висит в Telegram
LEFT_STATUS = "left"


@dataclass
class SweepReport:
    """Итог одного прохода."""
    expired: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.expired) + len(self.skipped) + len(self.failed)


class ExpirationSweeper:
    """Находит pending-заявки старше времени жизни и переводит их в expired."""

    def __init__(
        self,
        store: RequestStore,
        gateway: TelegramGateway,
        lifecycle: LifecycleManager,
        lifetime_minutes: int = 1440,
    ):
        self._store = store
        self._gateway = gateway
        self._lifecycle = lifecycle
        self.lifetime_minutes = lifetime_minutes

    async def _member_status(self, applicant_id: int) -> Optional[str]:
        """Статус пользователя в чате или None, если его не удалось узнать."""
        try:
            return await call_with_retry(self._gateway.get_member_status, applicant_id)
        except GatewayError as error:
            if error.kind not in (GatewayErrorKind.NOT_FOUND, GatewayErrorKind.USER_UNREACHABLE):
                logger.warning(f"Не удалось получить статус пользователя {applicant_id}: {error}")
            return None

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Один проход по просроченным заявкам."""
        now = now or utcnow()
        older_than = now - timedelta(minutes=self.lifetime_minutes)
        report = SweepReport()

        try:
            requests = await self._store.find_expired_pending(older_than)
        except SQLAlchemyError as error:
            logger.error(f"Проверка просроченных заявок пропущена, БД недоступна: {error}")
            return report

        if not requests:
            logger.debug("Просроченных заявок нет")
            return report

        logger.info(f"Найдено просроченных заявок: {len(requests)}")
        for request in requests:
            applicant_id = request.applicant_id
            try:
                status = await self._member_status(applicant_id)
                if status is not None and status != LEFT_STATUS:
                    result = await self._lifecycle.expire(applicant_id, member_status=status)
                else:
                    result = await self._lifecycle.expire(applicant_id)
            except Exception:
                logger.exception(f"Ошибка автоотмены заявки пользователя {applicant_id}")
                report.failed.append(applicant_id)
                continue

            if result.failed:
                report.failed.append(applicant_id)
            elif result.changed:
                report.expired.append(applicant_id)
            else:
                report.skipped.append(applicant_id)

        logger.info(
            f"Автоотмена завершена: отменено {len(report.expired)}, "
            f"пропущено {len(report.skipped)}, ошибок {len(report.failed)}"
        )
        return report

    async def run_job(self) -> None:
        """Задача планировщика: ошибки не должны останавливать планировщик."""
        try:
            await self.sweep()
        except Exception:
            logger.exception("Ошибка проверки просроченных заявок")


def schedule_sweeper(scheduler: BaseScheduler, sweeper: ExpirationSweeper, interval_minutes: int) -> None:
    """Запускать проверку просроченных заявок каждые interval_minutes минут."""
    scheduler.add_job(
        sweeper.run_job,
        "interval",
        minutes=interval_minutes,
        id=SWEEP_JOB_ID,
        name="Автоотмена просроченных заявок",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Автоотмена заявок настроена: каждые {interval_minutes} мин., "
        f"время жизни {sweeper.lifetime_minutes} мин."
    )
