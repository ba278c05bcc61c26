"""Канал ошибок для модераторов."""
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

from loguru import logger

from joinguard.services import texts
from joinguard.services.gateway import ChatTarget, GatewayError

if TYPE_CHECKING:
    from joinguard.services.gateway import TelegramGateway


class ErrorReporter:
    """Пишет ошибку в лог и дублирует её в чат модераторов."""

    def __init__(self, gateway: TelegramGateway, target: ChatTarget):
        self._gateway = gateway
        self._target = target

    async def report(self, action: str, applicant_id: Optional[int], error: BaseException) -> None:
        detail = str(error) or error.__class__.__name__
        logger.opt(exception=error).error(
            f"Ошибка при действии «{action}» (applicant_id={applicant_id}): {detail}"
        )
        try:
            await self._gateway.send_message(self._target, texts.error_report(action, applicant_id, detail))
        except GatewayError as send_error:
            logger.error(f"Не удалось отправить отчёт об ошибке модераторам: {send_error}")
