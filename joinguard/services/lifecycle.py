"""Жизненный цикл заявки на вступление.

Все смены статуса (по кнопкам модераторов и по таймеру) проходят через
методы LifecycleManager. Заявка меняет статус только из pending; повторный
вызов для уже решённой заявки ничего не делает и возвращает текущий статус.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from loguru import logger

from telegram import InlineKeyboardMarkup

from joinguard.keyboards.moderation import action_keyboard, ask_only_keyboard
from joinguard.models import JoinRequest, JoinRequestStatus
from joinguard.models.base import utcnow
from joinguard.services import texts
from joinguard.services.content import ApplicantProfile, estimate_registration_period
from joinguard.services.gateway import (
    ChatTarget,
    GatewayError,
    GatewayErrorKind,
    MessageRef,
    call_with_retry,
)

if TYPE_CHECKING:
    from joinguard.services.errors import ErrorReporter
    from joinguard.services.gateway import TelegramGateway
    from joinguard.services.store import RequestStore


class TransitionAction(str, Enum):
    """Переходы жизненного цикла заявки."""

    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    EXPIRE = "expire"
    BAN = "ban"


ACTION_LABELS = {
    TransitionAction.CREATE: "создание заявки",
    TransitionAction.APPROVE: "принятие заявки",
    TransitionAction.REJECT: "отклонение заявки",
    TransitionAction.EXPIRE: "автоотмена заявки",
    TransitionAction.BAN: "бан пользователя",
}


@dataclass
class TransitionResult:
    """Итог перехода.

    changed=False означает no-op (заявки нет или она уже не pending)
    либо прерванный неизвестной ошибкой переход (error задан).
    """
    applicant_id: int
    action: TransitionAction
    status: Optional[JoinRequestStatus]
    changed: bool = False
    previous_status: Optional[JoinRequestStatus] = None
    reason: Optional[str] = None
    platform_ok: Optional[bool] = None
    applicant_notified: Optional[bool] = None
    platform_error: Optional[GatewayError] = None  # безобидная ошибка Telegram, переход выполнен
    error: Optional[GatewayError] = None  # переход прерван

    @property
    def found(self) -> bool:
        return self.status is not None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _annotate(reason: str, platform_error: Optional[GatewayError]) -> str:
    if platform_error is None:
        return reason
    return f"{reason} (Telegram: {platform_error.kind.value})"


class LifecycleManager:
    """Переходы заявки: create, approve, reject, expire, ban."""

    def __init__(
        self,
        store: RequestStore,
        gateway: TelegramGateway,
        reporter: ErrorReporter,
        moderator_target: ChatTarget,
        lifetime_minutes: int = 1440,
    ):
        self._store = store
        self._gateway = gateway
        self._reporter = reporter
        self._moderator_target = moderator_target
        self.lifetime_minutes = lifetime_minutes

    # --- вспомогательное ---

    async def _load_pending(
        self, applicant_id: int, action: TransitionAction
    ) -> tuple[Optional[JoinRequest], Optional[TransitionResult]]:
        """Прочитать заявку; вернуть готовый no-op результат, если она не pending."""
        request = await self._store.find_by_applicant(applicant_id)
        if request is None:
            logger.info(f"{action.value}: заявка пользователя {applicant_id} не найдена")
            return None, TransitionResult(applicant_id, action, status=None, reason="заявка не найдена")
        if request.status is not JoinRequestStatus.PENDING:
            logger.info(
                f"{action.value}: заявка пользователя {applicant_id} уже в статусе {request.status.value}"
            )
            return request, TransitionResult(
                applicant_id,
                action,
                status=request.status,
                previous_status=request.status,
                reason=request.reason,
            )
        return request, None

    async def _platform_call(
        self, operation: Callable[[int], Awaitable[None]], applicant_id: int
    ) -> Optional[GatewayError]:
        """Вызов Telegram; безобидная ошибка возвращается, остальные пробрасываются."""
        try:
            await call_with_retry(operation, applicant_id)
        except GatewayError as error:
            if not error.benign:
                raise
            logger.warning(
                f"Telegram вернул {error.kind.value} для пользователя {applicant_id}: {error.detail}"
            )
            return error
        return None

    async def _abort(
        self, action: TransitionAction, request: JoinRequest, error: GatewayError
    ) -> TransitionResult:
        await self._reporter.report(ACTION_LABELS[action], request.applicant_id, error)
        return TransitionResult(
            request.applicant_id,
            action,
            status=request.status,
            previous_status=request.status,
            error=error,
        )

    async def _lost_race(self, applicant_id: int, action: TransitionAction) -> TransitionResult:
        """Статус успели сменить параллельно: отдаём то, что записано сейчас."""
        current = await self._store.find_by_applicant(applicant_id)
        status = current.status if current else None
        logger.warning(f"{action.value}: заявку {applicant_id} уже обработали параллельно ({status})")
        return TransitionResult(
            applicant_id,
            action,
            status=status,
            previous_status=status,
            reason=current.reason if current else None,
        )

    async def _notify_applicant(self, applicant_id: int, text: str) -> bool:
        """Уведомить пользователя; неудача не влияет на переход."""
        try:
            await call_with_retry(self._gateway.send_message, applicant_id, text)
            return True
        except GatewayError as error:
            if error.kind is GatewayErrorKind.USER_UNREACHABLE:
                logger.info(f"Пользователь {applicant_id} недоступен для уведомления: {error.detail}")
            else:
                logger.error(f"Ошибка уведомления пользователя {applicant_id}: {error}")
            return False

    async def _update_moderator_message(
        self, request: JoinRequest, reply_markup: Optional[InlineKeyboardMarkup]
    ) -> None:
        if request.moderator_message_id is None:
            return
        ref = MessageRef(self._moderator_target.chat_id, request.moderator_message_id)
        try:
            await call_with_retry(self._gateway.edit_message_reply_markup, ref, reply_markup)
        except GatewayError as error:
            if not error.benign:
                logger.warning(f"Не удалось обновить кнопки сообщения {ref.message_id}: {error}")

    async def _announce_expiry(self, request: JoinRequest, reason: str) -> None:
        """Оставить на уведомлении только «Задать вопрос» и сообщить модераторам об автоотмене."""
        await self._update_moderator_message(request, ask_only_keyboard(request.applicant_id))
        try:
            await call_with_retry(
                self._gateway.send_message,
                self._moderator_target,
                texts.expired_moderator_notice(
                    request.applicant_id, request.full_name, self.lifetime_minutes, reason
                ),
            )
        except GatewayError as error:
            logger.warning(
                f"Не удалось сообщить модераторам об автоотмене заявки {request.applicant_id}: {error}"
            )

    # --- переходы ---

    async def create(self, profile: ApplicantProfile) -> TransitionResult:
        """Зарегистрировать заявку, поприветствовать пользователя и уведомить модераторов."""
        applicant_id = profile.applicant_id
        action = TransitionAction.CREATE
        logger.info(f"create called: applicant_id={applicant_id}, username={profile.username}")

        if await self._store.is_banned(applicant_id):
            logger.info(f"Пользователь {applicant_id} в бан-листе, заявка отклоняется сразу")
            try:
                await self._platform_call(self._gateway.decline_join_request, applicant_id)
            except GatewayError as error:
                await self._reporter.report(ACTION_LABELS[action], applicant_id, error)
            return TransitionResult(
                applicant_id, action, status=JoinRequestStatus.BANNED, reason="пользователь в бан-листе"
            )

        existing = await self._store.find_by_applicant(applicant_id)
        if existing is not None and existing.status is JoinRequestStatus.PENDING:
            logger.warning(f"У пользователя {applicant_id} уже есть ожидающая заявка id={existing.id}")
            return TransitionResult(
                applicant_id,
                action,
                status=existing.status,
                previous_status=existing.status,
                reason=existing.reason,
            )

        registration_period = estimate_registration_period(applicant_id)
        now = utcnow()
        await self._store.insert(
            JoinRequest(
                applicant_id=applicant_id,
                display_name=profile.display_name,
                username=profile.username,
                language_code=profile.language_code,
                registration_period=registration_period,
                status=JoinRequestStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
        )

        greeting_delivered = True
        reason = None
        try:
            await call_with_retry(
                self._gateway.send_message, applicant_id, texts.applicant_greeting(self.lifetime_minutes)
            )
        except GatewayError as error:
            greeting_delivered = False
            reason = f"инструкции не доставлены ({error.kind.value})"
            if error.kind is GatewayErrorKind.USER_UNREACHABLE:
                logger.info(f"Пользователь {applicant_id} недоступен, приветствие не отправлено")
            else:
                await self._reporter.report("приветствие пользователю", applicant_id, error)

        await self._store.update_fields(applicant_id, greeting_delivered=greeting_delivered, reason=reason)

        notification = texts.moderator_notification(
            applicant_id,
            profile.display_name,
            profile.username,
            profile.language_code,
            registration_period,
            greeting_delivered,
        )
        try:
            ref = await call_with_retry(
                self._gateway.send_message,
                self._moderator_target,
                notification,
                reply_markup=action_keyboard(applicant_id),
            )
            await self._store.set_moderator_message(applicant_id, ref.message_id)
        except GatewayError as error:
            await self._reporter.report("уведомление модераторов о заявке", applicant_id, error)

        return TransitionResult(
            applicant_id,
            action,
            status=JoinRequestStatus.PENDING,
            changed=True,
            reason=reason,
            applicant_notified=greeting_delivered,
        )

    async def approve(self, applicant_id: int, moderator_id: int) -> TransitionResult:
        """Принять пользователя в сообщество."""
        action = TransitionAction.APPROVE
        logger.info(f"approve called: applicant_id={applicant_id}, moderator_id={moderator_id}")
        request, noop = await self._load_pending(applicant_id, action)
        if noop is not None:
            return noop

        try:
            platform_error = await self._platform_call(self._gateway.approve_join_request, applicant_id)
        except GatewayError as error:
            return await self._abort(action, request, error)

        reason = _annotate("принята модератором", platform_error)
        platform_ok = platform_error is None
        updated = await self._store.update_status(
            applicant_id,
            JoinRequestStatus.APPROVED,
            reviewed_by=moderator_id,
            reason=reason,
            platform_ok=platform_ok,
        )
        if not updated:
            return await self._lost_race(applicant_id, action)

        notified = await self._notify_applicant(applicant_id, texts.approved_notice())
        await self._store.update_fields(applicant_id, applicant_notified=notified)
        await self._update_moderator_message(request, ask_only_keyboard(applicant_id))

        logger.info(f"Заявка пользователя {applicant_id} одобрена модератором {moderator_id}")
        return TransitionResult(
            applicant_id,
            action,
            status=JoinRequestStatus.APPROVED,
            changed=True,
            previous_status=JoinRequestStatus.PENDING,
            reason=reason,
            platform_ok=platform_ok,
            applicant_notified=notified,
            platform_error=platform_error,
        )

    async def reject(self, applicant_id: int, moderator_id: int) -> TransitionResult:
        """Отклонить заявку."""
        action = TransitionAction.REJECT
        logger.info(f"reject called: applicant_id={applicant_id}, moderator_id={moderator_id}")
        request, noop = await self._load_pending(applicant_id, action)
        if noop is not None:
            return noop

        try:
            platform_error = await self._platform_call(self._gateway.decline_join_request, applicant_id)
        except GatewayError as error:
            return await self._abort(action, request, error)

        reason = _annotate("отклонена модератором", platform_error)
        platform_ok = platform_error is None
        updated = await self._store.update_status(
            applicant_id,
            JoinRequestStatus.REJECTED,
            reviewed_by=moderator_id,
            reason=reason,
            platform_ok=platform_ok,
        )
        if not updated:
            return await self._lost_race(applicant_id, action)

        notified = await self._notify_applicant(applicant_id, texts.rejected_notice())
        await self._store.update_fields(applicant_id, applicant_notified=notified)
        await self._update_moderator_message(request, ask_only_keyboard(applicant_id))

        logger.info(
            f"Заявка пользователя {applicant_id} отклонена модератором {moderator_id} "
            f"(platform_ok={platform_ok}, notified={notified})"
        )
        return TransitionResult(
            applicant_id,
            action,
            status=JoinRequestStatus.REJECTED,
            changed=True,
            previous_status=JoinRequestStatus.PENDING,
            reason=reason,
            platform_ok=platform_ok,
            applicant_notified=notified,
            platform_error=platform_error,
        )

    async def expire(self, applicant_id: int, member_status: Optional[str] = None) -> TransitionResult:
        """Отменить заявку по истечении времени жизни.

        Args:
            applicant_id: ID пользователя
            member_status: статус пользователя в чате, если он уже не «left»;
                тогда заявка закрывается без обращения к Telegram
        """
        action = TransitionAction.EXPIRE
        logger.info(f"expire called: applicant_id={applicant_id}, member_status={member_status}")
        request, noop = await self._load_pending(applicant_id, action)
        if noop is not None:
            return noop

        if member_status is not None:
            reason = f"уже решена в Telegram (статус: {member_status})"
            updated = await self._store.update_status(applicant_id, JoinRequestStatus.EXPIRED, reason=reason)
            if not updated:
                return await self._lost_race(applicant_id, action)
            await self._announce_expiry(request, reason)
            logger.info(f"Заявка пользователя {applicant_id} закрыта: {reason}")
            return TransitionResult(
                applicant_id,
                action,
                status=JoinRequestStatus.EXPIRED,
                changed=True,
                previous_status=JoinRequestStatus.PENDING,
                reason=reason,
            )

        try:
            platform_error = await self._platform_call(self._gateway.decline_join_request, applicant_id)
        except GatewayError as error:
            return await self._abort(action, request, error)

        reason = _annotate("автоматически отменена по истечении времени", platform_error)
        platform_ok = platform_error is None
        updated = await self._store.update_status(
            applicant_id, JoinRequestStatus.EXPIRED, reason=reason, platform_ok=platform_ok
        )
        if not updated:
            return await self._lost_race(applicant_id, action)

        notified = await self._notify_applicant(applicant_id, texts.expired_notice(self.lifetime_minutes))
        await self._store.update_fields(applicant_id, applicant_notified=notified)
        await self._announce_expiry(request, reason)

        logger.info(f"Заявка пользователя {applicant_id} автоматически отменена")
        return TransitionResult(
            applicant_id,
            action,
            status=JoinRequestStatus.EXPIRED,
            changed=True,
            previous_status=JoinRequestStatus.PENDING,
            reason=reason,
            platform_ok=platform_ok,
            applicant_notified=notified,
            platform_error=platform_error,
        )

    async def ban(
        self, applicant_id: int, moderator_id: int, reason: str = "Забанен администратором"
    ) -> TransitionResult:
        """Отклонить заявку, забанить пользователя в чате и внести в бан-лист."""
        action = TransitionAction.BAN
        logger.info(f"ban called: applicant_id={applicant_id}, moderator_id={moderator_id}")
        request, noop = await self._load_pending(applicant_id, action)
        if noop is not None:
            return noop

        try:
            decline_error = await self._platform_call(self._gateway.decline_join_request, applicant_id)
            ban_error = await self._platform_call(self._gateway.ban_member, applicant_id)
        except GatewayError as error:
            return await self._abort(action, request, error)

        platform_error = ban_error or decline_error
        full_reason = _annotate(reason, platform_error)
        platform_ok = platform_error is None

        await self._store.record_ban(applicant_id, moderator_id, reason)
        updated = await self._store.update_status(
            applicant_id,
            JoinRequestStatus.BANNED,
            reviewed_by=moderator_id,
            reason=full_reason,
            platform_ok=platform_ok,
        )
        if not updated:
            return await self._lost_race(applicant_id, action)

        notified = await self._notify_applicant(applicant_id, texts.banned_notice())
        await self._store.update_fields(applicant_id, applicant_notified=notified)
        await self._update_moderator_message(request, None)

        logger.info(f"Пользователь {applicant_id} забанен модератором {moderator_id}")
        return TransitionResult(
            applicant_id,
            action,
            status=JoinRequestStatus.BANNED,
            changed=True,
            previous_status=JoinRequestStatus.PENDING,
            reason=full_reason,
            platform_ok=platform_ok,
            applicant_notified=notified,
            platform_error=platform_error,
        )
