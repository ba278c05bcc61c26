"""Точка входа ядра модерации для обработчиков Telegram."""
from __future__ import annotations

from enum import Enum
from typing import Optional, TYPE_CHECKING

from loguru import logger

from joinguard.keyboards.moderation import CallbackTag, action_keyboard
from joinguard.models import JoinRequest, JoinRequestStatus, ReplySender
from joinguard.services import texts
from joinguard.services.content import (
    ApplicantContent,
    ApplicantProfile,
    MediaContent,
    SourceMessage,
    content_as_text,
)
from joinguard.services.gateway import ChatTarget, GatewayError, GatewayErrorKind, call_with_retry

if TYPE_CHECKING:
    from joinguard.services.actions import ModeratorActionProtocol
    from joinguard.services.errors import ErrorReporter
    from joinguard.services.gateway import TelegramGateway
    from joinguard.services.lifecycle import LifecycleManager, TransitionResult
    from joinguard.services.questions import PendingQuestionRegistry
    from joinguard.services.store import RequestStore


# Ключ сервиса в application.bot_data
BOT_DATA_KEY = "moderation"


class ApplicantRoute(str, Enum):
    """Что стало с личным сообщением пользователя."""

    DROPPED = "dropped"  # пользователь забанен
    NO_REQUEST = "no_request"
    FORWARDED = "forwarded"
    ALREADY_APPROVED = "already_approved"
    REAPPLY = "reapply"


class ModerationService:
    """Маршрутизирует входящие события в нужный компонент."""

    def __init__(
        self,
        store: RequestStore,
        gateway: TelegramGateway,
        lifecycle: LifecycleManager,
        actions: ModeratorActionProtocol,
        registry: PendingQuestionRegistry,
        reporter: ErrorReporter,
        moderator_target: ChatTarget,
    ):
        self.store = store
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.actions = actions
        self.registry = registry
        self.reporter = reporter
        self._moderator_target = moderator_target

    async def on_join_requested(self, profile: ApplicantProfile) -> TransitionResult:
        return await self.lifecycle.create(profile)

    async def on_moderator_callback(
        self,
        callback_id: str,
        tag: CallbackTag,
        applicant_id: int,
        moderator_id: int,
        moderator_name: str,
        source: SourceMessage,
    ) -> None:
        await self.actions.handle_callback(callback_id, tag, applicant_id, moderator_id, moderator_name, source)

    async def on_moderator_reply(self, moderator_id: int, text: str) -> bool:
        """Ответ модератора в чате. False, если не относится к ожидающим вопросам."""
        return await self.registry.handle_reply(moderator_id, text)

    async def on_applicant_message(self, applicant_id: int, content: ApplicantContent) -> ApplicantRoute:
        """Личное сообщение пользователя боту."""
        if await self.store.is_banned(applicant_id):
            logger.info(f"Сообщение от забаненного пользователя {applicant_id} проигнорировано")
            return ApplicantRoute.DROPPED

        request = await self.store.find_by_applicant(applicant_id)
        if request is None:
            await self._reply(applicant_id, texts.standard_response())
            return ApplicantRoute.NO_REQUEST

        if request.status is JoinRequestStatus.PENDING:
            await self._forward(request, content)
            return ApplicantRoute.FORWARDED
        if request.status is JoinRequestStatus.APPROVED:
            await self._reply(applicant_id, texts.already_approved_response())
            return ApplicantRoute.ALREADY_APPROVED
        if request.status in (JoinRequestStatus.REJECTED, JoinRequestStatus.EXPIRED):
            await self._reply(applicant_id, texts.reapply_response())
            return ApplicantRoute.REAPPLY

        logger.info(f"Сообщение пользователя {applicant_id} со статусом {request.status.value} проигнорировано")
        return ApplicantRoute.DROPPED

    async def on_member_joined(self, member: ApplicantProfile, inviter: Optional[ApplicantProfile] = None) -> bool:
        """Новый участник сообщества: сообщить модераторам и поприветствовать в личке.

        Returns:
            True, если приветствие доставлено
        """
        member_id = member.applicant_id
        logger.info(f"on_member_joined: member_id={member_id}, inviter_id={inviter.applicant_id if inviter else None}")
        notice = texts.member_joined_notice(
            member_id,
            member.display_name,
            inviter.applicant_id if inviter else None,
            inviter.display_name if inviter else None,
        )
        await self._notify_moderators(notice)

        try:
            await call_with_retry(self.gateway.send_message, member_id, texts.member_welcome(member.display_name))
        except GatewayError as error:
            logger.warning(f"Приветствие участнику {member_id} не доставлено: {error}")
            if error.kind is GatewayErrorKind.USER_UNREACHABLE:
                await self._notify_moderators(
                    texts.welcome_not_delivered(member_id, member.display_name, error.kind.value)
                )
            return False
        return True

    async def _notify_moderators(self, text: str) -> None:
        try:
            await call_with_retry(self.gateway.send_message, self._moderator_target, text)
        except GatewayError as error:
            logger.error(f"Не удалось отправить сообщение модераторам: {error}")

    async def _reply(self, applicant_id: int, text: str) -> None:
        try:
            await call_with_retry(self.gateway.send_message, applicant_id, text)
        except GatewayError as error:
            logger.warning(f"Не удалось ответить пользователю {applicant_id}: {error}")

    async def _forward(self, request: JoinRequest, content: ApplicantContent) -> None:
        """Сохранить сообщение в переписке и переслать модераторам с кнопками."""
        applicant_id = request.applicant_id
        await self.store.append_reply(applicant_id, content_as_text(content), ReplySender.USER)

        keyboard = action_keyboard(applicant_id)
        try:
            if isinstance(content, MediaContent):
                ref = await call_with_retry(
                    self.gateway.send_media,
                    self._moderator_target,
                    content,
                    texts.applicant_media_caption(applicant_id, request.full_name, content.kind, content.caption),
                    reply_markup=keyboard,
                )
            else:
                ref = await call_with_retry(
                    self.gateway.send_message,
                    self._moderator_target,
                    texts.applicant_reply_text(applicant_id, request.full_name, content.text),
                    reply_markup=keyboard,
                )
        except GatewayError as error:
            await self.reporter.report("пересылка сообщения пользователя", applicant_id, error)
            return

        await self.store.set_moderator_message(applicant_id, ref.message_id)
        logger.info(f"Сообщение пользователя {applicant_id} переслано модераторам")
