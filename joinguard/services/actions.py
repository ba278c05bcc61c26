"""Кнопки модераторов: двухшаговое подтверждение принятия и бана.

Состояние хранится только в callback_data кнопок: propose заменяет кнопки на
«подтвердить / отмена», confirm выполняет переход и дописывает итог к тексту
сообщения, cancel возвращает исходные кнопки.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Optional, TYPE_CHECKING

from loguru import logger

from telegram import InlineKeyboardMarkup

from joinguard.keyboards.moderation import (
    CallbackTag,
    action_keyboard,
    ask_only_keyboard,
    confirm_accept_keyboard,
    confirm_ban_keyboard,
)
from joinguard.models import JoinRequestStatus
from joinguard.services import texts
from joinguard.services.content import SourceMessage
from joinguard.services.gateway import GatewayError, GatewayErrorKind, MessageRef, call_with_retry
from joinguard.services.lifecycle import ACTION_LABELS, TransitionAction

if TYPE_CHECKING:
    from joinguard.services.errors import ErrorReporter
    from joinguard.services.gateway import TelegramGateway
    from joinguard.services.lifecycle import LifecycleManager, TransitionResult
    from joinguard.services.questions import PendingQuestionRegistry


PROPOSE_TAGS = {CallbackTag.ACCEPT, CallbackTag.BAN}
CONFIRM_TAGS = {CallbackTag.CONFIRM_ACCEPT, CallbackTag.CONFIRM_BAN}
CANCEL_TAGS = {CallbackTag.CANCEL_ACCEPT, CallbackTag.CANCEL_BAN}


def parse_callback_data(data: str) -> tuple[CallbackTag, int]:
    """«confirm_ban:123» -> (CallbackTag.CONFIRM_BAN, 123).

    Raises:
        ValueError: неизвестный тег или нечисловой ID
    """
    tag, separator, raw_id = (data or "").rpartition(":")
    if not separator:
        raise ValueError(f"Неверный формат callback_data: {data!r}")
    return CallbackTag(tag), int(raw_id)


@dataclass(frozen=True)
class ModeratorActionIntent:
    """Намерение модератора, закодированное в кнопках. Не сохраняется."""
    action_kind: CallbackTag  # ACCEPT или BAN
    applicant_id: int
    initiating_moderator_id: int
    source_message_id: int

    @property
    def confirm_keyboard(self) -> InlineKeyboardMarkup:
        if self.action_kind is CallbackTag.BAN:
            return confirm_ban_keyboard(self.applicant_id)
        return confirm_accept_keyboard(self.applicant_id)


def _markup_after(result: TransitionResult) -> Optional[InlineKeyboardMarkup]:
    """Кнопки сообщения после confirm / reject."""
    if result.failed or result.status is JoinRequestStatus.PENDING:
        return action_keyboard(result.applicant_id)
    if result.status is None or result.status is JoinRequestStatus.BANNED:
        return None
    return ask_only_keyboard(result.applicant_id)


class ModeratorActionProtocol:
    """Обработка нажатий на кнопки модерации."""

    def __init__(
        self,
        lifecycle: LifecycleManager,
        gateway: TelegramGateway,
        registry: PendingQuestionRegistry,
        reporter: ErrorReporter,
    ):
        self._lifecycle = lifecycle
        self._gateway = gateway
        self._registry = registry
        self._reporter = reporter

    async def _acknowledge(self, callback_id: str) -> None:
        try:
            await self._gateway.answer_callback(callback_id)
        except GatewayError as error:
            if error.kind is GatewayErrorKind.STALE_CALLBACK:
                logger.debug(f"Callback {callback_id} устарел, подтверждение пропущено")
            else:
                logger.warning(f"Не удалось подтвердить callback {callback_id}: {error}")

    async def _edit(
        self,
        source: SourceMessage,
        applicant_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup],
    ) -> None:
        """Отредактировать сообщение: подпись у медиа, текст у остальных."""
        ref = MessageRef(source.chat_id, source.message_id)
        operation = self._gateway.edit_message_caption if source.has_media else self._gateway.edit_message_text
        try:
            await call_with_retry(operation, ref, text, reply_markup=reply_markup)
        except GatewayError as error:
            if error.benign:
                logger.debug(f"Сообщение {ref.message_id} не изменено: {error.kind.value}")
                return
            await self._reporter.report("обновление сообщения модераторов", applicant_id, error)

    async def handle_callback(
        self,
        callback_id: str,
        tag: CallbackTag,
        applicant_id: int,
        moderator_id: int,
        moderator_name: str,
        source: SourceMessage,
    ) -> None:
        """Подтвердить callback и выполнить действие по тегу."""
        logger.info(
            f"handle_callback: tag={tag.value}, applicant_id={applicant_id}, moderator_id={moderator_id}"
        )
        await self._acknowledge(callback_id)

        if tag in PROPOSE_TAGS:
            intent = ModeratorActionIntent(tag, applicant_id, moderator_id, source.message_id)
            await self.propose(intent, source)
        elif tag in CONFIRM_TAGS:
            await self.confirm(tag, applicant_id, moderator_id, moderator_name, source)
        elif tag in CANCEL_TAGS:
            await self.cancel(applicant_id, source)
        elif tag is CallbackTag.REJECT:
            await self._run(
                TransitionAction.REJECT,
                self._lifecycle.reject(applicant_id, moderator_id),
                applicant_id,
                moderator_name,
                source,
            )
        elif tag is CallbackTag.ASK:
            await self._registry.request_question(moderator_id, applicant_id)
        elif tag is CallbackTag.CANCEL_ASK:
            self._registry.cancel(moderator_id, applicant_id)
            await self._edit(source, applicant_id, texts.question_cancelled(applicant_id), None)

    async def propose(self, intent: ModeratorActionIntent, source: SourceMessage) -> None:
        """Первый шаг: заменить кнопки на «подтвердить / отмена», текст не меняется."""
        logger.debug(
            f"propose: {intent.action_kind.value} applicant_id={intent.applicant_id}, "
            f"moderator_id={intent.initiating_moderator_id}"
        )
        await self._edit(source, intent.applicant_id, source.text_for_edit(), intent.confirm_keyboard)

    async def confirm(
        self,
        tag: CallbackTag,
        applicant_id: int,
        moderator_id: int,
        moderator_name: str,
        source: SourceMessage,
    ) -> Optional[TransitionResult]:
        """Второй шаг: выполнить переход и дописать итог к сообщению.

        Returns:
            итог перехода или None, если переход упал с неожиданной ошибкой
        """
        if tag is CallbackTag.CONFIRM_BAN:
            action, transition = TransitionAction.BAN, self._lifecycle.ban(applicant_id, moderator_id)
        else:
            action, transition = TransitionAction.APPROVE, self._lifecycle.approve(applicant_id, moderator_id)
        return await self._run(action, transition, applicant_id, moderator_name, source)

    async def cancel(self, applicant_id: int, source: SourceMessage) -> None:
        """Вернуть исходные кнопки действий."""
        await self._edit(source, applicant_id, source.text_for_edit(), action_keyboard(applicant_id))

    async def _run(
        self,
        action: TransitionAction,
        transition: Awaitable[TransitionResult],
        applicant_id: int,
        moderator_name: str,
        source: SourceMessage,
    ) -> Optional[TransitionResult]:
        """Выполнить переход; при любом исходе сообщение модераторов показывает итог."""
        try:
            result = await transition
        except Exception as error:
            await self._reporter.report(ACTION_LABELS[action], applicant_id, error)
            text = f"{source.text_for_edit()}\n\n{texts.transition_crashed()}"
            await self._edit(source, applicant_id, text, action_keyboard(applicant_id))
            return None
        await self._finish(result, moderator_name, source)
        return result

    async def _finish(self, result: TransitionResult, moderator_name: str, source: SourceMessage) -> None:
        text = f"{source.text_for_edit()}\n\n{texts.outcome_line(result, moderator_name)}"
        await self._edit(source, result.applicant_id, text, _markup_after(result))
