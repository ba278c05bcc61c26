"""Вопросы модераторов пользователям.

Модератор нажимает «Задать вопрос», бот присылает приглашение, и следующий
ответ модератора в чате уходит пользователю. Незавершённые запросы живут в
памяти и снимаются планировщиком через timeout_minutes.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING

from loguru import logger

from apscheduler.jobstores.base import JobLookupError

from joinguard.keyboards.moderation import question_prompt_keyboard
from joinguard.models import ReplySender
from joinguard.services import texts
from joinguard.services.gateway import ChatTarget, GatewayError, GatewayErrorKind, call_with_retry

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

    from joinguard.services.gateway import TelegramGateway
    from joinguard.services.store import RequestStore


CANCEL_COMMAND = "/cancel"

# «42: текст вопроса»
_PREFIX_RE = re.compile(r"^(\d+):\s*")

QuestionKey = tuple[int, int]  # (moderator_id, prompt_message_id)


def _aware_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingQuestion:
    applicant_id: int
    moderator_id: int
    prompt_message_id: int
    display_name: str
    created_at: datetime
    job_id: str

    @property
    def key(self) -> QuestionKey:
        return self.moderator_id, self.prompt_message_id


class MatchOutcome(str, Enum):
    MATCHED = "matched"
    NEEDS_PREFIX = "needs_prefix"
    UNKNOWN_PREFIX = "unknown_prefix"
    CANCELLED = "cancelled"
    EMPTY = "empty"


@dataclass
class ReplyMatch:
    """Результат сопоставления ответа модератора с его запросами."""
    outcome: MatchOutcome
    applicant_id: Optional[int] = None
    question: Optional[str] = None
    display_name: Optional[str] = None
    candidates: list[int] = field(default_factory=list)


def _is_cancel(text: str) -> bool:
    command = text.strip().split(maxsplit=1)[0] if text.strip() else ""
    return command.split("@", 1)[0] == CANCEL_COMMAND


class PendingQuestionRegistry:
    """Реестр ожидающих вопросов, по ключу (moderator_id, prompt_message_id)."""

    def __init__(
        self,
        gateway: TelegramGateway,
        store: RequestStore,
        moderator_target: ChatTarget,
        scheduler: BaseScheduler,
        timeout_minutes: int = 30,
        clock: Callable[[], datetime] = _aware_now,
    ):
        self._gateway = gateway
        self._store = store
        self._moderator_target = moderator_target
        self._scheduler = scheduler
        self.timeout_minutes = timeout_minutes
        self._clock = clock
        self._entries: dict[QuestionKey, PendingQuestion] = {}

    def pending_for(self, moderator_id: int) -> list[PendingQuestion]:
        return [entry for entry in self._entries.values() if entry.moderator_id == moderator_id]

    def __len__(self) -> int:
        return len(self._entries)

    def _drop(self, key: QuestionKey) -> Optional[PendingQuestion]:
        entry = self._entries.pop(key, None)
        if entry is None:
            return None
        try:
            self._scheduler.remove_job(entry.job_id)
        except JobLookupError:
            pass  # задача уже отработала
        return entry

    def _drop_for(self, moderator_id: int, applicant_id: int) -> int:
        keys = [
            entry.key
            for entry in self.pending_for(moderator_id)
            if entry.applicant_id == applicant_id
        ]
        for key in keys:
            self._drop(key)
        return len(keys)

    async def _notify_moderator(self, text: str) -> None:
        try:
            await call_with_retry(self._gateway.send_message, self._moderator_target, text)
        except GatewayError as error:
            logger.error(f"Не удалось отправить сообщение модераторам: {error}")

    async def request_question(self, moderator_id: int, applicant_id: int) -> Optional[int]:
        """Отправить модератору приглашение ввести вопрос.

        Returns:
            message_id приглашения или None, если заявки нет / отправка не удалась
        """
        logger.info(f"request_question called: moderator_id={moderator_id}, applicant_id={applicant_id}")
        request = await self._store.find_by_applicant(applicant_id)
        if request is None:
            await self._notify_moderator(texts.request_not_found(applicant_id))
            return None

        other_pending = len(self.pending_for(moderator_id))
        try:
            ref = await call_with_retry(
                self._gateway.send_message,
                self._moderator_target,
                texts.question_prompt(applicant_id, request.full_name, other_pending),
                reply_markup=question_prompt_keyboard(applicant_id),
            )
        except GatewayError as error:
            logger.error(f"Не удалось отправить приглашение для вопроса пользователю {applicant_id}: {error}")
            return None

        created_at = self._clock()
        entry = PendingQuestion(
            applicant_id=applicant_id,
            moderator_id=moderator_id,
            prompt_message_id=ref.message_id,
            display_name=request.full_name,
            created_at=created_at,
            job_id=f"pending_question_{moderator_id}_{ref.message_id}",
        )
        self._entries[entry.key] = entry
        self._scheduler.add_job(
            self._expire,
            "date",
            run_date=created_at + timedelta(minutes=self.timeout_minutes),
            args=[entry.key],
            id=entry.job_id,
            name=f"Таймаут вопроса пользователю {applicant_id}",
            replace_existing=True,
        )
        logger.debug(f"Ожидающие вопросы модератора {moderator_id}: {other_pending + 1}")
        return ref.message_id

    def match_reply(self, moderator_id: int, text: str) -> Optional[ReplyMatch]:
        """Сопоставить ответ модератора с ожидающим вопросом.

        None, если у модератора нет ожидающих вопросов: сообщение не наше.
        Запись снимается только при MATCHED и CANCELLED.
        """
        entries = self.pending_for(moderator_id)
        if not entries:
            return None

        candidates = list(dict.fromkeys(entry.applicant_id for entry in entries))
        question = text or ""
        if len(candidates) == 1:
            applicant_id = candidates[0]
        else:
            prefix = _PREFIX_RE.match(question)
            if prefix is None:
                return ReplyMatch(MatchOutcome.NEEDS_PREFIX, candidates=candidates)
            applicant_id = int(prefix.group(1))
            if applicant_id not in candidates:
                return ReplyMatch(MatchOutcome.UNKNOWN_PREFIX, applicant_id=applicant_id, candidates=candidates)
            question = question[prefix.end():]

        display_name = next(entry.display_name for entry in entries if entry.applicant_id == applicant_id)
        if not question.strip():
            return ReplyMatch(MatchOutcome.EMPTY, applicant_id=applicant_id, candidates=candidates)

        self._drop_for(moderator_id, applicant_id)
        if _is_cancel(question):
            logger.info(f"Модератор {moderator_id} отменил вопрос пользователю {applicant_id}")
            return ReplyMatch(
                MatchOutcome.CANCELLED, applicant_id=applicant_id, display_name=display_name, candidates=candidates
            )
        return ReplyMatch(
            MatchOutcome.MATCHED,
            applicant_id=applicant_id,
            question=question,
            display_name=display_name,
            candidates=candidates,
        )

    async def deliver_question(self, applicant_id: int, moderator_id: int, question: str) -> bool:
        """Отправить вопрос пользователю и записать его в историю заявки."""
        try:
            await call_with_retry(self._gateway.send_message, applicant_id, texts.question_for_applicant(question))
        except GatewayError as error:
            if error.kind is GatewayErrorKind.USER_UNREACHABLE:
                logger.info(f"Вопрос не доставлен: пользователь {applicant_id} недоступен")
            else:
                logger.error(f"Ошибка отправки вопроса пользователю {applicant_id}: {error}")
            return False
        await self._store.append_reply(applicant_id, question, ReplySender.ADMIN)
        logger.info(f"Вопрос модератора {moderator_id} отправлен пользователю {applicant_id}")
        return True

    async def handle_reply(self, moderator_id: int, text: str) -> bool:
        """Обработать ответ модератора. False, если сообщение не относится к вопросам."""
        match = self.match_reply(moderator_id, text)
        if match is None:
            return False

        if match.outcome is MatchOutcome.NEEDS_PREFIX:
            await self._notify_moderator(texts.question_needs_prefix(match.candidates))
        elif match.outcome is MatchOutcome.UNKNOWN_PREFIX:
            await self._notify_moderator(texts.question_unknown_prefix(match.applicant_id, match.candidates))
        elif match.outcome is MatchOutcome.EMPTY:
            await self._notify_moderator(texts.question_empty())
        elif match.outcome is MatchOutcome.CANCELLED:
            await self._notify_moderator(texts.question_cancelled(match.applicant_id))
        elif await self._store.find_by_applicant(match.applicant_id) is None:
            await self._notify_moderator(texts.request_not_found(match.applicant_id))
        elif await self.deliver_question(match.applicant_id, moderator_id, match.question):
            await self._notify_moderator(texts.question_sent(match.applicant_id, match.display_name))
        else:
            await self._notify_moderator(texts.question_not_delivered(match.applicant_id, match.display_name))
        return True

    def cancel(self, moderator_id: int, applicant_id: int) -> int:
        """Снять все запросы модератора к пользователю. Возвращает число снятых."""
        removed = self._drop_for(moderator_id, applicant_id)
        logger.info(f"Вопросы модератора {moderator_id} пользователю {applicant_id} отменены: {removed}")
        return removed

    async def _expire(self, key: QuestionKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        logger.info(f"Истекло время ожидания вопроса: moderator_id={entry.moderator_id}, applicant_id={entry.applicant_id}")
        await self._notify_moderator(texts.question_timeout(entry.applicant_id, entry.display_name))

    def shutdown(self) -> None:
        """Снять все запросы вместе с их таймерами."""
        for key in list(self._entries):
            self._drop(key)
        logger.info("Реестр вопросов очищен")
