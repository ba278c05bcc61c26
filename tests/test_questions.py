from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from conftest import MODERATOR_CHAT_ID, MODERATOR_TARGET, callback_datas
from joinguard.models import JoinRequest, JoinRequestStatus, ReplySender
from joinguard.services.gateway import GatewayError, GatewayErrorKind
from joinguard.services.questions import MatchOutcome, PendingQuestionRegistry

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def applicants(store):
    for applicant_id, name in ((42, "Иван"), (99, "Мария")):
        await store.insert(
            JoinRequest(applicant_id=applicant_id, display_name=name, status=JoinRequestStatus.PENDING)
        )


@pytest.fixture
def registry(gateway, store, scheduler, applicants) -> PendingQuestionRegistry:
    return PendingQuestionRegistry(gateway, store, MODERATOR_TARGET, scheduler, timeout_minutes=30, clock=lambda: T0)


@pytest.mark.asyncio
async def test_request_question_sends_prompt_with_cancel_button(registry, gateway, scheduler):
    prompt_id = await registry.request_question(7, 42)

    prompt = gateway.messages_to(MODERATOR_CHAT_ID)[-1]
    assert prompt.message_id == prompt_id
    assert "Иван" in prompt.text
    assert callback_datas(prompt.reply_markup) == ["cancel_ask:42"]
    assert len(registry.pending_for(7)) == 1
    assert len(scheduler.jobs) == 1


@pytest.mark.asyncio
async def test_request_question_for_unknown_applicant(registry, gateway, scheduler):
    assert await registry.request_question(7, 1000) is None

    assert "не найдена" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text
    assert len(registry) == 0
    assert scheduler.jobs == {}


@pytest.mark.asyncio
async def test_single_pending_question_matches_unprefixed_reply(registry, scheduler):
    await registry.request_question(7, 42)

    match = registry.match_reply(7, "Откуда вы о нас узнали?")

    assert match.outcome is MatchOutcome.MATCHED
    assert match.applicant_id == 42
    assert match.question == "Откуда вы о нас узнали?"
    assert registry.pending_for(7) == []
    assert scheduler.jobs == {}


@pytest.mark.asyncio
async def test_other_moderators_replies_are_not_matched(registry):
    await registry.request_question(7, 42)

    assert registry.match_reply(8, "привет") is None
    assert len(registry.pending_for(7)) == 1


@pytest.mark.asyncio
async def test_several_pending_questions_require_prefix(registry, gateway):
    await registry.request_question(7, 42)
    await registry.request_question(7, 99)

    # Второе приглашение подсказывает формат с ID
    assert "99: Ваш вопрос" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text

    unprefixed = registry.match_reply(7, "hello")
    assert unprefixed.outcome is MatchOutcome.NEEDS_PREFIX
    assert sorted(unprefixed.candidates) == [42, 99]
    assert len(registry.pending_for(7)) == 2

    unknown = registry.match_reply(7, "13: hello")
    assert unknown.outcome is MatchOutcome.UNKNOWN_PREFIX
    assert len(registry.pending_for(7)) == 2

    match = registry.match_reply(7, "99: hello")
    assert match.outcome is MatchOutcome.MATCHED
    assert match.applicant_id == 99
    assert match.question == "hello"
    assert [entry.applicant_id for entry in registry.pending_for(7)] == [42]


@pytest.mark.asyncio
async def test_handle_reply_delivers_question(registry, gateway, store):
    await registry.request_question(7, 42)

    assert await registry.handle_reply(7, "Какой у вас опыт?")

    assert gateway.messages_to(42)[-1].text == "Вопрос от администратора: Какой у вас опыт?"
    assert "Вопрос отправлен" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text
    request = await store.find_by_applicant(42)
    assert [(reply.sender, reply.message) for reply in request.replies] == [
        (ReplySender.ADMIN, "Какой у вас опыт?")
    ]


@pytest.mark.asyncio
async def test_handle_reply_without_pending_questions(registry, gateway):
    assert not await registry.handle_reply(7, "просто сообщение")
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_unreachable_applicant_still_consumes_question(registry, gateway):
    await registry.request_question(7, 42)
    gateway.fail("send_message", GatewayError(GatewayErrorKind.USER_UNREACHABLE, "bot was blocked by the user"))

    assert await registry.handle_reply(7, "Вы здесь?")

    assert registry.pending_for(7) == []
    assert "Не удалось отправить вопрос" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text


@pytest.mark.asyncio
async def test_cancel_command_clears_entry_without_sending(registry, gateway, scheduler):
    await registry.request_question(7, 42)
    await registry.request_question(7, 99)

    assert await registry.handle_reply(7, "99: /cancel")

    assert [entry.applicant_id for entry in registry.pending_for(7)] == [42]
    assert gateway.messages_to(99) == []
    assert "отменён" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text
    assert len(scheduler.jobs) == 1


@pytest.mark.asyncio
async def test_empty_question_is_not_consumed(registry, gateway):
    await registry.request_question(7, 42)

    assert await registry.handle_reply(7, "   ")

    assert len(registry.pending_for(7)) == 1
    assert "введите текст вопроса" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text


@pytest.mark.asyncio
async def test_unconsumed_question_expires_after_timeout(registry, gateway, scheduler):
    await registry.request_question(7, 42)
    (job_id, job), = scheduler.jobs.items()

    assert job.trigger == "date"
    assert job.kwargs["run_date"] == T0 + timedelta(minutes=30)
    assert job.kwargs["run_date"] < T0 + timedelta(minutes=31)

    await scheduler.fire(job_id)

    assert len(registry) == 0
    notice = gateway.messages_to(MODERATOR_CHAT_ID)[-1]
    assert "Время ожидания вопроса" in notice.text
    assert "42" in notice.text


@pytest.mark.asyncio
async def test_cancel_button_and_shutdown_remove_jobs(registry, scheduler):
    await registry.request_question(7, 42)
    await registry.request_question(7, 99)
    await registry.request_question(8, 42)

    assert registry.cancel(7, 42) == 1
    assert len(registry) == 2
    assert len(scheduler.jobs) == 2

    registry.shutdown()

    assert len(registry) == 0
    assert scheduler.jobs == {}
