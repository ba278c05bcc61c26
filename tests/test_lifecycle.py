import pytest

from conftest import MODERATOR_CHAT_ID, callback_datas, make_profile
from joinguard.models import JoinRequestStatus
from joinguard.services.gateway import GatewayError, GatewayErrorKind


@pytest.mark.asyncio
async def test_create_greets_applicant_and_notifies_moderators(lifecycle, store, gateway):
    result = await lifecycle.create(make_profile(42, "Иван", username="ivan"))

    assert result.changed
    assert result.status is JoinRequestStatus.PENDING
    assert result.applicant_notified is True

    greeting = gateway.messages_to(42)[0]
    assert "24 ч. 0 мин." in greeting.text

    notification = gateway.messages_to(MODERATOR_CHAT_ID)[0]
    assert "@ivan" in notification.text
    assert callback_datas(notification.reply_markup) == ["accept:42", "reject:42", "ask:42", "ban:42"]

    stored = await store.find_by_applicant(42)
    assert stored.moderator_message_id == notification.message_id
    assert stored.greeting_delivered is True
    assert stored.registration_period


@pytest.mark.asyncio
async def test_create_does_not_duplicate_pending_request(lifecycle, store, gateway):
    first = await lifecycle.create(make_profile())
    second = await lifecycle.create(make_profile())

    assert first.changed
    assert not second.changed
    assert second.status is JoinRequestStatus.PENDING
    assert len(gateway.messages_to(MODERATOR_CHAT_ID)) == 1


@pytest.mark.asyncio
async def test_reapplication_after_rejection_creates_new_record(lifecycle, store):
    await lifecycle.create(make_profile())
    rejected = await store.find_by_applicant(42)
    await lifecycle.reject(42, moderator_id=7)

    result = await lifecycle.create(make_profile())

    assert result.changed
    current = await store.find_by_applicant(42)
    assert current.id != rejected.id
    assert current.status is JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_create_for_banned_applicant_declines_immediately(lifecycle, store, gateway):
    await store.record_ban(42, 7, "спам")

    result = await lifecycle.create(make_profile())

    assert not result.changed
    assert result.status is JoinRequestStatus.BANNED
    assert gateway.called("decline_join_request") == [(42,)]
    assert gateway.sent == []
    assert await store.find_by_applicant(42) is None


@pytest.mark.asyncio
async def test_unreachable_applicant_still_gets_request(lifecycle, store, gateway):
    gateway.fail("send_message", GatewayError(GatewayErrorKind.USER_UNREACHABLE, "bot was blocked by the user"))

    result = await lifecycle.create(make_profile())

    assert result.changed
    assert result.applicant_notified is False
    stored = await store.find_by_applicant(42)
    assert stored.status is JoinRequestStatus.PENDING
    assert stored.greeting_delivered is False
    assert "user-unreachable" in stored.reason
    assert "Не удалось отправить пользователю инструкции" in gateway.messages_to(MODERATOR_CHAT_ID)[0].text


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "transition, target",
    [
        ("approve", JoinRequestStatus.APPROVED),
        ("reject", JoinRequestStatus.REJECTED),
        ("ban", JoinRequestStatus.BANNED),
    ],
)
async def test_moderator_transitions_are_idempotent(lifecycle, store, gateway, transition, target):
    await lifecycle.create(make_profile())

    first = await getattr(lifecycle, transition)(42, 7)
    platform_calls = len(gateway.calls)
    second = await getattr(lifecycle, transition)(42, 8)

    assert first.changed and first.status is target
    assert not second.changed and second.status is target
    assert len(gateway.calls) == platform_calls
    stored = await store.find_by_applicant(42)
    assert stored.status is target
    assert stored.reviewed_by == 7


@pytest.mark.asyncio
async def test_expire_is_idempotent(lifecycle, store, gateway):
    await lifecycle.create(make_profile())

    first = await lifecycle.expire(42)
    second = await lifecycle.expire(42)

    assert first.changed and first.status is JoinRequestStatus.EXPIRED
    assert not second.changed and second.status is JoinRequestStatus.EXPIRED
    assert gateway.called("decline_join_request") == [(42,)]


@pytest.mark.asyncio
async def test_transition_without_request_is_noop(lifecycle, gateway):
    result = await lifecycle.approve(42, 7)

    assert not result.changed
    assert not result.found
    assert gateway.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [GatewayErrorKind.NOT_FOUND, GatewayErrorKind.ALREADY_PROCESSED])
@pytest.mark.parametrize(
    "transition, target",
    [("reject", JoinRequestStatus.REJECTED), ("expire", JoinRequestStatus.EXPIRED)],
)
async def test_benign_platform_errors_still_finish_transition(lifecycle, store, gateway, kind, transition, target):
    await lifecycle.create(make_profile())
    gateway.fail("decline_join_request", GatewayError(kind, "HIDE_REQUESTER_MISSING"))

    if transition == "reject":
        result = await lifecycle.reject(42, 7)
    else:
        result = await lifecycle.expire(42)

    assert result.changed
    assert result.status is target
    assert result.platform_ok is False
    assert result.platform_error.kind is kind
    stored = await store.find_by_applicant(42)
    assert stored.status is target
    assert kind.value in stored.reason


@pytest.mark.asyncio
async def test_unknown_error_aborts_and_reports(lifecycle, store, gateway):
    await lifecycle.create(make_profile())
    moderator_messages = len(gateway.messages_to(MODERATOR_CHAT_ID))
    gateway.fail("approve_join_request", GatewayError(GatewayErrorKind.UNKNOWN, "Internal Server Error"))

    result = await lifecycle.approve(42, 7)

    assert result.failed
    assert not result.changed
    assert result.status is JoinRequestStatus.PENDING
    assert (await store.find_by_applicant(42)).status is JoinRequestStatus.PENDING
    reports = gateway.messages_to(MODERATOR_CHAT_ID)[moderator_messages:]
    assert len(reports) == 1
    assert "Internal Server Error" in reports[0].text
    assert "42" in reports[0].text


@pytest.mark.asyncio
async def test_rate_limit_is_retried_inside_transition(lifecycle, store, gateway):
    await lifecycle.create(make_profile())
    gateway.fail("approve_join_request", GatewayError(GatewayErrorKind.RATE_LIMITED, "flood", retry_after=0))

    result = await lifecycle.approve(42, 7)

    assert result.changed
    assert result.platform_ok is True
    assert len(gateway.called("approve_join_request")) == 2


@pytest.mark.asyncio
async def test_approve_leaves_only_question_button(lifecycle, store, gateway):
    await lifecycle.create(make_profile())
    notification = gateway.messages_to(MODERATOR_CHAT_ID)[0]

    result = await lifecycle.approve(42, 7)

    assert result.applicant_notified is True
    assert "одобрена" in gateway.messages_to(42)[-1].text
    markup_edit = gateway.edits[-1]
    assert markup_edit.ref.message_id == notification.message_id
    assert callback_datas(markup_edit.reply_markup) == ["ask:42"]


@pytest.mark.asyncio
async def test_notice_failure_does_not_undo_transition(lifecycle, store, gateway):
    await lifecycle.create(make_profile())
    gateway.fail("send_message", GatewayError(GatewayErrorKind.USER_UNREACHABLE, "blocked"))

    result = await lifecycle.reject(42, 7)

    assert result.changed
    assert result.applicant_notified is False
    stored = await store.find_by_applicant(42)
    assert stored.status is JoinRequestStatus.REJECTED
    assert stored.applicant_notified is False


@pytest.mark.asyncio
async def test_expire_with_member_status_skips_decline(lifecycle, store, gateway):
    await lifecycle.create(make_profile())

    result = await lifecycle.expire(42, member_status="member")

    assert result.changed
    assert result.status is JoinRequestStatus.EXPIRED
    assert gateway.called("decline_join_request") == []
    assert "member" in (await store.find_by_applicant(42)).reason


@pytest.mark.asyncio
async def test_expire_notifies_applicant_and_moderators(lifecycle, gateway):
    await lifecycle.create(make_profile())

    await lifecycle.expire(42)

    assert "24 ч. 0 мин." in gateway.messages_to(42)[-1].text
    assert "автоматически отменена" in gateway.messages_to(MODERATOR_CHAT_ID)[-1].text


@pytest.mark.asyncio
async def test_expire_moderator_notice_survives_rate_limit(lifecycle, gateway):
    await lifecycle.create(make_profile())
    moderator_messages = len(gateway.messages_to(MODERATOR_CHAT_ID))
    gateway.fail("send_message", GatewayError(GatewayErrorKind.RATE_LIMITED, "flood", retry_after=0))

    await lifecycle.expire(42, member_status="member")

    notices = gateway.messages_to(MODERATOR_CHAT_ID)[moderator_messages:]
    assert len(notices) == 1
    assert "автоматически отменена" in notices[0].text
    assert len(gateway.called("send_message")) == 4  # приветствие, уведомление, лимит, повтор


@pytest.mark.asyncio
async def test_ban_declines_bans_and_records(lifecycle, store, gateway):
    await lifecycle.create(make_profile())

    result = await lifecycle.ban(42, 7)

    assert result.changed
    assert gateway.called("decline_join_request") == [(42,)]
    assert gateway.called("ban_member") == [(42,)]
    assert await store.is_banned(42)
    assert (await store.find_by_applicant(42)).status is JoinRequestStatus.BANNED
    assert callback_datas(gateway.edits[-1].reply_markup) == []
