"""Тексты сообщений пользователям и модераторам."""
from __future__ import annotations

from html import escape
from typing import Optional, TYPE_CHECKING

from telegram.helpers import mention_html

from joinguard.services.content import MEDIA_PLACEHOLDERS, MediaKind

if TYPE_CHECKING:
    from joinguard.services.lifecycle import TransitionResult


def format_lifetime(minutes: int) -> str:
    """1440 -> «24 ч. 0 мин.», 45 -> «45 мин.»"""
    hours, rest = divmod(minutes, 60)
    return f"{hours} ч. {rest} мин." if hours > 0 else f"{rest} мин."


def user_link(user_id: int, name: Optional[str]) -> str:
    return mention_html(user_id, name or f"ID {user_id}")


def applicant_greeting(lifetime_minutes: int) -> str:
    return (
        "Привет! Получили от тебя заявку на вступление в сообщество.\n"
        "Такие заявки мы проверяем на ботов, поэтому расскажи в ответ на это сообщение, "
        "что привело тебя к нам.\n\n"
        f"Если ответа не будет в течение {format_lifetime(lifetime_minutes)}, заявку придётся отклонить. "
        "После отклонения заявку можно подать повторно."
    )


def moderator_notification(
    applicant_id: int,
    display_name: str,
    username: Optional[str],
    language_code: Optional[str],
    registration_period: str,
    greeting_delivered: bool,
) -> str:
    lines = [
        f"📥 <b>{escape(display_name)} подал(а) заявку на вступление</b>",
        "",
        f"🆔 ID: <code>{applicant_id}</code> {user_link(applicant_id, display_name)}",
        f"👤 Логин: {'@' + escape(username) if username else 'нет'}",
        f"🌐 Язык: {escape(language_code or 'не указан')}",
        f"📅 Регистрация: ~ {registration_period}",
    ]
    if not greeting_delivered:
        lines += ["", "⚠️ <b>Не удалось отправить пользователю инструкции</b> (бот недоступен пользователю)"]
    return "\n".join(lines)


def applicant_reply_text(applicant_id: int, display_name: str, text: str) -> str:
    return (
        f"💬 <b>Ответ от пользователя {user_link(applicant_id, display_name)}</b> "
        f"(ID: <code>{applicant_id}</code>):\n{escape(text)}"
    )


def applicant_media_caption(applicant_id: int, display_name: str, kind: MediaKind, caption: Optional[str]) -> str:
    text = f"{MEDIA_PLACEHOLDERS[kind]} от {user_link(applicant_id, display_name)} (ID: <code>{applicant_id}</code>)"
    if caption:
        text += f"\n{escape(caption)}"
    return text


def approved_notice() -> str:
    return "✅ <b>Ваша заявка на вступление в группу одобрена</b>\n\nДобро пожаловать!"


def rejected_notice() -> str:
    return (
        "❌ <b>Ваша заявка на вступление в группу отклонена</b>\n\n"
        "Если считаете это ошибкой, подайте заявку повторно."
    )


def expired_notice(lifetime_minutes: int) -> str:
    return (
        "⚠️ <b>Ваша заявка на вступление в группу отклонена</b>\n\n"
        f"Время ожидания ответа истекло ({format_lifetime(lifetime_minutes)})\n"
        "Вы можете подать новую заявку в любое время"
    )


def banned_notice() -> str:
    return "⚠️ <b>Вы заблокированы в группе</b>"


def expired_moderator_notice(applicant_id: int, display_name: str, lifetime_minutes: int, reason: str) -> str:
    return (
        "⚠️ <b>Заявка автоматически отменена</b>\n\n"
        f"👤 Пользователь: {user_link(applicant_id, display_name)}\n"
        f"⏳ Время жизни: {format_lifetime(lifetime_minutes)}\n"
        f"ℹ️ {escape(reason)}"
    )


def standard_response() -> str:
    return (
        "Здравствуйте! Если вы хотите вступить в сообщество, "
        "пожалуйста, отправьте запрос на вступление через группу."
    )


def already_approved_response() -> str:
    return "Ваша заявка уже одобрена. Вопросы можно задать в общем чате сообщества."


def reapply_response() -> str:
    return (
        "Ваша заявка на вступление была отклонена ранее. "
        "Если вы хотите подать новую заявку, сделайте это через основную группу."
    )


def question_prompt(applicant_id: int, display_name: str, other_pending: int) -> str:
    text = (
        f"<b>Вопрос для пользователя {escape(display_name)} (ID: {applicant_id})</b>\n\n"
        "<i>Чтобы отправить вопрос, просто ответьте на это сообщение.</i>"
    )
    if other_pending:
        text += (
            f"\n\n<b>⚠️ У вас уже есть активных запросов вопросов: {other_pending}.</b>\n"
            "Если будете отвечать на этот запрос, в начале ответа укажите ID пользователя:\n"
            f"<code>{applicant_id}: Ваш вопрос</code>"
        )
    return text + "\n\nДля отмены отправьте /cancel или нажмите кнопку ниже."


def question_for_applicant(question: str) -> str:
    return f"Вопрос от администратора: {escape(question)}"


def question_timeout(applicant_id: int, display_name: str) -> str:
    return (
        f"Время ожидания вопроса для пользователя {escape(display_name)} (ID: {applicant_id}) истекло. "
        "При необходимости нажмите кнопку «Задать вопрос» снова."
    )


def question_sent(applicant_id: int, display_name: str) -> str:
    return f"✅ Вопрос отправлен пользователю {escape(display_name)} (ID: {applicant_id}). Ожидаем ответ."


def question_not_delivered(applicant_id: int, display_name: str) -> str:
    return (
        f"❌ Не удалось отправить вопрос пользователю {escape(display_name)} (ID: {applicant_id}).\n"
        "Пользователь, вероятно, заблокировал бота или ограничил доступ к своему аккаунту."
    )


def question_needs_prefix(candidates: list[int]) -> str:
    ids = ", ".join(str(applicant_id) for applicant_id in candidates)
    return (
        "❓ У вас несколько активных запросов вопросов. Укажите ID пользователя в формате:\n"
        f"<code>{candidates[0]}: ваш вопрос</code>\n\n"
        f"Активные запросы вопросов: {ids}"
    )


def question_unknown_prefix(applicant_id: int, candidates: list[int]) -> str:
    ids = ", ".join(str(candidate) for candidate in candidates)
    return (
        f"❌ ID пользователя {applicant_id} не найден в ваших текущих запросах вопросов.\n"
        f"Активные запросы вопросов: {ids}"
    )


def question_cancelled(applicant_id: int) -> str:
    return f"❌ Запрос вопроса пользователю {applicant_id} отменён."


def question_empty() -> str:
    return "❌ Пожалуйста, введите текст вопроса."


def request_not_found(applicant_id: int) -> str:
    return f"Заявка пользователя с ID {applicant_id} не найдена."


def error_report(action: str, applicant_id: Optional[int], detail: str) -> str:
    target = f"пользователь <code>{applicant_id}</code>" if applicant_id is not None else "без пользователя"
    return (
        f"⚠️ <b>Ошибка: {escape(action)}</b>\n"
        f"👤 {target}\n"
        f"❌ {escape(detail)}"
    )


STATUS_LABELS = {
    "pending": "ожидает решения",
    "approved": "принята",
    "rejected": "отклонена",
    "expired": "отменена по времени",
    "banned": "пользователь забанен",
}


def outcome_line(result: TransitionResult, moderator_name: str) -> str:
    """Строка с итогом действия, дописывается к исходному сообщению модераторов."""
    who = escape(moderator_name)
    if result.failed:
        kind = result.error.kind.value if result.error else "unknown"
        return f"⚠️ <b>Ошибка ({kind}), статус заявки не изменён.</b> Попробуйте ещё раз."
    if result.status is None:
        return "ℹ️ Заявка не найдена"
    if not result.changed:
        return f"ℹ️ Заявка уже обработана: {STATUS_LABELS[result.status.value]}"

    lines = {
        "approved": f"✅ <b>Принят(а)</b> модератором {who}",
        "rejected": f"❌ <b>Отклонена</b> модератором {who}",
        "banned": f"🚫 <b>Забанен(а)</b> модератором {who}",
        "expired": "⏳ <b>Отменена по времени</b>",
    }
    line = lines.get(result.status.value, STATUS_LABELS[result.status.value])
    if result.platform_error is not None:
        line += f" (Telegram: {result.platform_error.kind.value})"
    if result.applicant_notified is False:
        line += "\n⚠️ Пользователь не получил уведомление"
    return line


def transition_crashed() -> str:
    return "⚠️ <b>Внутренняя ошибка, действие не завершено.</b> Проверьте статус заявки и попробуйте ещё раз."


def member_joined_notice(
    member_id: int,
    member_name: str,
    inviter_id: Optional[int] = None,
    inviter_name: Optional[str] = None,
) -> str:
    if inviter_id is not None:
        return f"{user_link(inviter_id, inviter_name)} принял(а) в группу {user_link(member_id, member_name)}"
    return f"{user_link(member_id, member_name)} принят(а) в группу"


def member_welcome(member_name: str) -> str:
    return f"{escape(member_name)}, добро пожаловать в наш чат!"


def welcome_not_delivered(member_id: int, member_name: str, kind: str) -> str:
    return f"Не удалось отправить приветствие пользователю {user_link(member_id, member_name)} ({kind})"
