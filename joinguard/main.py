"""Точка входа бота."""
import sys

from loguru import logger

from joinguard.config import (
    BOT_TOKEN,
    COMMUNITY_CHAT_ID,
    JOIN_REQUEST_CHECK_INTERVAL_MINUTES,
    JOIN_REQUEST_LIFETIME_MINUTES,
    LOG_LEVEL,
    MODERATOR_CHAT_ID,
    MODERATOR_THREAD_ID,
    PENDING_QUESTION_TIMEOUT_MINUTES,
)
from joinguard.handlers import (
    error_handler,
    get_join_request_handler,
    get_message_handlers,
    get_moderation_handlers,
    get_new_members_handler,
)
from joinguard.models.base import close_db, init_db
from joinguard.services.actions import ModeratorActionProtocol
from joinguard.services.errors import ErrorReporter
from joinguard.services.gateway import ChatTarget, TelegramGateway
from joinguard.services.lifecycle import LifecycleManager
from joinguard.services.moderation import BOT_DATA_KEY, ModerationService
from joinguard.services.questions import PendingQuestionRegistry
from joinguard.services.store import RequestStore
from joinguard.services.sweeper import ExpirationSweeper, schedule_sweeper


SCHEDULER_KEY = "scheduler"


def setup_logging() -> None:
    """Настройка loguru."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=LOG_LEVEL,
    )


def build_services(application, scheduler) -> ModerationService:
    """Собрать компоненты модерации вокруг application.bot."""
    moderator_target = ChatTarget(MODERATOR_CHAT_ID, MODERATOR_THREAD_ID)
    gateway = TelegramGateway(application.bot, COMMUNITY_CHAT_ID)
    store = RequestStore()
    reporter = ErrorReporter(gateway, moderator_target)

    lifecycle = LifecycleManager(
        store,
        gateway,
        reporter,
        moderator_target,
        lifetime_minutes=JOIN_REQUEST_LIFETIME_MINUTES,
    )
    registry = PendingQuestionRegistry(
        gateway,
        store,
        moderator_target,
        scheduler,
        timeout_minutes=PENDING_QUESTION_TIMEOUT_MINUTES,
    )
    actions = ModeratorActionProtocol(lifecycle, gateway, registry, reporter)
    return ModerationService(store, gateway, lifecycle, actions, registry, reporter, moderator_target)


async def post_init(application) -> None:
    """Действия после инициализации бота."""
    logger.info("Инициализация базы данных")
    await init_db()

    # Запускаем фоновые задачи
    await setup_background_jobs(application)


async def setup_background_jobs(application) -> None:
    """Настроить все фоновые задачи."""
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    scheduler = AsyncIOScheduler()
    service = build_services(application, scheduler)
    application.bot_data[BOT_DATA_KEY] = service
    application.bot_data[SCHEDULER_KEY] = scheduler

    # Автоотмена просроченных заявок
    sweeper = ExpirationSweeper(
        service.store,
        service.gateway,
        service.lifecycle,
        lifetime_minutes=JOIN_REQUEST_LIFETIME_MINUTES,
    )
    schedule_sweeper(scheduler, sweeper, JOIN_REQUEST_CHECK_INTERVAL_MINUTES)

    scheduler.start()
    logger.info("Фоновые задачи запущены")


async def post_shutdown(application) -> None:
    """Остановить таймеры до закрытия БД."""
    service = application.bot_data.get(BOT_DATA_KEY)
    if service is not None:
        service.registry.shutdown()

    scheduler = application.bot_data.get(SCHEDULER_KEY)
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Фоновые задачи остановлены")

    await close_db()


def main() -> None:
    """Запуск бота."""
    setup_logging()
    logger.info("Запуск бота", bot_token_prefix=BOT_TOKEN[:10] + "..." if BOT_TOKEN else "NOT SET")

    if not BOT_TOKEN:
        logger.error("BOT_TOKEN не задан. Укажите в .env")
        sys.exit(1)

    if COMMUNITY_CHAT_ID is None or MODERATOR_CHAT_ID is None:
        logger.error("COMMUNITY_CHAT_ID и MODERATOR_CHAT_ID обязательны. Укажите в .env")
        sys.exit(1)

    from telegram.ext import Application

    application = (
        Application.builder()
        .token(BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # 1. Заявки на вступление в сообщество
    application.add_handler(get_join_request_handler(COMMUNITY_CHAT_ID))

    # 2. Кнопки модерации
    for handler in get_moderation_handlers():
        application.add_handler(handler)

    # 3. Новые участники сообщества
    application.add_handler(get_new_members_handler(COMMUNITY_CHAT_ID))

    # 4. Ответы модераторов на запрос вопроса и личка пользователей
    for handler in get_message_handlers(MODERATOR_CHAT_ID):
        application.add_handler(handler)

    application.add_error_handler(error_handler)

    logger.info("Бот запущен (polling)")
    application.run_polling(allowed_updates=["message", "callback_query", "chat_join_request"])


if __name__ == "__main__":
    main()
