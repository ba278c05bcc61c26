"""Базовая конфигурация БД."""
from datetime import datetime, timezone

from loguru import logger

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from joinguard.config import DATABASE_URL


class Base(DeclarativeBase):
    """Базовый класс для моделей."""

    pass


def utcnow() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


engine = create_async_engine(
    DATABASE_URL,
    echo=False,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db(db_engine: AsyncEngine = engine) -> None:
    """Инициализация БД (создание таблиц)."""
    import joinguard.models  # noqa: F401 регистрируем все модели

    logger.info("Инициализация базы данных", database_url=str(db_engine.url)[:50] + "...")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Таблицы созданы успешно")


async def close_db(db_engine: AsyncEngine = engine) -> None:
    """Закрыть пул соединений."""
    await db_engine.dispose()
    logger.debug("Соединения с БД закрыты")
