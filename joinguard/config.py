"""Конфигурация бота."""
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# Базовые пути
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)


def get_env(key: str, default: Optional[str] = None) -> str:
    """Получить переменную окружения."""
    import os

    value = os.getenv(key, default)
    if not value and key == "BOT_TOKEN":
        logger.warning("Переменная окружения BOT_TOKEN не задана")
    return value or (default or "")


def get_int_env(key: str, default: Optional[int] = None) -> Optional[int]:
    """Получить целочисленную переменную окружения.

    Некорректное значение логируется и заменяется значением по умолчанию.
    """
    raw = get_env(key, "")
    if not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.error(f"Неверный формат {key}: {raw!r}, используется {default}")
        return default


# Telegram
BOT_TOKEN = get_env("BOT_TOKEN")

# Чат сообщества, в который подаются заявки
COMMUNITY_CHAT_ID = get_int_env("COMMUNITY_CHAT_ID")

# Чат модераторов (и тред внутри него, если это форум)
MODERATOR_CHAT_ID = get_int_env("MODERATOR_CHAT_ID")
MODERATOR_THREAD_ID = get_int_env("MODERATOR_THREAD_ID")

# Database
DATABASE_URL = get_env("DATABASE_URL", f"sqlite+aiosqlite:///{DATA_DIR}/joinguard.db")

# Заявки на вступление
JOIN_REQUEST_LIFETIME_MINUTES = get_int_env("JOIN_REQUEST_LIFETIME_MINUTES", 1440)
JOIN_REQUEST_CHECK_INTERVAL_MINUTES = get_int_env("JOIN_REQUEST_CHECK_INTERVAL_MINUTES", 15)

# Сколько ждём текст вопроса от модератора
PENDING_QUESTION_TIMEOUT_MINUTES = get_int_env("PENDING_QUESTION_TIMEOUT_MINUTES", 30)

# Логи
LOG_LEVEL = get_env("LOG_LEVEL", "DEBUG")
