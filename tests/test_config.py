from joinguard.config import get_env, get_int_env


def test_get_int_env_parses_value(monkeypatch):
    monkeypatch.setenv("JOIN_REQUEST_LIFETIME_MINUTES", " 60 ")

    assert get_int_env("JOIN_REQUEST_LIFETIME_MINUTES", 1440) == 60


def test_get_int_env_negative_chat_id(monkeypatch):
    monkeypatch.setenv("MODERATOR_CHAT_ID", "-1001234567890")

    assert get_int_env("MODERATOR_CHAT_ID") == -1001234567890


def test_get_int_env_falls_back_on_garbage(monkeypatch):
    monkeypatch.setenv("JOIN_REQUEST_CHECK_INTERVAL_MINUTES", "15m")

    assert get_int_env("JOIN_REQUEST_CHECK_INTERVAL_MINUTES", 15) == 15


def test_get_int_env_missing(monkeypatch):
    monkeypatch.delenv("MODERATOR_THREAD_ID", raising=False)

    assert get_int_env("MODERATOR_THREAD_ID") is None


def test_get_env_default(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    assert get_env("LOG_LEVEL", "DEBUG") == "DEBUG"
