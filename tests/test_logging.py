import logging

import pytest

from atira_chat.core.logging import NOISY_LOGGERS, setup_logging


@pytest.fixture
def restore_levels():
    names = ["", "atira_chat", "uvicorn", "uvicorn.error", "uvicorn.access", *NOISY_LOGGERS]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def test_chat_log_level_only_affects_relay_loggers(monkeypatch, restore_levels) -> None:
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("CHAT_LOG_LEVEL", "debug")

    setup_logging()

    assert logging.getLogger("atira_chat").level == logging.DEBUG
    assert logging.getLogger().level == logging.INFO
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_chat_log_level_defaults_to_root_level(monkeypatch, restore_levels) -> None:
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("CHAT_LOG_LEVEL", raising=False)

    setup_logging()

    assert logging.getLogger("atira_chat").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING
