import logging

import pytest

from core.config import Settings, settings
from core.logging import configure_logging


def test_require_names_missing_settings():
    s = Settings()
    s.database_url = ""
    s.jwt_secret = ""

    assert s.missing() == ["DATABASE_URL", "JWT_SECRET"]
    with pytest.raises(RuntimeError, match="DATABASE_URL, JWT_SECRET"):
        s.require()


def test_require_passes_when_configured():
    s = Settings()
    s.database_url = "postgresql+asyncpg://u:p@localhost/gestao"
    s.jwt_secret = "secret"

    assert s.missing() == []
    s.require()


def test_configure_logging_quiets_sqlalchemy(monkeypatch):
    monkeypatch.setattr(settings, "database_echo", False)
    configure_logging("DEBUG")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
