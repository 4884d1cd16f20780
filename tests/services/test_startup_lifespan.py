"""
Tests for the application lifespan (env validation and degraded startup)
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from src.config import Config
from src.services import startup


def _run(app=None):
    async def _enter_and_exit():
        async with startup.lifespan(app or MagicMock()):
            return "started"

    return asyncio.run(_enter_and_exit())


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(Config, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(Config, "SUPABASE_KEY", "service-role-key")
    monkeypatch.setattr(Config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_SECRET", "whsec_test_123")
    cleanup = MagicMock()
    monkeypatch.setattr(startup, "cleanup_supabase_client", cleanup)
    return cleanup


def test_missing_env_vars_abort_startup(configured, monkeypatch):
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_SECRET", None)

    with pytest.raises(RuntimeError, match="STRIPE_WEBHOOK_SECRET"):
        _run()


def test_successful_startup_and_shutdown(configured, monkeypatch):
    init_db = MagicMock()
    monkeypatch.setattr(startup, "init_db", init_db)

    assert _run() == "started"
    init_db.assert_called_once()
    configured.assert_called_once()


def test_database_failure_starts_degraded(configured, monkeypatch):
    init_db = MagicMock(side_effect=RuntimeError("Database connection failed"))
    monkeypatch.setattr(startup, "init_db", init_db)

    async def _no_sleep(_):
        return None

    monkeypatch.setattr(startup.asyncio, "sleep", _no_sleep)

    assert _run() == "started"
    assert init_db.call_count == 2
