"""
Migration environment: the initial schema rendered as offline SQL.
"""
import io
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.core.config import get_settings

MIGRATIONS = Path(__file__).resolve().parent.parent / "migrations"


def _render_upgrade(monkeypatch, database_url: str) -> str:
    monkeypatch.setenv("DATABASE_URL", database_url)
    get_settings.cache_clear()
    buffer = io.StringIO()
    cfg = Config(output_buffer=buffer)
    cfg.set_main_option("script_location", str(MIGRATIONS))
    try:
        command.upgrade(cfg, "head", sql=True)
    finally:
        get_settings.cache_clear()
    return buffer.getvalue()


class TestOfflineUpgrade:

    def test_renders_both_tables_from_async_url(self, monkeypatch):
        sql = _render_upgrade(monkeypatch, "postgresql+asyncpg://conditions:secret@db:5432/condition_engine")
        assert "CREATE TABLE event_log" in sql
        assert "CREATE TABLE user_trust" in sql
        assert "CREATE INDEX ix_event_log_entity ON event_log" in sql

    def test_dedupe_key_unique(self, monkeypatch):
        sql = _render_upgrade(monkeypatch, "postgresql+asyncpg://conditions:secret@db:5432/condition_engine")
        assert "UNIQUE (dedupe_key)" in sql
