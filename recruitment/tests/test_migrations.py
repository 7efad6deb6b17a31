"""Smoke tests for recruitment Alembic migrations."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from recruitment.config import settings
from recruitment.models import Base


def _config(tmp_path: Path, monkeypatch) -> tuple[Config, Path]:
    db_path = tmp_path / "recruitment_migrations.db"
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{db_path}")
    repo_root = Path(__file__).resolve().parents[2]
    return Config(str(repo_root / "recruitment" / "alembic.ini")), db_path


def _tables(db_path: Path) -> set[str]:
    engine = create_engine(f"sqlite:///{db_path}")
    try:
        return set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_upgrade_creates_every_model_table(tmp_path: Path, monkeypatch):
    cfg, db_path = _config(tmp_path, monkeypatch)
    command.upgrade(cfg, "head")

    tables = _tables(db_path)
    assert set(Base.metadata.tables) <= tables
    assert "alembic_version" in tables

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        indexes = {ix["name"] for ix in inspect(engine).get_indexes("slot_booking")}
    finally:
        engine.dispose()
    assert "uq_slot_booking_confirmed_kind" in indexes


def test_downgrade_drops_tables(tmp_path: Path, monkeypatch):
    cfg, db_path = _config(tmp_path, monkeypatch)
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")
    assert _tables(db_path) <= {"alembic_version"}
