from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from core.config import get_settings


def test_required_tables_present_in_migration():
    text = Path("alembic/versions/20261018_0001_initial.py").read_text()
    for t in ["workout_templates", "gym_sessions"]:
        assert f'"{t}"' in text
    for column in ["state_version", "step_end_time", "block_end_time", "remaining_ms", "template_snapshot"]:
        assert f'"{column}"' in text


def test_migrations_avoid_postgres_now_function_for_portability():
    migrations_dir = Path("alembic/versions")
    for migration_file in migrations_dir.glob("*.py"):
        text = migration_file.read_text(encoding="utf-8").lower()
        assert "now()" not in text, f"Non-portable now() found in {migration_file.name}"


def test_alembic_upgrade_head_succeeds_on_sqlite(tmp_path, monkeypatch):
    db_path = tmp_path / "migration_smoke.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    get_settings.cache_clear()

    cfg = Config("alembic.ini")
    command.upgrade(cfg, "head")
    get_settings.cache_clear()

    inspector = inspect(create_engine(f"sqlite:///{db_path}"))
    tables = set(inspector.get_table_names())
    assert {"workout_templates", "gym_sessions", "alembic_version"} <= tables
    columns = {c["name"] for c in inspector.get_columns("gym_sessions")}
    assert {"status", "view_mode", "current_step_index", "state_version"} <= columns
