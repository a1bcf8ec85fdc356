from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, inspect
from sqlmodel import SQLModel

from app.domain import models  # noqa: F401
from app.infra.migrate import build_alembic_config, run_upgrade_head


def test_alembic_config_points_at_migrations(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'config.db'}"
    config = build_alembic_config(url)
    assert config.get_main_option("sqlalchemy.url") == url
    assert config.get_main_option("script_location", "").endswith("migrations")


def test_upgrade_head_creates_every_model_table(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    run_upgrade_head(url)

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(SQLModel.metadata.tables) <= tables
        equipment_columns = {column["name"] for column in inspector.get_columns("equipment")}
        assert {"parent_equipment_id", "sub_equipment_count", "is_tank", "current_biomass"} <= equipment_columns
        assert {"is_deleted", "deleted_at", "deleted_by"} <= equipment_columns
    finally:
        engine.dispose()
