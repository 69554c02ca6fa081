from pathlib import Path

import allure
from sqlalchemy import inspect, text

from sdlc_agent.orchestrator.repository import DevelopmentRepository

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = DevelopmentRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
    tables = set(inspect(repository.engine).get_table_names())

    assert version == "20261019_0001"
    assert {"developments", "development_events"} <= tables
    repository.close()
