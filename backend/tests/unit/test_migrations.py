"""Tests that the Alembic revisions build the schema the models expect."""
import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from donations.models import Base

VERSIONS_DIR = Path(__file__).resolve().parents[2] / "alembic" / "versions"


def _load_revision(pattern: str):
    path = next(VERSIONS_DIR.glob(pattern))
    spec = importlib.util.spec_from_file_location(path.stem, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_initial_migration_matches_models() -> None:
    """Test that upgrade creates every mapped table, column and index."""
    revision = _load_revision("*_initial_schema_*.py")
    engine = create_engine("sqlite://")

    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            revision.upgrade()

        inspector = inspect(conn)
        assert set(inspector.get_table_names()) == set(Base.metadata.tables)

        for name, table in Base.metadata.tables.items():
            columns = {column["name"] for column in inspector.get_columns(name)}
            assert columns == set(table.columns.keys()), name

            indexes = {index["name"] for index in inspector.get_indexes(name)}
            assert {index.name for index in table.indexes} <= indexes, name


def test_initial_migration_downgrade() -> None:
    """Test that downgrade removes the schema again."""
    revision = _load_revision("*_initial_schema_*.py")
    engine = create_engine("sqlite://")

    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            revision.upgrade()
            revision.downgrade()

        assert inspect(conn).get_table_names() == []
