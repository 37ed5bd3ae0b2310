from __future__ import annotations

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

# Per-transaction storage was replaced by summary columns on test_runs.
DEPRECATED_TABLES = ("test_transactions", "test_metrics")


def run_schema_migrations(engine: Engine) -> None:
    """Ensure legacy databases have the columns and tables the current models expect."""

    inspector = inspect(engine)
    table_names = set(inspector.get_table_names())
    stale_tables = [name for name in DEPRECATED_TABLES if name in table_names]
    if "test_runs" not in table_names and not stale_tables:
        return

    dialect = engine.dialect.name

    def _text_type(length: int) -> str:
        return "TEXT" if dialect == "sqlite" else f"VARCHAR({length})"

    def _float_type() -> str:
        return "FLOAT" if dialect == "sqlite" else "DOUBLE PRECISION"

    def _json_type() -> str:
        if dialect == "postgresql":
            return "JSONB"
        if dialect == "sqlite":
            return "TEXT"
        return "JSON"

    try:
        with engine.begin() as connection:
            if "test_runs" in table_names:
                columns = {col["name"] for col in inspector.get_columns("test_runs")}
                statements: list[str] = []
                post_statements: list[str] = []

                if "build_number" not in columns:
                    statements.append(
                        f"ALTER TABLE test_runs ADD COLUMN build_number {_text_type(100)} NULL"
                    )
                    post_statements.append(
                        "CREATE INDEX IF NOT EXISTS ix_test_runs_build_number ON test_runs (build_number)"
                    )
                if "median_response_time" not in columns:
                    statements.append(
                        f"ALTER TABLE test_runs ADD COLUMN median_response_time {_float_type()} NULL"
                    )
                if "rows_parsed" not in columns:
                    statements.append("ALTER TABLE test_runs ADD COLUMN rows_parsed INTEGER NULL")
                if "rows_skipped" not in columns:
                    statements.append("ALTER TABLE test_runs ADD COLUMN rows_skipped INTEGER NULL")
                if "capability_specific_data" not in columns:
                    statements.append(
                        f"ALTER TABLE test_runs ADD COLUMN capability_specific_data {_json_type()}"
                    )

                for statement in statements + post_statements:
                    logger.info("Applying migration: %s", statement)
                    connection.execute(text(statement))

            for table in stale_tables:
                statement = f"DROP TABLE IF EXISTS {table}"
                if dialect == "postgresql":
                    statement += " CASCADE"
                logger.info("Applying migration: %s", statement)
                connection.execute(text(statement))

    except SQLAlchemyError:
        logger.exception("Schema migration failed")
        raise
