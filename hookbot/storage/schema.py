"""Apply the Alembic-style schema migrations over a plain psycopg connection."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import psycopg
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"
MIGRATIONS_PACKAGE = "hookbot.migrations"


class _PsycopgOperations:
    """Lightweight subset of Alembic's ``op`` helpers for psycopg connections."""

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn
        self._dialect = postgresql.dialect()
        self._preparer = self._dialect.identifier_preparer
        # Foreign keys only resolve against tables in the same MetaData.
        self._metadata = sa.MetaData()

    def create_table(self, name: str, *columns: Any, **kwargs: Any) -> None:
        table = sa.Table(name, self._metadata, *columns, **kwargs)
        self._execute(sa.schema.CreateTable(table, if_not_exists=True))

    def drop_table(self, name: str) -> None:
        table = sa.Table(name, self._metadata)
        self._execute(sa.schema.DropTable(table, if_exists=True))

    def create_index(
        self,
        name: str,
        table_name: str,
        columns: Sequence[str],
        *,
        unique: bool = False,
        **_: Any,
    ) -> None:
        column_sql = ", ".join(self._preparer.quote(col) for col in columns)
        unique_sql = "UNIQUE " if unique else ""
        statement = (
            f"CREATE {unique_sql}INDEX IF NOT EXISTS {self._preparer.quote(name)} "
            f"ON {self._preparer.quote(table_name)} ({column_sql})"
        )
        with self._conn.cursor() as cur:
            cur.execute(statement)

    def drop_index(self, name: str, **_: Any) -> None:
        with self._conn.cursor() as cur:
            cur.execute(f"DROP INDEX IF EXISTS {self._preparer.quote(name)}")

    def _execute(self, ddl: Any) -> None:
        compiled = ddl.compile(dialect=self._dialect)
        with self._conn.cursor() as cur:
            cur.execute(str(compiled))


def migration_ids(migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    return sorted(
        path.stem
        for path in migrations_dir.glob("[0-9][0-9][0-9]_*.py")
        if path.is_file()
    )


def ensure_schema(
    conn: psycopg.Connection, migrations_dir: Path = MIGRATIONS_DIR
) -> list[str]:
    """Run pending migrations in order; return the ids that were applied."""

    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS hookbot_migrations (
                id TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        cur.execute("SELECT id FROM hookbot_migrations")
        applied = {row[0] for row in cur.fetchall()}
    conn.commit()

    newly_applied: list[str] = []
    for migration_id in migration_ids(migrations_dir):
        if migration_id in applied:
            continue
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{migration_id}")
        original_op = getattr(module, "op", None)
        module.op = _PsycopgOperations(conn)
        try:
            module.upgrade()
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO hookbot_migrations (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
                    (migration_id,),
                )
        except Exception:
            conn.rollback()
            raise
        else:
            conn.commit()
            newly_applied.append(migration_id)
            logger.info("Applied migration %s", migration_id)
        finally:
            if original_op is not None:
                module.op = original_op
    return newly_applied
