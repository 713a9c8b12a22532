from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import Table, create_engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from finance_backend.config import DATABASE_URL
from finance_backend.schema import metadata

# Keeps multi-row VALUES under SQLite's bound-parameter limit.
UPSERT_CHUNK_SIZE = 100


def create_db_engine(database_url: str = DATABASE_URL) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)


def upsert(
    conn: Connection,
    table: Table,
    rows: Sequence[Mapping[str, Any]],
    index_elements: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """INSERT ... ON CONFLICT DO UPDATE keyed on a unique constraint.

    Concurrent writers of the same natural key converge on the last value
    instead of failing with a duplicate-key error.
    """
    if not rows:
        return
    if conn.dialect.name == "postgresql":
        insert_fn = pg_insert
    elif conn.dialect.name == "sqlite":
        insert_fn = sqlite_insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {conn.dialect.name}.")

    keys = list(index_elements)
    columns = list(update_columns)
    for offset in range(0, len(rows), UPSERT_CHUNK_SIZE):
        stmt = insert_fn(table).values(list(rows[offset : offset + UPSERT_CHUNK_SIZE]))
        stmt = stmt.on_conflict_do_update(
            index_elements=keys,
            set_={column: stmt.excluded[column] for column in columns},
        )
        conn.execute(stmt)
