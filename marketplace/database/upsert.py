"""
Dialect-specific INSERT ... ON CONFLICT constructs.

Both PostgreSQL and SQLite expose `on_conflict_do_nothing` /
`on_conflict_do_update` on their own `insert()`; the generic Core insert
does not.
"""

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.exceptions import UnsupportedDialectError

_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def upsert_insert(session: AsyncSession, table: Table):
    """Return the upsert-capable insert() for the session's database"""
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise UnsupportedDialectError(f"Upserts are not supported on {dialect}") from None
    return insert(table)
