# soulscore/database/upsert.py
"""
Dialect-aware INSERT ... ON CONFLICT helpers.

Per-user rows (scores, similarity cache) and the single population statistics
row can be written by concurrent workers; a plain select-then-insert would
race on the primary key. Both supported dialects (SQLite, PostgreSQL) have
native ON CONFLICT clauses.
"""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _insert(session: AsyncSession, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect: {dialect}")


async def upsert(
    session: AsyncSession,
    model,
    values: Dict[str, Any],
    index_elements: Iterable[str],
    update_fields: Optional[Iterable[str]] = None,
) -> None:
    """
    Insert a row or update the given fields of the conflicting row.

    Args:
        session: Database session (caller commits)
        model: Mapped class
        values: Column values for the insert
        index_elements: Columns of the conflicting unique key
        update_fields: Columns overwritten on conflict (default: all non-key values)
    """
    index_elements = list(index_elements)
    if update_fields is None:
        update_fields = [key for key in values if key not in index_elements]

    stmt = _insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={field: stmt.excluded[field] for field in update_fields},
    )
    await session.execute(stmt)
