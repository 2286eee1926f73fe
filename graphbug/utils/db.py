"""
Dialect-aware INSERT ... ON CONFLICT helpers.

Production runs on PostgreSQL; tests run on SQLite. Both dialects support
``ON CONFLICT`` and ``RETURNING``, but the statement constructs live in
different modules, so the insert is built from the session's bind.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session


def dialect_insert(session: Session, table: Any):
    """Return the dialect-specific ``insert()`` construct for ``table``."""
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        return _pg_insert(table)

    from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

    return _sqlite_insert(table)


def upsert_returning(
    session: Session,
    table: Any,
    values: Dict[str, Any],
    index_elements: List[str],
    set_: Any,
    returning: Any,
):
    """
    Execute ``INSERT ... ON CONFLICT (index_elements) DO UPDATE`` as one statement.

    Args:
        session: Active session (not committed here)
        table: Mapped class or Table to insert into
        values: Column values for the insert
        index_elements: Columns of the unique constraint used for conflict detection
        set_: Builder ``(stmt) -> dict`` or dict of columns to update on conflict;
            a callable receives the insert statement so it can reference ``excluded``
        returning: Column to return

    Returns:
        The scalar value of ``returning`` for the inserted or updated row
    """
    stmt = dialect_insert(session, table).values(**values)
    update_values = set_(stmt) if callable(set_) else set_
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_=update_values,
    ).returning(returning)
    return session.execute(stmt).scalar_one()


def insert_ignore_returning(
    session: Session,
    table: Any,
    values: Dict[str, Any],
    index_elements: List[str],
    returning: Any,
) -> Optional[Any]:
    """
    Execute ``INSERT ... ON CONFLICT DO NOTHING``.

    Returns:
        The ``returning`` value when a row was inserted, None when it already existed
    """
    stmt = (
        dialect_insert(session, table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=index_elements)
        .returning(returning)
    )
    return session.execute(stmt).scalar_one_or_none()
