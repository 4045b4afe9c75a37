"""
Database helpers shared by the ledgers.
"""
from sqlalchemy.dialects import postgresql, sqlite

from billing_engine.extensions import db

_INSERT_BUILDERS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


def insert_ignore(model, index_elements, **values):
    """Atomically insert a row unless one with the same key already exists.

    Emits ``INSERT ... ON CONFLICT (index_elements) DO NOTHING`` on the
    current session, so the statement joins the caller's transaction.

    Args:
        model: Mapped model class
        index_elements: Column names forming the unique key
        **values: Column values for the new row

    Returns:
        bool: True if this call inserted the row, False if it already existed
    """
    dialect = db.engine.dialect.name
    try:
        builder = _INSERT_BUILDERS[dialect]
    except KeyError:
        raise NotImplementedError(f'insert_ignore is not supported on {dialect}')

    stmt = builder(model).values(**values).on_conflict_do_nothing(
        index_elements=index_elements,
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1
