from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _insert_for(session: AsyncSession):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect: {dialect}")


async def insert_or_ignore(
    session: AsyncSession,
    model,
    values: dict,
    *,
    conflict_columns: list[str],
    returning,
):
    """Insert a row unless it collides on ``conflict_columns``.

    Returns the ``returning`` column of the new row, or None when the row
    already existed. The check and the insert are one statement.
    """
    insert = _insert_for(session)
    stmt = (
        insert(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(returning)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
