"""
Insert-if-absent primitive.

Uniqueness of ledger rows is enforced by unique constraints, never by a
read-then-write check. The insert is issued as ``INSERT ... ON CONFLICT DO
NOTHING`` on dialects that support it, so two concurrent callers racing for
the same key get exactly one INSERTED and one ALREADY_PRESENT outcome.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


async def insert_if_absent(
    db: AsyncSession,
    model: Type[Any],
    values: Dict[str, Any],
    conflict_columns: Sequence[str],
) -> Tuple[InsertOutcome, Optional[Any]]:
    """
    Insert a row unless one already exists for ``conflict_columns``.

    ``conflict_columns`` must match a unique constraint on ``model``.

    Returns:
        (InsertOutcome.INSERTED, row) when this call created the row,
        (InsertOutcome.ALREADY_PRESENT, existing_row) otherwise.
    """
    key = {column: values[column] for column in conflict_columns}
    insert = _dialect_insert(db.get_bind().dialect.name)

    if insert is not None:
        stmt = (
            insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=list(conflict_columns))
        )
        result = await db.execute(stmt)
        outcome = InsertOutcome.INSERTED if result.rowcount else InsertOutcome.ALREADY_PRESENT
    else:
        # Other dialects: rely on the unique constraint inside a savepoint
        try:
            async with db.begin_nested():
                db.add(model(**values))
            outcome = InsertOutcome.INSERTED
        except IntegrityError:
            outcome = InsertOutcome.ALREADY_PRESENT

    row = (
        await db.execute(select(model).filter_by(**key))
    ).scalar_one_or_none()

    if outcome is InsertOutcome.ALREADY_PRESENT:
        logger.debug(f"{model.__tablename__} row already present for {key}")
    return outcome, row
