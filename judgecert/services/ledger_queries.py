"""
Read-side queries over the certification ledger.

Shared by the ledger service and the stage evaluator so neither has to import
the other. Everything here is a plain read on the caller's session.
"""
from typing import Iterable, List, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.orm.certification import (
    JudgeContestantCertification, CategoryCertification
)
from judgecert.orm.competition import CategoryJudge, CategoryContestant
from judgecert.orm.score import Score
from judgecert.orm.user import UserRole


async def assigned_judge_count(db: AsyncSession, category_id: int) -> int:
    result = await db.execute(
        select(func.count(func.distinct(CategoryJudge.judge_id)))
        .where(CategoryJudge.category_id == category_id)
    )
    return result.scalar() or 0


async def assigned_contestant_count(db: AsyncSession, category_id: int) -> int:
    result = await db.execute(
        select(func.count(func.distinct(CategoryContestant.contestant_id)))
        .where(CategoryContestant.category_id == category_id)
    )
    return result.scalar() or 0


async def is_judge_assigned(db: AsyncSession, category_id: int, judge_id: int) -> bool:
    result = await db.execute(
        select(CategoryJudge.id).where(
            and_(
                CategoryJudge.category_id == category_id,
                CategoryJudge.judge_id == judge_id
            )
        )
    )
    return result.first() is not None


async def is_contestant_assigned(db: AsyncSession, category_id: int, contestant_id: int) -> bool:
    result = await db.execute(
        select(CategoryContestant.id).where(
            and_(
                CategoryContestant.category_id == category_id,
                CategoryContestant.contestant_id == contestant_id
            )
        )
    )
    return result.first() is not None


async def judge_signoff_count(db: AsyncSession, category_id: int) -> int:
    result = await db.execute(
        select(func.count(JudgeContestantCertification.id))
        .where(JudgeContestantCertification.category_id == category_id)
    )
    return result.scalar() or 0


async def role_signoffs(
    db: AsyncSession,
    category_id: int,
    roles: Iterable[UserRole]
) -> List[CategoryCertification]:
    """Category sign-offs from any of ``roles``, oldest first."""
    result = await db.execute(
        select(CategoryCertification)
        .where(
            and_(
                CategoryCertification.category_id == category_id,
                CategoryCertification.role.in_(list(roles))
            )
        )
        .order_by(CategoryCertification.certified_at, CategoryCertification.id)
    )
    return list(result.scalars().all())


async def criterion_score_counts(db: AsyncSession, category_id: int) -> Tuple[int, int]:
    """
    (total, uncertified) over scores that carry a criterion.

    Scores without a criterion are non-scoring artifacts and are ignored.
    """
    total = (
        await db.execute(
            select(func.count(Score.id)).where(
                and_(Score.category_id == category_id, Score.criterion_id.isnot(None))
            )
        )
    ).scalar() or 0
    uncertified = (
        await db.execute(
            select(func.count(Score.id)).where(
                and_(
                    Score.category_id == category_id,
                    Score.criterion_id.isnot(None),
                    Score.is_certified.is_(False)
                )
            )
        )
    ).scalar() or 0
    return total, uncertified


async def any_score_locked(db: AsyncSession, category_id: int) -> bool:
    result = await db.execute(
        select(Score.id).where(
            and_(Score.category_id == category_id, Score.is_locked.is_(True))
        ).limit(1)
    )
    return result.first() is not None
