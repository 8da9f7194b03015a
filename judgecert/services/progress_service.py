"""
Scoring Progress Service

Read-only completion percentages for judge scoring at category and contest
scope. Percentages are whole numbers rounded half-up; an empty denominator
yields 0 rather than an error.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.errors import NotFoundError, ErrorCode
from judgecert.orm.competition import (
    Event, Contest, Category, Judge, CategoryJudge, CategoryContestant
)
from judgecert.orm.score import Score

logger = logging.getLogger(__name__)

QUANTIZER_PERCENT = Decimal("1")


def completion_percentage(done: int, expected: int) -> int:
    """round(100 * done / expected), half-up; 0 when nothing is expected."""
    if not expected:
        return 0
    ratio = Decimal(100) * Decimal(done) / Decimal(expected)
    return int(ratio.quantize(QUANTIZER_PERCENT, rounding=ROUND_HALF_UP))


def average_percentage(values: List[int]) -> int:
    """Unweighted mean of whole percentages, rounded half-up; 0 for no values."""
    if not values:
        return 0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return int(mean.quantize(QUANTIZER_PERCENT, rounding=ROUND_HALF_UP))


async def _count(db: AsyncSession, stmt) -> int:
    return (await db.execute(stmt)).scalar() or 0


async def _category_counts(db: AsyncSession, category_id: int) -> Dict[str, int]:
    total_contestants = await _count(
        db,
        select(func.count(CategoryContestant.id))
        .where(CategoryContestant.category_id == category_id)
    )
    total_judges = await _count(
        db,
        select(func.count(CategoryJudge.id))
        .where(CategoryJudge.category_id == category_id)
    )
    total_scores = await _count(
        db,
        select(func.count(Score.id)).where(Score.category_id == category_id)
    )
    expected_scores = total_contestants * total_judges
    return {
        "total_contestants": total_contestants,
        "total_judges": total_judges,
        "total_scores": total_scores,
        "expected_scores": expected_scores,
        "completion_percentage": completion_percentage(total_scores, expected_scores),
    }


async def category_scoring_progress(db: AsyncSession, category_id: int) -> Dict[str, Any]:
    """
    Scoring progress for one category.

    Raises:
        NotFoundError: If the category does not exist
    """
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)

    return {
        "category_id": category.id,
        "category_name": category.name,
        **await _category_counts(db, category.id),
    }


async def _judge_breakdown(
    db: AsyncSession,
    category_id: int,
    total_contestants: int
) -> List[Dict[str, Any]]:
    judges = (
        await db.execute(
            select(Judge)
            .join(CategoryJudge, CategoryJudge.judge_id == Judge.id)
            .where(CategoryJudge.category_id == category_id)
            .order_by(Judge.id)
        )
    ).scalars().unique().all()

    score_counts = dict(
        (
            await db.execute(
                select(Score.judge_id, func.count(Score.id))
                .where(Score.category_id == category_id)
                .group_by(Score.judge_id)
            )
        ).all()
    )

    return [
        {
            "judge_id": judge.id,
            "judge_name": judge.name or "Unknown",
            "completed": score_counts.get(judge.id, 0),
            "total": total_contestants,
            "completion_percentage": completion_percentage(
                score_counts.get(judge.id, 0), total_contestants
            ),
        }
        for judge in judges
    ]


async def contest_scoring_progress(db: AsyncSession, contest_id: int) -> Dict[str, Any]:
    """
    Scoring progress for every category in a contest, with a per-judge breakdown.

    ``overall_completion`` is the unweighted average of the category percentages.

    Raises:
        NotFoundError: If the contest does not exist
    """
    contest = await db.get(Contest, contest_id)
    if contest is None:
        raise NotFoundError("Contest", contest_id, code=ErrorCode.CONTEST_NOT_FOUND)
    event = await db.get(Event, contest.event_id)

    categories = (
        await db.execute(
            select(Category).where(Category.contest_id == contest.id).order_by(Category.id)
        )
    ).scalars().all()

    breakdown = []
    for category in categories:
        counts = await _category_counts(db, category.id)
        breakdown.append({
            "category_id": category.id,
            "category_name": category.name,
            **counts,
            "judges": await _judge_breakdown(db, category.id, counts["total_contestants"]),
        })

    overall = average_percentage([c["completion_percentage"] for c in breakdown])
    logger.debug(f"Contest {contest_id} scoring progress: {overall}% across {len(breakdown)} categories")

    return {
        "contest_id": contest.id,
        "contest_name": contest.name,
        "event_name": event.name if event else None,
        "categories": breakdown,
        "overall_completion": overall,
    }
