"""
Certification Ledger Service

Records sign-off facts and reports progress from them.

Rules:
- Every sign-off is an insert-if-absent against a unique constraint, never a
  read-then-write check
- Judge, judge-category and review sign-offs are idempotent: repeating one
  returns the existing row with is_new=False
- Role sign-offs on a category or contest are one-shot: a repeat is a Conflict
- The workflow projection is refreshed in the same transaction as the write
- Notifications go out only after commit
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.core.conditional_insert import insert_if_absent, InsertOutcome
from judgecert.database import atomic
from judgecert.errors import (
    NotFoundError, ValidationError, ConflictError, ErrorCode
)
from judgecert.orm.certification import (
    JudgeContestantCertification, JudgeCertification, CategoryCertification,
    ContestCertification, ReviewCertification, ReviewType, SHARED_SIGNER_SLOT
)
from judgecert.orm.competition import Contest, Category
from judgecert.orm.score import Score
from judgecert.orm.user import UserRole
from judgecert.realtime.notifier import CertificationNotifier, get_notifier
from judgecert.security.rbac import (
    BOARD_EQUIVALENT_ROLES, CATEGORY_SIGNOFF_ROLES, CONTEST_SIGNOFF_ROLES,
    FINAL_CERTIFICATION_ROLE, MULTI_SIGNER_ROLES, REVIEW_ROLES,
    parse_role, require_role
)
from judgecert.services import ledger_queries
from judgecert.services.workflow_projection import (
    refresh_category_workflow, refresh_contest_workflow
)

logger = logging.getLogger(__name__)


async def _get_category(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
    return category


async def _require_judge_assigned(db: AsyncSession, category_id: int, judge_id: int) -> None:
    if not await ledger_queries.is_judge_assigned(db, category_id, judge_id):
        raise ValidationError(
            f"Judge {judge_id} is not assigned to category {category_id}",
            code=ErrorCode.NOT_ASSIGNED,
            details={"judge_id": judge_id, "category_id": category_id}
        )


async def _require_contestant_assigned(db: AsyncSession, category_id: int, contestant_id: int) -> None:
    if not await ledger_queries.is_contestant_assigned(db, category_id, contestant_id):
        raise ValidationError(
            f"Contestant {contestant_id} is not assigned to category {category_id}",
            code=ErrorCode.NOT_ASSIGNED,
            details={"contestant_id": contestant_id, "category_id": category_id}
        )


async def _notify(notifier: Optional[CertificationNotifier], category_id: int, stage) -> None:
    await (notifier or get_notifier()).certification_changed(category_id, stage.value)


# ================= JUDGE SIGN-OFFS =================

async def record_judge_contestant_signoff(
    db: AsyncSession,
    judge_id: int,
    contestant_id: int,
    category_id: int,
    user_id: Optional[int] = None,
    notifier: Optional[CertificationNotifier] = None
) -> Dict[str, Any]:
    """
    Record a judge's sign-off on one contestant's scores in a category.

    A new sign-off also certifies that judge's unlocked scores for the
    contestant. Repeating the call is a no-op.

    Raises:
        NotFoundError: If the category does not exist
        ValidationError: If the judge or contestant is not assigned to it
    """
    await _get_category(db, category_id)
    await _require_judge_assigned(db, category_id, judge_id)
    await _require_contestant_assigned(db, category_id, contestant_id)

    now = datetime.utcnow()
    scores_certified = 0
    stage = None

    async with atomic(db):
        outcome, row = await insert_if_absent(
            db,
            JudgeContestantCertification,
            {
                "judge_id": judge_id,
                "contestant_id": contestant_id,
                "category_id": category_id,
                "user_id": user_id,
                "certified_at": now,
            },
            ["judge_id", "contestant_id", "category_id"],
        )

        if outcome is InsertOutcome.INSERTED:
            result = await db.execute(
                update(Score)
                .where(
                    and_(
                        Score.category_id == category_id,
                        Score.judge_id == judge_id,
                        Score.contestant_id == contestant_id,
                        Score.is_locked.is_(False),
                        Score.is_certified.is_(False)
                    )
                )
                .values(is_certified=True, certified_at=now, certified_by=user_id)
            )
            scores_certified = result.rowcount or 0
            stage = await refresh_category_workflow(db, category_id)

    if stage is not None:
        logger.info(
            f"Judge {judge_id} signed off contestant {contestant_id} in category {category_id}",
            extra={
                "category_id": category_id,
                "judge_id": judge_id,
                "contestant_id": contestant_id,
                "scores_certified": scores_certified,
            }
        )
        await _notify(notifier, category_id, stage)

    return {
        "id": row.id,
        "judge_id": row.judge_id,
        "contestant_id": row.contestant_id,
        "category_id": row.category_id,
        "certified_at": row.certified_at.isoformat() if row.certified_at else None,
        "is_new": outcome is InsertOutcome.INSERTED,
        "scores_certified": scores_certified,
    }


async def record_judge_category_signoff(
    db: AsyncSession,
    judge_id: int,
    category_id: int,
    user_id: Optional[int] = None
) -> Dict[str, Any]:
    """Record a judge's sign-off on the whole category. Idempotent."""
    await _get_category(db, category_id)
    await _require_judge_assigned(db, category_id, judge_id)

    async with atomic(db):
        outcome, row = await insert_if_absent(
            db,
            JudgeCertification,
            {
                "judge_id": judge_id,
                "category_id": category_id,
                "user_id": user_id,
                "certified_at": datetime.utcnow(),
            },
            ["judge_id", "category_id"],
        )

    if outcome is InsertOutcome.INSERTED:
        logger.info(
            f"Judge {judge_id} certified category {category_id}",
            extra={"category_id": category_id, "judge_id": judge_id}
        )

    return {
        "id": row.id,
        "judge_id": row.judge_id,
        "category_id": row.category_id,
        "is_new": outcome is InsertOutcome.INSERTED,
    }


# ================= REVIEW SIGN-OFFS =================

async def record_review_signoff(
    db: AsyncSession,
    category_id: int,
    review_type: ReviewType,
    subject_id: int,
    role: str,
    reviewer_id: Optional[int] = None
) -> Dict[str, Any]:
    """
    Record a reviewer's sign-off on one contestant's results or one judge's
    score sheet. Idempotent per (category, review type, subject, role).

    Raises:
        ForbiddenError: If ``role`` may not review
        NotFoundError: If the category does not exist
        ValidationError: If the subject is not assigned to the category
    """
    require_role(role, REVIEW_ROLES, "review certification results")
    await _get_category(db, category_id)

    review_type = ReviewType(review_type)
    if review_type == ReviewType.CONTESTANT:
        await _require_contestant_assigned(db, category_id, subject_id)
    else:
        await _require_judge_assigned(db, category_id, subject_id)

    async with atomic(db):
        outcome, row = await insert_if_absent(
            db,
            ReviewCertification,
            {
                "category_id": category_id,
                "review_type": review_type,
                "subject_id": subject_id,
                "role": parse_role(role),
                "reviewer_id": reviewer_id,
                "certified_at": datetime.utcnow(),
            },
            ["category_id", "review_type", "subject_id", "role"],
        )

    return {
        "id": row.id,
        "category_id": row.category_id,
        "review_type": row.review_type.value,
        "subject_id": row.subject_id,
        "role": row.role.value,
        "is_new": outcome is InsertOutcome.INSERTED,
    }


# ================= ROLE SIGN-OFFS =================

async def record_role_signoff(
    db: AsyncSession,
    category_id: int,
    role: str,
    user_id: int,
    comments: Optional[str] = None,
    notifier: Optional[CertificationNotifier] = None
) -> CategoryCertification:
    """
    Record a role's sign-off on a category.

    TALLY signs once per user; every other role signs once per category.

    Raises:
        ValidationError: For an unknown role, or AUDIT (final certification only)
        ForbiddenError: If ``role`` may not sign off a category
        NotFoundError: If the category does not exist
        ConflictError: If this sign-off already exists
    """
    user_role = parse_role(role)
    if user_role == FINAL_CERTIFICATION_ROLE:
        raise ValidationError(
            "Audit sign-off is recorded through final certification",
            code=ErrorCode.FINAL_CERTIFICATION_REQUIRED,
            details={"category_id": category_id}
        )
    require_role(user_role, CATEGORY_SIGNOFF_ROLES, "sign off this category")
    await _get_category(db, category_id)

    signer_slot = user_id if user_role in MULTI_SIGNER_ROLES else SHARED_SIGNER_SLOT

    async with atomic(db):
        outcome, row = await insert_if_absent(
            db,
            CategoryCertification,
            {
                "category_id": category_id,
                "role": user_role,
                "user_id": user_id,
                "signer_slot": signer_slot,
                "comments": comments,
                "certified_at": datetime.utcnow(),
            },
            ["category_id", "role", "signer_slot"],
        )
        if outcome is InsertOutcome.ALREADY_PRESENT:
            logger.warning(
                f"Duplicate {user_role.value} sign-off for category {category_id}",
                extra={"category_id": category_id, "user_id": user_id}
            )
            raise ConflictError(
                "Category already certified for this role",
                code=ErrorCode.DUPLICATE_SIGNOFF,
                details={"category_id": category_id, "role": user_role.value}
            )
        stage = await refresh_category_workflow(db, category_id)

    logger.info(
        f"{user_role.value} signed off category {category_id}",
        extra={"category_id": category_id, "user_id": user_id, "stage": stage.value}
    )
    await _notify(notifier, category_id, stage)
    return row


async def record_contest_signoff(
    db: AsyncSession,
    contest_id: int,
    role: str,
    user_id: int,
    comments: Optional[str] = None
) -> ContestCertification:
    """
    Record a role's sign-off on a whole contest; once per (contest, role).

    Raises:
        ForbiddenError: If ``role`` may not sign off a contest
        NotFoundError: If the contest does not exist
        ConflictError: If the role already signed off this contest
    """
    require_role(role, CONTEST_SIGNOFF_ROLES, "sign off this contest")
    user_role = parse_role(role)

    contest = await db.get(Contest, contest_id)
    if contest is None:
        raise NotFoundError("Contest", contest_id, code=ErrorCode.CONTEST_NOT_FOUND)

    async with atomic(db):
        outcome, row = await insert_if_absent(
            db,
            ContestCertification,
            {
                "contest_id": contest_id,
                "role": user_role,
                "user_id": user_id,
                "comments": comments,
                "certified_at": datetime.utcnow(),
            },
            ["contest_id", "role"],
        )
        if outcome is InsertOutcome.ALREADY_PRESENT:
            raise ConflictError(
                "Contest already certified for this role",
                code=ErrorCode.DUPLICATE_SIGNOFF,
                details={"contest_id": contest_id, "role": user_role.value}
            )
        await refresh_contest_workflow(db, contest_id)

    logger.info(
        f"{user_role.value} signed off contest {contest_id}",
        extra={"contest_id": contest_id, "user_id": user_id}
    )
    return row


# ================= PROGRESS =================

def _role_progress(rows) -> Dict[str, Any]:
    return {
        "is_category_certified": bool(rows),
        "signoffs": [row.to_dict() for row in rows],
    }


async def certification_progress(db: AsyncSession, category_id: int) -> Dict[str, Any]:
    """
    Sign-off progress for each stage of a category.

    ``judge_progress.is_category_certified`` is an exact-count comparison of
    judge-contestant sign-offs against contestants x judges.

    Raises:
        NotFoundError: If the category does not exist
    """
    await _get_category(db, category_id)

    total_contestants = await ledger_queries.assigned_contestant_count(db, category_id)
    total_judges = await ledger_queries.assigned_judge_count(db, category_id)
    certified = await ledger_queries.judge_signoff_count(db, category_id)
    expected = total_contestants * total_judges

    tally = await ledger_queries.role_signoffs(db, category_id, [UserRole.TALLY])
    audit = await ledger_queries.role_signoffs(db, category_id, [FINAL_CERTIFICATION_ROLE])
    board = await ledger_queries.role_signoffs(db, category_id, BOARD_EQUIVALENT_ROLES)

    return {
        "category_id": category_id,
        "judge_progress": {
            "contestants_certified": certified,
            "total_contestants": total_contestants,
            "total_judges": total_judges,
            "expected_signoffs": expected,
            "is_category_certified": certified == expected,
        },
        "tally_progress": _role_progress(tally),
        "audit_progress": _role_progress(audit),
        "board_progress": _role_progress(board),
    }


async def contest_certification_progress(db: AsyncSession, contest_id: int) -> Dict[str, Any]:
    """Per-role contest sign-off booleans."""
    contest = await db.get(Contest, contest_id)
    if contest is None:
        raise NotFoundError("Contest", contest_id, code=ErrorCode.CONTEST_NOT_FOUND)

    rows = (
        await db.execute(
            select(ContestCertification)
            .where(ContestCertification.contest_id == contest_id)
            .order_by(ContestCertification.certified_at, ContestCertification.id)
        )
    ).scalars().all()
    signed = {row.role for row in rows}

    return {
        "contest_id": contest.id,
        "contest_name": contest.name,
        "tally": UserRole.TALLY in signed,
        "audit": UserRole.AUDIT in signed,
        "board": UserRole.BOARD in signed,
        "organizer": UserRole.ORGANIZER in signed,
        "all_certified": all(role in signed for role in CONTEST_SIGNOFF_ROLES),
        "certifications": [row.to_dict() for row in rows],
    }
