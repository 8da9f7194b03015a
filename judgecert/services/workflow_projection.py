"""
Workflow status projection.

WorkflowStatus rows and Category.totals_certified are caches of ledger facts.
They are rebuilt here, on the caller's session and inside the caller's
transaction, after every ledger write. Nothing else writes them except bulk
reset, which clears them together with the ledger.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.core.conditional_insert import insert_if_absent
from judgecert.errors import NotFoundError, ErrorCode
from judgecert.orm.certification import (
    WorkflowStatus, WorkflowScope, WorkflowState, ContestCertification
)
from judgecert.orm.competition import Contest, Category
from judgecert.orm.user import UserRole
from judgecert.services import ledger_queries
from judgecert.state_machines.certification_stage import (
    CertificationStateMachine, CertificationStage, STAGE_STEP
)

logger = logging.getLogger(__name__)


def _state_for(stage: CertificationStage, any_progress: bool) -> WorkflowState:
    if stage == CertificationStage.LOCKED:
        return WorkflowState.COMPLETE
    if stage == CertificationStage.JUDGE and not any_progress:
        return WorkflowState.PENDING
    return WorkflowState.IN_PROGRESS


async def _status_row(
    db: AsyncSession,
    scope_type: WorkflowScope,
    scope_id: int,
    category_id: Optional[int],
    contest_id: Optional[int],
    event_id: Optional[int],
) -> WorkflowStatus:
    _, row = await insert_if_absent(
        db,
        WorkflowStatus,
        {
            "scope_type": scope_type,
            "scope_id": scope_id,
            "category_id": category_id,
            "contest_id": contest_id,
            "event_id": event_id,
        },
        ["scope_type", "scope_id"],
    )
    return row


async def refresh_category_workflow(db: AsyncSession, category_id: int) -> CertificationStage:
    """
    Recompute the category's WorkflowStatus row and totals_certified flag.

    Does not commit; the caller's transaction scope owns the write.

    Returns:
        The stage the category is in after the write
    """
    machine = CertificationStateMachine(db)
    facts = await machine.facts(category_id)
    stage = await machine.current_stage(category_id, facts)

    category = await db.get(Category, category_id)
    contest = await db.get(Contest, category.contest_id)

    row = await _status_row(
        db,
        WorkflowScope.CATEGORY,
        category_id,
        category_id=category_id,
        contest_id=contest.id if contest else None,
        event_id=contest.event_id if contest else None,
    )

    audit_rows = await ledger_queries.role_signoffs(db, category_id, [UserRole.AUDIT])
    audit = audit_rows[0] if audit_rows else None

    any_progress = facts.judge_signoffs > 0 or facts.tally_completed > 0
    values = {
        "status": _state_for(stage, any_progress),
        "current_step": STAGE_STEP[stage],
        "judge_certified": facts.judge_complete,
        "tally_certified": facts.can_certify,
        "audit_certified": facts.audit_certified,
        "board_approved": facts.board_approved,
        "certified_at": audit.certified_at if audit else None,
        "certified_by": audit.user_id if audit else None,
    }

    await db.execute(
        update(WorkflowStatus).where(WorkflowStatus.id == row.id).values(**values)
    )
    await db.execute(
        update(Category)
        .where(Category.id == category_id)
        .values(totals_certified=facts.can_certify)
    )

    logger.debug(
        f"Workflow projection for category {category_id}: {stage.value}",
        extra={"category_id": category_id, "stage": stage.value}
    )
    return stage


async def refresh_contest_workflow(db: AsyncSession, contest_id: int) -> WorkflowStatus:
    """Recompute the contest-scoped WorkflowStatus row from contest sign-offs."""
    contest = await db.get(Contest, contest_id)
    if contest is None:
        raise NotFoundError("Contest", contest_id, code=ErrorCode.CONTEST_NOT_FOUND)

    signed = set(
        (
            await db.execute(
                select(ContestCertification.role)
                .where(ContestCertification.contest_id == contest_id)
            )
        ).scalars().all()
    )

    category_ids = (
        await db.execute(select(Category.id).where(Category.contest_id == contest_id))
    ).scalars().all()
    machine = CertificationStateMachine(db)
    judge_certified = True
    for category_id in category_ids:
        if not (await machine.facts(category_id)).judge_complete:
            judge_certified = False
            break

    tally = UserRole.TALLY in signed
    audit = UserRole.AUDIT in signed
    board = bool(signed & {UserRole.BOARD, UserRole.ORGANIZER})
    stage_complete = [judge_certified, tally, audit, board]
    current_step = next(
        (i + 1 for i, done in enumerate(stage_complete) if not done),
        STAGE_STEP[CertificationStage.LOCKED]
    )

    if all(stage_complete):
        status = WorkflowState.COMPLETE
    elif signed:
        status = WorkflowState.IN_PROGRESS
    else:
        status = WorkflowState.PENDING

    row = await _status_row(
        db,
        WorkflowScope.CONTEST,
        contest_id,
        category_id=None,
        contest_id=contest_id,
        event_id=contest.event_id,
    )
    await db.execute(
        update(WorkflowStatus)
        .where(WorkflowStatus.id == row.id)
        .values(
            status=status,
            current_step=current_step,
            judge_certified=judge_certified,
            tally_certified=tally,
            audit_certified=audit,
            board_approved=board,
        )
    )
    return row
