"""
Bulk Certification Reset Service

Rolls certification back for a category, a contest, an event or the whole
system. Administrative only.

Flow:
1. Role check (ADMIN, ORGANIZER, BOARD), before anything else
2. Exactly one scope discriminator must be supplied
3. Scope resolution: parent entity lookup, then the category id set
4. One transaction clears every ledger family, the workflow caches and the
   score flags for that set, and a category reset re-derives its parent
   contest's workflow flags; any failure rolls all of it back
5. certification.changed (stage JUDGE) for each category, after commit
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.config.feature_flags import FeatureFlags
from judgecert.database import atomic
from judgecert.errors import NotFoundError, ValidationError, ErrorCode
from judgecert.orm.certification import (
    JudgeContestantCertification, JudgeCertification, CategoryCertification,
    ContestCertification, ReviewCertification, WorkflowStatus, WorkflowState
)
from judgecert.orm.competition import Event, Contest, Category
from judgecert.orm.score import Score
from judgecert.realtime.notifier import CertificationNotifier, get_notifier
from judgecert.schemas.certification import ResetScope
from judgecert.security.rbac import RESET_ROLES, RoleLike, require_role, role_name
from judgecert.services.workflow_projection import refresh_contest_workflow
from judgecert.state_machines.certification_stage import CertificationStage

logger = logging.getLogger(__name__)

# Families keyed by category; cleared at every scope
CATEGORY_LEDGER_MODELS = (
    CategoryCertification,
    JudgeCertification,
    JudgeContestantCertification,
    ReviewCertification,
)

SCOPE_MESSAGES = {
    "global": "system-wide",
    "event": "for event",
    "contest": "for contest",
    "category": "for category",
}


@dataclass
class ResolvedScope:
    """Concrete id sets a reset applies to."""
    level: str
    category_ids: List[int] = field(default_factory=list)
    contest_ids: List[int] = field(default_factory=list)
    event_ids: List[int] = field(default_factory=list)
    parent_contest_ids: List[int] = field(default_factory=list)

    @property
    def is_global(self) -> bool:
        return self.level == "global"


def _validate_scope(scope: ResetScope) -> str:
    supplied = scope.supplied()
    if not supplied:
        raise ValidationError(
            "Either event_id, contest_id, category_id, or reset_all must be provided",
            code=ErrorCode.MISSING_SCOPE
        )
    if len(supplied) > 1:
        raise ValidationError(
            "Only one reset scope may be provided",
            code=ErrorCode.AMBIGUOUS_SCOPE,
            details={"supplied": supplied}
        )
    return supplied[0]


async def resolve_scope(db: AsyncSession, scope: ResetScope) -> ResolvedScope:
    """
    Map a reset scope onto the categories (and parent contests/events) it covers.

    Raises:
        ValidationError: If not exactly one discriminator is supplied
        NotFoundError: If the referenced category/contest/event does not exist
    """
    discriminator = _validate_scope(scope)

    if discriminator == "reset_all":
        category_ids = (await db.execute(select(Category.id))).scalars().all()
        return ResolvedScope(level="global", category_ids=list(category_ids))

    if discriminator == "category_id":
        category = await db.get(Category, scope.category_id)
        if category is None:
            raise NotFoundError("Category", scope.category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
        return ResolvedScope(
            level="category",
            category_ids=[category.id],
            parent_contest_ids=[category.contest_id],
        )

    if discriminator == "contest_id":
        contest = await db.get(Contest, scope.contest_id)
        if contest is None:
            raise NotFoundError("Contest", scope.contest_id, code=ErrorCode.CONTEST_NOT_FOUND)
        category_ids = (
            await db.execute(select(Category.id).where(Category.contest_id == contest.id))
        ).scalars().all()
        return ResolvedScope(
            level="contest",
            category_ids=list(category_ids),
            contest_ids=[contest.id],
        )

    event = await db.get(Event, scope.event_id)
    if event is None:
        raise NotFoundError("Event", scope.event_id, code=ErrorCode.EVENT_NOT_FOUND)
    contest_ids = list(
        (await db.execute(select(Contest.id).where(Contest.event_id == event.id))).scalars().all()
    )
    category_ids = (
        await db.execute(select(Category.id).where(Category.contest_id.in_(contest_ids)))
    ).scalars().all()
    return ResolvedScope(
        level="event",
        category_ids=list(category_ids),
        contest_ids=contest_ids,
        event_ids=[event.id],
    )


async def _delete(db: AsyncSession, model, criterion) -> int:
    stmt = delete(model)
    if criterion is not None:
        stmt = stmt.where(criterion)
    result = await db.execute(stmt)
    return result.rowcount or 0


async def _update(db: AsyncSession, model, criterion, values: Dict[str, Any]) -> None:
    stmt = update(model).values(**values)
    if criterion is not None:
        stmt = stmt.where(criterion)
    await db.execute(stmt)


async def clear_ledger(db: AsyncSession, resolved: ResolvedScope) -> int:
    """
    Clear certification state for a resolved scope on the caller's transaction.

    Returns:
        Number of ledger rows deleted across all record families
    """
    ids = resolved.category_ids

    def by_category(column):
        return None if resolved.is_global else column.in_(ids)

    reset_count = 0
    for model in CATEGORY_LEDGER_MODELS:
        reset_count += await _delete(db, model, by_category(model.category_id))

    # Contest sign-offs only go away when a whole contest is in scope
    if resolved.level != "category":
        contest_criterion = (
            None if resolved.is_global
            else ContestCertification.contest_id.in_(resolved.contest_ids)
        )
        reset_count += await _delete(db, ContestCertification, contest_criterion)

    workflow_criterion = None
    if not resolved.is_global:
        workflow_criterion = or_(
            WorkflowStatus.category_id.in_(ids),
            WorkflowStatus.contest_id.in_(resolved.contest_ids),
            WorkflowStatus.event_id.in_(resolved.event_ids),
        )
    await _update(db, WorkflowStatus, workflow_criterion, {
        "status": WorkflowState.PENDING,
        "current_step": 1,
        "judge_certified": False,
        "tally_certified": False,
        "audit_certified": False,
        "board_approved": False,
        "certified_at": None,
        "certified_by": None,
        "rejection_reason": None,
        "comments": None,
    })

    score_values = {"is_certified": False, "certified_at": None, "certified_by": None}
    if FeatureFlags.FEATURE_RESET_UNLOCKS_SCORES:
        score_values.update({"is_locked": False, "locked_at": None})
    await _update(db, Score, by_category(Score.category_id), score_values)

    await _update(db, Category, by_category(Category.id), {"totals_certified": False})

    # The parent contest keeps its sign-offs; its cached flags follow the category
    for contest_id in resolved.parent_contest_ids:
        await refresh_contest_workflow(db, contest_id)

    return reset_count


async def reset_certifications(
    db: AsyncSession,
    scope: Union[ResetScope, Dict[str, Any]],
    caller_role: RoleLike,
    notifier: Optional[CertificationNotifier] = None
) -> Dict[str, Any]:
    """
    Reset certifications for one scope.

    Args:
        db: Database session
        scope: Exactly one of category_id, contest_id, event_id, reset_all
        caller_role: Role string from the caller's authenticated session

    Returns:
        {"reset_count", "message", "scope", "category_ids"}

    Raises:
        ForbiddenError: If the caller may not reset (checked first)
        ValidationError: If not exactly one scope is supplied
        NotFoundError: If the scoped entity does not exist
    """
    require_role(caller_role, RESET_ROLES, "reset certifications")

    if not isinstance(scope, ResetScope):
        scope = ResetScope.model_validate(scope)

    resolved = await resolve_scope(db, scope)

    try:
        async with atomic(db):
            reset_count = await clear_ledger(db, resolved)
    except SQLAlchemyError:
        logger.exception(
            f"Certification reset failed ({resolved.level})",
            extra={"scope": resolved.level, "category_ids": resolved.category_ids}
        )
        raise

    message = f"Reset {reset_count} certification records {SCOPE_MESSAGES[resolved.level]}"
    logger.info(
        message,
        extra={
            "scope": resolved.level,
            "category_ids": resolved.category_ids,
            "reset_count": reset_count,
            "caller_role": role_name(caller_role),
        }
    )

    notifier = notifier or get_notifier()
    for category_id in resolved.category_ids:
        await notifier.certification_changed(category_id, CertificationStage.JUDGE.value)

    return {
        "reset_count": reset_count,
        "message": message,
        "scope": resolved.level,
        "category_ids": resolved.category_ids,
    }
