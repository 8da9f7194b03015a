"""
Final Certification Service

The single irreversible transition: an AUDIT user, with both confirmations,
signs off a category whose tally stage is complete and whose criterion scores
are all certified. Every score in the category is then locked.

Security:
- The caller's role is read from the persisted User row, not supplied
- The audit sign-off is an insert-if-absent, so a concurrent double submit
  yields exactly one success and one Conflict
- Checks, insert, score locking and the projection refresh share one
  transaction; notification happens after commit
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.core.conditional_insert import insert_if_absent, InsertOutcome
from judgecert.database import atomic
from judgecert.errors import (
    ValidationError, ConflictError, ForbiddenError, ErrorCode
)
from judgecert.orm.certification import CategoryCertification, SHARED_SIGNER_SLOT
from judgecert.orm.score import Score
from judgecert.orm.user import User
from judgecert.realtime.notifier import CertificationNotifier, get_notifier
from judgecert.schemas.certification import FinalCertificationConfirmation
from judgecert.security.rbac import FINAL_CERTIFICATION_ROLE, has_role
from judgecert.services.workflow_projection import refresh_category_workflow
from judgecert.state_machines.certification_stage import CertificationStateMachine

logger = logging.getLogger(__name__)


def prevent_score_modification(score: Score) -> None:
    """
    Guard for any code path about to change a score.

    Raises:
        ConflictError: If the score has been locked by final certification
    """
    if score.is_locked:
        raise ConflictError(
            "Score is locked by final certification and cannot be modified",
            code=ErrorCode.SCORE_LOCKED,
            details={"score_id": score.id, "category_id": score.category_id}
        )


def _ensure_confirmed(
    confirmations: Union[FinalCertificationConfirmation, Dict[str, Any], None]
) -> None:
    if confirmations is None:
        confirmations = FinalCertificationConfirmation()
    elif not isinstance(confirmations, FinalCertificationConfirmation):
        try:
            confirmations = FinalCertificationConfirmation.model_validate(confirmations)
        except PydanticValidationError:
            confirmations = FinalCertificationConfirmation()

    if not confirmations.is_confirmed:
        raise ValidationError(
            "Both confirmations are required",
            code=ErrorCode.CONFIRMATION_REQUIRED
        )


async def _check_prerequisites(db: AsyncSession, category_id: int) -> Dict[str, Any]:
    status = await CertificationStateMachine(db).final_certification_status(category_id)

    if status["already_certified"]:
        raise ConflictError(
            "Final certification has already been completed for this category",
            code=ErrorCode.ALREADY_CERTIFIED,
            details={"category_id": category_id}
        )

    if not status["can_certify"]:
        raise ValidationError(
            "Not all required certifications are complete",
            code=ErrorCode.PREREQUISITE_NOT_MET,
            details={"tally_certifications": {
                k: v for k, v in status["tally_certifications"].items() if k != "certifications"
            }}
        )

    if status["score_status"]["uncertified"] > 0:
        raise ValidationError(
            "Not all scores have been certified yet",
            code=ErrorCode.SCORES_NOT_CERTIFIED,
            details={"score_status": status["score_status"]}
        )

    return status


async def _require_auditor(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None or not has_role(user.role, [FINAL_CERTIFICATION_ROLE]):
        logger.warning(
            f"User {user_id} denied final certification",
            extra={"user_id": user_id}
        )
        raise ForbiddenError(
            "Only AUDIT role can submit final certification",
            code=ErrorCode.ROLE_NOT_PERMITTED,
            details={"user_id": user_id}
        )
    return user


async def submit_final_certification(
    db: AsyncSession,
    category_id: int,
    user_id: int,
    confirmations: Union[FinalCertificationConfirmation, Dict[str, Any], None],
    notifier: Optional[CertificationNotifier] = None
) -> CategoryCertification:
    """
    Submit the final certification for a category and lock its scores.

    Args:
        db: Database session
        category_id: Category to certify
        user_id: Submitting user; must hold the AUDIT role
        confirmations: confirmation1 and confirmation2, both truthy

    Returns:
        The created audit CategoryCertification

    Raises:
        ValidationError: Missing confirmation or unmet prerequisites
        NotFoundError: If the category does not exist
        ConflictError: If the category is already certified
        ForbiddenError: If the user is not an auditor
    """
    _ensure_confirmed(confirmations)
    await _check_prerequisites(db, category_id)
    await _require_auditor(db, user_id)

    now = datetime.utcnow()
    try:
        async with atomic(db):
            outcome, certification = await insert_if_absent(
                db,
                CategoryCertification,
                {
                    "category_id": category_id,
                    "role": FINAL_CERTIFICATION_ROLE,
                    "user_id": user_id,
                    "signer_slot": SHARED_SIGNER_SLOT,
                    "certified_at": now,
                },
                ["category_id", "role", "signer_slot"],
            )
            if outcome is InsertOutcome.ALREADY_PRESENT:
                raise ConflictError(
                    "Final certification has already been completed for this category",
                    code=ErrorCode.ALREADY_CERTIFIED,
                    details={"category_id": category_id}
                )

            await db.execute(
                update(Score)
                .where(Score.category_id == category_id)
                .values(is_locked=True, locked_at=now)
            )
            certified = await db.execute(
                update(Score)
                .where(
                    and_(
                        Score.category_id == category_id,
                        Score.is_certified.is_(False)
                    )
                )
                .values(is_certified=True, certified_at=now, certified_by=user_id)
            )
            stage = await refresh_category_workflow(db, category_id)
    except SQLAlchemyError:
        logger.exception(
            f"Final certification failed for category {category_id}",
            extra={"category_id": category_id, "user_id": user_id}
        )
        raise

    logger.info(
        f"Final certification completed for category {category_id}",
        extra={
            "category_id": category_id,
            "user_id": user_id,
            "scores_certified": certified.rowcount or 0,
        }
    )
    await (notifier or get_notifier()).certification_changed(category_id, stage.value)
    return certification
