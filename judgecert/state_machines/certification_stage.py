"""
Certification Stage Gate

Derives where a category sits in the sign-off sequence from ledger facts:

    JUDGE -> TALLY -> AUDIT -> BOARD -> LOCKED

Nothing here is stored. The stage is recomputed from JudgeContestantCertification,
CategoryCertification and Score rows on every call; WorkflowStatus only caches
the result.

Two completeness rules coexist on purpose:
- judge stage: signoff count == contestants x judges (exact)
- tally stage: tally signoffs >= assigned judges (threshold)
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from judgecert.errors import NotFoundError, ErrorCode
from judgecert.orm.competition import Category
from judgecert.orm.user import UserRole
from judgecert.security.rbac import BOARD_EQUIVALENT_ROLES, FINAL_CERTIFICATION_ROLE
from judgecert.services import ledger_queries

logger = logging.getLogger(__name__)


class CertificationStage(str, Enum):
    """Workflow stages in sign-off order."""
    JUDGE = "JUDGE"
    TALLY = "TALLY"
    AUDIT = "AUDIT"
    BOARD = "BOARD"
    LOCKED = "LOCKED"


STAGE_ORDER: List[CertificationStage] = [
    CertificationStage.JUDGE,
    CertificationStage.TALLY,
    CertificationStage.AUDIT,
    CertificationStage.BOARD,
]

STAGE_STEP: Dict[CertificationStage, int] = {
    CertificationStage.JUDGE: 1,
    CertificationStage.TALLY: 2,
    CertificationStage.AUDIT: 3,
    CertificationStage.BOARD: 4,
    CertificationStage.LOCKED: 5,
}

# Label for the furthest stage reached
OVERALL_STATUS: Dict[CertificationStage, str] = {
    CertificationStage.JUDGE: "PENDING",
    CertificationStage.TALLY: "JUDGE_CERTIFIED",
    CertificationStage.AUDIT: "TALLY_CERTIFIED",
    CertificationStage.BOARD: "AUDIT_CERTIFIED",
    CertificationStage.LOCKED: "APPROVED",
}


@dataclass
class StageFacts:
    """Ledger facts for one category, as read in a single pass."""
    category_id: int
    category_name: str
    total_judges: int
    total_contestants: int
    judge_signoffs: int
    tally_completed: int
    audit_certified: bool
    board_approved: bool
    scores_total: int
    scores_uncertified: int
    scores_locked: bool

    @property
    def expected_judge_signoffs(self) -> int:
        return self.total_contestants * self.total_judges

    @property
    def judge_complete(self) -> bool:
        return self.judge_signoffs == self.expected_judge_signoffs

    @property
    def can_certify(self) -> bool:
        return self.tally_completed >= self.total_judges

    def completion(self) -> Dict[CertificationStage, bool]:
        return {
            CertificationStage.JUDGE: self.judge_complete,
            CertificationStage.TALLY: self.can_certify,
            CertificationStage.AUDIT: self.audit_certified,
            CertificationStage.BOARD: self.board_approved,
        }


def derive_stage(
    judge_complete: bool,
    tally_complete: bool,
    audit_complete: bool,
    board_complete: bool
) -> CertificationStage:
    """
    First stage in sequence that is not yet complete, or LOCKED when every
    stage is.
    """
    flags = [judge_complete, tally_complete, audit_complete, board_complete]
    for stage, complete in zip(STAGE_ORDER, flags):
        if not complete:
            return stage
    return CertificationStage.LOCKED


class CertificationStateMachine:
    """
    Stage gate evaluator for a category.

    Read-only: sign-offs are recorded by the ledger, and the only transition
    that locks anything is final certification.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_category(self, category_id: int) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
        return category

    async def facts(self, category_id: int) -> StageFacts:
        category = await self._get_category(category_id)
        db = self.db

        tally_rows = await ledger_queries.role_signoffs(db, category_id, [UserRole.TALLY])
        audit_rows = await ledger_queries.role_signoffs(db, category_id, [FINAL_CERTIFICATION_ROLE])
        board_rows = await ledger_queries.role_signoffs(db, category_id, BOARD_EQUIVALENT_ROLES)
        scores_total, scores_uncertified = await ledger_queries.criterion_score_counts(db, category_id)

        return StageFacts(
            category_id=category.id,
            category_name=category.name,
            total_judges=await ledger_queries.assigned_judge_count(db, category_id),
            total_contestants=await ledger_queries.assigned_contestant_count(db, category_id),
            judge_signoffs=await ledger_queries.judge_signoff_count(db, category_id),
            tally_completed=len(tally_rows),
            audit_certified=bool(audit_rows),
            board_approved=bool(board_rows),
            scores_total=scores_total,
            scores_uncertified=scores_uncertified,
            scores_locked=await ledger_queries.any_score_locked(db, category_id),
        )

    async def current_stage(self, category_id: int, facts: Optional[StageFacts] = None) -> CertificationStage:
        facts = facts or await self.facts(category_id)
        return derive_stage(*facts.completion().values())

    async def final_certification_status(self, category_id: int) -> Dict[str, Any]:
        """
        Gate for the final (audit) certification of a category.

        ``can_certify`` only checks tally signoffs against assigned judges;
        ``ready_for_final_certification`` also needs every criterion score
        certified and no existing audit signoff.

        Raises:
            NotFoundError: If the category does not exist
        """
        facts = await self.facts(category_id)
        tally_rows = await ledger_queries.role_signoffs(self.db, category_id, [UserRole.TALLY])
        audit_rows = await ledger_queries.role_signoffs(self.db, category_id, [FINAL_CERTIFICATION_ROLE])

        ready = facts.can_certify and facts.scores_uncertified == 0 and not facts.audit_certified

        return {
            "category_id": facts.category_id,
            "category_name": facts.category_name,
            "can_certify": facts.can_certify,
            "ready_for_final_certification": ready,
            "already_certified": facts.audit_certified,
            "tally_certifications": {
                "required": facts.total_judges,
                "completed": facts.tally_completed,
                "missing": max(facts.total_judges - facts.tally_completed, 0),
                "certifications": [row.to_dict() for row in tally_rows],
            },
            "score_status": {
                "total": facts.scores_total,
                "uncertified": facts.scores_uncertified,
                "completed": facts.scores_uncertified == 0,
            },
            "audit_certified": facts.audit_certified,
            "audit_certification": audit_rows[0].to_dict() if audit_rows else None,
        }

    async def workflow(self, category_id: int) -> Dict[str, Any]:
        """Per-stage view of the category's certification workflow."""
        facts = await self.facts(category_id)
        completion = facts.completion()
        stage = derive_stage(*completion.values())

        stages = [
            {
                "stage": s.value,
                "step": STAGE_STEP[s],
                "completed": completion[s],
                "ready_for_next_stage": completion[s],
            }
            for s in STAGE_ORDER
        ]

        return {
            "category_id": facts.category_id,
            "category_name": facts.category_name,
            "current_stage": stage.value,
            "current_step": STAGE_STEP[stage],
            "overall_status": OVERALL_STATUS[stage],
            "stages": stages,
            "scores_locked": facts.scores_locked,
        }
