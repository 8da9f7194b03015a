"""
judgecert/orm/certification.py
Certification ledger record families and the denormalized workflow status

Ledger rows (JudgeContestantCertification, CategoryCertification, ...) are the
source of truth. WorkflowStatus is a cache rebuilt from them and reset in
lock-step with them.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text,
    UniqueConstraint, Index, Enum as SQLEnum
)

from judgecert.orm.base import BaseModel
from judgecert.orm.user import UserRole


# Single-signer roles share this slot, so (category, role) is unique for them
SHARED_SIGNER_SLOT = 0


class JudgeContestantCertification(BaseModel):
    """A judge's sign-off on one contestant's scores in one category."""
    __tablename__ = "judge_contestant_certifications"

    judge_id = Column(
        Integer,
        ForeignKey("judges.id", ondelete="CASCADE"),
        nullable=False
    )
    contestant_id = Column(
        Integer,
        ForeignKey("contestants.id", ondelete="CASCADE"),
        nullable=False
    )
    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(Integer, nullable=True)
    certified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            'judge_id', 'contestant_id', 'category_id',
            name='uq_judge_contestant_category'
        ),
    )


class JudgeCertification(BaseModel):
    """A judge's sign-off on the whole category."""
    __tablename__ = "judge_certifications"

    judge_id = Column(
        Integer,
        ForeignKey("judges.id", ondelete="CASCADE"),
        nullable=False
    )
    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(Integer, nullable=True)
    certified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('judge_id', 'category_id', name='uq_judge_category'),
    )


class CategoryCertification(BaseModel):
    """
    Role sign-off for a category (TALLY, AUDIT, BOARD, ...).

    ``signer_slot`` is the signing user's id for multi-signer roles (TALLY)
    and SHARED_SIGNER_SLOT for everything else.
    """
    __tablename__ = "category_certifications"

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False
    )
    role = Column(SQLEnum(UserRole), nullable=False)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    signer_slot = Column(Integer, nullable=False, default=SHARED_SIGNER_SLOT)
    comments = Column(Text, nullable=True)
    certified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            'category_id', 'role', 'signer_slot',
            name='uq_category_role_signer'
        ),
        Index('idx_category_certification_category_role', 'category_id', 'role'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "role": self.role.value if self.role else None,
            "user_id": self.user_id,
            "comments": self.comments,
            "certified_at": self.certified_at.isoformat() if self.certified_at else None,
        }


class ContestCertification(BaseModel):
    """Role sign-off for a whole contest; one per (contest, role)."""
    __tablename__ = "contest_certifications"

    contest_id = Column(
        Integer,
        ForeignKey("contests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role = Column(SQLEnum(UserRole), nullable=False)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    comments = Column(Text, nullable=True)
    certified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('contest_id', 'role', name='uq_contest_role'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "role": self.role.value if self.role else None,
            "user_id": self.user_id,
            "certified_at": self.certified_at.isoformat() if self.certified_at else None,
        }


class ReviewType(str, Enum):
    CONTESTANT = "CONTESTANT"
    JUDGE_SCORES = "JUDGE_SCORES"


class ReviewCertification(BaseModel):
    """
    Review-stage sign-off: a reviewing role confirms one contestant's results
    or one judge's score sheet within a category.
    """
    __tablename__ = "review_certifications"

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    review_type = Column(SQLEnum(ReviewType), nullable=False)
    subject_id = Column(Integer, nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)
    reviewer_id = Column(Integer, nullable=True)
    certified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            'category_id', 'review_type', 'subject_id', 'role',
            name='uq_review_subject_role'
        ),
    )


class WorkflowScope(str, Enum):
    CATEGORY = "CATEGORY"
    CONTEST = "CONTEST"
    EVENT = "EVENT"


class WorkflowState(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"


class WorkflowStatus(BaseModel):
    """
    Denormalized workflow status for a category, contest or event.

    Never the sole source of truth: rebuilt from ledger rows by the
    projection service and reset together with them.
    """
    __tablename__ = "certification_workflow_status"

    scope_type = Column(SQLEnum(WorkflowScope), nullable=False)
    scope_id = Column(Integer, nullable=False)

    # Denormalized parents so one filter can reach every row under a scope
    category_id = Column(Integer, nullable=True, index=True)
    contest_id = Column(Integer, nullable=True, index=True)
    event_id = Column(Integer, nullable=True, index=True)

    status = Column(SQLEnum(WorkflowState), nullable=False, default=WorkflowState.PENDING)
    current_step = Column(Integer, nullable=False, default=1)

    judge_certified = Column(Boolean, nullable=False, default=False)
    tally_certified = Column(Boolean, nullable=False, default=False)
    audit_certified = Column(Boolean, nullable=False, default=False)
    board_approved = Column(Boolean, nullable=False, default=False)

    certified_at = Column(DateTime, nullable=True)
    certified_by = Column(Integer, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('scope_type', 'scope_id', name='uq_workflow_scope'),
    )

    def to_dict(self):
        return {
            "scope_type": self.scope_type.value if self.scope_type else None,
            "scope_id": self.scope_id,
            "status": self.status.value if self.status else None,
            "current_step": self.current_step,
            "judge_certified": self.judge_certified,
            "tally_certified": self.tally_certified,
            "audit_certified": self.audit_certified,
            "board_approved": self.board_approved,
            "certified_at": self.certified_at.isoformat() if self.certified_at else None,
            "certified_by": self.certified_by,
            "rejection_reason": self.rejection_reason,
            "comments": self.comments,
        }
