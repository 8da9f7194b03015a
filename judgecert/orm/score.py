"""
judgecert/orm/score.py
Judge scores, one per (judge, contestant, criterion) within a category

Once ``is_locked`` is set the value and certification flags are frozen until
an administrative bulk reset.
"""
from sqlalchemy import (
    Column, Integer, Float, Boolean, DateTime, ForeignKey, Index
)

from judgecert.orm.base import BaseModel


class Score(BaseModel):
    __tablename__ = "scores"

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False
    )
    judge_id = Column(
        Integer,
        ForeignKey("judges.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    contestant_id = Column(
        Integer,
        ForeignKey("contestants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Null criterion marks a non-scoring artifact; excluded from completeness checks
    criterion_id = Column(
        Integer,
        ForeignKey("criteria.id", ondelete="SET NULL"),
        nullable=True
    )
    value = Column(Float, nullable=False, default=0)

    is_certified = Column(Boolean, default=False, nullable=False)
    certified_at = Column(DateTime, nullable=True)
    certified_by = Column(Integer, nullable=True)

    is_locked = Column(Boolean, default=False, nullable=False)
    locked_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_score_category', 'category_id'),
        Index('idx_score_category_judge_contestant', 'category_id', 'judge_id', 'contestant_id'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "judge_id": self.judge_id,
            "contestant_id": self.contestant_id,
            "criterion_id": self.criterion_id,
            "value": self.value,
            "is_certified": self.is_certified,
            "certified_at": self.certified_at.isoformat() if self.certified_at else None,
            "certified_by": self.certified_by,
            "is_locked": self.is_locked,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }
