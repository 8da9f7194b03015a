"""
judgecert/orm/competition.py
Competition hierarchy: Event (1) -> Contest (N) -> Category (N)

Judges and contestants are attached to a category through assignment rows.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Float, ForeignKey, Text,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from judgecert.orm.base import BaseModel


class Event(BaseModel):
    __tablename__ = "events"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    contests = relationship("Contest", back_populates="event")


class Contest(BaseModel):
    __tablename__ = "contests"

    event_id = Column(
        Integer,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    event = relationship("Event", back_populates="contests")
    categories = relationship("Category", back_populates="contest")


class Category(BaseModel):
    """
    The unit of judged competition.

    ``totals_certified`` is a cache of "tally stage complete"; the ledger rows
    are authoritative and the flag is recomputed alongside every ledger write.
    """
    __tablename__ = "categories"

    contest_id = Column(
        Integer,
        ForeignKey("contests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    score_cap = Column(Float, nullable=True)
    totals_certified = Column(Boolean, default=False, nullable=False)

    contest = relationship("Contest", back_populates="categories")

    def to_dict(self):
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "name": self.name,
            "score_cap": self.score_cap,
            "totals_certified": self.totals_certified,
        }


class Judge(BaseModel):
    __tablename__ = "judges"

    name = Column(String(200), nullable=False)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )


class Contestant(BaseModel):
    __tablename__ = "contestants"

    name = Column(String(200), nullable=False)
    contestant_number = Column(Integer, nullable=True)


class Criterion(BaseModel):
    __tablename__ = "criteria"

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    max_score = Column(Float, nullable=True)


class CategoryJudge(BaseModel):
    __tablename__ = "category_judges"

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False
    )
    judge_id = Column(
        Integer,
        ForeignKey("judges.id", ondelete="CASCADE"),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('category_id', 'judge_id', name='uq_category_judge'),
        Index('idx_category_judge_category', 'category_id'),
    )


class CategoryContestant(BaseModel):
    __tablename__ = "category_contestants"

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False
    )
    contestant_id = Column(
        Integer,
        ForeignKey("contestants.id", ondelete="CASCADE"),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('category_id', 'contestant_id', name='uq_category_contestant'),
        Index('idx_category_contestant_category', 'category_id'),
    )
