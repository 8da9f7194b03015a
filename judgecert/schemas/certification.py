"""
Pydantic Schemas for the Certification Workflow

Request models for final certification and bulk reset.
"""
from typing import Any, Optional, List
from pydantic import BaseModel, Field


class FinalCertificationConfirmation(BaseModel):
    """Dual confirmation required before the irreversible final certification."""
    confirmation1: Any = Field(None, description="Scores reviewed and accurate")
    confirmation2: Any = Field(None, description="Results become final and locked")

    @property
    def is_confirmed(self) -> bool:
        return bool(self.confirmation1) and bool(self.confirmation2)


class ResetScope(BaseModel):
    """
    Scope of a bulk certification reset.

    Exactly one discriminator must be supplied; the service enforces this so
    that role checks always run first.
    """
    category_id: Optional[int] = Field(None, description="Reset one category")
    contest_id: Optional[int] = Field(None, description="Reset every category in a contest")
    event_id: Optional[int] = Field(None, description="Reset every category in an event")
    reset_all: Optional[bool] = Field(False, description="Reset all certifications system-wide")

    def supplied(self) -> List[str]:
        """Names of the discriminators that were supplied."""
        names = []
        if self.reset_all:
            names.append("reset_all")
        for name in ("category_id", "contest_id", "event_id"):
            if getattr(self, name) is not None:
                names.append(name)
        return names
