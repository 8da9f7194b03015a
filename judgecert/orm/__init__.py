from .base import Base

# Core models
from .user import User, UserRole

# Competition hierarchy
from .competition import (
    Event, Contest, Category, Judge, Contestant, Criterion,
    CategoryJudge, CategoryContestant
)
from .score import Score

# Certification ledger
from .certification import (
    JudgeContestantCertification, JudgeCertification, CategoryCertification,
    ContestCertification, ReviewCertification, ReviewType,
    WorkflowStatus, WorkflowScope, WorkflowState
)
