"""
judgecert/orm/user.py
User model carrying the persisted role used for authorization checks
"""
from enum import Enum

from sqlalchemy import Column, String, Boolean, Enum as SQLEnum

from judgecert.orm.base import BaseModel


class UserRole(str, Enum):
    """Canonical role vocabulary. Comparisons are case-sensitive."""
    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    BOARD = "BOARD"
    AUDIT = "AUDIT"
    TALLY = "TALLY"
    JUDGE = "JUDGE"
    CONTESTANT = "CONTESTANT"
    EMCEE = "EMCEE"


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.JUDGE, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value if self.role else None,
            "is_active": self.is_active,
        }
