"""
judgecert/security/rbac.py
Centralized role checks for the certification workflow

The caller's role string comes from the authenticated session upstream; this
module only compares it against the permitted sets. Comparisons are exact and
case-sensitive: "judge" is not "JUDGE".
"""
import logging
from typing import FrozenSet, Iterable, Optional, Union

from judgecert.errors import ForbiddenError, ValidationError, ErrorCode
from judgecert.orm.user import UserRole

logger = logging.getLogger(__name__)

# ================= ROLE SETS =================

# Roles allowed to roll certification back
RESET_ROLES: FrozenSet[UserRole] = frozenset({
    UserRole.ADMIN, UserRole.ORGANIZER, UserRole.BOARD
})

# Any sign-off from one of these marks board completeness
BOARD_EQUIVALENT_ROLES: FrozenSet[UserRole] = frozenset({
    UserRole.BOARD, UserRole.ORGANIZER, UserRole.ADMIN
})

# Roles that may record a category sign-off through the ledger.
# AUDIT signs off only through final certification, which also locks scores.
CATEGORY_SIGNOFF_ROLES: FrozenSet[UserRole] = frozenset({
    UserRole.TALLY, UserRole.BOARD, UserRole.ORGANIZER, UserRole.ADMIN
})

# Roles that review individual contestants or judge score sheets
REVIEW_ROLES: FrozenSet[UserRole] = frozenset({UserRole.TALLY, UserRole.AUDIT})

# Roles that may sign off a whole contest
CONTEST_SIGNOFF_ROLES: FrozenSet[UserRole] = frozenset({
    UserRole.TALLY, UserRole.AUDIT, UserRole.BOARD, UserRole.ORGANIZER
})

# One sign-off per signing user rather than one per category
MULTI_SIGNER_ROLES: FrozenSet[UserRole] = frozenset({UserRole.TALLY})

FINAL_CERTIFICATION_ROLE = UserRole.AUDIT

RoleLike = Union[str, UserRole, None]


def role_name(role: RoleLike) -> Optional[str]:
    """Plain role string for comparison and logging."""
    if role is None:
        return None
    if isinstance(role, UserRole):
        return role.value
    return str(role)


def has_role(role: RoleLike, allowed: Iterable[UserRole]) -> bool:
    """Exact, case-sensitive membership test."""
    name = role_name(role)
    return name is not None and name in {r.value for r in allowed}


def require_role(role: RoleLike, allowed: Iterable[UserRole], action: str) -> None:
    """Raise ForbiddenError unless ``role`` is in ``allowed``."""
    allowed = list(allowed)
    if not has_role(role, allowed):
        logger.warning(f"Role {role_name(role)!r} denied for {action}")
        raise ForbiddenError(
            f"You do not have permission to {action}",
            code=ErrorCode.ROLE_NOT_PERMITTED,
            details={
                "role": role_name(role),
                "allowed": sorted(r.value for r in allowed),
            }
        )


def parse_role(role: RoleLike) -> UserRole:
    """Map a role string onto the canonical vocabulary or raise ValidationError."""
    name = role_name(role)
    try:
        return UserRole(name)
    except ValueError:
        raise ValidationError(
            f"Unknown role: {name}",
            code=ErrorCode.INVALID_ROLE,
            details={"role": name, "allowed": [r.value for r in UserRole]}
        )
