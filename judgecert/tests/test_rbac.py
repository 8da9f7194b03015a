"""
Role check tests.
"""
import pytest

from judgecert.errors import ForbiddenError, ValidationError
from judgecert.orm import UserRole
from judgecert.security.rbac import (
    BOARD_EQUIVALENT_ROLES,
    RESET_ROLES,
    has_role,
    parse_role,
    require_role,
    role_name,
)


class TestHasRole:

    def test_exact_match(self):
        assert has_role("ADMIN", RESET_ROLES)
        assert has_role(UserRole.ORGANIZER, RESET_ROLES)

    def test_case_sensitive(self):
        assert not has_role("admin", RESET_ROLES)
        assert not has_role("Board", BOARD_EQUIVALENT_ROLES)

    def test_none_never_matches(self):
        assert not has_role(None, RESET_ROLES)
        assert role_name(None) is None


class TestRequireRole:

    def test_denied_role_details(self):
        with pytest.raises(ForbiddenError) as exc:
            require_role("JUDGE", RESET_ROLES, "reset certifications")

        error = exc.value
        assert error.code == "ROLE_NOT_PERMITTED"
        assert error.message == "You do not have permission to reset certifications"
        assert error.details == {"role": "JUDGE", "allowed": ["ADMIN", "BOARD", "ORGANIZER"]}

    def test_permitted_role_passes(self):
        require_role("BOARD", RESET_ROLES, "reset certifications")


class TestParseRole:

    def test_known_role(self):
        assert parse_role("TALLY") is UserRole.TALLY
        assert parse_role(UserRole.AUDIT) is UserRole.AUDIT

    @pytest.mark.parametrize("value", ["tally", "AUDITOR", "", None])
    def test_unknown_role(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_role(value)
        assert exc.value.code == "INVALID_ROLE"
