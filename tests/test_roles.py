"""Unit tests for the role hierarchy in auth/roles.py.

Covers:
- Total order CUSTOMER < AGENT < UNDERWRITER < ADMIN
- at_least() reflexive and monotone
- Staff role set excludes CUSTOMER
- parse_role() tolerates unknown values
"""

import pytest

from auth.roles import ROLE_LEVELS, STAFF_ROLES, Role, at_least, home_path, parse_role


def test_levels_are_strictly_increasing():
    ordered = [Role.CUSTOMER, Role.AGENT, Role.UNDERWRITER, Role.ADMIN]
    levels = [ROLE_LEVELS[r] for r in ordered]
    assert levels == sorted(levels)
    assert len(set(levels)) == 4


@pytest.mark.parametrize("role", list(Role))
def test_at_least_is_reflexive(role):
    assert at_least(role, role)


@pytest.mark.parametrize(
    "actual,required,expected",
    [
        (Role.ADMIN, Role.AGENT, True),
        (Role.UNDERWRITER, Role.AGENT, True),
        (Role.AGENT, Role.UNDERWRITER, False),
        (Role.CUSTOMER, Role.AGENT, False),
        (Role.AGENT, Role.ADMIN, False),
        (Role.ADMIN, Role.CUSTOMER, True),
    ],
)
def test_at_least_follows_hierarchy(actual, required, expected):
    assert at_least(actual, required) is expected


def test_at_least_is_monotone():
    """If a role satisfies a requirement, every higher role does too."""
    for required in Role:
        passing = [r for r in Role if at_least(r, required)]
        for r in passing:
            higher = [h for h in Role if h.level > r.level]
            assert all(at_least(h, required) for h in higher)


def test_staff_roles_exclude_customer():
    assert Role.CUSTOMER not in STAFF_ROLES
    assert STAFF_ROLES == {Role.AGENT, Role.UNDERWRITER, Role.ADMIN}
    assert not Role.CUSTOMER.is_staff
    assert Role.ADMIN.is_staff


def test_parse_role():
    assert parse_role("AGENT") is Role.AGENT
    assert parse_role(Role.ADMIN) is Role.ADMIN
    assert parse_role("SUPERUSER") is None
    assert parse_role(None) is None


def test_home_path():
    assert home_path(Role.UNDERWRITER) == "/underwriter/dashboard"
    assert home_path(Role.CUSTOMER) == "/customer/dashboard"
