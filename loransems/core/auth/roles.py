"""
Role Order and Location Isolation
=================================

The five roles form a strict total order. Authorization is a level
comparison, not a permission matrix.

    employee < department_head < hr_manager < admin < super_admin

An unrecognised *required* role resolves to the highest level, so a typo in
a guard denies everyone except super admins. An unrecognised *held* role
resolves to level 0 and satisfies nothing.
"""

from __future__ import annotations

from enum import Enum
from typing import Final, Optional


class Role(Enum):
    """User roles, declared lowest to highest."""
    EMPLOYEE = "employee"
    DEPARTMENT_HEAD = "department_head"
    HR_MANAGER = "hr_manager"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: "Role | str | None") -> Optional["Role"]:
        """Map a stored role identifier to a Role, or None if unknown."""
        if isinstance(value, Role):
            return value
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]


ROLE_LEVELS: Final[dict[Role, int]] = {
    Role.EMPLOYEE: 1,
    Role.DEPARTMENT_HEAD: 2,
    Role.HR_MANAGER: 3,
    Role.ADMIN: 4,
    Role.SUPER_ADMIN: 5,
}

NO_ROLE_LEVEL: Final[int] = 0

# Roles allowed to read data of every business unit
CROSS_LOCATION_ROLES: Final[frozenset[Role]] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


def held_level(role: "Role | str | None") -> int:
    """Level of a role a user holds; unknown roles get no privilege."""
    parsed = Role.parse(role)
    if parsed is None:
        return NO_ROLE_LEVEL
    return parsed.level


def required_level(role: "Role | str | None") -> int:
    """Level demanded by a guard; unknown requirements demand the maximum."""
    parsed = Role.parse(role)
    if parsed is None:
        return Role.SUPER_ADMIN.level
    return parsed.level


def compare_roles(a: "Role | str", b: "Role | str") -> int:
    """
    Total-order comparison of two held roles.

    Returns:
        -1 if a ranks below b, 0 if equal, 1 if a ranks above b
    """
    left, right = held_level(a), held_level(b)
    return (left > right) - (left < right)


def role_satisfies(held: "Role | str | None", required: "Role | str | None") -> bool:
    """True if a holder of ``held`` meets the ``required`` role."""
    return held_level(held) >= required_level(required)


def location_allowed(
    held: "Role | str | None",
    own_location_id: Optional[int],
    location_id: Optional[int],
) -> bool:
    """Cross-location roles see everything; others only their own unit."""
    if Role.parse(held) in CROSS_LOCATION_ROLES:
        return True
    if own_location_id is None or location_id is None:
        return False
    try:
        return int(own_location_id) == int(location_id)
    except (TypeError, ValueError):
        # Not a location id at all, e.g. a stray path segment
        return False
