#!/usr/bin/env python

"""
    Roles and the authorization table for SIMPUS.

    Routes check an (operation, role) pair against POLICY once, at the
    boundary; the services below never look at roles themselves.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import enum
from simpus.core.exceptions import ForbiddenError


class Role(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"
    STUDENT = "student"
    TEACHER = "teacher"
    STAFF = "staff"

    @classmethod
    def parse(cls, value, default=None):
        if value in (None, ""):
            if default is None:
                raise ValueError("Role is required")
            return default
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(r.value for r in cls)
            raise ValueError(f"Invalid role '{value}'. Must be one of: {valid}")


class Operation(enum.Enum):
    BORROW = "borrow"
    RETURN = "return"
    EXTEND_OWN = "extend_own"
    EXTEND_ANY = "extend_any"
    LIST_OWN_LOANS = "list_own_loans"
    LIST_ALL_LOANS = "list_all_loans"
    MANAGE_BOOKS = "manage_books"
    MANAGE_CATEGORIES = "manage_categories"
    VIEW_CATEGORIES = "view_categories"
    MANAGE_USERS = "manage_users"
    EDIT_PROFILE = "edit_profile"
    READ_NOTIFICATIONS = "read_notifications"
    SEND_NOTIFICATIONS = "send_notifications"
    VIEW_STATS = "view_stats"
    VIEW_REPORTS = "view_reports"


EVERYONE = frozenset(Role)
ADMINS = frozenset({Role.ADMIN})

POLICY = {
    Operation.BORROW: EVERYONE,
    Operation.RETURN: ADMINS,
    Operation.EXTEND_OWN: EVERYONE,
    Operation.EXTEND_ANY: ADMINS,
    Operation.LIST_OWN_LOANS: EVERYONE,
    Operation.LIST_ALL_LOANS: ADMINS,
    Operation.MANAGE_BOOKS: ADMINS,
    Operation.MANAGE_CATEGORIES: ADMINS,
    Operation.VIEW_CATEGORIES: EVERYONE,
    Operation.MANAGE_USERS: ADMINS,
    Operation.EDIT_PROFILE: EVERYONE,
    Operation.READ_NOTIFICATIONS: EVERYONE,
    Operation.SEND_NOTIFICATIONS: ADMINS,
    Operation.VIEW_STATS: EVERYONE,
    Operation.VIEW_REPORTS: ADMINS,
}


def is_allowed(role, operation) -> bool:
    return Role(role) in POLICY.get(operation, frozenset())


def authorize(role, operation):
    """Raises ForbiddenError unless `role` may perform `operation`."""
    if not is_allowed(role, operation):
        raise ForbiddenError(f"Role '{Role(role).value}' may not {operation.value}")
