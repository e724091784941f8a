"""
Roles and table-driven permission checks.

Every gated operation is listed once in ``ACTION_ROLES``; callers use
``check_permission`` instead of comparing role strings inline. Ownership
rules (a Project Manager may only touch projects they manage, a Customer
only their own projects) live next to the table.

Senior Director is a distinct approval level and is NOT treated as a
Director for any of the gates below.
"""

import logging
from enum import Enum

from constructhub.core.exceptions import AuthorizationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    DIRECTOR = "Director"
    SENIOR_DIRECTOR = "Senior Director"
    PROJECT_MANAGER = "Project Manager"
    QUANTITY_SURVEYOR = "Quantity Surveyor"
    SALES_MANAGER = "Sales Manager"
    CUSTOMER_SUCCESS_MANAGER = "Customer Success Manager"
    EMPLOYEE = "Employee"
    CUSTOMER = "Customer"
    SUPPLIER = "Supplier"

    @classmethod
    def parse(cls, value) -> "Role":
        """Coerce a stored/claimed role string into a Role.

        Raises:
            AuthorizationError: the value is not a known role.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise AuthorizationError(f"Unknown role: {value}") from None


ROLE_VALUES = tuple(r.value for r in Role)


# ── Permission table ─────────────────────────────────────────────────────
# action → roles allowed before any ownership rule is applied

ACTION_ROLES: dict[str, frozenset[Role]] = {
    "project.create": frozenset({Role.DIRECTOR, Role.PROJECT_MANAGER}),
    "project.update": frozenset({Role.DIRECTOR, Role.PROJECT_MANAGER}),
    "project.delete": frozenset({Role.DIRECTOR}),
    "project.approve": frozenset({Role.DIRECTOR}),
    "project.close": frozenset({Role.DIRECTOR}),
    "project.budget": frozenset({Role.DIRECTOR, Role.PROJECT_MANAGER}),
    "user.create": frozenset({Role.DIRECTOR}),
}

# actions where a Project Manager must be the project's own manager
MANAGER_SCOPED_ACTIONS = frozenset({
    "project.update",
    "project.budget",
})

# valid holders of the project_manager_id slot
PROJECT_MANAGER_ROLES = frozenset({Role.DIRECTOR, Role.PROJECT_MANAGER})

_ACTION_MESSAGES = {
    "project.create": "Only Directors and Project Managers can create projects",
    "project.update": "You do not have permission to update this project",
    "project.delete": "Only Directors can delete projects",
    "project.approve": "Only Directors can approve projects",
    "project.close": "Only Directors can close projects",
    "project.budget": "Only Directors or the project manager can update the project budget",
    "user.create": "Only Directors can create users",
}


def has_permission(action: str, role, *, user_id=None, project=None) -> bool:
    """Return True when ``role`` may perform ``action``.

    When ``project`` is given and the action is manager-scoped, a Project
    Manager additionally has to be ``project.project_manager_id``.
    """
    allowed = ACTION_ROLES.get(action)
    if allowed is None:
        raise KeyError(f"Unknown action: {action}")
    role = Role.parse(role)
    if role not in allowed:
        return False
    if (
        project is not None
        and action in MANAGER_SCOPED_ACTIONS
        and role == Role.PROJECT_MANAGER
        and project.project_manager_id != user_id
    ):
        return False
    return True


def check_permission(action: str, role, *, user_id=None, project=None) -> None:
    """Assert permission; raise AuthorizationError otherwise."""
    if not has_permission(action, role, user_id=user_id, project=project):
        logger.warning("Permission denied: action=%s role=%s user_id=%s", action, role, user_id)
        raise AuthorizationError(_ACTION_MESSAGES.get(action, "Insufficient permissions"))


def can_view_project(project, user_id, role) -> bool:
    """Customers see their own projects, Project Managers the ones they manage."""
    role = Role.parse(role)
    if role == Role.CUSTOMER:
        return project.client_id == user_id
    if role == Role.PROJECT_MANAGER:
        return project.project_manager_id == user_id
    return True


def check_project_access(project, user_id, role) -> None:
    if not can_view_project(project, user_id, role):
        raise AuthorizationError("Access denied to this project")
