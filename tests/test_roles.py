"""Role enumeration and the table-driven permission check."""

from types import SimpleNamespace

import pytest

from constructhub.core.exceptions import AuthorizationError
from constructhub.core.roles import (
    ACTION_ROLES,
    Role,
    can_view_project,
    check_permission,
    has_permission,
)


def _project(manager_id=10, client_id=20):
    return SimpleNamespace(project_manager_id=manager_id, client_id=client_id)


class TestRole:

    def test_parse_round_trip(self):
        assert Role.parse("Senior Director") is Role.SENIOR_DIRECTOR
        assert Role.parse(Role.CUSTOMER) is Role.CUSTOMER

    def test_unknown_role(self):
        with pytest.raises(AuthorizationError):
            Role.parse("Admin")


class TestPermissions:

    @pytest.mark.parametrize("action", sorted(ACTION_ROLES))
    def test_director_allowed_everywhere(self, action):
        assert has_permission(action, "Director", user_id=1, project=_project())

    @pytest.mark.parametrize("action", sorted(ACTION_ROLES))
    def test_senior_director_gets_no_director_rights(self, action):
        assert not has_permission(action, "Senior Director")

    def test_manager_scoped_to_own_project(self):
        assert has_permission("project.update", "Project Manager", user_id=10, project=_project())
        assert not has_permission("project.update", "Project Manager", user_id=11, project=_project())
        assert not has_permission("project.budget", "Project Manager", user_id=11, project=_project())

    def test_unknown_action(self):
        with pytest.raises(KeyError):
            has_permission("project.teleport", "Director")

    def test_check_permission_raises(self):
        with pytest.raises(AuthorizationError) as exc:
            check_permission("project.delete", "Project Manager")
        assert exc.value.status_code == 403


class TestProjectVisibility:

    def test_customer_sees_own(self):
        assert can_view_project(_project(client_id=5), 5, "Customer")
        assert not can_view_project(_project(client_id=5), 6, "Customer")

    def test_manager_sees_managed(self):
        assert can_view_project(_project(manager_id=7), 7, "Project Manager")
        assert not can_view_project(_project(manager_id=7), 8, "Project Manager")

    @pytest.mark.parametrize("role", ["Director", "Senior Director", "Employee", "Quantity Surveyor"])
    def test_staff_see_all(self, role):
        assert can_view_project(_project(), 99, role)
