"""
Task dependency graph and status gating (service layer).

Covers:
    1.  Creation with dependencies (same project only, no duplicates)
    2.  Self-dependency and cycles of any length rejected, graph untouched
    3.  Diamond shapes are not mistaken for cycles
    4.  Full replacement of the dependency set, including clearing it
    5.  In Progress / Completed gated on direct dependencies
    6.  Completion defaults and permission checks on update
    7.  Delete guard for tasks other tasks depend on
    8.  Assignment and deadline events
"""

from datetime import date, timedelta

import pytest

from constructhub.core.events import TaskAssigned, TaskDeadlineApproaching
from constructhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from constructhub.models import db
from constructhub.models.task import Task, TaskDependency, validate_no_cycle
from constructhub.services import task_service


def _edges():
    return sorted(
        (d.task_id, d.depends_on_task_id) for d in TaskDependency.query.all()
    )


def _update(task, user, **data):
    return task_service.update_task(task.id, data, user.id)


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateTask:

    def test_defaults(self, make_task, pm):
        task = make_task(priority="High", estimated_hours="12.5")

        assert task.status == "Not Started"
        assert task.completion_percentage == 0
        assert float(task.actual_hours) == 0
        assert task.created_by == pm.id

    def test_status_in_payload_is_ignored(self, make_task):
        task = make_task(status="Completed", completion_percentage=80)
        assert task.status == "Not Started"
        assert task.completion_percentage == 0

    def test_with_dependencies(self, make_task):
        survey = make_task("Survey")
        permits = make_task("Permits")
        build = make_task("Build", dependencies=[survey.id, permits.id])

        assert _edges() == sorted([(build.id, survey.id), (build.id, permits.id)])
        assert build.to_dict(include_dependencies=True)["dependency_ids"] == sorted([survey.id, permits.id])

    def test_dependency_in_other_project_rejected(self, make_task, make_project):
        other_project = make_project(name="Elsewhere")
        foreign = make_task("Foreign", project_id=other_project.id)

        with pytest.raises(ValidationError) as exc:
            make_task("Local", dependencies=[foreign.id])
        assert exc.value.details["invalid_dependencies"] == [foreign.id]
        assert Task.query.filter_by(title="Local").count() == 0

    def test_missing_dependency_rejected(self, make_task):
        with pytest.raises(ValidationError):
            make_task("Orphan", dependencies=[999])

    def test_duplicate_dependency_ids_rejected(self, make_task):
        survey = make_task("Survey")
        with pytest.raises(ValidationError):
            make_task("Build", dependencies=[survey.id, survey.id])

    def test_unknown_project(self, pm):
        with pytest.raises(NotFoundError):
            task_service.create_task({"project_id": 777, "title": "Nowhere"}, pm.id)

    def test_title_required(self, make_task):
        with pytest.raises(ValidationError):
            make_task("   ")

    def test_due_date_before_start_date(self, make_task):
        with pytest.raises(ValidationError):
            make_task(start_date="2026-03-10", due_date="2026-03-01")

    def test_unknown_assignee(self, make_task):
        with pytest.raises(NotFoundError):
            make_task(assigned_to=5555)


# ═════════════════════════════════════════════════════════════════════════════
# Cycles
# ═════════════════════════════════════════════════════════════════════════════


class TestCycleDetection:

    def test_self_dependency(self, make_task, pm):
        task = make_task()
        with pytest.raises(ValidationError):
            _update(task, pm, dependencies=[task.id])

    def test_three_node_cycle_rejected_and_edges_untouched(self, make_task, pm):
        c = make_task("C")
        b = make_task("B", dependencies=[c.id])
        a = make_task("A", dependencies=[b.id])
        before = _edges()

        with pytest.raises(ValidationError) as exc:
            _update(c, pm, dependencies=[a.id])

        assert "Circular dependency" in exc.value.message
        assert _edges() == before

    def test_long_chain_cycle(self, make_task, pm):
        first = make_task("T0")
        previous = first
        for i in range(1, 8):
            previous = make_task(f"T{i}", dependencies=[previous.id])

        with pytest.raises(ValidationError):
            _update(first, pm, dependencies=[previous.id])

    def test_failed_replacement_keeps_previous_edges(self, make_task, pm):
        c = make_task("C")
        b = make_task("B", dependencies=[c.id])
        a = make_task("A", dependencies=[b.id])
        extra = make_task("Extra")
        _update(c, pm, dependencies=[extra.id])
        before = _edges()

        with pytest.raises(ValidationError):
            _update(c, pm, dependencies=[extra.id, a.id])

        db.session.expire_all()
        assert _edges() == before
        assert (c.id, extra.id) in _edges()

    def test_diamond_is_not_a_cycle(self, make_task, pm):
        base = make_task("Base")
        left = make_task("Left", dependencies=[base.id])
        right = make_task("Right", dependencies=[base.id])
        top = make_task("Top", dependencies=[left.id, right.id])

        assert validate_no_cycle(db.session, top.id, base.id)
        _update(top, pm, dependencies=[left.id, right.id, base.id])
        assert len(_edges()) == 5

    def test_validate_no_cycle_directly(self, make_task):
        b = make_task("B")
        a = make_task("A", dependencies=[b.id])

        assert validate_no_cycle(db.session, b.id, a.id) is False
        assert validate_no_cycle(db.session, a.id, a.id) is False
        assert validate_no_cycle(db.session, a.id, b.id) is True


# ═════════════════════════════════════════════════════════════════════════════
# Replacement
# ═════════════════════════════════════════════════════════════════════════════


class TestDependencyReplacement:

    def test_replaces_whole_set(self, make_task, pm):
        x, y, z = make_task("X"), make_task("Y"), make_task("Z")
        task = make_task("Task", dependencies=[x.id, y.id])

        _update(task, pm, dependencies=[z.id])

        assert _edges() == [(task.id, z.id)]

    def test_empty_list_clears(self, make_task, pm):
        x = make_task("X")
        task = make_task("Task", dependencies=[x.id])

        _update(task, pm, dependencies=[])

        assert _edges() == []

    def test_omitted_key_keeps_edges(self, make_task, pm):
        x = make_task("X")
        task = make_task("Task", dependencies=[x.id])

        _update(task, pm, title="Renamed")

        assert _edges() == [(task.id, x.id)]


# ═════════════════════════════════════════════════════════════════════════════
# Status gating
# ═════════════════════════════════════════════════════════════════════════════


class TestStatusGate:

    @pytest.mark.parametrize("target", ["In Progress", "Completed"])
    def test_blocked_by_incomplete_dependency(self, make_task, pm, target):
        t2 = make_task("T2")
        t1 = make_task("T1", dependencies=[t2.id])

        with pytest.raises(ValidationError) as exc:
            _update(t1, pm, status=target)

        blocking = exc.value.details["incomplete_dependencies"]
        assert blocking == [{"id": t2.id, "title": "T2", "status": "Not Started"}]
        assert db.session.get(Task, t1.id).status == "Not Started"

    def test_unblocked_once_dependency_completes(self, make_task, pm):
        t2 = make_task("T2")
        t1 = make_task("T1", dependencies=[t2.id])
        with pytest.raises(ValidationError):
            _update(t1, pm, status="In Progress")

        _update(t2, pm, status="Completed")
        updated = _update(t1, pm, status="In Progress")

        assert updated.status == "In Progress"

    def test_on_hold_is_not_gated(self, make_task, pm):
        t2 = make_task("T2")
        t1 = make_task("T1", dependencies=[t2.id])

        assert _update(t1, pm, status="On Hold").status == "On Hold"

    def test_gate_uses_new_dependency_set(self, make_task, pm):
        done = make_task("Done")
        _update(done, pm, status="Completed")
        open_task = make_task("Open")
        task = make_task("Task", dependencies=[open_task.id])

        updated = _update(task, pm, dependencies=[done.id], status="In Progress")

        assert updated.status == "In Progress"
        assert _edges() == [(task.id, done.id)]

    def test_gate_failure_rolls_back_dependency_replacement(self, make_task, pm):
        blocker = make_task("Blocker")
        other = make_task("Other")
        task = make_task("Task", dependencies=[other.id])

        with pytest.raises(ValidationError):
            _update(task, pm, dependencies=[blocker.id], status="Completed")

        db.session.expire_all()
        assert _edges() == [(task.id, other.id)]

    def test_only_direct_dependencies_are_checked(self, make_task, pm):
        root = make_task("Root")
        middle = make_task("Middle", dependencies=[root.id])
        leaf = make_task("Leaf", dependencies=[middle.id])
        _update(middle, pm, status="On Hold")
        # middle is not Completed, so leaf stays blocked
        with pytest.raises(ValidationError):
            _update(leaf, pm, status="In Progress")


# ═════════════════════════════════════════════════════════════════════════════
# Update details
# ═════════════════════════════════════════════════════════════════════════════


class TestUpdateTask:

    def test_completed_defaults_to_100(self, make_task, pm):
        assert _update(make_task(), pm, status="Completed").completion_percentage == 100

    def test_not_started_defaults_to_0(self, make_task, pm):
        task = make_task()
        _update(task, pm, status="On Hold", completion_percentage=40)
        assert _update(task, pm, status="Not Started").completion_percentage == 0

    def test_explicit_completion_wins(self, make_task, pm):
        assert _update(make_task(), pm, status="Completed", completion_percentage=90).completion_percentage == 90

    def test_completion_out_of_range(self, make_task, pm):
        with pytest.raises(ValidationError):
            _update(make_task(), pm, completion_percentage=101)

    def test_assignee_may_update(self, make_task, employee):
        task = make_task(assigned_to=employee.id)
        assert _update(task, employee, title="Pour slab").title == "Pour slab"

    def test_unrelated_user_denied(self, make_task, make_user):
        task = make_task()
        outsider = make_user("Employee")
        with pytest.raises(AuthorizationError):
            _update(task, outsider, title="Nope")

    def test_unknown_task(self, pm):
        with pytest.raises(NotFoundError):
            task_service.update_task(12345, {"title": "x"}, pm.id)

    def test_assignment_event(self, make_task, pm, employee, events):
        task = make_task()
        events.clear()

        _update(task, pm, assigned_to=employee.id)
        _update(task, pm, title="Same assignee")

        assigned = events.of_type(TaskAssigned)
        assert [(e.task_id, e.assignee_id) for e in assigned] == [(task.id, employee.id)]

    def test_deadline_event_inside_window(self, make_task, pm, employee, events):
        task = make_task(assigned_to=employee.id)
        today = date(2026, 5, 10)
        events.clear()

        task_service.update_task(task.id, {"due_date": (today + timedelta(days=2)).isoformat()}, pm.id, today=today)
        task_service.update_task(task.id, {"due_date": (today + timedelta(days=5)).isoformat()}, pm.id, today=today)

        deadline = events.of_type(TaskDeadlineApproaching)
        assert len(deadline) == 1
        assert deadline[0].days_until_due == 2


# ═════════════════════════════════════════════════════════════════════════════
# Delete guard
# ═════════════════════════════════════════════════════════════════════════════


class TestDeleteTask:

    def test_depended_upon_task_cannot_be_deleted(self, make_task, pm):
        t1 = make_task("T1")
        t2 = make_task("T2", dependencies=[t1.id])

        with pytest.raises(ConflictError) as exc:
            task_service.delete_task(t1.id, pm.id)
        assert exc.value.details["dependent_task_ids"] == [t2.id]

        task_service.delete_task(t2.id, pm.id)
        task_service.delete_task(t1.id, pm.id)

        assert Task.query.count() == 0
        assert _edges() == []

    def test_assignee_cannot_delete(self, make_task, employee):
        task = make_task(assigned_to=employee.id)
        with pytest.raises(AuthorizationError):
            task_service.delete_task(task.id, employee.id)


# ═════════════════════════════════════════════════════════════════════════════
# Listing
# ═════════════════════════════════════════════════════════════════════════════


class TestListTasks:

    def test_filters(self, make_task, project, employee):
        make_task("Survey", priority="High", assigned_to=employee.id)
        make_task("Scaffold", priority="Low")

        items, pagination = task_service.list_tasks(
            {"project_id": str(project.id), "priority": "High"}, 1, 10,
        )
        assert [t.title for t in items] == ["Survey"]
        assert pagination["total"] == 1

        items, _ = task_service.list_tasks({"assigned_to": employee.id, "search": "surv"}, 1, 10)
        assert [t.title for t in items] == ["Survey"]
