"""
Task sign-off requests answered by the project manager.
"""

import pytest

from constructhub.core.events import TaskApprovalRequested, TaskApprovalResponded
from constructhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from constructhub.models import db
from constructhub.models.task import TaskApproval
from constructhub.services import task_service


@pytest.fixture()
def task(make_task, employee):
    return make_task("Install windows", assigned_to=employee.id)


class TestTaskApprovals:

    def test_request_creates_pending(self, task, employee, events):
        approval = task_service.request_task_approval(task.id, employee.id, "Ready for inspection")

        assert approval.status == "Pending"
        assert approval.requested_by == employee.id
        assert events.of_type(TaskApprovalRequested)[0].approval_id == approval.id

    def test_one_pending_request_per_task(self, task, employee):
        task_service.request_task_approval(task.id, employee.id)
        with pytest.raises(ConflictError):
            task_service.request_task_approval(task.id, employee.id)

    def test_request_for_unknown_task(self, employee):
        with pytest.raises(NotFoundError):
            task_service.request_task_approval(6060, employee.id)

    @pytest.mark.parametrize("answer", ["Approved", "Declined"])
    def test_project_manager_responds(self, task, employee, pm, events, answer):
        approval = task_service.request_task_approval(task.id, employee.id)

        answered = task_service.respond_to_task_approval(approval.id, pm.id, answer, "Checked on site")

        assert answered.status == answer
        assert answered.approved_by == pm.id
        assert answered.responded_at is not None
        responded = events.of_type(TaskApprovalResponded)[0]
        assert (responded.status, responded.responder_id) == (answer, pm.id)

    def test_non_manager_cannot_respond(self, task, employee, director):
        approval = task_service.request_task_approval(task.id, employee.id)

        with pytest.raises(AuthorizationError):
            task_service.respond_to_task_approval(approval.id, director.id, "Approved")
        assert db.session.get(TaskApproval, approval.id).status == "Pending"

    def test_invalid_answer(self, task, employee, pm):
        approval = task_service.request_task_approval(task.id, employee.id)
        with pytest.raises(ValidationError):
            task_service.respond_to_task_approval(approval.id, pm.id, "Rejected")

    def test_answered_request_conflicts(self, task, employee, pm):
        approval = task_service.request_task_approval(task.id, employee.id)
        task_service.respond_to_task_approval(approval.id, pm.id, "Declined")

        with pytest.raises(ConflictError):
            task_service.respond_to_task_approval(approval.id, pm.id, "Approved")

    def test_new_request_after_answer(self, task, employee, pm):
        first = task_service.request_task_approval(task.id, employee.id)
        task_service.respond_to_task_approval(first.id, pm.id, "Declined")

        second = task_service.request_task_approval(task.id, employee.id)

        history = task_service.get_task_approvals(task.id)
        assert [a.id for a in history] == [second.id, first.id]
