"""
Multi-level project approval workflow (service layer).

Covers:
    1.  Budget → approval chain (boundaries at 500k and 1M)
    2.  Round creation: Planning only, no duplicate rounds, missing approvers
    3.  Single-rejection veto cascades to every Pending record
    4.  Unanimous approval moves the project to In Progress
    5.  End-to-end 1.5M round approved out of level order
    6.  Processing guards: decision value, ownership, already processed
    7.  Work queue and history ordering
    8.  Events published after commit
"""

from decimal import Decimal

import pytest

from constructhub.core.events import ApprovalDecided, ApprovalRequested, ProjectApproved
from constructhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from constructhub.models import db
from constructhub.models.project import Project, ProjectApproval, approval_levels_for_budget
from constructhub.services import approval_service, project_service
from constructhub.services.approval_service import CASCADE_REJECTION_COMMENT
from constructhub.services.project_service import ROUND_CLOSED_COMMENT


@pytest.fixture()
def approvers(director, senior_director, pm):
    return {"Director": director, "Senior Director": senior_director, "Project Manager": pm}


def _round(project, approvers):
    records = approval_service.request_approval(project.id, approvers["Project Manager"].id)
    return {a.approval_level: a for a in records}


def _decide(approval, approvers, decision="Approved", comments=None):
    approver = approvers[approval.approval_level]
    return approval_service.process_approval(approval.id, approver.id, decision, comments)


# ═════════════════════════════════════════════════════════════════════════════
# Budget → chain
# ═════════════════════════════════════════════════════════════════════════════


class TestApprovalChain:

    @pytest.mark.parametrize("budget, expected", [
        (0, ["Director"]),
        (500_000, ["Director"]),
        ("500000.01", ["Project Manager", "Director"]),
        (1_000_000, ["Project Manager", "Director"]),
        ("1000000.01", ["Project Manager", "Director", "Senior Director"]),
        (1_500_000, ["Project Manager", "Director", "Senior Director"]),
    ])
    def test_levels_for_budget(self, budget, expected):
        assert approval_levels_for_budget(Decimal(str(budget))) == expected

    def test_round_creates_one_pending_record_per_level(self, make_project, approvers):
        project = make_project(budget=750_000)
        records = approval_service.request_approval(project.id, approvers["Project Manager"].id)

        assert [r.approval_level for r in records] == ["Project Manager", "Director"]
        assert all(r.status == "Pending" for r in records)
        assert records[0].approver_id == approvers["Project Manager"].id
        assert records[1].approver_id == approvers["Director"].id

    def test_approver_is_lowest_id_active_user_of_level(self, make_project, make_user, approvers):
        make_user("Director", status="Inactive")
        second = make_user("Director")
        project = make_project(budget=100)

        records = approval_service.request_approval(project.id, approvers["Project Manager"].id)

        assert len(records) == 1
        assert records[0].approver_id == approvers["Director"].id
        assert records[0].approver_id < second.id


# ═════════════════════════════════════════════════════════════════════════════
# Round creation guards
# ═════════════════════════════════════════════════════════════════════════════


class TestRequestApproval:

    def test_second_request_conflicts(self, project, approvers):
        approval_service.request_approval(project.id, approvers["Project Manager"].id)

        with pytest.raises(ConflictError):
            approval_service.request_approval(project.id, approvers["Project Manager"].id)
        assert ProjectApproval.query.filter_by(project_id=project.id).count() == 1

    def test_only_planning_projects(self, project, approvers, director):
        project_service.approve_project(project.id, director.id, "Director")

        with pytest.raises(ValidationError):
            approval_service.request_approval(project.id, approvers["Project Manager"].id)

    def test_unknown_project(self, approvers):
        with pytest.raises(NotFoundError):
            approval_service.request_approval(9999, approvers["Project Manager"].id)

    def test_missing_level_fails_without_creating_records(self, make_project, director, pm):
        # no Senior Director account exists
        project = make_project(budget=2_000_000)

        with pytest.raises(ValidationError) as exc:
            approval_service.request_approval(project.id, pm.id)

        assert exc.value.details["missing_levels"] == ["Senior Director"]
        assert ProjectApproval.query.filter_by(project_id=project.id).count() == 0

    def test_inactive_user_does_not_count_as_approver(self, make_project, make_user, director, pm):
        make_user("Senior Director", status="Inactive")
        project = make_project(budget=2_000_000)

        with pytest.raises(ValidationError):
            approval_service.request_approval(project.id, pm.id)

    def test_new_round_allowed_after_rejection_and_replanning(self, make_project, approvers):
        project = make_project(budget=750_000)
        first = _round(project, approvers)
        _decide(first["Director"], approvers, "Rejected")
        project_service.update_project(
            project.id, {"status": "Planning"}, approvers["Director"].id, "Director",
        )

        second = _round(project, approvers)

        assert set(second) == {"Project Manager", "Director"}
        assert ProjectApproval.query.filter_by(project_id=project.id).count() == 4
        assert {a.round_number for a in second.values()} == {2}

        _decide(second["Project Manager"], approvers)
        result = _decide(second["Director"], approvers)

        assert result["project"].status == "In Progress"
        assert db.session.get(Project, project.id).status == "In Progress"


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


class TestProcessApproval:

    @pytest.mark.parametrize("rejecting_level", ["Project Manager", "Director", "Senior Director"])
    def test_single_rejection_vetoes_round(self, make_project, approvers, rejecting_level):
        project = make_project(budget=1_500_000)
        records = _round(project, approvers)

        result = _decide(records[rejecting_level], approvers, "Rejected", "Over budget")

        db.session.expire_all()
        statuses = {a.approval_level: a for a in ProjectApproval.query.filter_by(project_id=project.id)}
        assert all(a.status == "Rejected" for a in statuses.values())
        assert statuses[rejecting_level].comments == "Over budget"
        for level, record in statuses.items():
            if level != rejecting_level:
                assert record.comments == CASCADE_REJECTION_COMMENT
        assert db.session.get(Project, project.id).status == "On Hold"
        assert result["project"].status == "On Hold"

    def test_rejection_after_partial_approval(self, make_project, approvers):
        project = make_project(budget=1_500_000)
        records = _round(project, approvers)
        _decide(records["Director"], approvers)

        _decide(records["Senior Director"], approvers, "Rejected")

        db.session.expire_all()
        by_level = {a.approval_level: a.status for a in ProjectApproval.query.filter_by(project_id=project.id)}
        assert by_level == {"Director": "Approved", "Senior Director": "Rejected", "Project Manager": "Rejected"}
        assert db.session.get(Project, project.id).status == "On Hold"

    def test_end_to_end_three_level_round(self, make_project, approvers):
        project = make_project(budget=1_500_000)
        records = _round(project, approvers)
        assert len(records) == 3

        result = _decide(records["Director"], approvers)
        assert result["project"] is None
        assert db.session.get(Project, project.id).status == "Planning"
        assert ProjectApproval.query.filter_by(project_id=project.id, status="Pending").count() == 2

        result = _decide(records["Senior Director"], approvers)
        assert result["project"] is None
        assert db.session.get(Project, project.id).status == "Planning"
        assert ProjectApproval.query.filter_by(project_id=project.id, status="Pending").count() == 1

        result = _decide(records["Project Manager"], approvers)
        assert result["project"].status == "In Progress"
        assert ProjectApproval.query.filter_by(project_id=project.id, status="Approved").count() == 3

    def test_direct_approval_closes_open_round(self, project, approvers, director):
        records = _round(project, approvers)
        project_service.approve_project(project.id, director.id, "Director")
        project_service.update_project(project.id, {"status": "Completed"}, director.id, "Director")

        db.session.expire_all()
        stale = db.session.get(ProjectApproval, records["Director"].id)
        assert stale.status == "Rejected"
        assert stale.comments == ROUND_CLOSED_COMMENT
        with pytest.raises(ConflictError):
            _decide(stale, approvers)
        assert db.session.get(Project, project.id).status == "Completed"

    def test_leaving_planning_closes_open_round(self, make_project, approvers, director):
        project = make_project(budget=750_000)
        records = _round(project, approvers)

        project_service.update_project(project.id, {"status": "On Hold"}, director.id, "Director")

        db.session.expire_all()
        assert ProjectApproval.query.filter_by(project_id=project.id, status="Pending").count() == 0
        with pytest.raises(ConflictError):
            _decide(records["Project Manager"], approvers)
        assert db.session.get(Project, project.id).status == "On Hold"

    def test_decision_refused_once_project_left_planning(self, project, approvers):
        records = _round(project, approvers)
        # status moved by a path that bypasses the service layer
        db.session.get(Project, project.id).status = "In Progress"
        db.session.commit()

        with pytest.raises(ConflictError) as exc:
            _decide(records["Director"], approvers)

        assert exc.value.details == {"project_status": "In Progress"}
        assert db.session.get(ProjectApproval, records["Director"].id).status == "Pending"

    def test_single_level_round_advances_immediately(self, project, approvers):
        records = _round(project, approvers)

        result = _decide(records["Director"], approvers, comments="Go ahead")

        assert result["approval"].status == "Approved"
        assert result["approval"].approved_at is not None
        assert result["project"].status == "In Progress"

    def test_invalid_decision(self, project, approvers):
        records = _round(project, approvers)

        with pytest.raises(ValidationError):
            approval_service.process_approval(records["Director"].id, approvers["Director"].id, "Maybe")

    def test_only_assigned_approver_may_decide(self, project, approvers):
        records = _round(project, approvers)

        with pytest.raises(AuthorizationError):
            approval_service.process_approval(records["Director"].id, approvers["Project Manager"].id, "Approved")
        assert db.session.get(ProjectApproval, records["Director"].id).status == "Pending"

    def test_processing_twice_conflicts(self, project, approvers):
        records = _round(project, approvers)
        _decide(records["Director"], approvers)

        with pytest.raises(ConflictError):
            _decide(records["Director"], approvers, "Rejected")

    def test_cascaded_record_cannot_be_processed(self, make_project, approvers):
        project = make_project(budget=750_000)
        records = _round(project, approvers)
        _decide(records["Project Manager"], approvers, "Rejected")

        with pytest.raises(ConflictError):
            _decide(records["Director"], approvers)

    def test_unknown_approval(self, approvers):
        with pytest.raises(NotFoundError):
            approval_service.process_approval(424242, approvers["Director"].id, "Approved")


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


class TestApprovalQueries:

    def test_pending_queue_only_holds_callers_pending_records(self, make_project, approvers):
        first = make_project(name="First", budget=750_000)
        second = make_project(name="Second", budget=100)
        r1 = _round(first, approvers)
        _round(second, approvers)
        _decide(r1["Project Manager"], approvers)

        director_queue = approval_service.get_pending_approvals(approvers["Director"].id)
        pm_queue = approval_service.get_pending_approvals(approvers["Project Manager"].id)

        assert [a.project_id for a in director_queue] == [first.id, second.id]
        assert pm_queue == []

    def test_project_history_is_oldest_first(self, make_project, approvers):
        project = make_project(budget=1_500_000)
        _round(project, approvers)

        history = approval_service.get_project_approvals(project.id)

        assert [a.approval_level for a in history] == ["Project Manager", "Director", "Senior Director"]

    def test_history_for_unknown_project(self):
        with pytest.raises(NotFoundError):
            approval_service.get_project_approvals(31337)


# ═════════════════════════════════════════════════════════════════════════════
# Events
# ═════════════════════════════════════════════════════════════════════════════


class TestApprovalEvents:

    def test_request_publishes_one_event_per_record(self, make_project, approvers, events):
        project = make_project(budget=1_500_000)
        events.clear()

        records = approval_service.request_approval(project.id, approvers["Project Manager"].id)

        requested = events.of_type(ApprovalRequested)
        assert [e.approval_id for e in requested] == [r.id for r in records]
        assert {e.approver_id for e in requested} == {a.id for a in approvers.values()}

    def test_failed_request_publishes_nothing(self, project, approvers, events):
        _round(project, approvers)
        events.clear()

        with pytest.raises(ConflictError):
            _round(project, approvers)
        assert events.events == []

    def test_final_approval_publishes_project_approved(self, project, approvers, events):
        records = _round(project, approvers)
        events.clear()

        _decide(records["Director"], approvers)

        assert [type(e) for e in events.events] == [ProjectApproved]

    def test_rejection_publishes_decision(self, project, approvers, events):
        records = _round(project, approvers)
        events.clear()

        _decide(records["Director"], approvers, "Rejected", "Scope unclear")

        decided = events.of_type(ApprovalDecided)
        assert len(decided) == 1
        assert decided[0].decision == "Rejected"
        assert decided[0].comments == "Scope unclear"
