"""
Domain events emitted by the approval and task engines.

Engines never talk to the notification layer directly: they build one of
the events below and hand it to ``publish``, which forwards it to the sink
registered on the application (``app.extensions["event_sink"]``). Events
are published only after the triggering transaction has committed.

A sink is any object with ``handle(event)``. The sink owns delivery
semantics; ``NotificationService`` logs and drops failures, and tests
register a ``RecordingSink``.
"""

import logging
from dataclasses import asdict, dataclass, field

from flask import current_app

logger = logging.getLogger(__name__)

EVENT_SINK_KEY = "event_sink"


@dataclass(frozen=True)
class DomainEvent:
    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"event": self.name, **asdict(self)}


# ── Project lifecycle ────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProjectCreated(DomainEvent):
    project_id: int
    created_by: int


@dataclass(frozen=True)
class ProjectStatusChanged(DomainEvent):
    project_id: int
    old_status: str
    new_status: str
    changed_by: int


@dataclass(frozen=True)
class ProjectApproved(DomainEvent):
    project_id: int
    approved_by: int


@dataclass(frozen=True)
class ProjectDeleted(DomainEvent):
    project_id: int
    project_name: str
    deleted_by: int
    # captured before the row disappears
    recipient_ids: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class BudgetExceeded(DomainEvent):
    project_id: int
    budget: float
    actual_cost: float
    over_budget_amount: float
    over_budget_percentage: float


# ── Approval round ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ApprovalRequested(DomainEvent):
    approval_id: int
    project_id: int
    approver_id: int
    approval_level: str
    requested_by: int


@dataclass(frozen=True)
class ApprovalDecided(DomainEvent):
    approval_id: int
    project_id: int
    approver_id: int
    decision: str
    comments: str | None = None


# ── Tasks ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TaskAssigned(DomainEvent):
    task_id: int
    assignee_id: int
    assigned_by: int


@dataclass(frozen=True)
class TaskApprovalRequested(DomainEvent):
    approval_id: int
    task_id: int
    requested_by: int


@dataclass(frozen=True)
class TaskApprovalResponded(DomainEvent):
    approval_id: int
    task_id: int
    responder_id: int
    status: str
    comments: str | None = None


@dataclass(frozen=True)
class TaskDeadlineApproaching(DomainEvent):
    task_id: int
    assignee_id: int
    days_until_due: int


# ── Sinks ────────────────────────────────────────────────────────────────


class NullSink:
    """Drops every event. Used when no sink is registered."""

    def handle(self, event: DomainEvent) -> None:
        logger.debug("Event dropped (no sink): %s", event.name)


class RecordingSink:
    """Keeps events in memory, in publish order."""

    def __init__(self):
        self.events: list[DomainEvent] = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


def set_event_sink(app, sink) -> None:
    app.extensions[EVENT_SINK_KEY] = sink


def get_event_sink():
    return current_app.extensions.get(EVENT_SINK_KEY) or NullSink()


def publish(*events: DomainEvent) -> None:
    """Hand events to the registered sink, in order."""
    sink = get_event_sink()
    for event in events:
        logger.debug("Publishing %s", event.name, extra={"event_type": event.name})
        sink.handle(event)
