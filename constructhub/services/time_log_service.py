"""
Time logging: service layer.

A user runs at most one active log per task. Stopping a log fixes its
duration (rounded minutes) and refreshes the parent task's actual_hours
in the same transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from constructhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from constructhub.models import db
from constructhub.models.task import TimeLog
from constructhub.services.project_service import get_project_for_update
from constructhub.services.task_service import get_task_or_404, recompute_actual_hours
from constructhub.utils.helpers import as_utc, parse_datetime, parse_int

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def start_time_log(task_id: int, user_id: int, start_time=None, description: str | None = None) -> TimeLog:
    """Open an active log for (task, user).

    Runs under the project row lock; the partial unique index on active
    logs catches whatever slips past it.

    Raises:
        ConflictError: the user already has an active log on this task.
        NotFoundError: task does not exist.
    """
    task = get_task_or_404(task_id)
    started = parse_datetime(start_time, "start_time") or _now()
    try:
        get_project_for_update(task.project_id)
        active = db.session.execute(
            select(TimeLog.id).where(
                TimeLog.task_id == task_id,
                TimeLog.user_id == user_id,
                TimeLog.is_active.is_(True),
            ).limit(1)
        ).first()
        if active:
            raise ConflictError("User already has an active time log for this task")

        log = TimeLog(
            task_id=task_id,
            user_id=user_id,
            start_time=started,
            description=description,
            is_active=True,
        )
        db.session.add(log)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Concurrent time log start task_id=%s user_id=%s", task_id, user_id)
        raise ConflictError("User already has an active time log for this task") from None
    except Exception:
        db.session.rollback()
        raise

    logger.info("TimeLog started id=%s task_id=%s user_id=%s", log.id, task_id, user_id)
    return log


def stop_time_log(time_log_id: int, user_id: int, description: str | None = None, end_time=None) -> TimeLog:
    """Close an active log owned by the caller."""
    log = db.session.get(TimeLog, time_log_id)
    if log is None:
        raise NotFoundError("Time log", time_log_id)
    if log.user_id != user_id:
        raise ValidationError("You can only stop your own time logs")
    if not log.is_active:
        raise ConflictError("Time log is not active")

    end = parse_datetime(end_time, "end_time") or _now()
    start = as_utc(log.start_time)
    if end < start:
        raise ValidationError("end_time cannot be before start_time")

    try:
        log.end_time = end
        log.duration = round((end - start).total_seconds() / 60)
        log.is_active = False
        if description:
            log.description = description
        recompute_actual_hours(log.task)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("TimeLog stopped id=%s duration=%smin task_id=%s", log.id, log.duration, log.task_id)
    return log


def get_time_logs_for_task(task_id: int) -> list[TimeLog]:
    get_task_or_404(task_id)
    stmt = (
        select(TimeLog)
        .where(TimeLog.task_id == task_id)
        .order_by(TimeLog.start_time.desc(), TimeLog.id.desc())
    )
    return db.session.execute(stmt).scalars().all()


def get_time_logs_for_user(user_id: int, filters: dict | None = None) -> list[TimeLog]:
    filters = filters or {}
    stmt = select(TimeLog).where(TimeLog.user_id == user_id)
    task_id = parse_int(filters.get("task_id"), "task_id")
    if task_id:
        stmt = stmt.where(TimeLog.task_id == task_id)
    date_from = parse_datetime(filters.get("date_from"), "date_from")
    if date_from:
        stmt = stmt.where(TimeLog.start_time >= date_from)
    date_to = parse_datetime(filters.get("date_to"), "date_to")
    if date_to:
        stmt = stmt.where(TimeLog.start_time <= date_to)
    stmt = stmt.order_by(TimeLog.start_time.desc(), TimeLog.id.desc())
    return db.session.execute(stmt).scalars().all()
