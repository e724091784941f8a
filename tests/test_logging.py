"""Log records carry the request, user and project they belong to."""

import json
import logging

from flask import g

from constructhub.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter


def _record(msg="Budget recalculated", **extra):
    record = logging.LogRecord("constructhub.services", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRequestContextFilter:

    def test_stamps_user_request_and_project(self, app):
        record = _record()
        with app.test_request_context("/api/v1/projects/42"):
            g.request_id = "req-1"
            g.current_user = {"user_id": 7, "role": "Project Manager"}
            assert RequestContextFilter().filter(record) is True

        assert (record.request_id, record.user_id, record.role, record.project_id) == (
            "req-1", 7, "Project Manager", 42,
        )

    def test_explicit_extra_wins(self, app):
        record = _record(project_id=5)
        with app.test_request_context("/api/v1/projects/42"):
            RequestContextFilter().filter(record)
        assert record.project_id == 5

    def test_outside_request_leaves_record_alone(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert not hasattr(record, "user_id")


class TestFormatters:

    def test_json_line(self):
        line = JSONFormatter().format(_record(user_id=7, task_id=3, duration_ms=12.5))
        entry = json.loads(line)

        assert entry["message"] == "Budget recalculated"
        assert entry["user_id"] == 7 and entry["task_id"] == 3
        assert entry["duration_ms"] == 12.5
        assert entry["event_type"] == "log"
        assert "project_id" not in entry

    def test_readable_line_appends_context_tags(self):
        line = ReadableFormatter().format(_record(request_id="req-1", project_id=42))
        assert line.endswith("constructhub.services: Budget recalculated (request_id=req-1 project_id=42)")
        assert "\033[" not in line
