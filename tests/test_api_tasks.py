"""
HTTP surface of the tasks blueprint: dependencies, status gate, approvals
and time logging.
"""

BASE = "/api/v1/tasks"


class TestTaskEndpoints:

    def test_create_with_dependencies(self, client, project, pm, make_task, auth_headers):
        dig = make_task("Excavate")

        rv = client.post(
            BASE,
            json={"project_id": project.id, "title": "Pour slab", "dependencies": [dig.id]},
            headers=auth_headers(pm),
        )

        assert rv.status_code == 201
        data = rv.get_json()["data"]
        assert data["status"] == "Not Started"
        assert data["dependency_ids"] == [dig.id]

    def test_cycle_rejected_with_details(self, client, pm, make_task, auth_headers):
        first = make_task("Frame")
        second = make_task("Roof", dependencies=[first.id])

        rv = client.put(f"{BASE}/{first.id}", json={"dependencies": [second.id]}, headers=auth_headers(pm))

        assert rv.status_code == 400
        body = rv.get_json()
        assert body["message"] == "Circular dependency detected"
        assert body["details"] == {"task_id": first.id, "depends_on_task_id": second.id}

    def test_status_gate_lists_blockers(self, client, pm, make_task, auth_headers):
        first = make_task("Frame")
        second = make_task("Roof", dependencies=[first.id])

        rv = client.put(f"{BASE}/{second.id}", json={"status": "In Progress"}, headers=auth_headers(pm))

        assert rv.status_code == 400
        blockers = rv.get_json()["details"]["incomplete_dependencies"]
        assert blockers == [{"id": first.id, "title": "Frame", "status": "Not Started"}]

    def test_progress_patch(self, client, pm, make_task, auth_headers):
        task = make_task()

        rv = client.patch(f"{BASE}/{task.id}/progress", json={"completion_percentage": 40}, headers=auth_headers(pm))
        assert rv.status_code == 200
        assert rv.get_json()["data"]["completion_percentage"] == 40

        rv = client.patch(f"{BASE}/{task.id}/progress", json={}, headers=auth_headers(pm))
        assert rv.status_code == 400

    def test_delete_blocked_by_dependents(self, client, pm, make_task, auth_headers):
        first = make_task("Frame")
        second = make_task("Roof", dependencies=[first.id])

        rv = client.delete(f"{BASE}/{first.id}", headers=auth_headers(pm))

        assert rv.status_code == 409
        assert rv.get_json()["details"]["dependent_task_ids"] == [second.id]

    def test_unrelated_user_cannot_update(self, client, employee, make_task, auth_headers):
        task = make_task()
        rv = client.put(f"{BASE}/{task.id}", json={"title": "Hijacked"}, headers=auth_headers(employee))
        assert rv.status_code == 403

    def test_list_filtered_and_paginated(self, client, project, pm, make_task, auth_headers):
        make_task("Low one", priority="Low")
        make_task("High one", priority="High")

        rv = client.get(f"{BASE}?project_id={project.id}&priority=High", headers=auth_headers(pm))

        body = rv.get_json()
        assert [t["title"] for t in body["data"]] == ["High one"]
        assert body["pagination"]["total"] == 1


class TestTaskApprovalEndpoints:

    def test_request_and_respond(self, client, pm, employee, make_task, auth_headers):
        task = make_task(assigned_to=employee.id)

        rv = client.post(f"{BASE}/{task.id}/approval-request", json={"comments": "Done"},
                         headers=auth_headers(employee))
        assert rv.status_code == 201
        approval_id = rv.get_json()["data"]["id"]

        rv = client.put(f"{BASE}/approvals/{approval_id}/respond", json={"status": "Approved"},
                        headers=auth_headers(pm))
        assert rv.status_code == 200
        assert rv.get_json()["message"] == "Task approved successfully"

        history = client.get(f"{BASE}/{task.id}/approvals", headers=auth_headers(pm)).get_json()["data"]
        assert history[0]["status"] == "Approved"


class TestTimeLogEndpoints:

    def test_start_stop_and_list(self, client, employee, make_task, auth_headers):
        task = make_task()
        headers = auth_headers(employee)

        rv = client.post(f"{BASE}/time-logs", json={"task_id": task.id, "start_time": "2026-04-06T08:00:00Z"},
                         headers=headers)
        assert rv.status_code == 201
        log_id = rv.get_json()["data"]["id"]

        conflict = client.post(f"{BASE}/time-logs", json={"task_id": task.id}, headers=headers)
        assert conflict.status_code == 409

        rv = client.put(f"{BASE}/time-logs/{log_id}/stop", json={"description": "Shuttering"}, headers=headers)
        assert rv.status_code == 200
        assert rv.get_json()["data"]["end_time"] is not None

        mine = client.get(f"{BASE}/my-time-logs", headers=headers).get_json()["data"]
        assert [entry["id"] for entry in mine] == [log_id]
        for_task = client.get(f"{BASE}/{task.id}/time-logs", headers=headers).get_json()["data"]
        assert [entry["id"] for entry in for_task] == [log_id]

    def test_task_id_required(self, client, employee, auth_headers):
        rv = client.post(f"{BASE}/time-logs", json={}, headers=auth_headers(employee))
        assert rv.status_code == 400
        assert rv.get_json()["details"] == {"task_id": "required"}
