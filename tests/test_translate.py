"""
Tests for HR ↔ Linear vocabulary translation.
"""

from datetime import date

from sync.local import LocalDepartment, LocalProject, LocalTask
from sync.translate import (
    department_to_team_payload,
    issue_to_task_changes,
    payload_hash,
    project_to_local_changes,
    project_to_payload,
    task_to_issue_payload,
)
from tracker.schemas import LinearIssue, LinearProject


class TestOutbound:
    def test_task_payload(self):
        task = LocalTask(id="T1", title="Review contract", priority="urgent", due_date=date(2026, 11, 2))
        payload = task_to_issue_payload(task, team_id="team-1", project_id="project-1")

        assert payload.to_input() == {
            "title": "Review contract",
            "teamId": "team-1",
            "projectId": "project-1",
            "priority": 1,
            "dueDate": "2026-11-02",
        }

    def test_project_status_mapping(self):
        project = LocalProject(id="P1", name="Hiring", status="on_hold")
        assert project_to_payload(project, team_id="team-1").state == "paused"

    def test_department_key_upper_cased(self):
        payload = department_to_team_payload(LocalDepartment(id="D1", name="People Ops", code="ppl"))
        assert payload.key == "PPL"

    def test_payload_hash_stable_and_sensitive(self):
        task = LocalTask(id="T1", title="A")
        first = payload_hash(task_to_issue_payload(task, team_id="team-1"))
        again = payload_hash(task_to_issue_payload(task, team_id="team-1"))
        changed = payload_hash(task_to_issue_payload(task.model_copy(update={"title": "B"}), team_id="team-1"))

        assert first == again
        assert first != changed


class TestInbound:
    def test_issue_changes(self):
        issue = LinearIssue.model_validate(
            {
                "id": "i1",
                "identifier": "ENG-1",
                "title": "Remote title",
                "priority": 2,
                "dueDate": "2026-12-01",
                "state": {"id": "s", "name": "In Progress", "type": "started"},
            }
        )
        assert issue_to_task_changes(issue) == {
            "title": "Remote title",
            "description": None,
            "priority": "high",
            "due_date": date(2026, 12, 1),
            "status": "in_progress",
        }

    def test_unknown_state_name_falls_back_to_type(self):
        issue = LinearIssue.model_validate(
            {"id": "i1", "identifier": "ENG-1", "title": "t", "state": {"id": "s", "name": "QA", "type": "completed"}}
        )
        assert issue_to_task_changes(issue)["status"] == "completed"

    def test_no_priority_maps_to_medium(self):
        issue = LinearIssue.model_validate({"id": "i1", "identifier": "ENG-1", "title": "t", "priority": 0})
        assert issue_to_task_changes(issue)["priority"] == "medium"

    def test_project_changes(self):
        project = LinearProject.model_validate(
            {"id": "p1", "name": "Hiring", "state": "started", "progress": 0.4, "teams": {"nodes": []}}
        )
        changes = project_to_local_changes(project)
        assert changes["status"] == "active"
        assert changes["progress"] == 40
