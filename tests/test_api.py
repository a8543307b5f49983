"""
HTTP surface tests - full remediation flows through the FastAPI app.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from remediation.api.main import app

ADVISOR = {"X-User-Id": "advisor-1", "X-Workspace-Id": "ws-1"}
REVIEWER = {"X-User-Id": "cco-1", "X-Workspace-Id": "ws-1", "X-User-Role": "OWNER_CCO"}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "api.db"))
    with TestClient(app) as client:
        yield client


def create_flag(client, severity="CRITICAL"):
    response = client.post("/flags", headers=ADVISOR, json={
        "meetingId": "meeting-1",
        "type": "UNSUPPORTED_RECOMMENDATION",
        "severity": severity,
        "originatingEvidence": {"recommendationStartTime": 95},
    })
    assert response.status_code == 201
    return response.json()["flag"]["id"]


def start_body():
    return {
        "action": "START_REMEDIATION",
        "resolutionType": "ADD_CONTEXT",
        "rationale": "Advisor explained the rollover costs earlier in the meeting at 01:35.",
        "dueDate": (datetime.now(timezone.utc) + timedelta(days=3)).isoformat(),
        "evidence": [{"type": "TRANSCRIPT_SNIPPET", "label": "01:35", "metadata": {"startTime": 95}}],
    }


def act(client, flag_id, body, headers=ADVISOR):
    return client.post(f"/flags/{flag_id}/remediation", headers=headers, json=body)


class TestHealthAndIntake:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True

    def test_missing_identity_is_unauthorized(self, client):
        assert client.get("/flags").status_code == 401

    def test_register_and_list(self, client):
        flag_id = create_flag(client)
        response = client.get("/flags", headers=ADVISOR, params={"status": "OPEN"})
        assert response.status_code == 200
        assert [f["id"] for f in response.json()["flags"]] == [flag_id]

    def test_list_rejects_unknown_status(self, client):
        response = client.get("/flags", headers=ADVISOR, params={"status": "DONE"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "VALIDATION_ERROR"

    def test_register_invalid_severity(self, client):
        response = client.post("/flags", headers=ADVISOR, json={
            "meetingId": "m", "type": "T", "severity": "INFO",
        })
        assert response.status_code == 422

    def test_other_workspace_cannot_see_flag(self, client):
        flag_id = create_flag(client)
        other = {"X-User-Id": "u-2", "X-Workspace-Id": "ws-2"}
        response = client.get(f"/flags/{flag_id}", headers=other)
        assert response.status_code == 404
        assert response.json()["error_type"] == "NOT_FOUND"


class TestRemediationFlow:

    def test_critical_flow_through_approval(self, client):
        flag_id = create_flag(client, "CRITICAL")

        response = act(client, flag_id, start_body())
        assert response.status_code == 200
        assert response.json()["flag"]["status"] == "IN_REMEDIATION"

        detail = client.get(f"/flags/{flag_id}", headers=ADVISOR).json()
        task_id = detail["tasks"][0]["id"]
        response = act(client, flag_id, {"action": "COMPLETE_TASK", "taskId": task_id})
        assert response.json()["task"]["status"] == "COMPLETED"

        response = act(client, flag_id, {"action": "SUBMIT_FOR_VERIFICATION"})
        assert response.json()["flag"]["status"] == "PENDING_VERIFICATION"

        response = act(client, flag_id, {"action": "APPROVE"}, headers=ADVISOR)
        assert response.status_code == 403
        assert response.json()["error_type"] == "FORBIDDEN"

        response = act(client, flag_id, {"action": "APPROVE", "note": "ok"}, headers=REVIEWER)
        assert response.status_code == 200
        body = response.json()
        assert body["flag"]["status"] == "CLOSED"
        assert body["verification"]["decision"] == "APPROVED"

        audit = client.get(f"/flags/{flag_id}/audit", headers=ADVISOR).json()["events"]
        assert [e["action"] for e in audit] == [
            "VERIFICATION", "REMEDIATION_UPDATE", "TASK_UPDATE", "EVIDENCE_ADD", "REMEDIATION_START",
        ]

    def test_request_context_in_audit(self, client):
        flag_id = create_flag(client)
        headers = dict(ADVISOR, **{"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "compliance-ui"})
        act(client, flag_id, start_body(), headers=headers)

        events = client.get(f"/flags/{flag_id}/audit", headers=ADVISOR).json()["events"]
        assert events[-1]["metadata"]["ip_address"] == "203.0.113.7"
        assert events[-1]["metadata"]["user_agent"] == "compliance-ui"

    def test_incomplete_tasks(self, client):
        flag_id = create_flag(client)
        act(client, flag_id, start_body())
        response = act(client, flag_id, {"action": "SUBMIT_FOR_VERIFICATION"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "INCOMPLETE_TASKS"

    def test_invalid_state_is_conflict(self, client):
        flag_id = create_flag(client)
        act(client, flag_id, start_body())
        response = act(client, flag_id, start_body())
        assert response.status_code == 409
        assert response.json()["error_type"] == "INVALID_STATE"

    def test_evidence_requirement(self, client):
        flag_id = create_flag(client)
        body = start_body()
        body["evidence"] = []
        response = act(client, flag_id, body)
        assert response.status_code == 400
        assert response.json()["error_type"] == "EVIDENCE_REQUIRED"
        assert response.json()["message"] == "Transcript evidence is required for Add context."

    def test_malformed_payload(self, client):
        flag_id = create_flag(client)
        response = act(client, flag_id, {"action": "START_REMEDIATION"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "VALIDATION_ERROR"

    def test_unknown_flag(self, client):
        response = act(client, "missing", {"action": "SUBMIT_FOR_VERIFICATION"})
        assert response.status_code == 404

    def test_override(self, client):
        flag_id = create_flag(client)
        response = act(client, flag_id, {
            "action": "OVERRIDE", "reason": "Client relationship terminated", "category": "terminated",
        }, headers=REVIEWER)
        assert response.status_code == 200
        assert response.json()["flag"]["status"] == "CLOSED_ACCEPTED_RISK"

        detail = client.get(f"/flags/{flag_id}", headers=ADVISOR).json()
        assert detail["resolution"]["resolution_type"] == "OVERRIDE_APPROVED"
        assert detail["resolution"]["override_category"] == "terminated"
