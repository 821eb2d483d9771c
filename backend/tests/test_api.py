"""Integration tests for API endpoints.

These tests exercise the full HTTP stack: FastAPI -> route -> service -> DB,
on a per-test SQLite file with the frozen test clock.
"""

import pytest

from conftest import OTHER_ORG_ID, edge, email_node, simple_definition, trigger_node

DAILY_9AM = {"cron": "0 9 * * *", "timezone": "UTC"}


def approval_definition() -> dict:
    return {
        "triggers": [{"node_id": "t1", "type": "manual"}],
        "nodes": [
            trigger_node("t1"),
            {"id": "ap", "type": "APPROVAL", "config": {"approvers": ["boss@example.com"], "timeout_hours": 48}},
            email_node("n1", to="team@example.com", subject="Approved"),
        ],
        "connections": [edge("t1", "ap"), edge("ap", "n1")],
    }


async def post_workflow(client, headers, definition=None, **fields) -> dict:
    resp = await client.post(
        "/api/v1/workflows",
        json={"name": "Nightly digest", "definition": definition or simple_definition(), **fields},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ─── Workflows ───

@pytest.mark.integration
class TestWorkflowEndpoints:
    async def test_create_and_get(self, client, org_headers):
        created = await post_workflow(client, org_headers, description="Every night")
        assert created["version"] == 1
        assert created["is_active"] is True
        assert created["definition"]["nodes"][1]["id"] == "n1"

        resp = await client.get(f"/api/v1/workflows/{created['id']}", headers=org_headers)
        assert resp.status_code == 200
        assert resp.json()["description"] == "Every night"

    async def test_organization_header_required(self, client):
        resp = await client.get("/api/v1/workflows")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "X-Organization-Id header is required"

    async def test_invalid_definition_rejected(self, client, org_headers):
        definition = simple_definition()
        definition["connections"].append(edge("n1", "ghost"))
        resp = await client.post(
            "/api/v1/workflows",
            json={"name": "Broken", "definition": definition},
            headers=org_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "DefinitionError"

        listed = await client.get("/api/v1/workflows", headers=org_headers)
        assert listed.json()["total"] == 0

    async def test_list_scoped_to_organization(self, client, org_headers):
        await post_workflow(client, org_headers)
        await post_workflow(client, {"X-Organization-Id": OTHER_ORG_ID})

        resp = await client.get("/api/v1/workflows", headers=org_headers)
        data = resp.json()
        assert data["total"] == 1
        assert data["page"] == 1

    async def test_other_organization_gets_404(self, client, org_headers):
        created = await post_workflow(client, org_headers)
        resp = await client.get(
            f"/api/v1/workflows/{created['id']}", headers={"X-Organization-Id": OTHER_ORG_ID}
        )
        assert resp.status_code == 404

    async def test_patch_definition_bumps_version(self, client, org_headers):
        created = await post_workflow(client, org_headers)
        resp = await client.patch(
            f"/api/v1/workflows/{created['id']}",
            json={"definition": simple_definition(schedule=DAILY_9AM)},
            headers=org_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["version"] == 2

        schedules = await client.get(f"/api/v1/workflows/{created['id']}/schedules", headers=org_headers)
        assert [s["node_id"] for s in schedules.json()["schedules"]] == ["t1"]

    async def test_scheduled_node_owned_elsewhere_stores_nothing(self, client, org_headers):
        await post_workflow(client, org_headers, simple_definition(schedule=DAILY_9AM))
        resp = await client.post(
            "/api/v1/workflows",
            json={"name": "Copy", "definition": simple_definition(schedule=DAILY_9AM)},
            headers=org_headers,
        )
        assert resp.status_code == 409

        listed = await client.get("/api/v1/workflows", headers=org_headers)
        assert listed.json()["total"] == 1

    async def test_patch_onto_owned_schedule_keeps_old_version(self, client, org_headers):
        await post_workflow(client, org_headers, simple_definition(schedule=DAILY_9AM))
        other = await post_workflow(client, org_headers)
        resp = await client.patch(
            f"/api/v1/workflows/{other['id']}",
            json={"definition": simple_definition(schedule=DAILY_9AM)},
            headers=org_headers,
        )
        assert resp.status_code == 409

        current = await client.get(f"/api/v1/workflows/{other['id']}", headers=org_headers)
        assert current.json()["version"] == 1
        schedules = await client.get(f"/api/v1/workflows/{other['id']}/schedules", headers=org_headers)
        assert schedules.json()["schedules"] == []

    async def test_deactivate_turns_schedules_off(self, client, org_headers):
        created = await post_workflow(client, org_headers, simple_definition(schedule=DAILY_9AM))
        resp = await client.patch(
            f"/api/v1/workflows/{created['id']}", json={"is_active": False}, headers=org_headers
        )
        assert resp.json()["is_active"] is False

        schedules = await client.get(f"/api/v1/workflows/{created['id']}/schedules", headers=org_headers)
        assert schedules.json()["schedules"][0]["is_active"] is False

    async def test_delete(self, client, org_headers):
        created = await post_workflow(client, org_headers, simple_definition(schedule=DAILY_9AM))
        resp = await client.delete(f"/api/v1/workflows/{created['id']}", headers=org_headers)
        assert resp.status_code == 200

        resp = await client.get(f"/api/v1/workflows/{created['id']}", headers=org_headers)
        assert resp.status_code == 404


# ─── Execution ───

@pytest.mark.integration
class TestExecuteEndpoints:
    async def test_manual_run(self, client, org_headers, sender):
        created = await post_workflow(client, org_headers)
        resp = await client.post(
            f"/api/v1/workflows/{created['id']}/execute", json={"payload": {"source": "api"}}, headers=org_headers
        )
        assert resp.status_code == 200
        result = resp.json()
        assert result["status"] == "completed"
        assert result["completed_node_ids"] == ["n1"]
        assert sender.sent[0]["content"]["subject"] == "Run manual"

        logs = await client.get(
            f"/api/v1/workflows/{created['id']}/logs",
            params={"execution_id": result["execution_id"]},
            headers=org_headers,
        )
        messages = [e["message"] for e in logs.json()["entries"]]
        assert "Execution started" in messages
        assert "Execution completed" in messages

    async def test_inactive_workflow_conflicts(self, client, org_headers):
        created = await post_workflow(client, org_headers, is_active=False)
        resp = await client.post(f"/api/v1/workflows/{created['id']}/execute", json={}, headers=org_headers)
        assert resp.status_code == 409

    async def test_log_level_filter(self, client, org_headers):
        created = await post_workflow(client, org_headers)
        await client.post(f"/api/v1/workflows/{created['id']}/execute", json={}, headers=org_headers)
        resp = await client.get(
            f"/api/v1/workflows/{created['id']}/logs", params={"level": "error"}, headers=org_headers
        )
        assert resp.json()["entries"] == []

    async def test_event_dispatch(self, client, org_headers):
        await post_workflow(client, org_headers, simple_definition(entity_type="task", event_type="created"))
        resp = await client.post(
            "/api/v1/events",
            json={"event_category": "created", "entity_type": "task", "payload": {"title": "x"}},
            headers=org_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["event"] == "task.created"
        assert data["triggered_workflows"] == 1
        assert data["execution_results"][0]["success"] is True

    async def test_event_without_match(self, client, org_headers):
        resp = await client.post(
            "/api/v1/events", json={"event_category": "deleted", "entity_type": "invoice"}, headers=org_headers
        )
        assert resp.json() == {"event": "invoice.deleted", "triggered_workflows": 0, "execution_results": []}


# ─── Schedules ───

@pytest.mark.integration
class TestScheduleEndpoints:
    async def _scheduled(self, client, headers) -> tuple[dict, dict]:
        created = await post_workflow(client, headers, simple_definition(schedule=DAILY_9AM))
        resp = await client.get(f"/api/v1/workflows/{created['id']}/schedules", headers=headers)
        return created, resp.json()["schedules"][0]

    async def test_schedule_created_with_workflow(self, client, org_headers):
        _, schedule = await self._scheduled(client, org_headers)
        assert schedule["cron"] == "0 9 * * *"
        assert schedule["next_run_at"] == "2025-01-06T09:00:00+00:00"

    async def test_upsert_schedule(self, client, org_headers):
        created, schedule = await self._scheduled(client, org_headers)
        resp = await client.put(
            f"/api/v1/workflows/{created['id']}/schedules/t1",
            json={"frequency": "hourly"},
            headers=org_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == schedule["id"]
        assert data["frequency"] == "hourly"
        assert data["next_run_at"] == "2025-01-05T10:15:00+00:00"

    async def test_upsert_invalid_schedule(self, client, org_headers):
        created, _ = await self._scheduled(client, org_headers)
        resp = await client.put(
            f"/api/v1/workflows/{created['id']}/schedules/t1", json={"cron": "every day"}, headers=org_headers
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "InvalidScheduleSpec"

    async def test_upsert_on_non_trigger_node(self, client, org_headers):
        created, _ = await self._scheduled(client, org_headers)
        resp = await client.put(
            f"/api/v1/workflows/{created['id']}/schedules/n1", json={"frequency": "daily"}, headers=org_headers
        )
        assert resp.status_code == 404

    async def test_deactivate_and_activate(self, client, org_headers, clock):
        _, schedule = await self._scheduled(client, org_headers)
        resp = await client.post(f"/api/v1/schedules/{schedule['id']}/deactivate", headers=org_headers)
        assert resp.json()["is_active"] is False

        clock.advance(days=3)
        resp = await client.post(f"/api/v1/schedules/{schedule['id']}/activate", headers=org_headers)
        data = resp.json()
        assert data["is_active"] is True
        assert data["next_run_at"] == "2025-01-09T09:00:00+00:00"

    async def test_schedule_of_other_organization(self, client, org_headers):
        _, schedule = await self._scheduled(client, org_headers)
        resp = await client.get(
            f"/api/v1/schedules/{schedule['id']}", headers={"X-Organization-Id": OTHER_ORG_ID}
        )
        assert resp.status_code == 404


# ─── Approvals ───

@pytest.mark.integration
class TestApprovalEndpoints:
    async def _suspended(self, client, headers) -> str:
        created = await post_workflow(client, headers, approval_definition())
        resp = await client.post(f"/api/v1/workflows/{created['id']}/execute", json={}, headers=headers)
        return resp.json()["continuation_ids"][0]

    async def test_pending_approval(self, client, org_headers):
        continuation_id = await self._suspended(client, org_headers)
        resp = await client.get(f"/api/v1/approvals/{continuation_id}", headers=org_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending"
        assert data["kind"] == "approval"
        assert data["approvers"] == ["boss@example.com"]

    async def test_approve_then_decide_again(self, client, org_headers, sender):
        continuation_id = await self._suspended(client, org_headers)
        resp = await client.post(
            f"/api/v1/approvals/{continuation_id}",
            json={"approved": True, "decided_by": "boss"},
            headers=org_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["completed_node_ids"] == ["n1"]
        assert sender.sent[-1]["recipient"] == "team@example.com"

        again = await client.post(
            f"/api/v1/approvals/{continuation_id}", json={"approved": False}, headers=org_headers
        )
        assert again.status_code == 409

    async def test_reject(self, client, org_headers):
        continuation_id = await self._suspended(client, org_headers)
        resp = await client.post(
            f"/api/v1/approvals/{continuation_id}",
            json={"approved": False, "decided_by": "cfo", "comments": "No budget"},
            headers=org_headers,
        )
        data = resp.json()
        assert data["status"] == "failed"
        assert data["error"] == "Approval rejected by cfo"

    async def test_other_organization(self, client, org_headers):
        continuation_id = await self._suspended(client, org_headers)
        resp = await client.get(
            f"/api/v1/approvals/{continuation_id}", headers={"X-Organization-Id": OTHER_ORG_ID}
        )
        assert resp.status_code == 404


# ─── Templates ───

@pytest.mark.integration
class TestTemplateEndpoints:
    async def test_variable_preview(self, client):
        resp = await client.post(
            "/api/v1/templates/variables",
            json={"subject": "Hi {name}", "message": "Code {code} for {name}", "required_variables": ["name", "due"]},
        )
        assert resp.json() == {
            "variables": ["name", "code"],
            "is_valid": False,
            "missing_variables": ["due"],
        }

    async def test_system_template(self, client, org_headers):
        resp = await client.get("/api/v1/templates/sys_tpl_email_invoice_reminder", headers=org_headers)
        data = resp.json()
        assert data["is_locked"] is True
        assert data["is_system"] is True
        assert data["optional_variables"] == ["due_date"]

    async def test_unknown_template(self, client, org_headers):
        resp = await client.get("/api/v1/templates/tpl-nope", headers=org_headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Template not found: tpl-nope"
