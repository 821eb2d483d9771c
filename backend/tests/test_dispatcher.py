"""Tests for business-event dispatch."""

import pytest

from conftest import ORG_ID, OTHER_ORG_ID, edge, trigger_node
from triggers.base import EventKey
from triggers.dispatcher import EventDispatcher, emit_event, infer_module, normalize_entity, normalize_module
from workflow.definition import parse_definition


def event_workflow(triggers, nodes=None, connections=None) -> dict:
    trigger_ids = [t["node_id"] for t in triggers]
    default_nodes = [
        {"id": f"r_{tid}", "type": "CREATE_RECORD", "config": {"model": "note", "data": {"from": tid, "title": "{title}"}}}
        for tid in trigger_ids
    ]
    return {
        "triggers": [{"type": "event", **t} for t in triggers],
        "nodes": [trigger_node(tid) for tid in trigger_ids] + (nodes if nodes is not None else default_nodes),
        "connections": connections if connections is not None else [edge(tid, f"r_{tid}") for tid in trigger_ids],
    }


class RaisingEngine:
    def __init__(self):
        self.calls = 0

    async def execute(self, definition, trigger):
        self.calls += 1
        raise RuntimeError("executor exploded")


class UnavailableWorkflows:
    async def list_active_definitions(self, organization_id):
        raise RuntimeError("database is gone")


# ─── Normalisation ───

@pytest.mark.unit
class TestNormalisation:
    def test_module_aliases(self):
        assert normalize_module("crm") == "CRM"
        assert normalize_module("Human Resources") == "HR"
        assert normalize_module("pm") == "PROJECTS"
        assert normalize_module("custom") == "CUSTOM"
        assert normalize_module(None) is None

    def test_entity_aliases_depend_on_module(self):
        assert normalize_entity("Customer", "CRM") == "contact"
        assert normalize_entity("customer", "HR") == "customer"
        assert normalize_entity("time-off", "hr") == "timeoff"

    def test_infer_module(self):
        assert infer_module("task") == "PROJECTS"
        assert infer_module("invoice") == "FINANCE"
        assert infer_module("spaceship") is None


# ─── Trigger matching ───

@pytest.mark.unit
class TestMatchTriggers:
    def _match(self, triggers, key, payload=None):
        dispatcher = EventDispatcher(None, None, None)
        definition = parse_definition(event_workflow(triggers))
        return [t.node_id for t in dispatcher.match_triggers(definition, key, payload or {})]

    def test_most_specific_wins(self):
        triggers = [
            {"node_id": "exact", "entity_type": "task", "event_type": "created"},
            {"node_id": "entity_only", "entity_type": "task"},
            {"node_id": "anything"},
        ]
        assert self._match(triggers, EventKey("PROJECTS", "task", "created")) == ["exact"]

    def test_wildcard_used_when_nothing_more_specific(self):
        triggers = [
            {"node_id": "exact", "entity_type": "task", "event_type": "created"},
            {"node_id": "entity_only", "entity_type": "task"},
        ]
        assert self._match(triggers, EventKey("PROJECTS", "task", "deleted")) == ["entity_only"]

    def test_ties_all_match(self):
        triggers = [
            {"node_id": "a", "entity_type": "task", "event_type": "created"},
            {"node_id": "b", "entity_type": "task", "event_type": "created"},
        ]
        assert self._match(triggers, EventKey("PROJECTS", "task", "created")) == ["a", "b"]

    def test_module_mismatch(self):
        triggers = [{"node_id": "a", "module": "finance", "entity_type": "task"}]
        assert self._match(triggers, EventKey("PROJECTS", "task", "created")) == []

    def test_inactive_and_schedule_triggers_ignored(self):
        definition = parse_definition({
            "triggers": [
                {"node_id": "off", "type": "event", "entity_type": "task", "is_active": False},
                {"node_id": "sched", "type": "schedule", "entity_type": "task"},
            ],
            "nodes": [
                trigger_node("off"),
                trigger_node("sched", schedule={"cron": "0 9 * * *"}),
            ],
        })
        dispatcher = EventDispatcher(None, None, None)
        assert dispatcher.match_triggers(definition, EventKey("PROJECTS", "task", "created"), {}) == []

    def test_conditions_filter_payload(self):
        triggers = [{
            "node_id": "a",
            "entity_type": "task",
            "conditions": [{"field": "priority", "operator": "equals", "value": "high"}],
        }]
        key = EventKey("PROJECTS", "task", "created")
        assert self._match(triggers, key, {"priority": "high"}) == ["a"]
        assert self._match(triggers, key, {"priority": "low"}) == []

    def test_entity_alias(self):
        triggers = [{"node_id": "a", "module": "crm", "entity_type": "customer", "event_type": "created"}]
        assert self._match(triggers, EventKey("CRM", "contact", "created")) == ["a"]


# ─── Dispatch ───

@pytest.mark.integration
class TestDispatch:
    async def test_no_matching_workflow(self, services):
        result = await services.dispatcher.dispatch("created", "task", ORG_ID, {"title": "x"})
        assert result.triggered_workflows == 0
        assert result.results == []
        assert result.to_dict()["execution_results"] == []

    async def test_matching_workflow_runs_with_payload(self, services, create_workflow, records):
        wf = await create_workflow(event_workflow([{"node_id": "t1", "entity_type": "task", "event_type": "created"}]))
        result = await services.dispatcher.dispatch("created", "task", ORG_ID, {"title": "Write docs"})

        assert result.event == "task.created"
        assert result.triggered_workflows == 1
        outcome = result.results[0]
        assert outcome.workflow_id == wf.id
        assert outcome.trigger_node_id == "t1"
        assert outcome.success is True
        assert outcome.status == "completed"
        assert records.all(ORG_ID, "note")[0]["title"] == "Write docs"

        entries = await services.execution_logger.list_entries(wf.id, execution_id=outcome.execution_id)
        assert entries

    async def test_match_is_logged(self, services, create_workflow):
        wf = await create_workflow(event_workflow([{"node_id": "t1", "entity_type": "task"}]))
        await services.dispatcher.dispatch("created", "task", ORG_ID, {})
        entries = await services.execution_logger.list_entries(wf.id)
        assert any(
            e.source == "event-dispatcher" and e.message == "Event PROJECTS.task.created matched 1 trigger(s)"
            for e in entries
        )

    async def test_only_most_specific_trigger_runs(self, services, create_workflow, records):
        await create_workflow(event_workflow([
            {"node_id": "t1", "entity_type": "task", "event_type": "created"},
            {"node_id": "t2", "entity_type": "task"},
        ]))
        result = await services.dispatcher.dispatch("created", "task", ORG_ID, {})
        assert [r.trigger_node_id for r in result.results] == ["t1"]
        assert [r["from"] for r in records.all(ORG_ID, "note")] == ["t1"]

    async def test_inactive_and_foreign_workflows_skipped(self, services, create_workflow):
        triggers = [{"node_id": "t1", "entity_type": "task"}]
        await create_workflow(event_workflow(triggers), is_active=False)
        await create_workflow(event_workflow(triggers), organization_id=OTHER_ORG_ID)
        result = await services.dispatcher.dispatch("created", "task", ORG_ID, {})
        assert result.triggered_workflows == 0

    async def test_module_inferred_for_aliased_entity(self, services, create_workflow):
        await create_workflow(event_workflow([
            {"node_id": "t1", "module": "crm", "entity_type": "customer", "event_type": "created"},
        ]))
        result = await services.dispatcher.dispatch("created", "customer", ORG_ID, {})
        assert result.triggered_workflows == 1

    async def test_failing_workflow_does_not_stop_siblings(self, services, create_workflow, records):
        broken = await create_workflow(
            event_workflow(
                [{"node_id": "t1", "entity_type": "invoice"}],
                nodes=[{
                    "id": "u1",
                    "type": "UPDATE_RECORD",
                    "config": {"model": "invoice", "record_id": "missing", "data": {"paid": True}},
                }],
                connections=[edge("t1", "u1")],
            ),
            name="Broken",
        )
        healthy = await create_workflow(event_workflow([{"node_id": "t1", "entity_type": "invoice"}]), name="Healthy")

        result = await services.dispatcher.dispatch("paid", "invoice", ORG_ID, {"title": "INV-1"})
        outcomes = {r.workflow_id: r for r in result.results}

        assert result.triggered_workflows == 2
        assert outcomes[broken.id].success is False
        assert "not found" in outcomes[broken.id].error
        assert outcomes[healthy.id].success is True
        assert len(records.all(ORG_ID, "note")) == 1

    async def test_engine_exception_is_contained(self, services, create_workflow):
        await create_workflow(event_workflow([{"node_id": "t1", "entity_type": "task"}]))
        await create_workflow(event_workflow([{"node_id": "t1", "entity_type": "task"}]))
        engine = RaisingEngine()
        dispatcher = EventDispatcher(services.workflows, engine, services.execution_logger)

        result = await dispatcher.dispatch("created", "task", ORG_ID, {})
        assert engine.calls == 2
        assert [r.error for r in result.results] == ["executor exploded", "executor exploded"]
        assert all(r.success is False for r in result.results)

    async def test_dispatch_nowait(self, services, create_workflow, records):
        await create_workflow(event_workflow([{"node_id": "t1", "entity_type": "task"}]))
        task = services.dispatcher.dispatch_nowait("created", "task", ORG_ID, {"title": "bg"})
        result = await task
        assert result.triggered_workflows == 1
        assert records.all(ORG_ID, "note")[0]["title"] == "bg"

    async def test_workflow_store_failure_returns_empty_result(self, services):
        dispatcher = EventDispatcher(UnavailableWorkflows(), RaisingEngine(), services.execution_logger)
        result = await dispatcher.dispatch("created", "task", ORG_ID, {"title": "x"})
        assert result.event == "task.created"
        assert result.triggered_workflows == 0
        assert result.results == []


@pytest.mark.unit
class TestEmitEvent:
    async def test_never_raises_when_dispatcher_unavailable(self, monkeypatch):
        def broken():
            raise RuntimeError("no services")

        monkeypatch.setattr("triggers.dispatcher.get_event_dispatcher", broken)
        assert await emit_event("created", "task", ORG_ID, {"title": "x"}) is None
