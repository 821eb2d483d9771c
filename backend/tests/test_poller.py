"""Tests for the schedule poller."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from conftest import ORG_ID, edge, email_node, simple_definition, trigger_node, utc
from core.constants import ContinuationStatus, TriggerType
from db.models.workflow import Workflow
from triggers.base import TriggerEvent
from worker.tasks.schedule_poller import SchedulePoller, build_poller

DAILY_9AM = {"cron": "0 9 * * *", "timezone": "UTC"}


def make_poller(services, **kwargs) -> SchedulePoller:
    return SchedulePoller(
        scheduler=services.scheduler,
        workflow_service=services.workflows,
        engine=services.engine,
        continuation_service=services.continuations,
        execution_logger=services.execution_logger,
        **kwargs,
    )


def failing_scheduled_definition() -> dict:
    return {
        "triggers": [{"node_id": "t1", "type": "schedule"}],
        "nodes": [
            trigger_node("t1", schedule=DAILY_9AM),
            {
                "id": "u1",
                "type": "UPDATE_RECORD",
                "config": {"model": "invoice", "record_id": "missing", "data": {"paid": True}},
            },
        ],
        "connections": [edge("t1", "u1")],
    }


def scheduled_email(trigger_id) -> dict:
    """Schedule node ids are unique across workflows."""
    return {
        "triggers": [{"node_id": trigger_id, "type": "schedule"}],
        "nodes": [trigger_node(trigger_id, schedule=DAILY_9AM), email_node("n1", to="ops@example.com")],
        "connections": [edge(trigger_id, "n1")],
    }


def manual_event() -> TriggerEvent:
    return TriggerEvent(trigger_type=TriggerType.MANUAL, organization_id=ORG_ID, trigger_node_id="t1")


# ─── Scheduled runs ───

@pytest.mark.integration
class TestScheduledRuns:
    async def test_nothing_due(self, services, create_workflow):
        await create_workflow(simple_definition(schedule=DAILY_9AM))
        counts = await build_poller(services).poll_once()
        assert counts == {
            "dispatched": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
            "resumed": 0,
            "expired": 0,
        }

    async def test_due_schedule_runs_and_advances(self, services, create_workflow, sender, clock):
        wf = await create_workflow(simple_definition(schedule=DAILY_9AM))
        clock.set(utc(2025, 1, 6, 9, 0, 30))

        counts = await make_poller(services).poll_once()
        assert counts["dispatched"] == 1
        assert counts["succeeded"] == 1

        assert sender.sent[0]["recipient"] == "ops@example.com"
        assert sender.sent[0]["content"]["subject"] == "Run schedule"

        record = (await services.scheduler.list_for_workflow(wf.id))[0]
        assert record.last_run_at == utc(2025, 1, 6, 9, 0)
        assert record.next_run_at == utc(2025, 1, 7, 9, 0)

        # already advanced, so a second poll in the same minute does nothing
        again = await make_poller(services).poll_once()
        assert again["dispatched"] == 0
        assert len(sender.sent) == 1

    async def test_failed_run_backs_off(self, services, create_workflow, clock):
        wf = await create_workflow(failing_scheduled_definition())
        clock.set(utc(2025, 1, 6, 9, 0, 30))

        counts = await make_poller(services).poll_once()
        assert counts["dispatched"] == 1
        assert counts["failed"] == 1

        record = (await services.scheduler.list_for_workflow(wf.id))[0]
        assert record.retry_count == 1
        assert "not found" in record.schedule_metadata["lastError"]
        assert record.next_run_at == clock() + timedelta(minutes=1)

    async def test_missed_windows_caught_up_one_per_poll(self, services, create_workflow, sender, clock):
        wf = await create_workflow(simple_definition(schedule=DAILY_9AM))
        clock.set(utc(2025, 1, 9, 12, 0))

        await make_poller(services).poll_once()
        record = (await services.scheduler.list_for_workflow(wf.id))[0]
        assert len(sender.sent) == 1
        assert record.next_run_at == utc(2025, 1, 7, 9, 0)

    async def test_inactive_workflow_skipped(self, services, create_workflow, sender, clock):
        wf = await create_workflow(simple_definition(schedule=DAILY_9AM))
        async with services.session_factory() as session:
            await session.execute(update(Workflow).where(Workflow.id == wf.id).values(is_active=False))
            await session.commit()
        clock.set(utc(2025, 1, 6, 9, 1))

        counts = await make_poller(services).poll_once()
        assert counts["skipped"] == 1
        assert counts["dispatched"] == 0
        assert sender.sent == []

        record = (await services.scheduler.list_for_workflow(wf.id))[0]
        assert record.is_active is False

    async def test_batch_size_limits_runs(self, services, create_workflow, clock):
        await create_workflow(scheduled_email("t1"), name="First")
        await create_workflow(scheduled_email("t2"), name="Second")
        clock.set(utc(2025, 1, 6, 9, 1))

        counts = await make_poller(services, batch_size=1).poll_once()
        assert counts["dispatched"] == 1
        counts = await make_poller(services, batch_size=1).poll_once()
        assert counts["dispatched"] == 1


# ─── Continuations ───

@pytest.mark.integration
class TestContinuations:
    async def test_due_delay_resumed(self, services, create_workflow, records, clock):
        wf = await create_workflow({
            "triggers": [{"node_id": "t1", "type": "manual"}],
            "nodes": [
                trigger_node("t1"),
                {"id": "d1", "type": "DELAY", "config": {"minutes": 10}},
                {"id": "r1", "type": "CREATE_RECORD", "config": {"model": "note", "data": {"text": "later"}}},
            ],
            "connections": [edge("t1", "d1"), edge("d1", "r1")],
        })
        definition = await services.workflows.load_definition(wf.id)
        result = await services.engine.execute(definition, manual_event())
        assert result.suspended is True

        poller = make_poller(services)
        assert (await poller.poll_once())["resumed"] == 0

        clock.advance(minutes=11)
        counts = await poller.poll_once()
        assert counts["resumed"] == 1
        assert records.all(ORG_ID, "note")[0]["text"] == "later"

        continuation = await services.continuations.get(result.continuation_ids[0])
        assert continuation.status == ContinuationStatus.RESUMED.value

    async def test_overdue_approval_expires(self, services, create_workflow, records, clock):
        wf = await create_workflow({
            "triggers": [{"node_id": "t1", "type": "manual"}],
            "nodes": [
                trigger_node("t1"),
                {"id": "ap", "type": "APPROVAL", "config": {"approvers": ["boss@example.com"], "timeout_hours": 2}},
                {"id": "r1", "type": "CREATE_RECORD", "config": {"model": "note", "data": {"text": "ok"}}},
            ],
            "connections": [edge("t1", "ap"), edge("ap", "r1")],
        })
        definition = await services.workflows.load_definition(wf.id)
        result = await services.engine.execute(definition, manual_event())

        clock.advance(hours=3)
        counts = await make_poller(services).poll_once()
        assert counts["expired"] == 1
        assert records.all(ORG_ID, "note") == []

        continuation = await services.continuations.get(result.continuation_ids[0])
        assert continuation.status == ContinuationStatus.EXPIRED.value

        warnings = await services.execution_logger.list_entries(wf.id, level="warn")
        assert any("expired without a decision" in e.message for e in warnings)
