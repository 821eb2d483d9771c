"""Tests for ACTION node implementations and notification senders."""

import json

import httpx
import pytest

from conftest import ORG_ID
from core.constants import ACTION_NODE_TYPES, NodeType
from notifications.channels import NotificationChannel, WebhookRelaySender
from tasks.base_task import ActionServices, BaseTask, TaskContext, TaskResult
from tasks.implementations.http_task import WebhookTask
from tasks.implementations.message_task import EmailTask, SmsTask, _MessageTask
from tasks.registry import TaskRegistry
from workflow.scope import Scope


def context(scope=None, node_id="n1") -> TaskContext:
    return TaskContext(
        organization_id=ORG_ID,
        workflow_id="wf-1",
        execution_id="exec-1",
        node_id=node_id,
        scope=scope if scope is not None else Scope(),
    )


def webhook(handler, allow_private_networks=False) -> WebhookTask:
    return WebhookTask(
        ActionServices(
            http_transport=httpx.MockTransport(handler),
            allow_private_networks=allow_private_networks,
        )
    )


# ─── Registry ───

@pytest.mark.unit
class TestTaskRegistry:
    def test_every_action_type_registered(self):
        registry = TaskRegistry()
        assert registry.missing_types() == []
        assert sorted(registry.available_types) == sorted(t.value for t in ACTION_NODE_TYPES)

    def test_instances_share_services(self):
        services = ActionServices(webhook_timeout=5)
        instance = TaskRegistry(services).create_instance(NodeType.WEBHOOK)
        assert isinstance(instance, WebhookTask)
        assert instance.services is services

    def test_unknown_type(self):
        assert TaskRegistry().create_instance("TELEPORT") is None

    def test_list_all_metadata(self):
        entries = {e["task_type"]: e for e in TaskRegistry().list_all()}
        assert entries["EMAIL"]["display_name"] == "Send Email"


# ─── Base task ───

class ExplodingTask(BaseTask):
    task_type = NodeType.WEBHOOK.value

    async def execute(self, config, context):
        raise KeyError("recipient")


class EchoTask(BaseTask):
    task_type = NodeType.WEBHOOK.value

    async def execute(self, config, context):
        return TaskResult(success=True, output=config)


@pytest.mark.unit
class TestBaseTaskRun:
    async def test_exception_becomes_failed_result(self):
        result = await ExplodingTask().run({}, context())
        assert result.success is False
        assert result.error == "'recipient'"
        assert result.elapsed_ms >= 0

    async def test_success_passes_output_through(self):
        result = await EchoTask().run({"a": 1}, context())
        assert result.success is True
        assert result.output == {"a": 1}
        assert result.metadata == {}

    def test_failed_helper(self):
        result = TaskResult.failed("nope", status_code=500)
        assert (result.success, result.error, result.metadata) == (False, "nope", {"status_code": 500})


# ─── Webhook ───

@pytest.mark.unit
class TestWebhookTask:
    async def test_posts_json_and_returns_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            seen["execution"] = request.headers["X-Workflow-Execution"]
            seen["token"] = request.headers["X-Token"]
            return httpx.Response(201, json={"ok": True})

        result = await webhook(handler).run(
            {
                "url": "https://hooks.example.com/in",
                "headers": {"X-Token": "abc"},
                "body": {"deal": "ACME"},
            },
            context(),
        )

        assert result.success is True
        assert result.output == {"status_code": 201, "data": {"ok": True}, "url": "https://hooks.example.com/in"}
        assert seen == {"method": "POST", "body": {"deal": "ACME"}, "execution": "exec-1", "token": "abc"}

    async def test_get_sends_no_body(self):
        def handler(request):
            assert request.content == b""
            return httpx.Response(200, text="plain")

        result = await webhook(handler).run(
            {"url": "https://api.example.com/status", "method": "GET", "body": {"ignored": 1}},
            context(),
        )
        assert result.success is True
        assert result.output["data"] == "plain"

    async def test_error_status_fails(self):
        result = await webhook(lambda request: httpx.Response(503, json={"error": "down"})).run(
            {"url": "https://api.example.com/hook"}, context()
        )
        assert result.success is False
        assert result.error == "HTTP 503"
        assert result.output["data"] == {"error": "down"}

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        result = await webhook(handler).run({"url": "https://api.example.com/hook"}, context())
        assert result.success is False
        assert result.error.startswith("HTTP request failed")

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow")

        result = await webhook(handler).run({"url": "https://api.example.com/hook"}, context())
        assert result.error == "Request timed out after 30s"

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:8000/admin",
            "http://127.0.0.1/",
            "http://10.0.0.5/internal",
            "http://192.168.1.1/",
            "ftp://files.example.com/x",
        ],
    )
    async def test_unsafe_urls_blocked(self, url):
        calls = []
        result = await webhook(lambda request: calls.append(request) or httpx.Response(200)).run(
            {"url": url}, context()
        )
        assert result.success is False
        assert calls == []

    async def test_private_networks_allowed_by_setting(self):
        result = await webhook(lambda request: httpx.Response(204), allow_private_networks=True).run(
            {"url": "http://10.0.0.5/internal"}, context()
        )
        assert result.success is True

    async def test_invalid_config(self):
        result = await webhook(lambda request: httpx.Response(200)).run({"method": "POST"}, context())
        assert result.success is False
        assert result.error.startswith("Invalid webhook config")


# ─── Records ───

@pytest.mark.unit
class TestRecordTasks:
    async def test_create_then_update(self, records):
        registry = TaskRegistry(ActionServices(record_repository=records))
        created = await registry.create_instance("CREATE_RECORD").run(
            {"model": "Contact", "data": {"name": "Ann"}}, context()
        )
        assert created.success is True
        record_id = created.output["id"]

        updated = await registry.create_instance("UPDATE_RECORD").run(
            {"model": "contact", "record_id": record_id, "data": {"phone": "+100"}}, context()
        )
        assert updated.success is True
        assert records.get(ORG_ID, "contact", record_id)["phone"] == "+100"
        assert records.get(ORG_ID, "contact", record_id)["name"] == "Ann"

    async def test_update_missing_record(self, records):
        registry = TaskRegistry(ActionServices(record_repository=records))
        result = await registry.create_instance("UPDATE_RECORD").run(
            {"model": "task", "record_id": 42, "data": {}}, context()
        )
        assert result.success is False
        assert result.error == "task 42 not found"

    async def test_no_repository(self):
        result = await TaskRegistry().create_instance("CREATE_RECORD").run({"model": "task"}, context())
        assert result.error == "No record repository configured"


# ─── Messages ───

@pytest.mark.integration
class TestMessageTasks:
    async def test_custom_email(self, services, sender):
        task = services.task_registry.create_instance("EMAIL")
        result = await task.run(
            {"to": "ann@example.com", "subject": "Hi {name}", "message": "Order {order.id} shipped"},
            context(Scope({"name": "Ann", "order": {"id": 7}})),
        )
        assert result.success is True
        assert result.output["subject"] == "Hi Ann"
        assert result.output["recipient"] == "ann@example.com"
        assert sender.sent[0]["channel"] == NotificationChannel.EMAIL
        assert sender.sent[0]["content"]["message"] == "Order 7 shipped"

    async def test_system_template_sms(self, services, sender):
        task = services.task_registry.create_instance("SMS")
        result = await task.run(
            {
                "template_mode": "TEMPLATE",
                "template_id": "sys_tpl_sms_followup",
                "to": "+15550100",
                "message": "ignored override",
            },
            context(Scope({"user_name": "Bo", "organization_name": "Acme"})),
        )
        assert result.success is True
        assert sender.sent[0]["content"]["message"] == "Hello Bo, just checking in. - Acme"
        assert result.metadata["template_id"] == "sys_tpl_sms_followup"

    async def test_unknown_template_fails(self, services, sender):
        task = services.task_registry.create_instance("EMAIL")
        result = await task.run(
            {"template_mode": "TEMPLATE", "template_id": "tpl-missing", "to": "a@example.com"},
            context(),
        )
        assert result.success is False
        assert result.error == "Template not found: tpl-missing"
        assert sender.sent == []

    async def test_empty_recipient(self, services):
        result = await services.task_registry.create_instance("SMS").run(
            {"to": "", "message": "hi"}, context()
        )
        assert result.error == "Missing recipient"

    def test_content_fields_left_for_the_resolver(self):
        assert EmailTask.unrendered_fields == ("subject", "html_body", "message")
        assert SmsTask.unrendered_fields == ("message",)

    def test_message_task_must_resolve_content(self):
        class Unresolved(_MessageTask):
            task_type = "EMAIL"

        with pytest.raises(TypeError):
            Unresolved()


# ─── Relay sender ───

@pytest.mark.unit
class TestWebhookRelaySender:
    async def test_delivers_and_reads_provider_id(self):
        captured = {}

        def handler(request):
            captured.update(json.loads(request.content))
            return httpx.Response(200, json={"id": "msg-9"})

        relay = WebhookRelaySender("https://relay.example.com/send", transport=httpx.MockTransport(handler))
        result = await relay.send(NotificationChannel.SMS, {"message": "hello"}, "+100")

        assert result.success is True
        assert result.provider_message_id == "msg-9"
        assert captured["channel"] == "SMS"
        assert captured["recipient"] == "+100"
        assert captured["message"] == "hello"

    async def test_relay_error(self):
        relay = WebhookRelaySender(
            "https://relay.example.com/send",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        result = await relay.send(NotificationChannel.EMAIL, {"subject": "x"}, "a@example.com")
        assert result.success is False
        assert result.error
