"""WEBHOOK action implementation.

Sends the node's rendered body to an external URL with httpx and
stores the parsed response under the node's ``output_key``.
"""

import ipaddress
from typing import Any, Dict
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from core.constants import NodeType
from tasks.base_task import BaseTask, TaskContext, TaskResult
from workflow.definition import WebhookConfig

logger = structlog.get_logger(__name__)


def _is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, loopback or reserved."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local


def _validate_url_safety(url: str, allow_private_networks: bool = False) -> None:
    """Reject URLs a workflow author must not reach.

    Blocks:
    - Non-HTTP(S) schemes
    - localhost and private/loopback IP literals (unless allowed)

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme!r}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if allow_private_networks:
        return

    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise ValueError("Connections to localhost are not allowed")

    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")


class WebhookTask(BaseTask):
    """Call an external HTTP endpoint.

    Config:
        url: Target URL (required)
        method: GET, POST, PUT, PATCH, DELETE (default: POST)
        headers: Dict of HTTP headers
        body: JSON body, sent for POST/PUT/PATCH
        output_key: Variable receiving ``{status_code, data, url}``
    """

    task_type = NodeType.WEBHOOK.value
    display_name = "Webhook"
    description = "Send an HTTP request to an external service"

    async def execute(self, config: Dict[str, Any], context: TaskContext) -> TaskResult:
        try:
            webhook = WebhookConfig.model_validate(config)
        except PydanticValidationError as e:
            return TaskResult.failed(f"Invalid webhook config: {e}")

        try:
            _validate_url_safety(webhook.url, self.services.allow_private_networks)
        except ValueError as e:
            return TaskResult.failed(str(e))

        kwargs: Dict[str, Any] = {
            "method": webhook.method,
            "url": webhook.url,
            "headers": {"X-Workflow-Execution": context.execution_id, **webhook.headers},
        }
        if webhook.body is not None and webhook.method in ("POST", "PUT", "PATCH"):
            kwargs["json"] = webhook.body

        timeout = self.services.webhook_timeout
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self.services.http_transport
            ) as client:
                response = await client.request(**kwargs)
        except httpx.TimeoutException:
            return TaskResult.failed(f"Request timed out after {timeout}s")
        except httpx.HTTPError as e:
            return TaskResult.failed(f"HTTP request failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            response_data = response.text

        output = {
            "status_code": response.status_code,
            "data": response_data,
            "url": str(response.url),
        }
        success = 200 <= response.status_code < 300
        if not success:
            logger.warning(
                "Webhook returned error status",
                url=webhook.url,
                status_code=response.status_code,
            )
        return TaskResult(
            success=success,
            output=output,
            error=None if success else f"HTTP {response.status_code}",
        )


HTTP_TASK_TYPES = {
    NodeType.WEBHOOK.value: WebhookTask,
}
