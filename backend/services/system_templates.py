"""Built-in message templates.

System templates ship with the service, are visible to every
organization and are locked: workflows may use them but never
override their content.
"""

from dataclasses import dataclass
from typing import Optional

from core.constants import SYSTEM_TEMPLATE_PREFIX


@dataclass(frozen=True)
class SystemTemplate:
    id: str
    name: str
    description: str
    channel: str
    content: dict
    required_variables: tuple = ()
    optional_variables: tuple = ()
    is_locked: bool = True
    category: str = "COMMUNICATION"


SYSTEM_TEMPLATES: tuple[SystemTemplate, ...] = (
    SystemTemplate(
        id="sys_tpl_email_welcome",
        name="Welcome Email",
        description="Greets a new user and introduces your organization",
        channel="EMAIL",
        content={
            "subject": "Welcome to {organization_name}",
            "html_body": (
                "<h2>Hi {user_name},</h2>"
                "<p>Welcome to {organization_name}! We're excited to have you.</p>"
            ),
        },
        required_variables=("user_name", "organization_name"),
    ),
    SystemTemplate(
        id="sys_tpl_email_invoice_reminder",
        name="Invoice Reminder Email",
        description="Reminds customers about open invoices",
        channel="EMAIL",
        content={
            "subject": "Invoice Reminder #{invoice_number}",
            "html_body": (
                "<p>Dear {customer_name},</p>"
                "<p>This is a friendly reminder for invoice #{invoice_number}.</p>"
            ),
        },
        required_variables=("customer_name", "invoice_number"),
        optional_variables=("due_date",),
    ),
    SystemTemplate(
        id="sys_tpl_sms_reminder",
        name="Reminder SMS",
        description="Simple reminder via SMS",
        channel="SMS",
        content={
            "message": "Hi {customer_name}, this is a reminder about invoice {invoice_number}.",
        },
        required_variables=("customer_name", "invoice_number"),
    ),
    SystemTemplate(
        id="sys_tpl_sms_followup",
        name="Follow-up SMS",
        description="Friendly follow-up via SMS",
        channel="SMS",
        content={
            "message": "Hello {user_name}, just checking in. - {organization_name}",
        },
        required_variables=("user_name", "organization_name"),
    ),
)

_BY_ID = {template.id: template for template in SYSTEM_TEMPLATES}


def is_system_template(template_id: str) -> bool:
    return bool(template_id) and template_id.startswith(SYSTEM_TEMPLATE_PREFIX)


def find_system_template(template_id: str) -> Optional[SystemTemplate]:
    return _BY_ID.get(template_id)


def list_system_templates(channel: Optional[str] = None) -> list[SystemTemplate]:
    if channel is None:
        return list(SYSTEM_TEMPLATES)
    return [t for t in SYSTEM_TEMPLATES if t.channel == channel.upper()]
