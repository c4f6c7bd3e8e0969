import asyncio
import json
import logging
import math
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import requests

from executor.template_renderer import TemplateRenderer
from models.automation import Automation
from models.contact import Contact
from models.enrollment import Enrollment
from models.step import (
    ConditionConfig,
    CreateTaskConfig,
    MoveDealConfig,
    SendEmailConfig,
    SendSmsConfig,
    Step,
    StepConfig,
    StepKind,
    StepOutcome,
    TagConfig,
    UpdateContactConfig,
    WaitConfig,
    WebhookConfig,
)
from senders.base_sender import BaseEmailSender, BaseSmsSender
from store.contact_client import ContactClient
from store.crm_client import CrmClient
from store.log_client import LogClient
from store.template_client import TemplateClient
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")

Handler = Callable[[Enrollment, Contact, Automation, Any], Awaitable[StepOutcome]]


def resolve_field(contact: Contact, field: Optional[str]) -> Any:
    """Reads a direct contact field, falling back to a custom field of the same name."""
    if not field:
        return None
    if field == "tags":
        return list(contact.tags or [])

    direct = getattr(contact, field, None) if field in Contact.model_fields else None
    if direct:
        return direct
    return (contact.custom_fields or {}).get(field, direct)


def _to_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        number = float(value)
    elif isinstance(value, str):
        if not value.strip():
            return 0.0
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _contains(field_value: Any, value: Any) -> bool:
    if isinstance(field_value, (list, tuple, set)):
        return value in field_value
    if value is None:
        return False
    haystack = "" if field_value is None else str(field_value)
    return str(value) in haystack


def evaluate_condition(contact: Contact, config: ConditionConfig) -> bool:
    """Evaluates one operator against a contact field. Unknown operators are true."""
    field_value = resolve_field(contact, config.field)
    value = config.value
    operator = config.operator

    if operator == "equals":
        return field_value == value
    if operator == "not_equals":
        return field_value != value
    if operator == "contains":
        return _contains(field_value, value)
    if operator == "not_contains":
        return not _contains(field_value, value)
    if operator == "is_empty":
        return not field_value
    if operator == "is_not_empty":
        return bool(field_value)
    if operator in ("greater_than", "less_than"):
        left, right = _to_number(field_value), _to_number(value)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right
    return True


class StepExecutor:
    """
    One handler per step kind. Handlers report through StepOutcome; any
    exception is converted to a failed outcome at the dispatch boundary.
    """

    def __init__(self,
                 contact_client: ContactClient,
                 template_client: TemplateClient,
                 log_client: LogClient,
                 crm_client: CrmClient,
                 email_sender: BaseEmailSender,
                 sms_sender: BaseSmsSender,
                 renderer: Optional[TemplateRenderer] = None,
                 http_session: Optional[requests.Session] = None,
                 webhook_timeout: float = 30):
        self.contact_client = contact_client
        self.template_client = template_client
        self.log_client = log_client
        self.crm_client = crm_client
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.renderer = renderer or TemplateRenderer()
        self.http = http_session or requests.Session()
        self.webhook_timeout = webhook_timeout

        self.handlers: Dict[StepKind, Handler] = {
            StepKind.SEND_EMAIL: self.send_email,
            StepKind.SEND_SMS: self.send_sms,
            StepKind.ADD_TAG: self.add_tag,
            StepKind.REMOVE_TAG: self.remove_tag,
            StepKind.WAIT: self.wait,
            StepKind.CREATE_TASK: self.create_task,
            StepKind.UPDATE_CONTACT: self.update_contact,
            StepKind.CONDITION: self.condition,
            StepKind.WEBHOOK: self.webhook,
            StepKind.MOVE_DEAL: self.move_deal,
        }

    async def execute(self, step: Step, enrollment: Enrollment, contact: Contact, automation: Automation) -> StepOutcome:
        handler = self.handlers.get(step.kind)
        if handler is None:
            return StepOutcome.fail(f"Unknown step type: {step.step_type}")

        try:
            config: StepConfig = step.typed_config()
            return await handler(enrollment, contact, automation, config)
        except Exception as e:
            logger.error(f"Step {step.step_order} ({step.step_type}) raised for enrollment {enrollment.id}: {e}")
            return StepOutcome.fail(str(e))

    # --- messaging ---

    async def send_email(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: SendEmailConfig) -> StepOutcome:
        if not contact.email:
            return StepOutcome.fail("Contact has no email address")
        if not config.template_id:
            return StepOutcome.fail("No template_id specified")

        template = await self.template_client.get_email_template(config.template_id, automation.organization_id)
        if not template:
            return StepOutcome.fail("Email template not found")

        result = await self.email_sender.send_template_email(
            template=template, contact=contact, additional_data=enrollment.context
        )

        variables = contact.template_variables(enrollment.context)
        await self.log_client.log_email(
            organization_id=automation.organization_id,
            contact_id=contact.id,
            template_id=template.id,
            enrollment_id=enrollment.id,
            to_email=contact.email,
            subject=self.renderer.render(template.subject, variables),
            body_html=self.renderer.render(template.body_html, variables),
            status="sent" if result.success else "failed",
            external_id=result.id,
            error_message=None if result.success else result.error,
        )

        if not result.delivered:
            return StepOutcome.fail(result.error or "Email send failed")
        return StepOutcome.ok(output={"email_id": result.id, "simulated": result.simulated})

    async def send_sms(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: SendSmsConfig) -> StepOutcome:
        if not contact.phone:
            return StepOutcome.fail("Contact has no phone number")
        if not config.template_id and not config.message:
            return StepOutcome.fail("No template_id or message specified")

        template_id = None
        if config.template_id:
            template = await self.template_client.get_sms_template(config.template_id, automation.organization_id)
            if not template:
                return StepOutcome.fail("SMS template not found")
            template_id = template.id
            body = template.message
        else:
            body = config.message

        message = self.renderer.render_for_contact(body, contact, enrollment.context)

        to_phone = self.sms_sender.normalize_phone_number(contact.phone)
        if not self.sms_sender.is_valid_phone_number(to_phone):
            return StepOutcome.fail(f"Invalid phone number: {contact.phone}")

        info = self.sms_sender.get_message_info(message)
        result = await self.sms_sender.send_sms(to=to_phone, message=message)

        await self.log_client.log_sms(
            organization_id=automation.organization_id,
            contact_id=contact.id,
            template_id=template_id,
            enrollment_id=enrollment.id,
            to_phone=to_phone,
            from_phone=self.sms_sender.from_number,
            message=message,
            direction="outbound",
            status="sent" if result.success else "failed",
            external_id=result.id,
            segments=info["segments"],
        )

        if not result.delivered:
            return StepOutcome.fail(result.error or "SMS send failed")
        return StepOutcome.ok(output={"sms_id": result.id, "segments": info["segments"], "simulated": result.simulated})

    # --- contact mutations ---

    async def add_tag(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: TagConfig) -> StepOutcome:
        if not config.tag_name:
            return StepOutcome.fail("No tag_name specified")
        tags = await self.contact_client.add_tag(contact.id, config.tag_name)
        return StepOutcome.ok(output={"tags": tags})

    async def remove_tag(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: TagConfig) -> StepOutcome:
        if not config.tag_name:
            return StepOutcome.fail("No tag_name specified")
        tags = await self.contact_client.remove_tag(contact.id, config.tag_name)
        return StepOutcome.ok(output={"tags": tags})

    async def update_contact(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: UpdateContactConfig) -> StepOutcome:
        if not config.status and not config.custom_fields:
            return StepOutcome.ok()

        await self.contact_client.update_fields(
            contact.id, status=config.status, custom_fields=config.custom_fields
        )
        updated = [name for name in ("status", "custom_fields") if getattr(config, name)]
        return StepOutcome.ok(output={"updated": updated})

    # --- flow control ---

    async def wait(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: WaitConfig) -> StepOutcome:
        total_minutes = config.total_minutes
        if total_minutes <= 0:
            return StepOutcome.ok()
        return StepOutcome.ok(
            wait_until=utcnow() + timedelta(minutes=total_minutes),
            output={"wait_minutes": total_minutes},
        )

    async def condition(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: ConditionConfig) -> StepOutcome:
        result = evaluate_condition(contact, config)
        return StepOutcome.ok(
            branch_result=result,
            context={"last_condition_result": result},
            output={"field": config.field, "operator": config.operator, "result": result},
        )

    # --- CRM records ---

    async def create_task(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: CreateTaskConfig) -> StepOutcome:
        due_date = utcnow() + timedelta(days=config.due_days) if config.due_days else None

        task_id = await self.crm_client.create_task(
            organization_id=automation.organization_id,
            contact_id=contact.id,
            title=self.renderer.render_for_contact(config.title or "Follow up", contact),
            description=self.renderer.render_for_contact(config.description or "", contact),
            due_date=due_date,
            priority=config.priority or "medium",
            created_by=config.assigned_to,
        )
        return StepOutcome.ok(output={"task_id": task_id})

    async def move_deal(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: MoveDealConfig) -> StepOutcome:
        if not config.deal_id and not config.stage_id:
            return StepOutcome.fail("deal_id and stage_id required")
        if not config.stage_id:
            return StepOutcome.fail("stage_id required")

        deal_id = config.deal_id
        if not deal_id:
            deal_id = await self.crm_client.find_open_deal(contact.id, automation.organization_id)
            if not deal_id:
                # no open deal to move is not an error
                return StepOutcome.ok(output={"moved": False})

        moved = await self.crm_client.move_deal(deal_id, config.stage_id, automation.organization_id)
        return StepOutcome.ok(output={"deal_id": deal_id, "stage_id": config.stage_id, "moved": moved})

    # --- outbound ---

    async def webhook(self, enrollment: Enrollment, contact: Contact, automation: Automation, config: WebhookConfig) -> StepOutcome:
        if not config.url:
            return StepOutcome.fail("No webhook URL specified")

        payload = {
            "event": "workflow_step",
            "workflow_id": enrollment.automation_id,
            "contact": contact.summary(),
            "enrollment_id": enrollment.id,
            "timestamp": utcnow().isoformat(),
            **(config.custom_payload or {}),
        }
        headers = {"Content-Type": "application/json", **(config.headers or {})}

        response = await asyncio.to_thread(
            self.http.request,
            (config.method or "POST").upper(),
            config.url,
            data=json.dumps(payload, default=str),
            headers=headers,
            timeout=self.webhook_timeout,
        )

        if not 200 <= response.status_code < 300:
            return StepOutcome.fail(f"Webhook failed with status {response.status_code}")
        return StepOutcome.ok(output={"status_code": response.status_code})
