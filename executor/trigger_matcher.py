import logging
import traceback
from typing import Any, Dict, Mapping, Optional

from pydantic_core import to_jsonable_python

from executor.enrollment_manager import EnrollmentManager
from executor.step_interpreter import StepInterpreter
from models.automation import TriggerConditions
from store.automation_client import AutomationClient

logger = logging.getLogger("automation_engine")


def _same(expected: Any, actual: Any) -> bool:
    return str(expected).strip() == str(actual).strip()


def _present(value: Any) -> bool:
    return value is not None and value != ""


def matches(conditions: TriggerConditions, payload: Mapping[str, Any]) -> bool:
    """
    Conjunctive match of an automation's trigger conditions against an event
    payload. A condition only applies when the payload carries the field.
    """
    if _present(conditions.tag_name) and _present(payload.get("tag")):
        if not _same(conditions.tag_name, payload["tag"]):
            return False

    stage = payload.get("new_stage_id", payload.get("stage_id"))
    if _present(conditions.stage_id) and _present(stage):
        if not _same(conditions.stage_id, stage):
            return False

    if _present(conditions.pipeline_id) and _present(payload.get("pipeline_id")):
        if not _same(conditions.pipeline_id, payload["pipeline_id"]):
            return False

    if _present(conditions.source) and _present(payload.get("source")):
        if not _same(conditions.source, payload["source"]):
            return False

    return True


def contact_id_of(contact: Any) -> Optional[int]:
    if contact is None:
        return None
    if isinstance(contact, Mapping):
        return contact.get("id")
    return getattr(contact, "id", None)


class TriggerMatcher:
    """Turns CRM events into enrollments and runs their first steps right away."""

    def __init__(self,
                 automation_client: AutomationClient,
                 enrollment_manager: EnrollmentManager,
                 interpreter: StepInterpreter):
        self.automation_client = automation_client
        self.enrollment_manager = enrollment_manager
        self.interpreter = interpreter

    async def handle_trigger(self, trigger_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(data or {})
        contact = payload.pop("contact", None)
        organization_id = payload.pop("organization_id", None)
        contact_id = contact_id_of(contact)

        if contact_id is None or organization_id is None:
            logger.warning(f"Trigger {trigger_type} is missing contact or organization_id. Ignoring.")
            return {"enrolled_count": 0, "error": "contact and organization_id are required"}

        trigger_type = getattr(trigger_type, "value", trigger_type)

        try:
            automations = await self.automation_client.list_active_for_trigger(organization_id, trigger_type)
            trigger_data = to_jsonable_python({"trigger_type": trigger_type, **payload}, fallback=str)

            enrolled_count = 0
            for automation in automations:
                try:
                    if not matches(automation.conditions, payload):
                        continue
                    enrollment = await self.enrollment_manager.enroll(automation.id, contact_id, trigger_data)
                except Exception as e:
                    # one broken automation must not block the others
                    logger.error(f"Skipping automation {automation.id} for trigger {trigger_type}: {e}")
                    continue

                if enrollment:
                    enrolled_count += 1
                    await self.interpreter.advance(enrollment.id)

            logger.info(f"Trigger {trigger_type} for contact {contact_id} enrolled into {enrolled_count} automation(s).")
            return {"enrolled_count": enrolled_count}

        except Exception as e:
            logger.error(f"Error handling trigger {trigger_type}: {e}")
            logger.error(traceback.format_exc())
            return {"enrolled_count": 0, "error": str(e)}
