import logging
from typing import Any, Dict, Optional

from models.enrollment import Enrollment
from store.automation_client import AutomationClient
from store.enrollment_client import EnrollmentClient

logger = logging.getLogger("automation_engine")


class EnrollmentManager:
    """At most one active enrollment per (automation, contact) pair."""

    def __init__(self, enrollment_client: EnrollmentClient, automation_client: AutomationClient):
        self.enrollment_client = enrollment_client
        self.automation_client = automation_client

    async def enroll(self, automation_id: int, contact_id: int, trigger_data: Optional[Dict[str, Any]] = None) -> Optional[Enrollment]:
        """
        Returns the new or re-activated enrollment, or None when the contact
        is already running through this automation.
        """
        trigger_data = trigger_data or {}
        existing = await self.enrollment_client.get_for_pair(automation_id, contact_id)

        if existing and not existing.is_terminal:
            logger.info(f"Contact {contact_id} already enrolled in automation {automation_id}.")
            return None

        if existing:
            enrollment = await self.enrollment_client.reset(existing.id, trigger_data)
            action = "Re-enrolled"
        else:
            enrollment = await self.enrollment_client.create(automation_id, contact_id, trigger_data)
            action = "Enrolled"

        if not enrollment:
            # another caller got there first
            return None

        await self.automation_client.increment_counter(automation_id, "enrolled")
        logger.info(f"{action} contact {contact_id} in automation {automation_id} (enrollment {enrollment.id}).")
        return enrollment
