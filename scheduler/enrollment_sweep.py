import logging
import traceback
from datetime import timedelta
from typing import Any, Dict, Optional

from executor.step_interpreter import StepInterpreter
from store.enrollment_client import EnrollmentClient

logger = logging.getLogger("automation_engine")


class EnrollmentSweep:
    """Resumes parked enrollments whose wake time has passed."""

    def __init__(self,
                 enrollment_client: EnrollmentClient,
                 interpreter: StepInterpreter,
                 batch_size: int = 100,
                 claim_lease_seconds: int = 900):
        self.enrollment_client = enrollment_client
        self.interpreter = interpreter
        self.batch_size = batch_size
        self.claim_lease = timedelta(seconds=claim_lease_seconds)

    async def process_pending_enrollments(self, limit: Optional[int] = None) -> Dict[str, Any]:
        try:
            due = await self.enrollment_client.list_due(limit or self.batch_size, self.claim_lease)
        except Exception as e:
            logger.error(f"Error selecting pending enrollments: {e}")
            logger.error(traceback.format_exc())
            return {"processed": 0, "error": str(e)}

        if due:
            logger.info(f"Sweep picked up {len(due)} due enrollment(s).")

        for enrollment_id in due:
            # advance never raises; one bad enrollment must not stop the batch
            await self.interpreter.advance(enrollment_id)

        return {"processed": len(due)}
