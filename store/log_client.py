import logging
from typing import Any, Dict, List, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import select

from models.execution_log import ExecutionLogEntry, StepLogStatus
from models.step import Step
from store.base_client import BaseDBClient
from store.tables import EmailLogModel, ExecutionLogModel, SmsLogModel

logger = logging.getLogger("automation_engine")


class LogClient(BaseDBClient):
    """
    Append-only audit sinks. A failed write is logged and swallowed: logging
    must never abort step execution.
    """

    async def log_step(
        self,
        enrollment_id: int,
        step: Step,
        status: StepLogStatus,
        input_data: Optional[Dict[str, Any]] = None,
        output_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> Optional[int]:
        try:
            row = await self._add(
                ExecutionLogModel(
                    enrollment_id=enrollment_id,
                    step_id=step.id,
                    step_order=step.step_order,
                    action_type=step.step_type,
                    status=status.value,
                    input_data=to_jsonable_python(input_data or {}),
                    output_data=to_jsonable_python(output_data or {}),
                    error_message=error_message,
                    duration_ms=duration_ms,
                )
            )
            return row.id
        except Exception as e:
            logger.error(f"Error logging step execution for enrollment {enrollment_id}: {e}")
            return None

    async def list_for_enrollment(self, enrollment_id: int) -> List[ExecutionLogEntry]:
        rows = await self._scalars(
            select(ExecutionLogModel)
            .where(ExecutionLogModel.enrollment_id == enrollment_id)
            .order_by(ExecutionLogModel.id)
        )
        return [ExecutionLogEntry.model_validate(row) for row in rows]

    async def log_email(self, **fields) -> Optional[int]:
        try:
            row = await self._add(EmailLogModel(**fields))
            return row.id
        except Exception as e:
            logger.error(f"Error writing email log for enrollment {fields.get('enrollment_id')}: {e}")
            return None

    async def log_sms(self, **fields) -> Optional[int]:
        try:
            row = await self._add(SmsLogModel(**fields))
            return row.id
        except Exception as e:
            logger.error(f"Error writing sms log for enrollment {fields.get('enrollment_id')}: {e}")
            return None
