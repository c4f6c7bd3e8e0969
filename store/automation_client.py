import logging
from typing import List, Optional

from sqlalchemy import and_, select, update

from models.automation import Automation
from models.step import Step
from store.base_client import BaseDBClient
from store.tables import AutomationModel, AutomationStepModel

logger = logging.getLogger("automation_engine")

COUNTER_COLUMNS = {
    "enrolled": AutomationModel.enrolled_count,
    "completed": AutomationModel.completed_count,
    "failed": AutomationModel.failed_count,
}


class AutomationClient(BaseDBClient):

    async def get(self, automation_id: int) -> Optional[Automation]:
        row = await self._scalar(
            select(AutomationModel).where(AutomationModel.id == automation_id)
        )
        return Automation.model_validate(row) if row else None

    async def list_active_for_trigger(self, organization_id: int, trigger_type: str) -> List[Automation]:
        rows = await self._scalars(
            select(AutomationModel)
            .where(
                and_(
                    AutomationModel.organization_id == organization_id,
                    AutomationModel.trigger_type == trigger_type,
                    AutomationModel.is_active.is_(True),
                )
            )
            .order_by(AutomationModel.id)
        )
        return [Automation.model_validate(row) for row in rows]

    async def get_step(self, automation_id: int, step_order: int) -> Optional[Step]:
        row = await self._scalar(
            select(AutomationStepModel).where(
                and_(
                    AutomationStepModel.automation_id == automation_id,
                    AutomationStepModel.step_order == step_order,
                )
            )
        )
        return Step.model_validate(row) if row else None

    async def step_exists(self, automation_id: int, step_order: int) -> bool:
        step_id = await self._scalar(
            select(AutomationStepModel.id).where(
                and_(
                    AutomationStepModel.automation_id == automation_id,
                    AutomationStepModel.step_order == step_order,
                )
            )
        )
        return step_id is not None

    async def increment_counter(self, automation_id: int, counter: str) -> None:
        """
        Bumps one of the aggregate counters with a single atomic UPDATE.
        Counters are advisory; a failed bump is logged and dropped.
        """
        column = COUNTER_COLUMNS[counter]
        try:
            await self._execute(
                update(AutomationModel)
                .where(AutomationModel.id == automation_id)
                .values({column.key: column + 1})
            )
        except Exception as e:
            logger.error(f"Failed to increment '{counter}' counter for automation {automation_id}: {e}")
