from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update

from store.base_client import BaseDBClient
from store.tables import DealModel, TaskModel


class CrmClient(BaseDBClient):
    """Tasks and deals touched by the create_task and move_deal steps."""

    async def create_task(
        self,
        organization_id: int,
        contact_id: int,
        title: str,
        description: str,
        due_date: Optional[datetime],
        priority: str,
        created_by: Optional[int],
    ) -> int:
        row = await self._add(
            TaskModel(
                organization_id=organization_id,
                contact_id=contact_id,
                title=title,
                description=description,
                due_date=due_date,
                priority=priority,
                status="pending",
                created_by=created_by,
            )
        )
        return row.id

    async def find_open_deal(self, contact_id: int, organization_id: int) -> Optional[int]:
        """Most recent deal for the contact that is neither won nor lost."""
        return await self._scalar(
            select(DealModel.id)
            .where(
                and_(
                    DealModel.contact_id == contact_id,
                    DealModel.organization_id == organization_id,
                    DealModel.won_at.is_(None),
                    DealModel.lost_at.is_(None),
                )
            )
            .order_by(DealModel.created_at.desc(), DealModel.id.desc())
            .limit(1)
        )

    async def move_deal(self, deal_id: int, stage_id: int, organization_id: int) -> bool:
        affected = await self._execute(
            update(DealModel)
            .where(and_(DealModel.id == deal_id, DealModel.organization_id == organization_id))
            .values(stage_id=stage_id)
        )
        return affected == 1
