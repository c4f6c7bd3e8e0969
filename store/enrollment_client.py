import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from models.enrollment import Enrollment, EnrollmentStatus
from store.base_client import BaseDBClient
from store.tables import EnrollmentModel
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")

ACTIVE = EnrollmentStatus.ACTIVE.value


class EnrollmentClient(BaseDBClient):
    """
    Enrollment rows are owned by the engine. Progress writes are guarded by
    the claim token so a run that lost its claim cannot clobber the row.
    """

    async def get(self, enrollment_id: int) -> Optional[Enrollment]:
        row = await self._scalar(
            select(EnrollmentModel).where(EnrollmentModel.id == enrollment_id)
        )
        return Enrollment.model_validate(row) if row else None

    async def get_for_pair(self, automation_id: int, contact_id: int) -> Optional[Enrollment]:
        row = await self._scalar(
            select(EnrollmentModel).where(
                and_(
                    EnrollmentModel.automation_id == automation_id,
                    EnrollmentModel.contact_id == contact_id,
                )
            )
        )
        return Enrollment.model_validate(row) if row else None

    async def list_for_automation(self, automation_id: int) -> List[Enrollment]:
        rows = await self._scalars(
            select(EnrollmentModel)
            .where(EnrollmentModel.automation_id == automation_id)
            .order_by(EnrollmentModel.id)
        )
        return [Enrollment.model_validate(row) for row in rows]

    async def create(self, automation_id: int, contact_id: int, trigger_data: Dict[str, Any]) -> Optional[Enrollment]:
        """Inserts a fresh enrollment. Returns None if the pair already exists."""
        now = utcnow()
        row = EnrollmentModel(
            automation_id=automation_id,
            contact_id=contact_id,
            status=ACTIVE,
            current_step=1,
            trigger_data=trigger_data,
            context={},
            enrolled_at=now,
            next_action_at=now,
        )
        try:
            row = await self._add(row)
        except IntegrityError:
            logger.info(f"Enrollment for contact {contact_id} in automation {automation_id} created concurrently.")
            return None
        return Enrollment.model_validate(row)

    async def reset(self, enrollment_id: int, trigger_data: Dict[str, Any]) -> Optional[Enrollment]:
        """
        Re-activates a terminal enrollment in place. Only applies while the row
        is not active, so two concurrent re-enrollments yield one winner.
        """
        now = utcnow()
        affected = await self._execute(
            update(EnrollmentModel)
            .where(
                and_(
                    EnrollmentModel.id == enrollment_id,
                    EnrollmentModel.status != ACTIVE,
                )
            )
            .values(
                status=ACTIVE,
                current_step=1,
                trigger_data=trigger_data,
                context={},
                error_message=None,
                completed_at=None,
                enrolled_at=now,
                next_action_at=now,
                lock_token=None,
                locked_at=None,
            )
        )
        if affected != 1:
            return None
        return await self.get(enrollment_id)

    async def claim(self, enrollment_id: int, token: str, lease: timedelta) -> bool:
        """Takes the processing claim on an active enrollment in one conditional UPDATE."""
        now = utcnow()
        affected = await self._execute(
            update(EnrollmentModel)
            .where(
                and_(
                    EnrollmentModel.id == enrollment_id,
                    EnrollmentModel.status == ACTIVE,
                    or_(
                        EnrollmentModel.lock_token.is_(None),
                        EnrollmentModel.locked_at < now - lease,
                    ),
                )
            )
            .values(lock_token=token, locked_at=now)
        )
        return affected == 1

    async def save_progress(
        self,
        enrollment_id: int,
        token: str,
        current_step: int,
        context: Dict[str, Any],
        next_action_at: datetime,
        release: bool = False,
    ) -> bool:
        values = {
            "current_step": current_step,
            "context": context,
            "next_action_at": next_action_at,
        }
        if release:
            values.update(lock_token=None, locked_at=None)
        else:
            values["locked_at"] = utcnow()

        affected = await self._execute(
            update(EnrollmentModel)
            .where(self._owned_by(enrollment_id, token))
            .values(**values)
        )
        return affected == 1

    async def finish(
        self,
        enrollment_id: int,
        token: Optional[str],
        status: EnrollmentStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Moves an active enrollment to a terminal status and releases the claim."""
        affected = await self._execute(
            update(EnrollmentModel)
            .where(self._owned_by(enrollment_id, token))
            .values(
                status=status.value,
                error_message=error_message,
                completed_at=utcnow(),
                lock_token=None,
                locked_at=None,
            )
        )
        return affected == 1

    async def list_due(self, limit: int, lease: timedelta, now: Optional[datetime] = None) -> List[int]:
        """Ids of active enrollments whose wake time has passed, oldest first."""
        now = now or utcnow()
        async with self.async_session() as session:
            result = await session.execute(
                select(EnrollmentModel.id)
                .where(
                    and_(
                        EnrollmentModel.status == ACTIVE,
                        EnrollmentModel.next_action_at <= now,
                        or_(
                            EnrollmentModel.lock_token.is_(None),
                            EnrollmentModel.locked_at < now - lease,
                        ),
                    )
                )
                .order_by(EnrollmentModel.next_action_at, EnrollmentModel.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    @staticmethod
    def _owned_by(enrollment_id: int, token: Optional[str]):
        clauses = [EnrollmentModel.id == enrollment_id, EnrollmentModel.status == ACTIVE]
        if token is None:
            clauses.append(EnrollmentModel.lock_token.is_(None))
        else:
            clauses.append(EnrollmentModel.lock_token == token)
        return and_(*clauses)
