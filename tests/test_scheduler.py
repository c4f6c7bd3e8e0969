import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import update

from scheduler.scheduler_loop import SchedulerLoop
from store.tables import EnrollmentModel
from utils.time_utils import utcnow


@pytest.mark.asyncio
async def test_scheduler_loop_tick_runs_sweep():
    engine = MagicMock()
    engine.process_pending_enrollments = AsyncMock(return_value={"processed": 2})
    loop = SchedulerLoop(engine, interval_seconds=0.1)

    await loop._tick()

    engine.process_pending_enrollments.assert_awaited_once_with()


@pytest.mark.asyncio
async def test_scheduler_loop_survives_failed_tick_and_stops():
    engine = MagicMock()
    loop = SchedulerLoop(engine, interval_seconds=0.01)
    calls = []

    async def sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        loop.stop()
        return {"processed": 0}

    engine.process_pending_enrollments = sweep

    await asyncio.wait_for(loop.start(), timeout=2)

    assert len(calls) == 2
    assert loop.running is False


async def set_wake_time(session_factory, enrollment_id, minutes_ago):
    async with session_factory() as session:
        await session.execute(
            update(EnrollmentModel)
            .where(EnrollmentModel.id == enrollment_id)
            .values(next_action_at=utcnow() - timedelta(minutes=minutes_ago))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_sweep_takes_oldest_first_up_to_limit(engine, seed, session_factory):
    automation_id = await seed.automation([{"step_type": "add_tag", "step_config": {"tag_name": "swept"}}])
    contacts = [await seed.contact(email=f"c{i}@example.com") for i in range(3)]
    enrollments = [await engine.enroll(automation_id, contact_id, {}) for contact_id in contacts]

    # newest, oldest, middle
    for enrollment, minutes_ago in zip(enrollments, [1, 30, 10]):
        await set_wake_time(session_factory, enrollment.id, minutes_ago)

    assert await engine.process_pending_enrollments(limit=2) == {"processed": 2}

    tags = [(await engine.contact_client.get(contact_id)).tags for contact_id in contacts]
    assert tags == [[], ["swept"], ["swept"]]

    assert await engine.process_pending_enrollments() == {"processed": 1}


@pytest.mark.asyncio
async def test_sweep_reports_selection_errors(engine):
    with patch.object(engine.enrollment_client, "list_due", AsyncMock(side_effect=RuntimeError("db down"))):
        result = await engine.process_pending_enrollments()
    assert result == {"processed": 0, "error": "db down"}


@pytest.mark.asyncio
async def test_sweep_continues_past_a_failing_enrollment(engine, seed):
    bad = await seed.automation([{"step_type": "send_email", "step_config": {}}], name="Broken")
    good = await seed.automation([{"step_type": "add_tag", "step_config": {"tag_name": "ok"}}], name="Fine")
    contact_id = await seed.contact()
    await engine.enroll(bad, contact_id, {})
    await engine.enroll(good, contact_id, {})

    assert await engine.process_pending_enrollments() == {"processed": 2}
    assert (await engine.contact_client.get(contact_id)).tags == ["ok"]
