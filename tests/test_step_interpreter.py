from datetime import timedelta

import pytest
from sqlalchemy import update

from executor.automation_engine import AutomationEngine
from models.enrollment import EnrollmentStatus
from store.tables import EnrollmentModel
from utils.time_utils import utcnow


def tag(name):
    return {"step_type": "add_tag", "step_config": {"tag_name": name}}


async def make_due(session_factory, enrollment_id):
    """Moves an enrollment's wake time into the past, as if the wait had elapsed."""
    async with session_factory() as session:
        await session.execute(
            update(EnrollmentModel)
            .where(EnrollmentModel.id == enrollment_id)
            .values(next_action_at=utcnow() - timedelta(seconds=1))
        )
        await session.commit()


async def step_logs(engine, enrollment_id):
    return await engine.log_client.list_for_enrollment(enrollment_id)


@pytest.mark.asyncio
async def test_linear_automation_completes_in_one_call(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([
        tag("a"),
        {"step_type": "update_contact", "step_config": {"status": "engaged"}},
        {"step_type": "create_task", "step_config": {"title": "Call"}},
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    result = await engine.advance(enrollment.id)

    assert result["status"] == "completed"
    enrollment = await engine.enrollment_client.get(enrollment.id)
    assert enrollment.status == EnrollmentStatus.COMPLETED
    assert enrollment.completed_at is not None
    assert enrollment.lock_token is None

    completed = [log for log in await step_logs(engine, enrollment.id) if log.status == "completed"]
    assert [log.step_order for log in completed] == [1, 2, 3]

    automation = await engine.automation_client.get(automation_id)
    assert automation.enrolled_count == 1
    assert automation.completed_count == 1


@pytest.mark.asyncio
async def test_each_step_gets_started_and_finished_rows(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([tag("a")])
    enrollment = await engine.enroll(automation_id, contact_id, {})
    await engine.advance(enrollment.id)

    logs = await step_logs(engine, enrollment.id)
    assert [(log.step_order, log.status) for log in logs] == [(1, "started"), (1, "completed")]
    assert logs[0].input_data == {"tag_name": "a"}
    assert logs[1].duration_ms is not None


@pytest.mark.asyncio
async def test_wait_parks_and_sweep_resumes(engine, seed, session_factory):
    contact_id = await seed.contact()
    automation_id = await seed.automation([
        {"step_type": "wait", "step_config": {"delay_minutes": 30}},
        tag("after-wait"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    result = await engine.advance(enrollment.id)

    assert result["status"] == "waiting"
    parked = await engine.enrollment_client.get(enrollment.id)
    assert parked.status == EnrollmentStatus.ACTIVE
    assert parked.current_step == 2
    assert parked.lock_token is None
    delta = parked.next_action_at - utcnow()
    assert timedelta(minutes=29) < delta <= timedelta(minutes=30)

    # too early: nothing is due
    assert await engine.process_pending_enrollments() == {"processed": 0}
    assert (await engine.contact_client.get(contact_id)).tags == []

    await make_due(session_factory, enrollment.id)
    assert await engine.process_pending_enrollments() == {"processed": 1}

    assert (await engine.enrollment_client.get(enrollment.id)).status == EnrollmentStatus.COMPLETED
    assert (await engine.contact_client.get(contact_id)).tags == ["after-wait"]


@pytest.mark.asyncio
async def test_trailing_wait_completes_immediately(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([tag("a"), {"step_type": "wait", "step_config": {"delay_days": 2}}])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    assert (await engine.advance(enrollment.id))["status"] == "completed"


@pytest.mark.asyncio
@pytest.mark.parametrize("status,expected_tags", [
    ("customer", ["customer"]),
    ("lead", ["prospect", "customer"]),
])
async def test_condition_routes_to_branch(engine, seed, status, expected_tags):
    contact_id = await seed.contact(status=status)
    automation_id = await seed.automation([
        {
            "step_type": "condition",
            "condition_config": {"field": "status", "operator": "equals", "value": "customer"},
            "true_branch_step": 3,
            "false_branch_step": 2,
        },
        tag("prospect"),
        tag("customer"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    assert (await engine.advance(enrollment.id))["status"] == "completed"
    assert (await engine.contact_client.get(contact_id)).tags == expected_tags

    enrollment = await engine.enrollment_client.get(enrollment.id)
    assert enrollment.context == {"last_condition_result": status == "customer"}


@pytest.mark.asyncio
async def test_unset_branch_target_falls_through(engine, seed):
    contact_id = await seed.contact(status="lead")
    automation_id = await seed.automation([
        {
            "step_type": "condition",
            "condition_config": {"field": "status", "operator": "equals", "value": "customer"},
            "true_branch_step": 3,
        },
        tag("next-in-line"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})
    await engine.advance(enrollment.id)

    assert (await engine.contact_client.get(contact_id)).tags == ["next-in-line"]


@pytest.mark.asyncio
async def test_branch_to_missing_step_completes(engine, seed):
    contact_id = await seed.contact(status="customer")
    automation_id = await seed.automation([
        {
            "step_type": "condition",
            "condition_config": {"field": "status", "operator": "equals", "value": "customer"},
            "true_branch_step": 99,
        },
        tag("skipped"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    assert (await engine.advance(enrollment.id))["status"] == "completed"
    assert (await engine.contact_client.get(contact_id)).tags == []


@pytest.mark.asyncio
async def test_failure_halts_enrollment(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([
        {"step_type": "send_email", "step_config": {}},
        tag("never"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    result = await engine.advance(enrollment.id)

    assert result["status"] == "failed"
    failed = await engine.enrollment_client.get(enrollment.id)
    assert failed.status == EnrollmentStatus.FAILED
    assert failed.error_message == "No template_id specified"
    assert failed.current_step == 1
    assert (await engine.contact_client.get(contact_id)).tags == []

    logs = await step_logs(engine, enrollment.id)
    assert [log.status for log in logs] == ["started", "failed"]
    assert logs[1].error_message == "No template_id specified"
    assert (await engine.automation_client.get(automation_id)).failed_count == 1

    # failures are not retried by the sweep
    assert await engine.process_pending_enrollments() == {"processed": 0}


@pytest.mark.asyncio
async def test_unknown_step_type_fails_enrollment(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([{"step_type": "send_fax"}])
    enrollment = await engine.enroll(automation_id, contact_id, {})
    await engine.advance(enrollment.id)

    failed = await engine.enrollment_client.get(enrollment.id)
    assert failed.error_message == "Unknown step type: send_fax"


@pytest.mark.asyncio
async def test_missing_contact_fails_enrollment(engine, seed):
    automation_id = await seed.automation([tag("a")])
    enrollment = await engine.enroll(automation_id, 4242, {})

    result = await engine.advance(enrollment.id)

    assert result["status"] == "failed"
    assert "not found" in (await engine.enrollment_client.get(enrollment.id)).error_message


@pytest.mark.asyncio
async def test_terminal_enrollment_is_skipped(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([tag("a")])
    enrollment = await engine.enroll(automation_id, contact_id, {})
    await engine.advance(enrollment.id)

    assert (await engine.advance(enrollment.id))["status"] == "skipped"
    assert (await engine.advance(123456))["status"] == "skipped"


@pytest.mark.asyncio
async def test_claimed_enrollment_is_not_double_processed(engine, seed, session_factory):
    contact_id = await seed.contact()
    automation_id = await seed.automation([tag("a")])
    enrollment = await engine.enroll(automation_id, contact_id, {})
    lease = timedelta(seconds=900)

    assert await engine.enrollment_client.claim(enrollment.id, "other-worker", lease)
    assert (await engine.advance(enrollment.id))["status"] == "skipped"
    assert await engine.process_pending_enrollments() == {"processed": 0}
    assert (await engine.contact_client.get(contact_id)).tags == []

    # an abandoned claim can be taken over once the lease has expired
    async with session_factory() as session:
        await session.execute(
            update(EnrollmentModel)
            .where(EnrollmentModel.id == enrollment.id)
            .values(locked_at=utcnow() - timedelta(hours=1))
        )
        await session.commit()

    assert (await engine.advance(enrollment.id))["status"] == "completed"


@pytest.mark.asyncio
async def test_progress_writes_require_the_claim_token(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([tag("a")])
    enrollment = await engine.enroll(automation_id, contact_id, {})
    lease = timedelta(seconds=900)

    assert await engine.enrollment_client.claim(enrollment.id, "mine", lease)
    assert not await engine.enrollment_client.save_progress(enrollment.id, "theirs", 2, {}, utcnow())
    assert not await engine.enrollment_client.finish(enrollment.id, "theirs", EnrollmentStatus.COMPLETED)
    assert await engine.enrollment_client.finish(enrollment.id, "mine", EnrollmentStatus.COMPLETED)


@pytest.mark.asyncio
async def test_step_cap_parks_for_next_sweep(db, session_factory, email_sender, sms_sender, seed):
    engine = AutomationEngine(session_factory, email_sender, sms_sender, db_engine=db, max_steps_per_call=2)
    contact_id = await seed.contact()
    automation_id = await seed.automation([tag("a"), tag("b"), tag("c")])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    result = await engine.advance(enrollment.id)

    assert result["status"] == "parked"
    parked = await engine.enrollment_client.get(enrollment.id)
    assert parked.status == EnrollmentStatus.ACTIVE
    assert parked.current_step == 3
    assert parked.lock_token is None
    assert parked.next_action_at <= utcnow()

    assert await engine.process_pending_enrollments() == {"processed": 1}
    assert (await engine.enrollment_client.get(enrollment.id)).status == EnrollmentStatus.COMPLETED
    assert (await engine.contact_client.get(contact_id)).tags == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_context_accumulates_across_steps(engine, seed):
    contact_id = await seed.contact(status="lead")
    automation_id = await seed.automation([
        {"step_type": "condition", "condition_config": {"field": "status", "operator": "equals", "value": "lead"}},
        tag("a"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    async with engine.enrollment_client.async_session() as session:
        await session.execute(
            update(EnrollmentModel).where(EnrollmentModel.id == enrollment.id).values(context={"source": "import"})
        )
        await session.commit()

    await engine.advance(enrollment.id)
    enrollment = await engine.enrollment_client.get(enrollment.id)
    assert enrollment.context == {"source": "import", "last_condition_result": True}


@pytest.mark.asyncio
async def test_nurture_scenario(engine, seed, email_sender, session_factory):
    contact_id = await seed.contact(email="a@b.com")
    template_id = await seed.email_template()
    automation_id = await seed.automation([
        {"step_type": "send_email", "step_config": {"template_id": template_id}},
        {"step_type": "wait", "step_config": {"delay_days": 1}},
        tag("nurtured"),
    ])

    result = await engine.handle_trigger("contact_added", {"contact": {"id": contact_id}, "organization_id": 1})
    assert result == {"enrolled_count": 1}

    enrollment = (await engine.enrollment_client.list_for_automation(automation_id))[0]
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.current_step == 3
    assert abs((enrollment.next_action_at - (utcnow() + timedelta(days=1))).total_seconds()) < 60
    assert len(email_sender.sent) == 1
    assert email_sender.sent[0]["to"] == "a@b.com"

    step_one = [log for log in await step_logs(engine, enrollment.id) if log.step_order == 1]
    assert [log.status for log in step_one] == ["started", "completed"]

    # a day later
    await make_due(session_factory, enrollment.id)
    await engine.process_pending_enrollments()

    enrollment = await engine.enrollment_client.get(enrollment.id)
    assert enrollment.status == EnrollmentStatus.COMPLETED
    assert (await engine.contact_client.get(contact_id)).tags == ["nurtured"]
    assert len(email_sender.sent) == 1

    automation = await engine.automation_client.get(automation_id)
    assert (automation.enrolled_count, automation.completed_count, automation.failed_count) == (1, 1, 0)


@pytest.mark.asyncio
async def test_malformed_wait_does_not_fail_enrollment(engine, seed):
    contact_id = await seed.contact()
    automation_id = await seed.automation([
        {"step_type": "wait", "step_config": {"delay_minutes": "nan"}},
        {"step_type": "wait", "step_config": {"delay_days": 1e12}},
        tag("unreached"),
    ])
    enrollment = await engine.enroll(automation_id, contact_id, {})

    result = await engine.advance(enrollment.id)

    assert result["status"] == "waiting"
    parked = await engine.enrollment_client.get(enrollment.id)
    assert parked.current_step == 3
    assert parked.next_action_at > utcnow() + timedelta(days=365 * 99)
