import logging
import time
import traceback
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from executor.step_executor import StepExecutor
from models.enrollment import EnrollmentStatus
from models.execution_log import StepLogStatus
from models.step import StepKind
from store.automation_client import AutomationClient
from store.contact_client import ContactClient
from store.enrollment_client import EnrollmentClient
from store.log_client import LogClient
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")


class StepInterpreter:
    """
    Drives one enrollment through its automation's steps.

    A run claims the enrollment first, then executes steps until it completes,
    fails, parks on a wait, or hits the per-call step cap. Every write after the
    claim is conditional on the claim token, so a run that loses its claim stops
    without touching the row again.
    """

    def __init__(self,
                 enrollment_client: EnrollmentClient,
                 automation_client: AutomationClient,
                 contact_client: ContactClient,
                 log_client: LogClient,
                 step_executor: StepExecutor,
                 max_steps_per_call: int = 100,
                 claim_lease_seconds: int = 900):
        self.enrollment_client = enrollment_client
        self.automation_client = automation_client
        self.contact_client = contact_client
        self.log_client = log_client
        self.step_executor = step_executor
        self.max_steps_per_call = max_steps_per_call
        self.claim_lease = timedelta(seconds=claim_lease_seconds)

    async def advance(self, enrollment_id: int) -> Dict[str, Any]:
        token = uuid.uuid4().hex
        try:
            claimed = await self.enrollment_client.claim(enrollment_id, token, self.claim_lease)
        except Exception as e:
            logger.error(f"Could not claim enrollment {enrollment_id}: {e}")
            return self._result(enrollment_id, "skipped", error=str(e))

        if not claimed:
            logger.info(f"Enrollment {enrollment_id} is not active or already claimed. Skipping.")
            return self._result(enrollment_id, "skipped")

        try:
            return await self._run(enrollment_id, token)
        except Exception as e:
            logger.error(f"Error advancing enrollment {enrollment_id}: {e}")
            logger.error(traceback.format_exc())
            await self._fail_quietly(enrollment_id, token, str(e))
            return self._result(enrollment_id, "failed", error=str(e))

    async def _run(self, enrollment_id: int, token: str) -> Dict[str, Any]:
        steps_run = 0

        while steps_run < self.max_steps_per_call:
            enrollment = await self.enrollment_client.get(enrollment_id)
            if not enrollment or enrollment.is_terminal or enrollment.lock_token != token:
                logger.warning(f"Lost claim on enrollment {enrollment_id}. Stopping.")
                return self._result(enrollment_id, "skipped")

            automation = await self.automation_client.get(enrollment.automation_id)
            contact = await self.contact_client.get(enrollment.contact_id)
            if not automation or not contact:
                raise ValueError(
                    f"Automation {enrollment.automation_id} or contact {enrollment.contact_id} not found"
                )

            cursor = enrollment.current_step
            step = await self.automation_client.get_step(automation.id, cursor)
            if not step:
                return await self._complete(enrollment, token, cursor)

            await self.log_client.log_step(
                enrollment.id, step, StepLogStatus.STARTED, input_data=step.step_config
            )
            started = time.monotonic()
            outcome = await self.step_executor.execute(step, enrollment, contact, automation)
            duration_ms = int((time.monotonic() - started) * 1000)
            steps_run += 1

            if not outcome.success:
                await self.log_client.log_step(
                    enrollment.id, step, StepLogStatus.FAILED,
                    output_data=outcome.output, error_message=outcome.error, duration_ms=duration_ms,
                )
                logger.warning(f"Step {cursor} ({step.step_type}) failed for enrollment {enrollment.id}: {outcome.error}")
                if await self.enrollment_client.finish(enrollment.id, token, EnrollmentStatus.FAILED, outcome.error):
                    await self.automation_client.increment_counter(automation.id, "failed")
                return self._result(enrollment.id, "failed", current_step=cursor, error=outcome.error)

            await self.log_client.log_step(
                enrollment.id, step, StepLogStatus.COMPLETED,
                output_data=outcome.output, duration_ms=duration_ms,
            )
            logger.info(f"Step {cursor} ({step.step_type}) completed for enrollment {enrollment.id} in {duration_ms}ms.")

            next_step = cursor + 1
            if step.kind == StepKind.CONDITION:
                target = step.true_branch_step if outcome.branch_result else step.false_branch_step
                next_step = target or next_step

            if not await self.automation_client.step_exists(automation.id, next_step):
                return await self._complete(enrollment, token, next_step)

            context = {**(enrollment.context or {}), **(outcome.context or {})}

            if outcome.wait_until:
                saved = await self.enrollment_client.save_progress(
                    enrollment.id, token, next_step, context, outcome.wait_until, release=True
                )
                if not saved:
                    return self._result(enrollment.id, "skipped")
                logger.info(f"Enrollment {enrollment.id} waiting until {outcome.wait_until.isoformat()} at step {next_step}.")
                return self._result(
                    enrollment.id, "waiting", current_step=next_step, next_action_at=outcome.wait_until
                )

            saved = await self.enrollment_client.save_progress(
                enrollment.id, token, next_step, context, utcnow()
            )
            if not saved:
                return self._result(enrollment.id, "skipped")

        # step cap reached: hand the rest to the next sweep
        enrollment = await self.enrollment_client.get(enrollment_id)
        now = utcnow()
        await self.enrollment_client.save_progress(
            enrollment_id, token, enrollment.current_step, enrollment.context, now, release=True
        )
        logger.info(f"Enrollment {enrollment_id} parked after {steps_run} steps at step {enrollment.current_step}.")
        return self._result(enrollment_id, "parked", current_step=enrollment.current_step, next_action_at=now)

    async def _complete(self, enrollment, token: str, cursor: int) -> Dict[str, Any]:
        if await self.enrollment_client.finish(enrollment.id, token, EnrollmentStatus.COMPLETED):
            await self.automation_client.increment_counter(enrollment.automation_id, "completed")
            logger.info(f"Enrollment {enrollment.id} completed automation {enrollment.automation_id}.")
            return self._result(enrollment.id, "completed", current_step=cursor)
        return self._result(enrollment.id, "skipped")

    async def _fail_quietly(self, enrollment_id: int, token: str, error: str) -> None:
        try:
            enrollment = await self.enrollment_client.get(enrollment_id)
            if await self.enrollment_client.finish(enrollment_id, token, EnrollmentStatus.FAILED, error):
                await self.automation_client.increment_counter(enrollment.automation_id, "failed")
        except Exception as e:
            logger.error(f"Could not mark enrollment {enrollment_id} as failed: {e}")

    @staticmethod
    def _result(enrollment_id: int, status: str, current_step: Optional[int] = None, **extra) -> Dict[str, Any]:
        result = {"enrollment_id": enrollment_id, "status": status}
        if current_step is not None:
            result["current_step"] = current_step
        result.update({k: v for k, v in extra.items() if v is not None})
        return result
