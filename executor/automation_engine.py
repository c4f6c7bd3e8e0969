import logging
import os
from typing import Any, Dict, Optional

import requests
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from executor.enrollment_manager import EnrollmentManager
from executor.sender_builder import SenderBuilder
from executor.step_executor import StepExecutor
from executor.step_interpreter import StepInterpreter
from executor.template_renderer import TemplateRenderer
from executor.trigger_matcher import TriggerMatcher
from models.enrollment import Enrollment
from scheduler.enrollment_sweep import EnrollmentSweep
from senders.base_sender import BaseEmailSender, BaseSmsSender
from store import database
from store.automation_client import AutomationClient
from store.contact_client import ContactClient
from store.crm_client import CrmClient
from store.enrollment_client import EnrollmentClient
from store.log_client import LogClient
from store.template_client import TemplateClient

logger = logging.getLogger("automation_engine")


class AutomationEngine:
    """
    Wires the store clients, senders and the four engine stages together.
    Build one per process with from_env(); tests construct their own.
    """

    def __init__(self,
                 session_factory: async_sessionmaker,
                 email_sender: BaseEmailSender,
                 sms_sender: BaseSmsSender,
                 db_engine: Optional[AsyncEngine] = None,
                 renderer: Optional[TemplateRenderer] = None,
                 http_session: Optional[requests.Session] = None,
                 webhook_timeout: float = 30,
                 max_steps_per_call: int = 100,
                 claim_lease_seconds: int = 900,
                 sweep_batch_size: int = 100):
        self.db_engine = db_engine
        self.renderer = renderer or TemplateRenderer()

        self.automation_client = AutomationClient(session_factory)
        self.enrollment_client = EnrollmentClient(session_factory)
        self.contact_client = ContactClient(session_factory)
        self.template_client = TemplateClient(session_factory)
        self.log_client = LogClient(session_factory)
        self.crm_client = CrmClient(session_factory)

        self.step_executor = StepExecutor(
            contact_client=self.contact_client,
            template_client=self.template_client,
            log_client=self.log_client,
            crm_client=self.crm_client,
            email_sender=email_sender,
            sms_sender=sms_sender,
            renderer=self.renderer,
            http_session=http_session,
            webhook_timeout=webhook_timeout,
        )
        self.interpreter = StepInterpreter(
            enrollment_client=self.enrollment_client,
            automation_client=self.automation_client,
            contact_client=self.contact_client,
            log_client=self.log_client,
            step_executor=self.step_executor,
            max_steps_per_call=max_steps_per_call,
            claim_lease_seconds=claim_lease_seconds,
        )
        self.enrollment_manager = EnrollmentManager(self.enrollment_client, self.automation_client)
        self.trigger_matcher = TriggerMatcher(self.automation_client, self.enrollment_manager, self.interpreter)
        self.sweep = EnrollmentSweep(
            self.enrollment_client,
            self.interpreter,
            batch_size=sweep_batch_size,
            claim_lease_seconds=claim_lease_seconds,
        )

    @classmethod
    def from_env(cls) -> "AutomationEngine":
        db_engine = database.create_database_engine()
        renderer = TemplateRenderer()
        email_sender = SenderBuilder.build_email_sender(renderer=renderer)
        sms_sender = SenderBuilder.build_sms_sender()
        logger.info(
            f"Automation engine using {type(email_sender).__name__} for email "
            f"and {type(sms_sender).__name__} for SMS."
        )
        return cls(
            session_factory=database.create_session_factory(db_engine),
            email_sender=email_sender,
            sms_sender=sms_sender,
            db_engine=db_engine,
            renderer=renderer,
            webhook_timeout=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "30")),
            max_steps_per_call=int(os.getenv("AUTOMATION_MAX_STEPS_PER_CALL", "100")),
            claim_lease_seconds=int(os.getenv("AUTOMATION_CLAIM_LEASE_SECONDS", "900")),
            sweep_batch_size=int(os.getenv("AUTOMATION_SWEEP_BATCH_SIZE", "100")),
        )

    async def init_schema(self):
        if self.db_engine is None:
            raise ValueError("init_schema requires the engine to own its database engine")
        await database.init_schema(self.db_engine)

    async def dispose(self):
        if self.db_engine is not None:
            await self.db_engine.dispose()

    async def handle_trigger(self, trigger_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.trigger_matcher.handle_trigger(trigger_type, data)

    async def process_pending_enrollments(self, limit: Optional[int] = None) -> Dict[str, Any]:
        return await self.sweep.process_pending_enrollments(limit)

    async def enroll(self, automation_id: int, contact_id: int, trigger_data: Optional[Dict[str, Any]] = None) -> Optional[Enrollment]:
        return await self.enrollment_manager.enroll(automation_id, contact_id, trigger_data)

    async def advance(self, enrollment_id: int) -> Dict[str, Any]:
        return await self.interpreter.advance(enrollment_id)
