import itertools
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from executor.automation_engine import AutomationEngine
from models.delivery_engine import SendResult
from senders.base_sender import BaseEmailSender, BaseSmsSender
from store import database
from store.tables import (
    AutomationModel,
    AutomationStepModel,
    ContactModel,
    DealModel,
    EmailTemplateModel,
    SmsTemplateModel,
)


class RecordingEmailSender(BaseEmailSender):
    """Captures every send instead of calling a provider."""

    def __init__(self, renderer=None):
        super().__init__(renderer)
        self.sent: List[Dict[str, Any]] = []
        self.fail_with: Optional[str] = None
        self._ids = itertools.count(1)

    async def send(self, to_email, subject, html_body, text_body=None, tags=None) -> SendResult:
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        self.sent.append({"to": to_email, "subject": subject, "html": html_body, "text": text_body, "tags": tags})
        return SendResult(success=True, id=f"email_{next(self._ids)}")


class RecordingSmsSender(BaseSmsSender):
    def __init__(self, from_number="+15550001111"):
        self.from_number = from_number
        self.sent: List[Dict[str, Any]] = []
        self.fail_with: Optional[str] = None

    async def send_sms(self, to, message) -> SendResult:
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        self.sent.append({"to": to, "message": message})
        return SendResult(success=True, id=f"SM{len(self.sent)}")


class Seed:
    """Inserts CRM records and automations directly through the ORM."""

    def __init__(self, session_factory, organization_id: int = 1):
        self.session_factory = session_factory
        self.organization_id = organization_id

    async def _add(self, row):
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def contact(self, **fields) -> int:
        fields.setdefault("organization_id", self.organization_id)
        fields.setdefault("first_name", "Ada")
        fields.setdefault("last_name", "Lovelace")
        fields.setdefault("email", "ada@example.com")
        fields.setdefault("custom_fields", {})
        fields.setdefault("tags", [])
        return (await self._add(ContactModel(**fields))).id

    async def email_template(self, **fields) -> int:
        fields.setdefault("organization_id", self.organization_id)
        fields.setdefault("name", "Welcome")
        fields.setdefault("subject", "Hi {{first_name}}")
        fields.setdefault("body_html", "<p>Welcome to {{company}}, {{full_name}}</p>")
        return (await self._add(EmailTemplateModel(**fields))).id

    async def sms_template(self, **fields) -> int:
        fields.setdefault("organization_id", self.organization_id)
        fields.setdefault("name", "Reminder")
        fields.setdefault("message", "Hi {{first_name}}, see you soon")
        return (await self._add(SmsTemplateModel(**fields))).id

    async def deal(self, **fields) -> int:
        fields.setdefault("organization_id", self.organization_id)
        fields.setdefault("title", "Deal")
        return (await self._add(DealModel(**fields))).id

    async def automation(self, steps: List[Dict[str, Any]], **fields) -> int:
        """Creates an automation; steps are numbered 1..n unless step_order is given."""
        fields.setdefault("organization_id", self.organization_id)
        fields.setdefault("name", "Nurture")
        fields.setdefault("trigger_type", "contact_added")
        fields.setdefault("trigger_config", {})
        fields.setdefault("is_active", True)
        automation = await self._add(AutomationModel(**fields))

        for order, step in enumerate(steps, start=1):
            step = dict(step)
            step.setdefault("step_order", order)
            step.setdefault("step_config", {})
            await self._add(AutomationStepModel(automation_id=automation.id, **step))
        return automation.id

    async def get(self, model, row_id):
        async with self.session_factory() as session:
            return await session.scalar(select(model).where(model.id == row_id))


@pytest_asyncio.fixture
async def db(tmp_path):
    engine = database.create_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}")
    await database.init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db):
    return database.create_session_factory(db)


@pytest.fixture
def seed(session_factory):
    return Seed(session_factory)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def sms_sender():
    return RecordingSmsSender()


@pytest.fixture
def http_session():
    session = MagicMock()
    session.request.return_value = MagicMock(status_code=200)
    return session


@pytest.fixture
def engine(db, session_factory, email_sender, sms_sender, http_session):
    return AutomationEngine(
        session_factory=session_factory,
        email_sender=email_sender,
        sms_sender=sms_sender,
        db_engine=db,
        http_session=http_session,
    )
