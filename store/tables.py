from datetime import timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from utils.time_utils import utcnow

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC, so SQLite and Postgres behave alike."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# --- CRM records (owned by the CRM, read-mostly for the engine) ---


class ContactModel(Base):
    __tablename__ = "contacts"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255), index=True)
    phone = Column(String(50))
    company = Column(String(255))
    job_title = Column(String(255))
    source = Column(String(50), default="manual")
    status = Column(String(50), default="active")
    custom_fields = Column(JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class EmailTemplateModel(Base):
    __tablename__ = "email_templates"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    body_html = Column(Text, nullable=False)
    body_text = Column(Text)
    category = Column(String(100), default="general")
    is_active = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=utcnow)


class SmsTemplateModel(Base):
    __tablename__ = "sms_templates"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=utcnow)


class TaskModel(Base):
    __tablename__ = "tasks"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"))
    title = Column(String(255), nullable=False)
    description = Column(Text)
    due_date = Column(UTCDateTime)
    priority = Column(String(20), default="medium")
    status = Column(String(20), default="pending")
    created_by = Column(Integer)
    created_at = Column(UTCDateTime, default=utcnow)


class DealModel(Base):
    __tablename__ = "deals"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"))
    pipeline_id = Column(Integer)
    stage_id = Column(Integer)
    title = Column(String(255))
    won_at = Column(UTCDateTime)
    lost_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


# --- Automation definitions (edited by the workflow builder) ---


class AutomationModel(Base):
    __tablename__ = "automations"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    trigger_type = Column(String(50), nullable=False, index=True)
    trigger_config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=False, index=True)
    enrolled_count = Column(Integer, nullable=False, default=0)
    completed_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class AutomationStepModel(Base):
    __tablename__ = "automation_steps"
    id = Column(Integer, primary_key=True, index=True)
    automation_id = Column(
        Integer, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    step_order = Column(Integer, nullable=False)
    step_type = Column(String(50), nullable=False)
    step_config = Column(JSON, nullable=False, default=dict)
    condition_config = Column(JSON)
    true_branch_step = Column(Integer)
    false_branch_step = Column(Integer)

    __table_args__ = (
        UniqueConstraint("automation_id", "step_order", name="uq_automation_step_order"),
    )


# --- Engine-owned records ---


class EnrollmentModel(Base):
    __tablename__ = "automation_enrollments"
    id = Column(Integer, primary_key=True, index=True)
    automation_id = Column(
        Integer, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    contact_id = Column(
        Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(20), nullable=False, default="active")
    current_step = Column(Integer, nullable=False, default=1)
    trigger_data = Column(JSON, nullable=False, default=dict)
    context = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text)
    enrolled_at = Column(UTCDateTime, default=utcnow)
    next_action_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)
    lock_token = Column(String(64))
    locked_at = Column(UTCDateTime)

    __table_args__ = (
        UniqueConstraint("automation_id", "contact_id", name="uq_enrollment_pair"),
        Index("ix_enrollments_due", "status", "next_action_at"),
    )


class ExecutionLogModel(Base):
    __tablename__ = "automation_execution_logs"
    id = Column(Integer, primary_key=True, index=True)
    enrollment_id = Column(
        Integer,
        ForeignKey("automation_enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = Column(Integer, ForeignKey("automation_steps.id", ondelete="SET NULL"))
    step_order = Column(Integer)
    action_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    input_data = Column(JSON, default=dict)
    output_data = Column(JSON, default=dict)
    error_message = Column(Text)
    duration_ms = Column(Integer)
    executed_at = Column(UTCDateTime, default=utcnow, index=True)


class EmailLogModel(Base):
    __tablename__ = "email_logs"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"))
    template_id = Column(Integer, ForeignKey("email_templates.id", ondelete="SET NULL"))
    enrollment_id = Column(
        Integer, ForeignKey("automation_enrollments.id", ondelete="SET NULL"), index=True
    )
    to_email = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    body_html = Column(Text)
    status = Column(String(20), nullable=False, default="queued")
    external_id = Column(String(255))
    error_message = Column(Text)
    queued_at = Column(UTCDateTime, default=utcnow)


class SmsLogModel(Base):
    __tablename__ = "sms_logs"
    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"))
    template_id = Column(Integer, ForeignKey("sms_templates.id", ondelete="SET NULL"))
    enrollment_id = Column(
        Integer, ForeignKey("automation_enrollments.id", ondelete="SET NULL"), index=True
    )
    to_phone = Column(String(50), nullable=False)
    from_phone = Column(String(50))
    message = Column(Text, nullable=False)
    direction = Column(String(20), nullable=False, default="outbound")
    status = Column(String(20), nullable=False, default="queued")
    external_id = Column(String(255))
    segments = Column(Integer, default=1)
    created_at = Column(UTCDateTime, default=utcnow)
