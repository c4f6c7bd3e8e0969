from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime


class TriggerType(str, Enum):
    CONTACT_ADDED = "contact_added"
    CONTACT_UPDATED = "contact_updated"
    TAG_ADDED = "tag_added"
    TAG_REMOVED = "tag_removed"
    DEAL_STAGE_CHANGED = "deal_stage_changed"
    FORM_SUBMITTED = "form_submitted"
    BOOKING_CREATED = "booking_created"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_RESCHEDULED = "booking_rescheduled"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class TriggerConditions(BaseModel):
    """Declarative filter on trigger payloads. Unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    # JSON configs store ids and names as numbers or strings; matching normalises both
    tag_name: Optional[Any] = None
    stage_id: Optional[Any] = None
    pipeline_id: Optional[Any] = None
    source: Optional[Any] = None


class Automation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = False

    enrolled_count: int = 0
    completed_count: int = 0
    failed_count: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def conditions(self) -> TriggerConditions:
        return TriggerConditions.model_validate(self.trigger_config or {})
