from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Enrollment(BaseModel):
    """One contact's run through one automation."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    automation_id: int
    contact_id: int
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    current_step: int = 1
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    next_action_at: Optional[datetime] = None
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    lock_token: Optional[str] = None
    locked_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != EnrollmentStatus.ACTIVE
