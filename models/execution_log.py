from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime


class StepLogStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    enrollment_id: int
    step_id: Optional[int] = None
    step_order: Optional[int] = None
    action_type: str
    status: StepLogStatus
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    executed_at: Optional[datetime] = None
