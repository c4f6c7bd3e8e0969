import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, Dict, Any, Type
from enum import Enum
from datetime import datetime


class StepKind(str, Enum):
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    WAIT = "wait"
    CREATE_TASK = "create_task"
    UPDATE_CONTACT = "update_contact"
    CONDITION = "condition"
    WEBHOOK = "webhook"
    MOVE_DEAL = "move_deal"


# 100 years
MAX_WAIT_MINUTES = 100 * 365 * 1440


class StepConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SendEmailConfig(StepConfig):
    template_id: Optional[int] = None


class SendSmsConfig(StepConfig):
    template_id: Optional[int] = None
    message: Optional[str] = None


class TagConfig(StepConfig):
    tag_name: Optional[str] = None


class WaitConfig(StepConfig):
    delay_minutes: float = 0
    delay_hours: float = 0
    delay_days: float = 0

    @model_validator(mode="before")
    @classmethod
    def _apply_aliases(cls, data: Any) -> Any:
        # Older builders stored wait_* keys
        if isinstance(data, dict):
            data = dict(data)
            for unit in ("minutes", "hours", "days"):
                if not data.get(f"delay_{unit}") and data.get(f"wait_{unit}"):
                    data[f"delay_{unit}"] = data[f"wait_{unit}"]
        return data

    @field_validator("delay_minutes", "delay_hours", "delay_days", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> float:
        if value is None or isinstance(value, bool):
            return 0
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return 0
        return number if math.isfinite(number) else 0

    @property
    def total_minutes(self) -> float:
        """Combined delay, clamped to MAX_WAIT_MINUTES so the wake time stays representable."""
        total = self.delay_minutes + self.delay_hours * 60 + self.delay_days * 1440
        if not math.isfinite(total):
            return MAX_WAIT_MINUTES if total > 0 else 0
        return min(total, MAX_WAIT_MINUTES)


class CreateTaskConfig(StepConfig):
    title: Optional[str] = None
    description: Optional[str] = None
    due_days: Optional[float] = None
    priority: Optional[str] = None
    assigned_to: Optional[int] = None


class UpdateContactConfig(StepConfig):
    status: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None


class ConditionConfig(StepConfig):
    field: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None


class WebhookConfig(StepConfig):
    url: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    custom_payload: Dict[str, Any] = Field(default_factory=dict)


class MoveDealConfig(StepConfig):
    deal_id: Optional[int] = None
    stage_id: Optional[int] = None


STEP_CONFIG_MODELS: Dict[StepKind, Type[StepConfig]] = {
    StepKind.SEND_EMAIL: SendEmailConfig,
    StepKind.SEND_SMS: SendSmsConfig,
    StepKind.ADD_TAG: TagConfig,
    StepKind.REMOVE_TAG: TagConfig,
    StepKind.WAIT: WaitConfig,
    StepKind.CREATE_TASK: CreateTaskConfig,
    StepKind.UPDATE_CONTACT: UpdateContactConfig,
    StepKind.CONDITION: ConditionConfig,
    StepKind.WEBHOOK: WebhookConfig,
    StepKind.MOVE_DEAL: MoveDealConfig,
}


class Step(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    automation_id: int
    step_order: int
    step_type: str
    step_config: Dict[str, Any] = Field(default_factory=dict)
    condition_config: Optional[Dict[str, Any]] = None
    true_branch_step: Optional[int] = None
    false_branch_step: Optional[int] = None

    @property
    def kind(self) -> Optional[StepKind]:
        try:
            return StepKind(self.step_type)
        except ValueError:
            return None

    def typed_config(self) -> StepConfig:
        """
        Validates the raw config map into the model for this step's kind.
        Condition steps read their own condition_config column first.
        """
        kind = self.kind
        if kind is None:
            raise ValueError(f"Unknown step type: {self.step_type}")

        raw = self.step_config or {}
        if kind == StepKind.CONDITION and self.condition_config is not None:
            raw = self.condition_config
        return STEP_CONFIG_MODELS[kind].model_validate(raw)


class StepOutcome(BaseModel):
    """What a step executor reports back to the interpreter."""
    success: bool
    error: Optional[str] = None
    wait_until: Optional[datetime] = None
    branch_result: Optional[bool] = None
    context: Optional[Dict[str, Any]] = None
    output: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, **kwargs) -> "StepOutcome":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str) -> "StepOutcome":
        return cls(success=False, error=error)
