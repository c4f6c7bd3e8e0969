from pydantic import BaseModel
from typing import Optional
from enum import Enum


class ProviderType(str, Enum):
    RESEND = "resend"
    TWILIO = "twilio"
    SIMULATED = "simulated"


class EmailProviderConfig(BaseModel):
    provider: ProviderType = ProviderType.SIMULATED
    api_key: Optional[str] = None
    from_email: str = "onboarding@resend.dev"
    from_name: Optional[str] = None
    timeout_seconds: int = 10
    max_retries: int = 3
    status: str = "active"


class SmsProviderConfig(BaseModel):
    provider: ProviderType = ProviderType.SIMULATED
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    timeout_seconds: int = 10
    max_retries: int = 3
    status: str = "active"


class SendResult(BaseModel):
    """Result contract shared by every email/SMS collaborator. Senders never raise."""
    success: bool
    simulated: bool = False
    id: Optional[str] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        # a simulated send (provider not configured) counts as done for the engine
        return self.success or self.simulated
