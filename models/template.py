from pydantic import BaseModel, ConfigDict
from typing import Optional


class EmailTemplate(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    subject: str
    body_html: str
    body_text: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True


class SmsTemplate(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    message: str
    is_active: bool = True
