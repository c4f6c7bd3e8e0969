from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List


class Contact(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def template_variables(self, additional_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Variables available to email/SMS/task templates for this contact."""
        data = {
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "full_name": self.full_name or "there",
            "email": self.email or "",
            "phone": self.phone or "",
            "company": self.company or "",
            "job_title": self.job_title or "",
        }
        data.update(self.custom_fields or {})
        data.update(additional_data or {})
        return data

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company": self.company,
        }
