from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import logging

from executor.template_renderer import TemplateRenderer
from models.contact import Contact
from models.delivery_engine import SendResult
from models.template import EmailTemplate
from utils import sms_utils

logger = logging.getLogger("automation_engine")


class BaseEmailSender(ABC):
    def __init__(self, renderer: Optional[TemplateRenderer] = None):
        self.renderer = renderer or TemplateRenderer()

    @abstractmethod
    async def send(self,
                   to_email: str,
                   subject: str,
                   html_body: str,
                   text_body: Optional[str] = None,
                   tags: Optional[List[Dict[str, str]]] = None) -> SendResult:
        pass

    async def send_template_email(self, template: EmailTemplate, contact: Contact, additional_data: Optional[Dict[str, Any]] = None) -> SendResult:
        """Personalizes and sends a template. Never raises."""
        try:
            content = self.renderer.prepare_email(template, contact, additional_data)
            return await self.send(
                to_email=contact.email,
                subject=content["subject"],
                html_body=content["html"],
                text_body=content["text"],
                tags=[
                    {"name": "template_id", "value": str(template.id)},
                    {"name": "contact_id", "value": str(contact.id)},
                ],
            )
        except Exception as e:
            logger.error(f"Error sending template email {template.id} to contact {contact.id}: {e}")
            return SendResult(success=False, error=str(e))


class BaseSmsSender(ABC):
    from_number: Optional[str] = None

    @abstractmethod
    async def send_sms(self, to: str, message: str) -> SendResult:
        pass

    def normalize_phone_number(self, phone: Optional[str]) -> Optional[str]:
        return sms_utils.normalize_phone_number(phone)

    def is_valid_phone_number(self, phone: Optional[str]) -> bool:
        return sms_utils.is_valid_phone_number(phone)

    def get_message_info(self, message: Optional[str]) -> Dict[str, Any]:
        return sms_utils.get_message_info(message)
