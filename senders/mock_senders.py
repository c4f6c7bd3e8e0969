from .base_sender import BaseEmailSender, BaseSmsSender
from models.delivery_engine import SendResult
import logging

logger = logging.getLogger("automation_engine")


class SimulatedEmailSender(BaseEmailSender):
    """Stands in when no email provider is configured. Sends are reported as simulated."""

    async def send(self, to_email, subject, html_body, text_body=None, tags=None) -> SendResult:
        logger.info(f"[Simulated email] To: {to_email} | Subject: {subject}")
        return SendResult(success=False, simulated=True, error="Email service not configured")


class SimulatedSmsSender(BaseSmsSender):
    """Stands in when no SMS provider is configured."""

    def __init__(self, from_number=None):
        self.from_number = from_number

    async def send_sms(self, to, message) -> SendResult:
        logger.info(f"[Simulated SMS] To: {to} | {len(message or '')} chars")
        return SendResult(success=False, simulated=True, error="SMS service not configured")
