import asyncio
import logging
from typing import Dict, List, Optional

import requests

from senders.base_sender import BaseEmailSender
from models.delivery_engine import EmailProviderConfig, SendResult
from utils.retry import RetryManager

logger = logging.getLogger("automation_engine")


class ResendEmailSender(BaseEmailSender):
    url = "https://api.resend.com/emails"

    def __init__(self, config: EmailProviderConfig, renderer=None, session: Optional[requests.Session] = None):
        super().__init__(renderer)
        self.config = config
        self.session = session or requests.Session()

    def _post(self, payload: Dict) -> Dict:
        response = self.session.post(
            self.url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        return response.json()

    async def send(self, to_email: str, subject: str, html_body: str,
                   text_body: Optional[str] = None,
                   tags: Optional[List[Dict[str, str]]] = None) -> SendResult:
        sender = self.config.from_email
        if self.config.from_name:
            sender = f"{self.config.from_name} <{self.config.from_email}>"

        payload = {
            "from": sender,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
            "tags": tags or [],
        }
        if text_body:
            payload["text"] = text_body

        @RetryManager.with_retry(max_attempts=self.config.max_retries, base_delay=1.0)
        async def _send_with_retry():
            return await asyncio.to_thread(self._post, payload)

        try:
            data = await _send_with_retry()
            logger.info(f"Email sent to {to_email} | Subject: {subject}")
            return SendResult(success=True, id=data.get("id"))
        except Exception as e:
            logger.error(f"Resend send to {to_email} failed: {e}")
            return SendResult(success=False, error=str(e))
