import asyncio
import logging
from typing import Dict, Optional

import requests

from senders.base_sender import BaseSmsSender
from models.delivery_engine import SmsProviderConfig, SendResult
from utils.retry import RetryManager

logger = logging.getLogger("automation_engine")


class TwilioSmsSender(BaseSmsSender):
    base_url = "https://api.twilio.com/2010-04-01"

    def __init__(self, config: SmsProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.from_number = config.from_number
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}/Accounts/{self.config.account_sid}/Messages.json"

    def _post(self, form: Dict[str, str]) -> Dict:
        response = self.session.post(
            self.url,
            data=form,
            auth=(self.config.account_sid, self.config.auth_token),
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        return response.json()

    async def send_sms(self, to: str, message: str) -> SendResult:
        normalized_to = self.normalize_phone_number(to)
        if not self.is_valid_phone_number(normalized_to):
            return SendResult(success=False, error=f"Invalid phone number: {to}")

        form = {"To": normalized_to, "From": self.from_number, "Body": message}

        @RetryManager.with_retry(max_attempts=self.config.max_retries, base_delay=1.0)
        async def _send_with_retry():
            return await asyncio.to_thread(self._post, form)

        try:
            data = await _send_with_retry()
            logger.info(f"SMS sent to {normalized_to} [sid={data.get('sid')}]")
            return SendResult(success=True, id=data.get("sid"))
        except Exception as e:
            logger.error(f"Twilio send to {normalized_to} failed: {e}")
            return SendResult(success=False, error=str(e))
