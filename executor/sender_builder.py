import os
from typing import Optional

from executor.template_renderer import TemplateRenderer
from models.delivery_engine import EmailProviderConfig, SmsProviderConfig, ProviderType
from senders.base_sender import BaseEmailSender, BaseSmsSender
from senders.mock_senders import SimulatedEmailSender, SimulatedSmsSender
from senders.resend_sender import ResendEmailSender
from senders.twilio_sender import TwilioSmsSender


class SenderBuilder:

    @staticmethod
    def email_config_from_env() -> EmailProviderConfig:
        api_key = os.getenv("RESEND_API_KEY")
        return EmailProviderConfig(
            provider=ProviderType.RESEND if api_key else ProviderType.SIMULATED,
            api_key=api_key,
            from_email=os.getenv("EMAIL_FROM", "onboarding@resend.dev"),
            from_name=os.getenv("EMAIL_FROM_NAME"),
        )

    @staticmethod
    def sms_config_from_env() -> SmsProviderConfig:
        sid = os.getenv("TWILIO_ACCOUNT_SID")
        token = os.getenv("TWILIO_AUTH_TOKEN")
        number = os.getenv("TWILIO_PHONE_NUMBER")
        configured = bool(sid and token and number)
        return SmsProviderConfig(
            provider=ProviderType.TWILIO if configured else ProviderType.SIMULATED,
            account_sid=sid,
            auth_token=token,
            from_number=number,
        )

    @staticmethod
    def validate_email_config(config: EmailProviderConfig):
        """Raises ValueError if the configuration cannot build a sender."""
        if config.status != "active":
            raise ValueError(f"Email provider '{config.provider.value}' is not active.")
        if config.provider == ProviderType.RESEND and not config.api_key:
            raise ValueError("Resend requires 'api_key'")
        if config.provider == ProviderType.TWILIO:
            raise ValueError("Twilio is not an email provider")

    @staticmethod
    def validate_sms_config(config: SmsProviderConfig):
        if config.status != "active":
            raise ValueError(f"SMS provider '{config.provider.value}' is not active.")
        if config.provider == ProviderType.TWILIO:
            missing = [f for f in ["account_sid", "auth_token", "from_number"] if not getattr(config, f)]
            if missing:
                raise ValueError(f"Twilio requires: {missing}")
        if config.provider == ProviderType.RESEND:
            raise ValueError("Resend is not an SMS provider")

    @staticmethod
    def build_email_sender(config: Optional[EmailProviderConfig] = None, renderer: Optional[TemplateRenderer] = None) -> BaseEmailSender:
        config = config or SenderBuilder.email_config_from_env()
        SenderBuilder.validate_email_config(config)

        if config.provider == ProviderType.RESEND:
            return ResendEmailSender(config, renderer=renderer)
        return SimulatedEmailSender(renderer=renderer)

    @staticmethod
    def build_sms_sender(config: Optional[SmsProviderConfig] = None) -> BaseSmsSender:
        config = config or SenderBuilder.sms_config_from_env()
        SenderBuilder.validate_sms_config(config)

        if config.provider == ProviderType.TWILIO:
            return TwilioSmsSender(config)
        return SimulatedSmsSender(from_number=config.from_number)
