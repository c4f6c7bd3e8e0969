from typing import Optional

from sqlalchemy import and_, select

from models.template import EmailTemplate, SmsTemplate
from store.base_client import BaseDBClient
from store.tables import EmailTemplateModel, SmsTemplateModel


class TemplateClient(BaseDBClient):
    """Template lookups are always scoped to the owning organization."""

    async def get_email_template(self, template_id: int, organization_id: int) -> Optional[EmailTemplate]:
        row = await self._scalar(
            select(EmailTemplateModel).where(
                and_(
                    EmailTemplateModel.id == template_id,
                    EmailTemplateModel.organization_id == organization_id,
                )
            )
        )
        return EmailTemplate.model_validate(row) if row else None

    async def get_sms_template(self, template_id: int, organization_id: int) -> Optional[SmsTemplate]:
        row = await self._scalar(
            select(SmsTemplateModel).where(
                and_(
                    SmsTemplateModel.id == template_id,
                    SmsTemplateModel.organization_id == organization_id,
                )
            )
        )
        return SmsTemplate.model_validate(row) if row else None
