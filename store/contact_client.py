import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from models.contact import Contact
from store.base_client import BaseDBClient
from store.tables import ContactModel

logger = logging.getLogger("automation_engine")


class ContactClient(BaseDBClient):
    """
    Contacts belong to the CRM. The engine only writes tags, status and
    custom fields, each as a locked read-modify-write in one transaction.
    """

    async def get(self, contact_id: int) -> Optional[Contact]:
        row = await self._scalar(select(ContactModel).where(ContactModel.id == contact_id))
        return Contact.model_validate(row) if row else None

    async def add_tag(self, contact_id: int, tag_name: str) -> List[str]:
        return await self._update_tags(contact_id, tag_name, add=True)

    async def remove_tag(self, contact_id: int, tag_name: str) -> List[str]:
        return await self._update_tags(contact_id, tag_name, add=False)

    async def update_fields(
        self,
        contact_id: int,
        status: Optional[str] = None,
        custom_fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[Contact]:
        async with self.async_session() as session:
            row = await self._locked(session, contact_id)
            if row is None:
                raise ValueError(f"Contact {contact_id} not found")

            if status:
                row.status = status
            if custom_fields:
                # shallow merge, incoming keys win
                row.custom_fields = {**(row.custom_fields or {}), **custom_fields}

            await session.commit()
            await session.refresh(row)
            return Contact.model_validate(row)

    async def _update_tags(self, contact_id: int, tag_name: str, add: bool) -> List[str]:
        async with self.async_session() as session:
            row = await self._locked(session, contact_id)
            if row is None:
                raise ValueError(f"Contact {contact_id} not found")

            tags = list(row.tags or [])
            if add and tag_name not in tags:
                tags.append(tag_name)
            elif not add and tag_name in tags:
                tags = [t for t in tags if t != tag_name]
            else:
                return tags

            row.tags = tags
            await session.commit()
            return tags

    @staticmethod
    async def _locked(session, contact_id: int) -> Optional[ContactModel]:
        result = await session.execute(
            select(ContactModel).where(ContactModel.id == contact_id).with_for_update()
        )
        return result.scalar_one_or_none()
