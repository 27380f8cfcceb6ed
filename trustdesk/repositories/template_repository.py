from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.database.models import TemplateRow
from trustdesk.repositories.base_repository import BaseRepository


class TemplateRepository(BaseRepository[TemplateRow]):
    """Repository for document templates."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TemplateRow)
