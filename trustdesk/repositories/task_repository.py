from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.database.models import TaskRow
from trustdesk.repositories.base_repository import BaseRepository


class TaskRepository(BaseRepository[TaskRow]):
    """Repository for tasks."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TaskRow)

    async def list_by_status(self, status: Optional[str] = None, limit: int = 1000) -> List[TaskRow]:
        """Tasks newest first, optionally restricted to one status."""
        try:
            query = select(TaskRow).order_by(TaskRow.created_at.desc()).limit(limit)
            if status is not None:
                query = query.where(TaskRow.status == status)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("listing", e)
