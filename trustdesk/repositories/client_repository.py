from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.database.models import ClientRow
from trustdesk.repositories.base_repository import BaseRepository


class ClientRepository(BaseRepository[ClientRow]):
    """Repository for client records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ClientRow)

    async def get_sample(self) -> ClientRow | None:
        """Return any one client, used to infer the client schema."""
        rows = await self.get_all(limit=1)
        return rows[0] if rows else None
