from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.exceptions import DatabaseError
from trustdesk.utils.logging import get_logger

# Define a generic type for SQLAlchemy models
ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Base repository implementing common CRUD operations.

    SQLAlchemy failures are logged and re-raised as ``DatabaseError``.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        """Initialize the repository.

        Args:
            session: SQLAlchemy async session
            model: The SQLAlchemy model class this repository manages
        """
        self.session = session
        self.model = model
        self.logger = LOGGER

    def _fail(self, action: str, error: SQLAlchemyError) -> DatabaseError:
        self.logger.error(
            f"Error {action} {self.model.__name__}: {str(error)}",
            exc_info=True
        )
        return DatabaseError(f"Error {action} {self.model.__name__}", original_error=error)

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        """Get a record by its ID, or None if it does not exist."""
        try:
            query = select(self.model).where(self.model.id == id)
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail(f"retrieving {id} of", e)

    async def get_many(self, ids: Sequence[UUID]) -> List[ModelType]:
        """Get every record whose ID is in ``ids``, in no particular order."""
        if not ids:
            return []
        try:
            query = select(self.model).where(self.model.id.in_(list(ids)))
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("retrieving batch of", e)

    async def get_all(
        self,
        skip: int = 0,
        limit: int = 200,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[ModelType]:
        """Get all records with optional pagination and filtering.

        Args:
            skip: Number of records to skip
            limit: Maximum number of records to return
            filters: Dictionary of field_name: value to filter by

        Returns:
            List of records
        """
        try:
            query = select(self.model)

            if filters:
                for field, value in filters.items():
                    if hasattr(self.model, field):
                        query = query.where(getattr(self.model, field) == value)

            query = query.offset(skip).limit(limit)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("retrieving all", e)

    async def save(self, **values) -> ModelType:
        """Insert or overwrite the record identified by ``values["id"]``."""
        try:
            instance = await self.get_by_id(values["id"])
            if instance is None:
                instance = self.model(**values)
                self.session.add(instance)
            else:
                for key, value in values.items():
                    if hasattr(instance, key):
                        setattr(instance, key, value)

            if hasattr(instance, "updated_at"):
                setattr(instance, "updated_at", datetime.now(timezone.utc))

            await self.session.flush()
            await self.session.commit()
            # Load server-side defaults such as created_at
            await self.session.refresh(instance)
            return instance
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise self._fail("saving", e)

    async def delete(self, id: UUID) -> bool:
        """Delete a record by ID.

        Returns:
            True if deleted, False if not found
        """
        try:
            instance = await self.get_by_id(id)
            if not instance:
                return False

            await self.session.delete(instance)
            await self.session.flush()
            await self.session.commit()
            return True
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise self._fail(f"deleting {id} of", e)

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records matching filters."""
        try:
            query = select(func.count()).select_from(self.model)

            if filters:
                for field, value in filters.items():
                    if hasattr(self.model, field):
                        query = query.where(getattr(self.model, field) == value)

            result = await self.session.execute(query)
            return result.scalar_one()
        except SQLAlchemyError as e:
            raise self._fail("counting", e)
