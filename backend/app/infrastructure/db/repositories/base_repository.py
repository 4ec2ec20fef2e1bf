"""
Base Repository for ContractEar

Generic async repository. Every method runs in its own short unit of work
so that writes are visible to racing callers as soon as the method returns.
"""

from typing import TypeVar, Generic, Optional, Type

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel

from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.exceptions import DatabaseError


ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with the CRUD operations shared by all tables.

    Args:
        model: The SQLModel class to operate on
        db: Database manager providing sessions
    """

    def __init__(self, model: Type[ModelType], db: DatabaseManager):
        self._model = model
        self._db = db

    @property
    def table_name(self) -> str:
        return self._model.__tablename__

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """
        Get a single record by its primary key.

        Returns:
            Model instance or None if not found
        """
        async with self._db.session() as session:
            return await session.get(self._model, id)

    async def add(self, obj: ModelType) -> ModelType:
        """
        Insert a new record.

        Raises:
            DatabaseError if the insert fails
        """
        try:
            async with self._db.session() as session:
                session.add(obj)
                await session.flush()
                await session.refresh(obj)
                return obj
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to insert into {self.table_name}",
                operation="insert",
                table=self.table_name,
                original_error=e,
            ) from e

    async def delete(self, id: str) -> bool:
        """
        Delete a record by ID.

        Returns:
            True if deleted, False if not found
        """
        async with self._db.session() as session:
            result = await session.execute(
                delete(self._model).where(self._model.id == id)
            )
            return result.rowcount > 0

    async def count(self) -> int:
        """Get total count of records."""
        async with self._db.session() as session:
            result = await session.execute(
                select(func.count()).select_from(self._model)
            )
            return result.scalar_one()
