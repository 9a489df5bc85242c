"""
Base repository class with common CRUD operations.

Provides a foundation for domain-specific repositories with:
- Type-safe generic operations
"""
from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

T = TypeVar("T", bound=DeclarativeBase)


class BaseRepository(Generic[T]):
    """
    Generic base repository for CRUD operations.

    Subclass this and set the `model` class attribute to your SQLAlchemy model.
    """

    model: Type[T]

    def __init__(self, db: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy async session
        """
        self.db = db

    async def get_by_id(self, id: UUID) -> Optional[T]:
        """
        Get a single record by ID.

        Args:
            id: Record UUID

        Returns:
            Record if found, None otherwise
        """
        result = await self.db.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    async def count(self) -> int:
        """Count total records."""
        result = await self.db.execute(
            select(func.count(self.model.id))
        )
        return result.scalar_one()
