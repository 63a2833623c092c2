from typing import Any, Generic, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from message_relay.database import Base

ModelType = TypeVar("ModelType", bound=Base)
PydanticType = TypeVar("PydanticType", bound=BaseModel)


def as_uuid(value: Union[str, UUID]) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class BaseRepository(Generic[ModelType, PydanticType]):
    """Generic base repository with common read/delete operations.

    Writes that must share a transaction with other repositories are left
    uncommitted; callers own the commit.
    """

    response_class: Type[BaseModel]

    def __init__(self, db: AsyncSession, model_class: Any):
        self.db = db
        self.model_class = model_class

    async def get_model(self, id: Union[str, UUID]) -> Optional[ModelType]:
        """Get a single ORM row by ID."""
        query = (
            select(self.model_class)
            .where(self.model_class.id == as_uuid(id))
            .execution_options(populate_existing=True)
        )  # type: ignore
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id(self, id: Union[str, UUID]) -> Optional[PydanticType]:
        """Get a single record by ID."""
        db_model = await self.get_model(id)
        return self._to_pydantic(db_model) if db_model else None

    async def delete(self, id: Union[str, UUID]) -> bool:
        """Delete a record by ID."""
        db_model = await self.get_model(id)
        if not db_model:
            return False

        await self.db.delete(db_model)
        await self.db.commit()
        return True

    def add(self, db_model: ModelType) -> ModelType:
        """Stage a new row in the current transaction without committing."""
        self.db.add(db_model)
        return db_model

    def to_response(self, db_model: ModelType) -> PydanticType:
        return self._to_pydantic(db_model)

    def _to_pydantic(self, db_model: ModelType) -> PydanticType:
        """Convert SQLAlchemy model to Pydantic model.

        Override in subclasses when the response shape differs from the row.
        """
        return self.response_class.model_validate(db_model)  # type: ignore[return-value]
