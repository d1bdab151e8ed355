"""
Repository pattern implementation for the Library Circulation server.

Repositories keep SQL out of the MCP handlers:

1. **Protocol Separation**: tools and resources deal in Pydantic models and
   domain errors, never in sessions or rows
2. **Testability**: repositories run against any session, including a
   throwaway SQLite file in tests
3. **Consistency**: every query goes through ``safe_query``/``safe_commit`` so
   storage failures are classified the same way everywhere

The base repository provides the read/delete plumbing; the catalog item
store and the circulation ledger add their domain operations.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import (
    ConflictError,
    DuplicateError,
    IntegrityViolationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    RepositoryException,
    StorageError,
)
from .schema import Base
from .session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise InvalidInputError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise InvalidInputError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """
    Standard paginated response for list operations.

    Keeps pagination metadata identical across every list resource.
    """

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool

    @classmethod
    def build(
        cls, items: list[ResponseSchemaType], total: int, pagination: PaginationParams
    ) -> "PaginatedResponse[ResponseSchemaType]":
        return cls(
            items=items,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository providing common read operations.

    All methods use safe_query so driver failures surface as StorageError.
    """

    def __init__(self, session: Session):
        """Initialize repository with database session."""
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_db_object(self, id: str, for_update: bool = False) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == str(id))
        if for_update:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} by ID",
        )

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found

        Raises:
            StorageError: On database errors
        """
        db_obj = self._get_db_object(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def exists(self, id: str) -> bool:
        """Check if entity exists by ID."""
        query = (
            select(func.count()).select_from(self.model_class).where(self.model_class.id == str(id))
        )
        count = safe_query(
            self.session, lambda s: s.execute(query).scalar(), "Failed to check existence"
        )
        return count > 0

    def _paginate_query(self, query, pagination: PaginationParams | None, convert=None):
        """Run ``query`` with pagination and wrap the page in a PaginatedResponse."""
        if not pagination:
            pagination = PaginationParams()

        pagination.validate_params()

        count_query = select(func.count()).select_from(query.subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                "Failed to count in pagination",
            )
            or 0
        )

        query = query.offset(pagination.offset).limit(pagination.page_size)
        results = safe_query(
            self.session,
            lambda s: s.execute(query).unique().scalars().all(),
            "Failed to get paginated results",
        )

        convert = convert or self._to_response_model
        return PaginatedResponse.build([convert(item) for item in results], total, pagination)


__all__ = [
    "BaseRepository",
    "ConflictError",
    "DuplicateError",
    "IntegrityViolationError",
    "InvalidInputError",
    "InvalidStateError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RepositoryException",
    "StorageError",
]
