"""SQLAlchemy declarative base and shared mixins."""
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class TimestampMixin:
    """Adds created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


@dataclass(frozen=True)
class Active:
    """Record is live and visible to normal queries."""


@dataclass(frozen=True)
class Deleted:
    """Record was soft-deleted at ``at``."""
    at: datetime


Lifecycle = Union[Active, Deleted]


class SoftDeleteMixin:
    """Adds a nullable deleted_at column and a tagged lifecycle view of it.

    Repositories filter on ``deleted_at IS NULL`` for every normal read, so a
    Deleted record never surfaces outside explicit ``get_any`` lookups.
    """
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @property
    def lifecycle(self) -> Lifecycle:
        if self.deleted_at is None:
            return Active()
        return Deleted(at=self.deleted_at)

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.lifecycle, Deleted)
