"""
SQLAlchemy declarative base and common model utilities.

All SQLAlchemy models should inherit from Base.
"""
from datetime import datetime
from sqlalchemy import DateTime, event, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID

from app.utils import utcnow


def generate_ulid() -> str:
    """Generate a new ULID string (26-character Crockford Base32)."""
    return str(ULID())


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from app.core.database.base import Base

        class Plan(Base):
            __tablename__ = "plans"

            id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
            name: Mapped[str] = mapped_column(String(50))
    """
    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.

    Usage:
        class Organization(Base, TimestampMixin):
            __tablename__ = "organizations"
            id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class CreatedAtMixin:
    """Timestamp mixin for append-only records that are never updated."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )


class ImmutableRecordError(Exception):
    """Raised when a flush tries to update or delete an append-only row."""


def append_only(cls):
    """
    Class decorator rejecting ORM updates and deletes of a model's rows.

    Usage:
        @append_only
        class AuditLog(Base, CreatedAtMixin):
            ...
    """
    def reject_update(_mapper, _connection, target):
        raise ImmutableRecordError(f"{type(target).__name__} rows cannot be updated")

    def reject_delete(_mapper, _connection, target):
        raise ImmutableRecordError(f"{type(target).__name__} rows cannot be deleted")

    event.listen(cls, "before_update", reject_update)
    event.listen(cls, "before_delete", reject_delete)
    return cls
