"""
Base mixins and column types for database models.

Provides common functionality:
- generate_uuid: UUID generation for primary keys
- UTCDateTime: timezone-aware UTC timestamps on every backend
- JSONType: JSONB on PostgreSQL, JSON elsewhere
- TimestampMixin: created_at, updated_at timestamps
- register_append_only: rejects ORM updates/deletes on audit tables
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, JSON, TypeDecorator, event
from sqlalchemy.dialects.postgresql import JSONB

from heirloom.db_base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    SQLite has no timezone support and hands back naive values; those are
    read back as UTC so comparisons against aware datetimes never fail.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Timestamp when record was last updated"
    )


class AppendOnlyViolationError(Exception):
    """Raised when code attempts to modify or delete an append-only record."""


def _reject_mutation(operation):
    def listener(mapper, connection, target):
        raise AppendOnlyViolationError(
            f"{type(target).__name__} is append-only; {operation} is not allowed"
        )
    return listener


def register_append_only(model_cls):
    """Class decorator: forbid ORM UPDATE and DELETE on the model."""
    event.listen(model_cls, "before_update", _reject_mutation("update"))
    event.listen(model_cls, "before_delete", _reject_mutation("delete"))
    return model_cls


__all__ = [
    "Base",
    "JSONType",
    "UTCDateTime",
    "TimestampMixin",
    "AppendOnlyViolationError",
    "generate_uuid",
    "register_append_only",
    "utcnow",
]
