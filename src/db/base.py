"""SQLAlchemy 2.0 declarative base with async support.

Provides the Base class for all SQLAlchemy models with:
- AsyncAttrs for async attribute access
- Consistent naming conventions for indexes and constraints
- Timezone-aware datetime mapping
- Portable JSON columns (JSONB on PostgreSQL, JSON elsewhere)
"""

import datetime
import enum
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL so payloads stay indexable; plain JSON on SQLite for tests.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_column(enum_cls: type[enum.Enum], length: int = 32) -> Enum:
    """Build a VARCHAR-backed enum column type that stores enum values.

    Args:
        enum_cls: The Python enum class to persist.
        length: Maximum length of the stored value.

    Returns:
        Enum: SQLAlchemy type storing ``member.value`` without a native DB enum.
    """
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
    )


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models.

    Includes:
        - AsyncAttrs for async attribute access on relationships
        - Consistent naming conventions for database objects
        - Timezone-aware datetime mapping

    Example:
        >>> class User(Base):
        ...     __tablename__ = "users"
        ...     id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
        ...     name: Mapped[str]
    """

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )
    type_annotation_map = {
        datetime.datetime: DateTime(timezone=True),
        dict[str, Any]: JSONType,
    }
