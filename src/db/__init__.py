"""Database module with SQLAlchemy async setup."""

from src.db.base import Base
from src.db.session import (
    async_session_maker,
    create_engine_for_url,
    create_session_factory,
    engine,
    get_async_db_session,
)

__all__ = [
    "Base",
    "async_session_maker",
    "create_engine_for_url",
    "create_session_factory",
    "engine",
    "get_async_db_session",
]
