"""Database engine, sessions and ORM models."""

from .connection import (
    async_session_maker,
    close_db,
    create_engine,
    create_session_factory,
    get_db,
    init_db,
)
from .models import Base

__all__ = [
    "Base",
    "async_session_maker",
    "close_db",
    "create_engine",
    "create_session_factory",
    "get_db",
    "init_db",
]
