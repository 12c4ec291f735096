"""Database package - models and connection management."""
from database.db import Database
from database.models import Base, KvEntry

__all__ = [
    "Database",
    "Base",
    "KvEntry",
]
