"""Key-value store - JSON documents keyed by string, backed by the kv_entries table."""
import logging
from datetime import datetime
from typing import Any

from database.db import Database
from database.models import KvEntry

logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    get/put of JSON values. No transactions: the last put wins.

    Errors propagate to the caller; the mapping and message-index stores
    decide how to degrade.
    """

    def __init__(self, database: Database):
        self.database = database

    async def get(self, key: str) -> Any:
        async with self.database.session() as session:
            entry = await session.get(KvEntry, key)
            return entry.value if entry else None

    async def put(self, key: str, value: Any) -> None:
        now = datetime.utcnow()
        async with self.database.session() as session:
            entry = await session.get(KvEntry, key)
            if not entry:
                session.add(KvEntry(key=key, value=value, updated_at=now))
                return
            entry.value = value
            entry.updated_at = now
