"""Service container - wires configuration, storage, and the sync engine."""
import logging
from dataclasses import dataclass
from typing import Optional

from aiogram import Bot

from bot.config import Config
from bot.services.delivery_status import DeliveryStatus
from bot.services.gateway import TelegramGateway
from bot.services.kv_store import KeyValueStore
from bot.services.mapping_store import MappingStore
from bot.services.message_index import MessageIndexStore
from bot.services.setup_service import SetupService
from bot.services.sync_engine import SyncEngine
from database.db import Database

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Simple dependency container to share long-lived resources across handlers."""

    config: Config
    database: Optional[Database] = None
    kv_store: Optional[KeyValueStore] = None

    @classmethod
    async def create(cls, config: Config) -> "ServiceContainer":
        """
        Build the service container with all dependencies.

        Args:
            config: Loaded Config instance

        Returns:
            ServiceContainer with initialized services
        """
        logger.info("Building service container...")

        database = None
        kv_store = None
        if config.has_kv_store:
            database = Database(config.database_url)
            await database.connect()
            await database.require_schema()
            kv_store = KeyValueStore(database)
        else:
            logger.warning("DATABASE_URL not set; relying on pinned records only")

        logger.info("Service container ready")
        return cls(config=config, database=database, kv_store=kv_store)

    def create_engine(self, bot: Bot) -> SyncEngine:
        """A fresh engine for one event; nothing but the database is shared between events."""
        owner_id = self.config.owner_id
        gateway = TelegramGateway(bot, owner_id)
        mapping_store = MappingStore(gateway, owner_id, kv_store=self.kv_store)
        message_index = MessageIndexStore(gateway, kv_store=self.kv_store)
        return SyncEngine(
            gateway=gateway,
            mapping_store=mapping_store,
            message_index=message_index,
            delivery=DeliveryStatus(gateway),
            setup=SetupService(gateway, mapping_store, message_index, owner_id),
            owner_id=owner_id,
        )

    async def cleanup(self):
        """Release the database connection pool."""
        if self.database is not None:
            await self.database.close()
        logger.info("Service container cleanup complete")
