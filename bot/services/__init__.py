"""Services package - relay logic layer."""
from bot.services.delivery_status import DeliveryStatus
from bot.services.gateway import ApiResponse, RemoteRejectionKind, TelegramGateway
from bot.services.kv_store import KeyValueStore
from bot.services.mapping_store import MappingStore
from bot.services.message_index import MessageIndexStore
from bot.services.setup_service import SetupService
from bot.services.sync_engine import SyncEngine

__all__ = [
    "ApiResponse",
    "DeliveryStatus",
    "KeyValueStore",
    "MappingStore",
    "MessageIndexStore",
    "RemoteRejectionKind",
    "SetupService",
    "SyncEngine",
    "TelegramGateway",
]
