"""
Mapping store - durable thread <-> user chat bindings.

Persistence is mirrored, best effort: the key-value layer (when configured)
holds the full structure under `topics:<groupId>`, and every save also rewrites
the textual record pinned in the operator's private chat. A crash between the
two writes is tolerated; the next load reads whichever copy exists.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from bot.services.errors import RemoteRejection
from bot.services.gateway import RemoteRejectionKind, TelegramGateway
from bot.services.kv_store import KeyValueStore
from bot.services.metadata_codec import (
    MAX_TEXT_LENGTH,
    TopicMapping,
    decode_metadata,
    encode_metadata,
    parse_group_id,
)

logger = logging.getLogger(__name__)

MAPPING_KEY_PREFIX = "topics:"


def mapping_key(group_id: int) -> str:
    return f"{MAPPING_KEY_PREFIX}{group_id}"


@dataclass
class PinnedRecord:
    message_id: int
    text: str


class MappingStore:
    def __init__(
        self,
        gateway: TelegramGateway,
        owner_id: int,
        kv_store: Optional[KeyValueStore] = None,
        record_limit: int = MAX_TEXT_LENGTH,
    ):
        self.gateway = gateway
        self.owner_id = int(owner_id)
        self.kv_store = kv_store
        self.record_limit = record_limit
        # Set once a key-value read fails: the mapping in hand then came from
        # the pinned record, which may be missing evicted bindings.
        self.kv_read_failed = False

    async def load(self, group_hint: int | None = None) -> Optional[TopicMapping]:
        """
        Load the mapping, preferring the key-value copy.

        `group_hint` is the group id when the caller already knows it (events
        arriving from a supergroup). Without it the pinned record is read first
        to learn the bound group id.

        Returns None when the relay has never been initialized.
        """
        record = None
        group_id = group_hint
        if group_id is None:
            record = await self.load_record()
            if record is None:
                return None
            group_id = parse_group_id(record.text)

        if group_id is not None:
            stored = await self._kv_get(mapping_key(group_id))
            if stored:
                return TopicMapping.from_json(stored)

        if record is None:
            record = await self.load_record()
            if record is None:
                return None

        mapping = decode_metadata(record.text)
        if self.kv_store is not None and not self.kv_read_failed and mapping.super_group_id is not None:
            # First read after the key-value layer was enabled: migrate.
            await self._kv_put(mapping_key(mapping.super_group_id), mapping.to_json())
        return mapping

    async def save(self, mapping: TopicMapping) -> None:
        """Write both copies. Writing an unchanged mapping is not an error."""
        if mapping.super_group_id is None:
            raise ValueError("cannot save a mapping without a group binding")

        if self.kv_read_failed:
            logger.warning("Key-value copy of the mapping left untouched after a failed read")
        else:
            await self._kv_put(mapping_key(mapping.super_group_id), mapping.to_json())

        text = encode_metadata(mapping, self.record_limit)
        record = await self.ensure_record(mapping.super_group_id)
        if record.text == text:
            return

        response = await self.gateway.call(
            "editMessageText",
            {"chat_id": self.owner_id, "message_id": record.message_id, "text": text},
            context="update metadata record",
            report=False,
        )
        if not response.ok and response.rejection is not RemoteRejectionKind.NOT_MODIFIED:
            logger.error(f"Metadata record update failed: {response.description}")

    async def load_record(self) -> Optional[PinnedRecord]:
        response = await self.gateway.call(
            "getChat", {"chat_id": self.owner_id}, context="read metadata record"
        )
        pinned = (response.result or {}).get("pinned_message") if response.ok else None
        if not pinned or not pinned.get("text"):
            return None
        return PinnedRecord(message_id=int(pinned["message_id"]), text=str(pinned["text"]))

    async def ensure_record(self, group_id: int) -> PinnedRecord:
        """Return the pinned metadata record, creating and pinning it on first use."""
        record = await self.load_record()
        if record is not None:
            return record

        text = str(group_id)
        sent = await self.gateway.call(
            "sendMessage", {"chat_id": self.owner_id, "text": text}, context="create metadata record"
        )
        if not sent.ok or not sent.message_id:
            raise RemoteRejection.from_response("sendMessage", sent)

        pinned = await self.gateway.call(
            "pinChatMessage",
            {"chat_id": self.owner_id, "message_id": sent.message_id},
            context="pin metadata record",
        )
        if not pinned.ok:
            raise RemoteRejection.from_response("pinChatMessage", pinned)

        logger.info(f"Created metadata record {sent.message_id} for group {group_id}")
        return PinnedRecord(message_id=sent.message_id, text=text)

    async def reset(self, group_id: int | None) -> None:
        """Forget the group binding: drop the key-value copy and unpin the record."""
        if group_id is not None:
            await self._kv_put(mapping_key(group_id), None)
        await self.gateway.call(
            "unpinAllChatMessages", {"chat_id": self.owner_id}, context="reset metadata record"
        )

    async def _kv_get(self, key: str):
        if self.kv_store is None:
            return None
        try:
            return await self.kv_store.get(key)
        except Exception as e:
            logger.error(f"Key-value read of {key} failed, using pinned record: {e}")
            self.kv_read_failed = True
            return None

    async def _kv_put(self, key: str, value) -> None:
        if self.kv_store is None:
            return
        try:
            await self.kv_store.put(key, value)
        except Exception as e:
            logger.error(f"Key-value write of {key} failed, pinned record only: {e}")
