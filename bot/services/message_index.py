"""
Message index - which thread message is the copy of which user message.

With a key-value layer the links live under `mapping:<groupId>` as a JSON list
(at most 1000, oldest first). Without one, or when the key-value layer fails,
they are kept in a record pinned in the group's General topic using the
compact `topicId-topicMessageId:userMessageId` grammar.
"""
from __future__ import annotations

import logging
from typing import Optional

from bot.services.gateway import TelegramGateway
from bot.services.kv_store import KeyValueStore
from bot.services.mapping_store import PinnedRecord
from bot.services.metadata_codec import (
    MAX_LINK_TEXT_LENGTH,
    MessageLink,
    decode_links,
    encode_links,
)

logger = logging.getLogger(__name__)

MAX_LINKS = 1000
LINKS_KEY_PREFIX = "mapping:"
GENERAL_TOPIC_ID = 1


def links_key(group_id: int) -> str:
    return f"{LINKS_KEY_PREFIX}{group_id}"


class _KvUnavailable(Exception):
    pass


class MessageIndexStore:
    def __init__(
        self,
        gateway: TelegramGateway,
        kv_store: Optional[KeyValueStore] = None,
        max_links: int = MAX_LINKS,
        record_limit: int = MAX_LINK_TEXT_LENGTH,
    ):
        self.gateway = gateway
        self.kv_store = kv_store
        self.max_links = max_links
        self.record_limit = record_limit

    async def append(self, group_id: int, link: MessageLink) -> None:
        links, from_kv = await self._load(group_id)
        links.append(link)
        await self._save(group_id, links, from_kv)

    async def find_by_user_message(self, group_id: int, user_message_id: int) -> Optional[MessageLink]:
        """Most recent link whose user-side message id matches."""
        for link in reversed((await self._load(group_id))[0]):
            if link.user_message_id == int(user_message_id):
                return link
        return None

    async def find_by_thread_message(self, group_id: int, thread_message_id: int) -> Optional[MessageLink]:
        """Most recent link whose thread-side message id matches."""
        for link in reversed((await self._load(group_id))[0]):
            if link.topic_message_id == int(thread_message_id):
                return link
        return None

    async def purge_thread(self, group_id: int, topic_id: int) -> int:
        """Drop every link of a thread that no longer exists. Returns how many went."""
        links, from_kv = await self._load(group_id)
        kept = [link for link in links if link.topic_id != int(topic_id)]
        removed = len(links) - len(kept)
        if removed:
            await self._save(group_id, kept, from_kv)
        logger.info(f"Purged {removed} message links of topic {topic_id} in group {group_id}")
        return removed

    async def clear(self, group_id: int) -> None:
        if self.kv_store is not None:
            try:
                await self.kv_store.put(links_key(group_id), [])
            except Exception as e:
                logger.error(f"Could not clear message links of group {group_id}: {e}")
        await self.gateway.call(
            "unpinAllChatMessages", {"chat_id": group_id}, context="reset message links"
        )

    async def _load(self, group_id: int) -> tuple[list[MessageLink], bool]:
        """Links plus whether they came from the key-value layer."""
        try:
            return await self._kv_load(group_id), True
        except _KvUnavailable:
            record = await self._load_record(group_id)
            return decode_links(record.text if record else ""), False

    async def _save(self, group_id: int, links: list[MessageLink], to_kv: bool) -> None:
        """
        Write back to the layer the links were read from.

        A list read from the pinned record is only a tail of the key-value
        copy, so it never replaces it.
        """
        trimmed = links[-self.max_links:] if self.max_links > 0 else []
        if to_kv:
            try:
                await self._kv_save(group_id, trimmed)
                return
            except _KvUnavailable:
                pass
        await self._save_record(group_id, trimmed)

    async def _kv_load(self, group_id: int) -> list[MessageLink]:
        if self.kv_store is None:
            raise _KvUnavailable()
        try:
            data = await self.kv_store.get(links_key(group_id))
        except Exception as e:
            logger.error(f"Key-value read of message links failed, using pinned record: {e}")
            raise _KvUnavailable() from e
        links = []
        for item in data or []:
            link = MessageLink.from_json(item) if isinstance(item, dict) else None
            if link is not None:
                links.append(link)
        return links

    async def _kv_save(self, group_id: int, links: list[MessageLink]) -> None:
        if self.kv_store is None:
            raise _KvUnavailable()
        try:
            await self.kv_store.put(links_key(group_id), [link.to_json() for link in links])
        except Exception as e:
            logger.error(f"Key-value write of message links failed, using pinned record: {e}")
            raise _KvUnavailable() from e

    async def _load_record(self, group_id: int) -> Optional[PinnedRecord]:
        response = await self.gateway.call(
            "getChat", {"chat_id": group_id}, context="read message link record", report=False
        )
        pinned = (response.result or {}).get("pinned_message") if response.ok else None
        if not pinned or not pinned.get("text"):
            return None
        return PinnedRecord(message_id=int(pinned["message_id"]), text=str(pinned["text"]))

    async def _save_record(self, group_id: int, links: list[MessageLink]) -> None:
        text = encode_links(links, self.record_limit)
        record = await self._load_record(group_id)

        if record is None:
            if not text:
                return
            sent = await self.gateway.call(
                "sendMessage",
                {"chat_id": group_id, "message_thread_id": GENERAL_TOPIC_ID, "text": text},
                context="create message link record",
            )
            if not sent.ok or not sent.message_id:
                logger.error(f"Could not create message link record: {sent.description}")
                return
            await self.gateway.call(
                "pinChatMessage",
                {"chat_id": group_id, "message_id": sent.message_id},
                context="pin message link record",
            )
            return

        if record.text == text:
            return
        if not text:
            await self.gateway.call(
                "unpinChatMessage",
                {"chat_id": group_id, "message_id": record.message_id},
                context="empty message link record",
            )
            return
        response = await self.gateway.call(
            "editMessageText",
            {"chat_id": group_id, "message_id": record.message_id, "text": text},
            context="update message link record",
            report=False,
        )
        if not response.ok:
            logger.error(f"Could not update message link record: {response.description}")
