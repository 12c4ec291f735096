"""Setup service - /start, /init, /reset and /status."""
import logging

from aiogram.types import Message

from bot.services.errors import RemoteRejection
from bot.services.gateway import TelegramGateway
from bot.services.mapping_store import MappingStore
from bot.services.message_index import MessageIndexStore
from bot.services.metadata_codec import TopicMapping, decode_metadata
from bot.utils import messages

logger = logging.getLogger(__name__)


class SetupService:
    def __init__(
        self,
        gateway: TelegramGateway,
        mapping_store: MappingStore,
        message_index: MessageIndexStore,
        owner_id: int,
    ):
        self.gateway = gateway
        self.mapping_store = mapping_store
        self.message_index = message_index
        self.owner_id = int(owner_id)

    async def reply(self, message: Message, text: str, context: str = "") -> None:
        payload = {"chat_id": message.chat.id, "text": text}
        if message.is_topic_message and message.message_thread_id:
            payload["message_thread_id"] = message.message_thread_id
        await self.gateway.call("sendMessage", payload, context=context)

    def _is_operator(self, message: Message) -> bool:
        return bool(message.from_user) and int(message.from_user.id) == self.owner_id

    async def start(self, message: Message) -> None:
        is_private = message.chat.type == "private"
        if self._is_operator(message) and is_private:
            text = messages.help_operator_private()
        elif self._is_operator(message) and not message.is_topic_message:
            text = messages.help_operator_group()
        elif message.is_topic_message:
            text = messages.help_thread()
        else:
            text = messages.help_user()
        await self.reply(message, text, "/start")

    async def init(self, message: Message) -> None:
        """
        Bind the current supergroup.

        The binding is immutable: a group that is already bound stays bound
        until /reset, even when /init is sent from another group.
        """
        if message.chat.type != "supergroup":
            await self.reply(message, messages.RUN_IN_BOUND_GROUP, "/init")
            return
        if not self._is_operator(message):
            await self.reply(message, messages.OPERATOR_ONLY, "/init")
            return

        group_id = int(message.chat.id)
        record = await self.mapping_store.load_record()
        if record is not None:
            bound = decode_metadata(record.text).super_group_id
            if bound == group_id:
                await self.reply(message, messages.ALREADY_INITIALIZED, "/init")
                return
            if bound is not None:
                await self.reply(message, messages.BOUND_TO_OTHER_GROUP, "/init")
                return

        try:
            await self.mapping_store.save(TopicMapping(super_group_id=group_id))
        except RemoteRejection as e:
            logger.error(f"Initialization of group {group_id} failed: {e}")
            await self.reply(message, messages.api_failure_report(e.method, "/init", e.description), "/init")
            return

        logger.info(f"Relay bound to group {group_id}")
        await self.reply(message, messages.INITIALIZED, "/init")

    async def reset(self, message: Message) -> None:
        if not self._is_operator(message):
            await self.reply(message, messages.OPERATOR_ONLY, "/reset")
            return

        mapping = await self.mapping_store.load()
        group_id = mapping.super_group_id if mapping else None
        if group_id is None and message.chat.type == "supergroup":
            group_id = int(message.chat.id)

        await self.mapping_store.reset(group_id)
        if group_id is not None:
            await self.message_index.clear(group_id)

        logger.warning(f"Relay binding reset (group {group_id})")
        await self.reply(message, messages.RESET_DONE, "/reset")

    async def status(self, message: Message) -> None:
        record = await self.mapping_store.load_record()
        if record is None:
            await self.reply(message, messages.NOT_INITIALIZED, "/status")
            return

        mapping = await self.mapping_store.load() or decode_metadata(record.text)
        text = messages.status_summary(
            mapping.super_group_id,
            bindings=len(mapping.topic_to_chat),
            blocked=len(mapping.banned_topics),
            record_length=len(record.text),
            record_limit=self.mapping_store.record_limit,
        )
        await self.reply(message, text, "/status")
