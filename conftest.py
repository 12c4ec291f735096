"""
Shared fixtures: a scripted in-memory Bot API and an in-memory key-value store.

FakeGateway answers the way Telegram does for the calls the relay makes,
records every (method, body) pair and lets a test script failures.
"""
import json
from datetime import datetime
from typing import Callable, Optional

import pytest
from aiogram.types import Chat, Message, MessageReactionUpdated, ReactionTypeEmoji, User

from bot.services.delivery_status import DeliveryStatus
from bot.services.gateway import ApiResponse
from bot.services.mapping_store import MappingStore
from bot.services.message_index import MessageIndexStore
from bot.services.setup_service import SetupService
from bot.services.sync_engine import SyncEngine

GROUP_ID = -100123
OWNER_ID = 42
USER_ID = 555
FIRST_TOPIC_ID = 10


class FakeGateway:
    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.pinned: dict[int, dict] = {}
        self.texts: dict[tuple[int, int], Optional[str]] = {}
        self.member_status: dict[tuple[int, int], str] = {(GROUP_ID, OWNER_ID): "creator"}
        self._next_message_id = 1000
        self._next_topic_id = FIRST_TOPIC_ID
        self._scripted: list[list] = []

    # -- scripting ---------------------------------------------------------

    def fail(self, method: str, description: str, *, times: int = 1,
             when: Callable[[dict], bool] | None = None) -> None:
        """The next `times` matching calls of `method` come back ok=false."""
        self._scripted.append([method, when, ApiResponse(ok=False, description=description), times])

    def pin_text(self, chat_id: int, text: str) -> int:
        message_id = self._new_message_id()
        self.texts[(chat_id, message_id)] = text
        self.pinned[chat_id] = {"message_id": message_id, "text": text}
        return message_id

    # -- inspection --------------------------------------------------------

    def bodies(self, method: str) -> list[dict]:
        return [body for name, body in self.calls if name == method]

    def methods(self) -> list[str]:
        return [name for name, _ in self.calls]

    def reactions(self, chat_id: int, message_id: int) -> list[str]:
        emojis = []
        for body in self.bodies("setMessageReaction"):
            if body["chat_id"] == chat_id and body["message_id"] == message_id:
                emojis.extend(item["emoji"] for item in body["reaction"])
        return emojis

    def sent_texts(self, chat_id: int) -> list[str]:
        return [body["text"] for body in self.bodies("sendMessage") if body["chat_id"] == chat_id]

    # -- transport ---------------------------------------------------------

    def _new_message_id(self) -> int:
        self._next_message_id += 1
        return self._next_message_id

    async def call(self, method: str, body: dict, *, context: str = "", report: bool = True) -> ApiResponse:
        self.calls.append((method, body))
        for entry in self._scripted:
            name, when, response, remaining = entry
            if name == method and remaining > 0 and (when is None or when(body)):
                entry[3] -= 1
                return response
        handler = getattr(self, f"_{method}", None)
        if handler is None:
            return ApiResponse(ok=True, result=True)
        return handler(body)

    def _sendMessage(self, body: dict) -> ApiResponse:
        message_id = self._new_message_id()
        self.texts[(body["chat_id"], message_id)] = body["text"]
        return ApiResponse(ok=True, result={"message_id": message_id, "text": body["text"]})

    def _copyMessage(self, body: dict) -> ApiResponse:
        message_id = self._new_message_id()
        self.texts[(body["chat_id"], message_id)] = None
        return ApiResponse(ok=True, result={"message_id": message_id})

    def _createForumTopic(self, body: dict) -> ApiResponse:
        topic_id = self._next_topic_id
        self._next_topic_id += 1
        return ApiResponse(ok=True, result={"message_thread_id": topic_id, "name": body["name"]})

    def _getChat(self, body: dict) -> ApiResponse:
        result = {"id": body["chat_id"]}
        if body["chat_id"] in self.pinned:
            result["pinned_message"] = dict(self.pinned[body["chat_id"]])
        return ApiResponse(ok=True, result=result)

    def _getChatMember(self, body: dict) -> ApiResponse:
        status = self.member_status.get((body["chat_id"], body["user_id"]), "member")
        return ApiResponse(ok=True, result={"status": status})

    def _pinChatMessage(self, body: dict) -> ApiResponse:
        key = (body["chat_id"], body["message_id"])
        self.pinned[body["chat_id"]] = {"message_id": body["message_id"], "text": self.texts.get(key) or ""}
        return ApiResponse(ok=True, result=True)

    def _unpinChatMessage(self, body: dict) -> ApiResponse:
        pinned = self.pinned.get(body["chat_id"])
        if pinned and pinned["message_id"] == body["message_id"]:
            del self.pinned[body["chat_id"]]
        return ApiResponse(ok=True, result=True)

    def _unpinAllChatMessages(self, body: dict) -> ApiResponse:
        self.pinned.pop(body["chat_id"], None)
        return ApiResponse(ok=True, result=True)

    def _editMessageText(self, body: dict) -> ApiResponse:
        key = (body["chat_id"], body["message_id"])
        if self.texts.get(key) == body["text"]:
            return ApiResponse(ok=False, description="Bad Request: message is not modified")
        self.texts[key] = body["text"]
        pinned = self.pinned.get(body["chat_id"])
        if pinned and pinned["message_id"] == body["message_id"]:
            pinned["text"] = body["text"]
        return ApiResponse(ok=True, result={"message_id": body["message_id"], "text": body["text"]})


class MemoryKeyValueStore:
    """
    Stores JSON text like the database column does.

    `failing` simulates a full outage, `failing_reads` one where only reads fail.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.failing = False
        self.failing_reads = False

    async def get(self, key: str):
        if self.failing or self.failing_reads:
            raise RuntimeError("kv store unavailable")
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value) -> None:
        if self.failing:
            raise RuntimeError("kv store unavailable")
        self.data[key] = json.dumps(value)


# -- aiogram object builders ---------------------------------------------------


def private_chat(chat_id: int = USER_ID, first_name: str = "Alice", username: str | None = None) -> Chat:
    return Chat(id=chat_id, type="private", first_name=first_name, username=username)


def group_chat(chat_id: int = GROUP_ID) -> Chat:
    return Chat(id=chat_id, type="supergroup", title="Support", is_forum=True)


def user(user_id: int = USER_ID, first_name: str = "Alice", is_bot: bool = False) -> User:
    return User(id=user_id, is_bot=is_bot, first_name=first_name)


def private_message(message_id: int, text: str | None = "hi", *, chat_id: int = USER_ID,
                    reply_to: Message | None = None, **extra) -> Message:
    return Message(
        message_id=message_id,
        date=datetime.now(),
        chat=private_chat(chat_id),
        from_user=user(chat_id),
        text=text,
        reply_to_message=reply_to,
        **extra,
    )


def thread_message(message_id: int, text: str | None = "hello", *, topic_id: int = FIRST_TOPIC_ID,
                   from_id: int = OWNER_ID, reply_to: Message | None = None,
                   chat_id: int = GROUP_ID, **extra) -> Message:
    return Message(
        message_id=message_id,
        date=datetime.now(),
        chat=group_chat(chat_id),
        from_user=user(from_id, first_name="Operator"),
        text=text,
        message_thread_id=topic_id,
        is_topic_message=True,
        reply_to_message=reply_to,
        **extra,
    )


def reaction_update(chat: Chat, message_id: int, from_id: int, *emojis: str) -> MessageReactionUpdated:
    return MessageReactionUpdated(
        chat=chat,
        message_id=message_id,
        user=user(from_id),
        date=datetime.now(),
        old_reaction=[],
        new_reaction=[ReactionTypeEmoji(emoji=emoji) for emoji in emojis],
    )


# -- fixtures ------------------------------------------------------------------


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def initialized(gateway) -> FakeGateway:
    """The operator has already bound GROUP_ID."""
    gateway.pin_text(OWNER_ID, str(GROUP_ID))
    return gateway


def build_engine(gateway, kv_store=None) -> SyncEngine:
    mapping_store = MappingStore(gateway, OWNER_ID, kv_store=kv_store)
    message_index = MessageIndexStore(gateway, kv_store=kv_store)
    return SyncEngine(
        gateway=gateway,
        mapping_store=mapping_store,
        message_index=message_index,
        delivery=DeliveryStatus(gateway, edited_pause=0),
        setup=SetupService(gateway, mapping_store, message_index, OWNER_ID),
        owner_id=OWNER_ID,
        cleanup_delay=0,
    )


@pytest.fixture
def engine(gateway, kv) -> SyncEngine:
    return build_engine(gateway, kv)
