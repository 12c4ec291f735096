"""
Metadata codec - the textual form of the topic mapping and of the message links.

Topic mapping record (pinned in the operator's private chat):
    superGroupId;topicId:[b]userChatId[:label];topicId:[b]userChatId[:label];...
    e.g. `-100123;10:555` or `-100123;10:b555:vip`

Message link record (pinned in the General topic of the group):
    topicId-topicMessageId:userMessageId;topicId-topicMessageId:userMessageId;...

Both records are capped at 4096 characters; the oldest entries go first.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 4096
MAX_LINK_TEXT_LENGTH = 4096
ENTRY_SEPARATOR = ";"
FIELD_SEPARATOR = ":"
BANNED_PREFIX = "b"
LINK_SEPARATOR = ";"
LINK_ID_SEPARATOR = "-"


def _parse_int(raw: str | None) -> Optional[int]:
    try:
        return int((raw or "").strip())
    except ValueError:
        return None


@dataclass
class TopicMapping:
    """
    In-memory form of the group binding plus every thread binding.

    `topic_to_chat` and `chat_to_topic` are kept as mutual inverses; dict
    insertion order doubles as the age of a binding for eviction.
    """

    super_group_id: Optional[int] = None
    topic_to_chat: dict[int, int] = field(default_factory=dict)
    chat_to_topic: dict[int, int] = field(default_factory=dict)
    banned_topics: set[int] = field(default_factory=set)
    topic_to_label: dict[int, str] = field(default_factory=dict)
    chat_to_label: dict[int, str] = field(default_factory=dict)

    def thread_of(self, chat_id: int) -> Optional[int]:
        return self.chat_to_topic.get(int(chat_id))

    def user_of(self, topic_id: int) -> Optional[int]:
        return self.topic_to_chat.get(int(topic_id))

    def is_banned(self, topic_id: int) -> bool:
        return int(topic_id) in self.banned_topics

    def bind(self, topic_id: int, chat_id: int, label: str | None = None) -> None:
        topic_id, chat_id = int(topic_id), int(chat_id)
        previous_topic = self.chat_to_topic.get(chat_id)
        if previous_topic is not None and previous_topic != topic_id:
            self.unbind(previous_topic)
        previous_chat = self.topic_to_chat.get(topic_id)
        if previous_chat is not None and previous_chat != chat_id:
            self.chat_to_topic.pop(previous_chat, None)
            self.chat_to_label.pop(previous_chat, None)

        self.topic_to_chat[topic_id] = chat_id
        self.chat_to_topic[chat_id] = topic_id
        if label:
            self.topic_to_label[topic_id] = label
            self.chat_to_label[chat_id] = label

    def unbind(self, topic_id: int) -> Optional[int]:
        topic_id = int(topic_id)
        chat_id = self.topic_to_chat.pop(topic_id, None)
        if chat_id is not None:
            self.chat_to_topic.pop(chat_id, None)
            self.chat_to_label.pop(chat_id, None)
        self.topic_to_label.pop(topic_id, None)
        self.banned_topics.discard(topic_id)
        return chat_id

    def set_banned(self, topic_id: int, banned: bool) -> None:
        if banned:
            self.banned_topics.add(int(topic_id))
        else:
            self.banned_topics.discard(int(topic_id))

    def to_json(self) -> dict:
        return {
            "superGroupChatId": self.super_group_id,
            "topicToFromChat": [[t, c] for t, c in self.topic_to_chat.items()],
            "fromChatToTopic": [[c, t] for c, t in self.chat_to_topic.items()],
            "bannedTopics": [str(t) for t in self.topic_to_chat if t in self.banned_topics],
            "topicToComment": [[t, label] for t, label in self.topic_to_label.items()],
            "fromChatToComment": [[c, label] for c, label in self.chat_to_label.items()],
        }

    @classmethod
    def from_json(cls, data: dict | None) -> "TopicMapping":
        """Rebuild from the key-value document; malformed pairs are skipped."""
        data = data or {}
        mapping = cls(super_group_id=_parse_int(str(data.get("superGroupChatId") or "")))
        labels = {}
        for pair in data.get("topicToComment") or []:
            try:
                labels[int(pair[0])] = str(pair[1])
            except (TypeError, ValueError, IndexError):
                continue
        for pair in data.get("topicToFromChat") or []:
            try:
                topic_id, chat_id = int(pair[0]), int(pair[1])
            except (TypeError, ValueError, IndexError):
                continue
            mapping.bind(topic_id, chat_id, labels.get(topic_id))
        for raw in data.get("bannedTopics") or []:
            topic_id = _parse_int(str(raw))
            if topic_id is not None and topic_id in mapping.topic_to_chat:
                mapping.banned_topics.add(topic_id)
        return mapping


@dataclass(frozen=True)
class MessageLink:
    """A relayed message and its counterpart on the other side."""

    topic_id: int
    topic_message_id: int
    user_message_id: int

    def to_json(self) -> dict:
        return {
            "topicId": self.topic_id,
            "topicMessageId": self.topic_message_id,
            "pmMessageId": self.user_message_id,
        }

    @classmethod
    def from_json(cls, data: dict) -> Optional["MessageLink"]:
        try:
            return cls(int(data["topicId"]), int(data["topicMessageId"]), int(data["pmMessageId"]))
        except (KeyError, TypeError, ValueError):
            return None


def sanitize_label(label: str | None) -> str:
    """Labels may not contain the record delimiters."""
    return (label or "").replace(ENTRY_SEPARATOR, "").replace(FIELD_SEPARATOR, "")


def parse_group_id(text: str | None) -> Optional[int]:
    head = (text or "").split(ENTRY_SEPARATOR, 1)[0]
    return _parse_int(head)


def decode_metadata(text: str | None) -> TopicMapping:
    """
    Parse a topic mapping record.

    Empty or malformed input yields an empty mapping; malformed entries are
    skipped individually.
    """
    chunks = [chunk for chunk in (text or "").split(ENTRY_SEPARATOR) if chunk]
    if not chunks:
        return TopicMapping()

    mapping = TopicMapping(super_group_id=_parse_int(chunks[0]))
    for chunk in chunks[1:]:
        segments = chunk.split(FIELD_SEPARATOR)
        topic_id = _parse_int(segments[0])
        if topic_id is None or len(segments) < 2:
            continue

        user_chunk = segments[1]
        banned = user_chunk.startswith(BANNED_PREFIX)
        if banned:
            user_chunk = user_chunk[len(BANNED_PREFIX):]
        chat_id = _parse_int(user_chunk)
        if chat_id is None:
            continue

        label = segments[2] if len(segments) > 2 else ""
        mapping.bind(topic_id, chat_id, label or None)
        if banned:
            mapping.banned_topics.add(topic_id)
    return mapping


def _encode_entry(mapping: TopicMapping, topic_id: int, chat_id: int) -> str:
    banned = BANNED_PREFIX if mapping.is_banned(topic_id) else ""
    label = sanitize_label(mapping.topic_to_label.get(topic_id))
    entry = f"{topic_id}{FIELD_SEPARATOR}{banned}{chat_id}"
    if label:
        entry += f"{FIELD_SEPARATOR}{label}"
    return entry


def encode_metadata(mapping: TopicMapping, limit: int = MAX_TEXT_LENGTH) -> str:
    """
    Serialize a topic mapping record that fits in `limit` characters.

    Bindings are dropped oldest-insertion-first until the record fits. The
    mapping itself is not modified.
    """
    head = "" if mapping.super_group_id is None else str(mapping.super_group_id)
    entries = [_encode_entry(mapping, t, c) for t, c in mapping.topic_to_chat.items()]

    length = len(head) + sum(len(e) + len(ENTRY_SEPARATOR) for e in entries)
    dropped = 0
    while length > limit and dropped < len(entries):
        length -= len(entries[dropped]) + len(ENTRY_SEPARATOR)
        dropped += 1
    if dropped:
        logger.info(f"Metadata record over {limit} chars, evicted {dropped} oldest bindings")

    return ENTRY_SEPARATOR.join([head, *entries[dropped:]])[:limit]


def decode_links(text: str | None) -> list[MessageLink]:
    links = []
    for chunk in (text or "").split(LINK_SEPARATOR):
        if not chunk:
            continue
        ids, _, user_raw = chunk.partition(FIELD_SEPARATOR)
        topic_raw, _, topic_message_raw = ids.partition(LINK_ID_SEPARATOR)
        topic_id = _parse_int(topic_raw)
        topic_message_id = _parse_int(topic_message_raw)
        user_message_id = _parse_int(user_raw)
        if topic_id is None or topic_message_id is None or user_message_id is None:
            continue
        links.append(MessageLink(topic_id, topic_message_id, user_message_id))
    return links


def encode_link(link: MessageLink) -> str:
    return f"{link.topic_id}{LINK_ID_SEPARATOR}{link.topic_message_id}{FIELD_SEPARATOR}{link.user_message_id}"


def encode_links(links: Iterable[MessageLink], limit: int = MAX_LINK_TEXT_LENGTH) -> str:
    """Join links oldest first, dropping from the front until the text fits (the newest always stays)."""
    parts = [encode_link(link) for link in links]
    length = sum(len(p) for p in parts) + max(len(parts) - 1, 0) * len(LINK_SEPARATOR)
    start = 0
    while length > limit and len(parts) - start > 1:
        length -= len(parts[start]) + len(LINK_SEPARATOR)
        start += 1
    return LINK_SEPARATOR.join(parts[start:])
