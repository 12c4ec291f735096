"""Inbound events - the update shapes the sync engine understands."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from aiogram.types import Message, MessageReactionUpdated, Update

DELETE_MARKER = "#del"

# name -> (blocked, silent)
MODERATION_COMMANDS = {
    "ban": (True, False),
    "silent_ban": (True, True),
    "unban": (False, False),
    "silent_unban": (False, True),
}
SETUP_COMMANDS = ("start", "init", "reset", "status")

_COMMAND_RE = re.compile(r"^/([A-Za-z_]+)(?:@\w+)?$")


@dataclass(frozen=True)
class NewMessage:
    message: Message


@dataclass(frozen=True)
class EditedMessage:
    message: Message


@dataclass(frozen=True)
class Reaction:
    update: MessageReactionUpdated


@dataclass(frozen=True)
class Command:
    """
    A command the relay reacts to instead of relaying.

    name is one of SETUP_COMMANDS, MODERATION_COMMANDS or "delete" (#del
    sent as a reply).
    """

    name: str
    message: Message

    @property
    def is_moderation(self) -> bool:
        return self.name in MODERATION_COMMANDS


InboundEvent = Union[NewMessage, EditedMessage, Reaction, Command]


def parse_command(message: Message) -> Optional[Command]:
    text = (message.text or "").strip()
    if not text:
        return None

    if text == DELETE_MARKER:
        return Command("delete", message) if message.reply_to_message else None

    match = _COMMAND_RE.match(text.split(maxsplit=1)[0])
    if not match:
        return None
    name = match.group(1).lower()
    if name in SETUP_COMMANDS or name in MODERATION_COMMANDS:
        return Command(name, message)
    return None


def event_from_message(message: Message) -> InboundEvent:
    return parse_command(message) or NewMessage(message)


def event_from_update(update: Update) -> Optional[InboundEvent]:
    if update.message_reaction is not None:
        return Reaction(update.message_reaction)
    if update.edited_message is not None:
        return EditedMessage(update.edited_message)
    if update.message is not None:
        return event_from_message(update.message)
    return None
