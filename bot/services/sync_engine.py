"""
Sync engine - relays private chats into per-user forum threads and back.

One engine instance serves one inbound event. It loads the mapping, decides
which Bot API calls to issue, keeps the mapping and message index in step
with what happened remotely, and recovers when a thread turns out to be gone.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from aiogram.types import Message, MessageReactionUpdated

from bot.events import MODERATION_COMMANDS, Command, EditedMessage, InboundEvent, NewMessage, Reaction
from bot.services.delivery_status import DeliveryStatus
from bot.services.errors import AdminConflict, ConfigurationError, RelayError, RemoteRejection, StaleReference
from bot.services.gateway import THREAD_GONE, RemoteRejectionKind, TelegramGateway
from bot.services.mapping_store import MappingStore
from bot.services.message_index import MessageIndexStore
from bot.services.metadata_codec import MessageLink, TopicMapping
from bot.services.setup_service import SetupService
from bot.utils import messages

logger = logging.getLogger(__name__)

CLEANUP_DELAY = 1.0
THREAD_NAME_DISPLAY_LIMIT = 80
THREAD_NAME_LIMIT = 120
ADMIN_STATUSES = ("creator", "administrator")

# The bot's own metadata record echoed back into a private chat.
_METADATA_ECHO_RE = re.compile(r"^(-?\d+|-\d+;.*)$", re.DOTALL)

SERVICE_MESSAGE_FIELDS = (
    "forum_topic_created",
    "forum_topic_edited",
    "forum_topic_closed",
    "forum_topic_reopened",
    "general_forum_topic_hidden",
    "general_forum_topic_unhidden",
    "new_chat_members",
    "left_chat_member",
    "pinned_message",
    "delete_chat_photo",
    "group_chat_created",
    "supergroup_chat_created",
    "channel_chat_created",
)


def is_service_message(message: Message) -> bool:
    return any(getattr(message, name, None) for name in SERVICE_MESSAGE_FIELDS)


def build_thread_name(message: Message) -> str:
    """`@username (chatId)` or `First Last (chatId)`, plus the sender id when it differs."""
    chat = message.chat
    if chat.username:
        display = f"@{chat.username}"
    else:
        display = " ".join(part for part in (chat.first_name, chat.last_name) if part) or "Guest"

    from_id = message.from_user.id if message.from_user else None
    suffix = f"({chat.id})({from_id})" if from_id and from_id != chat.id else f"({chat.id})"
    return f"{display[:THREAD_NAME_DISPLAY_LIMIT]} {suffix}"[:THREAD_NAME_LIMIT]


def _reply_parameters(message_id: int) -> dict:
    return {"message_id": message_id, "allow_sending_without_reply": True}


class SyncEngine:
    def __init__(
        self,
        gateway: TelegramGateway,
        mapping_store: MappingStore,
        message_index: MessageIndexStore,
        delivery: DeliveryStatus,
        setup: SetupService,
        owner_id: int,
        cleanup_delay: float = CLEANUP_DELAY,
    ):
        self.gateway = gateway
        self.mapping_store = mapping_store
        self.message_index = message_index
        self.delivery = delivery
        self.setup = setup
        self.owner_id = int(owner_id)
        self.cleanup_delay = cleanup_delay

    # ------------------------------------------------------------------ dispatch

    async def handle(self, event: InboundEvent) -> None:
        """Process one inbound event to completion."""
        try:
            match event:
                case Reaction(update=update):
                    await self.on_reaction(update)
                case EditedMessage(message=message):
                    await self.on_edited_message(message)
                case Command():
                    await self.on_command(event)
                case NewMessage(message=message):
                    await self.on_new_message(message)
                case _:
                    logger.debug(f"Ignoring unsupported event {event!r}")
        except ConfigurationError as e:
            message = getattr(event, "message", None)
            logger.info(f"Event dropped, relay not configured: {e}")
            if message is not None:
                await self._notify_message_chat(message, str(e))
        except RelayError as e:
            logger.warning(f"Event failed: {e}")
            await self._notify(self.owner_id, messages.relay_failure_report(e))
        except Exception as e:
            logger.error(f"Unexpected error while relaying: {e}", exc_info=True)
            await self._notify(self.owner_id, messages.relay_failure_report(e))

    async def on_command(self, command: Command) -> None:
        message = command.message
        if command.name == "delete":
            await self.on_delete(message)
        elif command.is_moderation:
            blocked, silent = MODERATION_COMMANDS[command.name]
            await self.on_moderation(message, blocked=blocked, silent=silent)
        elif command.name == "start":
            await self.setup.start(message)
        elif command.name == "status":
            await self.setup.status(message)
        elif message.chat.type == "private" and not self._is_operator(message.from_user):
            # /init or /reset typed by an end user is just text for the operator.
            await self.on_new_message(message)
        elif command.name == "init":
            await self.setup.init(message)
        elif command.name == "reset":
            await self.setup.reset(message)

    async def on_new_message(self, message: Message) -> None:
        if message.from_user and message.from_user.is_bot:
            return
        if message.chat.type == "private":
            await self._on_private_message(message)
        elif message.chat.type == "supergroup" and message.is_topic_message:
            await self._on_thread_message(message)

    # ------------------------------------------------------------------ helpers

    def _is_operator(self, user) -> bool:
        return user is not None and int(user.id) == self.owner_id

    async def _require_mapping(self, group_hint: int | None = None) -> TopicMapping:
        mapping = await self.mapping_store.load(group_hint=group_hint)
        if mapping is None:
            raise ConfigurationError(messages.NOT_INITIALIZED)
        if mapping.super_group_id is None:
            raise ConfigurationError(messages.GROUP_BINDING_MISSING)
        return mapping

    async def _notify(self, chat_id: int, text: str, *, thread_id: int | None = None,
                      reply_to: int | None = None) -> Optional[int]:
        payload = {"chat_id": chat_id, "text": text}
        if thread_id:
            payload["message_thread_id"] = thread_id
        if reply_to:
            payload["reply_parameters"] = _reply_parameters(reply_to)
        response = await self.gateway.call("sendMessage", payload, context="notice")
        return response.message_id

    async def _notify_message_chat(self, message: Message, text: str) -> Optional[int]:
        thread_id = message.message_thread_id if message.is_topic_message else None
        return await self._notify(message.chat.id, text, thread_id=thread_id)

    async def is_group_admin(self, group_id: int, user_id: int | None) -> bool:
        if user_id is None:
            return False
        response = await self.gateway.call(
            "getChatMember",
            {"chat_id": group_id, "user_id": user_id},
            context="check administrator",
            report=False,
        )
        return response.ok and (response.result or {}).get("status") in ADMIN_STATUSES

    # ------------------------------------------------------------------ threads

    async def ensure_thread(self, mapping: TopicMapping, message: Message) -> int:
        """
        Thread bound to the message's private chat, created on first contact.

        Raises:
            AdminConflict: the chat belongs to a group administrator
            RemoteRejection: the forum topic could not be created
        """
        chat_id = int(message.chat.id)
        topic_id = mapping.thread_of(chat_id)
        if topic_id is not None:
            return topic_id

        group_id = mapping.super_group_id
        if await self.is_group_admin(group_id, chat_id):
            raise AdminConflict(chat_id)

        response = await self.gateway.call(
            "createForumTopic",
            {"chat_id": group_id, "name": build_thread_name(message)},
            context="create thread",
            report=False,
        )
        new_topic_id = (response.result or {}).get("message_thread_id") if response.ok else None
        if not new_topic_id:
            await self._notify(self.owner_id, messages.thread_creation_failed(response.description or "no thread id"))
            raise RemoteRejection.from_response("createForumTopic", response)

        new_topic_id = int(new_topic_id)
        mapping.bind(new_topic_id, chat_id)
        await self.mapping_store.save(mapping)
        logger.info(f"Created thread {new_topic_id} for chat {chat_id} in group {group_id}")
        return new_topic_id

    async def recover_thread(self, mapping: TopicMapping, topic_id: int) -> None:
        """The thread is gone remotely: forget its binding and every link into it."""
        logger.warning(f"Thread {topic_id} in group {mapping.super_group_id} is gone, purging it")
        mapping.unbind(topic_id)
        await self.message_index.purge_thread(mapping.super_group_id, topic_id)
        await self.mapping_store.save(mapping)

    # ------------------------------------------------------------------ relay

    async def _on_private_message(self, message: Message) -> None:
        text = (message.text or "").strip()
        if text and _METADATA_ECHO_RE.match(text):
            logger.debug("Ignoring metadata echo in private chat")
            return

        mapping = await self._require_mapping()
        sender_id = message.from_user.id if message.from_user else message.chat.id
        if await self.is_group_admin(mapping.super_group_id, sender_id):
            await self._notify(message.chat.id, messages.ADMIN_NO_THREAD)
            return

        await self.relay_to_thread(mapping, message)

    async def _on_thread_message(self, message: Message) -> None:
        if is_service_message(message):
            return

        group_id = int(message.chat.id)
        mapping = await self.mapping_store.load(group_hint=group_id)
        if mapping is None or mapping.super_group_id != group_id:
            return

        topic_id = message.message_thread_id
        user_chat_id = mapping.user_of(topic_id)
        if user_chat_id is None or mapping.is_banned(topic_id):
            return
        if await self.is_group_admin(group_id, user_chat_id):
            logger.info(f"Not relaying thread {topic_id}: its chat belongs to an administrator")
            return

        await self.relay_to_user(mapping, message)

    async def relay_to_thread(self, mapping: TopicMapping, message: Message, *, retried: bool = False) -> bool:
        """
        Copy a private message into its thread.

        A "thread gone" rejection purges the thread and retries exactly once,
        which creates a fresh thread for the chat.
        """
        chat_id = int(message.chat.id)
        group_id = mapping.super_group_id

        existing = mapping.thread_of(chat_id)
        if existing is not None and mapping.is_banned(existing):
            await self._notify(chat_id, messages.USER_BLOCKED)
            return False

        try:
            topic_id = await self.ensure_thread(mapping, message)
        except AdminConflict as e:
            logger.info(f"Refusing to create a thread: {e}")
            await self._notify(chat_id, messages.ADMIN_NO_THREAD)
            await self.delivery.mark_failed(chat_id, message.message_id)
            return False
        except RemoteRejection as e:
            logger.error(f"Thread creation for chat {chat_id} failed: {e}")
            await self.delivery.mark_failed(chat_id, message.message_id)
            return False

        target_topic_id = topic_id
        body = {
            "chat_id": group_id,
            "from_chat_id": chat_id,
            "message_id": message.message_id,
        }
        if message.reply_to_message:
            link = await self.message_index.find_by_user_message(group_id, message.reply_to_message.message_id)
            if link is not None:
                body["reply_parameters"] = _reply_parameters(link.topic_message_id)
                if (
                    link.topic_id != topic_id
                    and mapping.user_of(link.topic_id) is not None
                    and not mapping.is_banned(link.topic_id)
                ):
                    target_topic_id = link.topic_id
        body["message_thread_id"] = target_topic_id

        response = await self.gateway.call("copyMessage", body, context="relay private message to thread")
        if not response.ok:
            if response.rejection in THREAD_GONE:
                await self.recover_thread(mapping, target_topic_id)
                if not retried:
                    return await self.relay_to_thread(mapping, message, retried=True)
            await self.delivery.mark_failed(chat_id, message.message_id)
            return False

        if response.message_id:
            await self.message_index.append(
                group_id, MessageLink(target_topic_id, response.message_id, message.message_id)
            )
        await self.delivery.mark_sent(chat_id, message.message_id)
        return True

    async def relay_to_user(self, mapping: TopicMapping, message: Message) -> bool:
        """
        Copy a thread message to the bound private chat.

        Thread recovery here only cleans up: the private chat cannot be
        recreated, so there is nothing to retry.
        """
        group_id = mapping.super_group_id
        topic_id = message.message_thread_id
        user_chat_id = mapping.user_of(topic_id)
        if user_chat_id is None:
            return False

        body = {
            "chat_id": user_chat_id,
            "from_chat_id": group_id,
            "message_id": message.message_id,
        }
        if message.reply_to_message:
            link = await self.message_index.find_by_thread_message(group_id, message.reply_to_message.message_id)
            if link is not None:
                body["reply_parameters"] = _reply_parameters(link.user_message_id)

        response = await self.gateway.call("copyMessage", body, context="relay thread message to private chat")
        if not response.ok:
            if response.rejection in THREAD_GONE:
                await self.recover_thread(mapping, topic_id)
            await self.delivery.mark_failed(group_id, message.message_id)
            return False

        if response.message_id:
            await self.message_index.append(
                group_id, MessageLink(topic_id, message.message_id, response.message_id)
            )
        await self.delivery.mark_sent(group_id, message.message_id)
        return True

    # ------------------------------------------------------------------ edits

    async def on_edited_message(self, message: Message) -> None:
        chat = message.chat
        hint = int(chat.id) if chat.type == "supergroup" else None
        mapping = await self.mapping_store.load(group_hint=hint)
        if mapping is None:
            return
        if mapping.super_group_id is None:
            mapping.super_group_id = hint
        if mapping.super_group_id is None:
            return

        if self._is_operator(message.from_user) and chat.id == mapping.super_group_id:
            await self._propagate_operator_edit(mapping, message)
        elif chat.type == "private":
            await self._propagate_user_edit(mapping, message)

    async def _propagate_user_edit(self, mapping: TopicMapping, message: Message) -> None:
        group_id = mapping.super_group_id
        topic_id = mapping.thread_of(message.chat.id)
        if topic_id is None or mapping.is_banned(topic_id):
            return

        link = await self.message_index.find_by_user_message(group_id, message.message_id)
        if link is None:
            await self._resend_to_thread(group_id, topic_id, message)
            return
        if not message.text:
            await self._notify(group_id, messages.EDIT_TEXT_ONLY, thread_id=link.topic_id)
            return

        body = {"chat_id": group_id, "message_id": link.topic_message_id, "text": message.text}
        if message.entities:
            body["entities"] = message.entities
        response = await self.gateway.call("editMessageText", body, context="sync user edit")
        if response.ok:
            await self.delivery.mark_edited(message.chat.id, message.message_id)
        elif response.rejection is RemoteRejectionKind.NOT_EDITABLE:
            await self._resend_to_thread(group_id, link.topic_id, message)
        elif response.rejection is not RemoteRejectionKind.NOT_MODIFIED:
            await self.delivery.mark_failed(message.chat.id, message.message_id)

    async def _propagate_operator_edit(self, mapping: TopicMapping, message: Message) -> None:
        group_id = mapping.super_group_id
        topic_id = message.message_thread_id
        user_chat_id = mapping.user_of(topic_id) if topic_id else None
        if user_chat_id is None:
            return

        link = await self.message_index.find_by_thread_message(group_id, message.message_id)
        if link is None:
            await self._resend_to_user(group_id, topic_id, user_chat_id, message)
            return
        if not message.text:
            await self._notify(group_id, messages.EDIT_TEXT_ONLY, thread_id=topic_id)
            return

        body = {"chat_id": user_chat_id, "message_id": link.user_message_id, "text": message.text}
        if message.entities:
            body["entities"] = message.entities
        response = await self.gateway.call("editMessageText", body, context="sync operator edit")
        if response.ok:
            await self.delivery.mark_edited(user_chat_id, link.user_message_id)
        elif response.rejection is RemoteRejectionKind.NOT_EDITABLE:
            await self._resend_to_user(group_id, topic_id, user_chat_id, message)
        elif response.rejection is not RemoteRejectionKind.NOT_MODIFIED:
            await self._notify(group_id, messages.edit_failed(response.description), thread_id=topic_id)

    async def _resend_to_thread(self, group_id: int, topic_id: int, message: Message) -> None:
        response = await self.gateway.call(
            "copyMessage",
            {
                "chat_id": group_id,
                "from_chat_id": message.chat.id,
                "message_id": message.message_id,
                "message_thread_id": topic_id,
            },
            context="resend edited message to thread",
        )
        if not response.ok:
            await self.delivery.mark_failed(message.chat.id, message.message_id)
            return
        if response.message_id:
            await self.message_index.append(group_id, MessageLink(topic_id, response.message_id, message.message_id))
        await self._notify(group_id, messages.EDIT_RESENT, thread_id=topic_id)

    async def _resend_to_user(self, group_id: int, topic_id: int, user_chat_id: int, message: Message) -> None:
        response = await self.gateway.call(
            "copyMessage",
            {"chat_id": user_chat_id, "from_chat_id": group_id, "message_id": message.message_id},
            context="resend edited message to private chat",
        )
        if not response.ok:
            await self._notify(group_id, messages.edit_failed(response.description), thread_id=topic_id)
            return
        if response.message_id:
            await self.message_index.append(group_id, MessageLink(topic_id, message.message_id, response.message_id))
        await self._notify(group_id, messages.EDIT_RESENT, thread_id=topic_id)

    # ------------------------------------------------------------------ deletes

    async def on_delete(self, message: Message) -> None:
        """#del sent as a reply: delete the counterpart of the replied-to message."""
        reply = message.reply_to_message
        if reply is None:
            return

        chat = message.chat
        hint = int(chat.id) if chat.type == "supergroup" else None
        mapping = await self.mapping_store.load(group_hint=hint)
        if mapping is not None and mapping.super_group_id is None:
            mapping.super_group_id = hint
        if mapping is None or mapping.super_group_id is None:
            raise ConfigurationError(messages.NOT_INITIALIZED)

        thread_id = message.message_thread_id if message.is_topic_message else None
        try:
            if self._is_operator(message.from_user) and chat.id == mapping.super_group_id:
                await self._delete_from_thread(mapping, message, reply)
            elif chat.type == "private":
                await self._delete_from_private(mapping, message, reply)
        except StaleReference as e:
            logger.info(f"Delete skipped: {e}")
            await self._notify(chat.id, messages.COUNTERPART_STALE, thread_id=thread_id, reply_to=message.message_id)

    async def _delete_from_private(self, mapping: TopicMapping, message: Message, reply: Message) -> None:
        chat_id = int(message.chat.id)
        group_id = mapping.super_group_id
        if mapping.thread_of(chat_id) is None:
            await self._notify(chat_id, messages.NO_THREAD_YET, reply_to=message.message_id)
            return

        link = await self.message_index.find_by_user_message(group_id, reply.message_id)
        if link is None:
            raise StaleReference(f"no thread copy of private message {reply.message_id}")

        response = await self.gateway.call(
            "deleteMessage",
            {"chat_id": group_id, "message_id": link.topic_message_id},
            context="user delete",
        )
        if not response.ok:
            await self._notify(chat_id, messages.delete_failed(response.description))
            return

        await self.delivery.mark_deleted(chat_id, message.message_id)
        await self._notify(chat_id, messages.USER_DELETE_DONE)

    async def _delete_from_thread(self, mapping: TopicMapping, message: Message, reply: Message) -> None:
        group_id = mapping.super_group_id
        topic_id = message.message_thread_id
        user_chat_id = mapping.user_of(topic_id) if topic_id else None
        if user_chat_id is None:
            await self._notify(group_id, messages.THREAD_UNBOUND, thread_id=topic_id)
            return

        link = await self.message_index.find_by_thread_message(group_id, reply.message_id)
        if link is None:
            raise StaleReference(f"no private copy of thread message {reply.message_id}")

        response = await self.gateway.call(
            "deleteMessage",
            {"chat_id": user_chat_id, "message_id": link.user_message_id},
            context="operator delete",
        )
        if not response.ok:
            await self._notify(group_id, messages.delete_failed(response.description), thread_id=topic_id)
            return

        await self.delivery.mark_deleted(group_id, message.message_id)
        notice_id = await self._notify(group_id, messages.OPERATOR_DELETE_DONE, thread_id=topic_id)

        await asyncio.sleep(self.cleanup_delay)
        cleanup = [reply.message_id, message.message_id]
        if notice_id:
            cleanup.append(notice_id)
        await self.gateway.call(
            "deleteMessages",
            {"chat_id": group_id, "message_ids": cleanup},
            context="clean up deleted message",
        )

    # ------------------------------------------------------------------ reactions

    async def on_reaction(self, update: MessageReactionUpdated) -> None:
        chat = update.chat
        user = update.user
        if user is not None and user.is_bot:
            return

        hint = int(chat.id) if chat.type == "supergroup" else None
        mapping = await self.mapping_store.load(group_hint=hint)
        if mapping is None:
            return
        group_id = mapping.super_group_id or hint
        if group_id is None:
            return

        reaction = [item.model_dump(mode="json", exclude_none=True) for item in update.new_reaction or []]

        if chat.id == group_id:
            if not self._is_operator(user):
                return
            link = await self.message_index.find_by_thread_message(group_id, update.message_id)
            if link is None:
                return
            user_chat_id = mapping.user_of(link.topic_id)
            if user_chat_id is None:
                return
            await self.delivery.set_reaction(user_chat_id, link.user_message_id, reaction)
        elif chat.type == "private":
            topic_id = mapping.thread_of(chat.id)
            if topic_id is None or mapping.is_banned(topic_id):
                return
            link = await self.message_index.find_by_user_message(group_id, update.message_id)
            if link is None:
                return
            await self.delivery.set_reaction(group_id, link.topic_message_id, reaction)

    # ------------------------------------------------------------------ moderation

    async def on_moderation(self, message: Message, *, blocked: bool, silent: bool) -> None:
        """Block or unblock the thread the command was sent in."""
        chat_id = int(message.chat.id)
        if message.chat.type != "supergroup" or not message.is_topic_message:
            await self._notify(chat_id, messages.RUN_IN_THREAD)
            return

        topic_id = message.message_thread_id
        if not self._is_operator(message.from_user):
            await self._notify(chat_id, messages.OPERATOR_ONLY, thread_id=topic_id)
            return

        mapping = await self._require_mapping(group_hint=chat_id)
        if mapping.super_group_id != chat_id:
            await self._notify(chat_id, messages.RUN_IN_BOUND_GROUP, thread_id=topic_id)
            return

        user_chat_id = mapping.user_of(topic_id)
        if user_chat_id is None:
            await self._notify(chat_id, messages.THREAD_UNBOUND, thread_id=topic_id)
            return

        if mapping.is_banned(topic_id) == blocked:
            already = messages.THREAD_ALREADY_BLOCKED if blocked else messages.THREAD_NOT_BLOCKED
            await self._notify(chat_id, already, thread_id=topic_id)
            return

        mapping.set_banned(topic_id, blocked)
        await self.mapping_store.save(mapping)
        logger.info(f"Thread {topic_id} {'blocked' if blocked else 'unblocked'} (silent={silent})")

        await self._notify(chat_id, messages.THREAD_BLOCKED if blocked else messages.THREAD_UNBLOCKED, thread_id=topic_id)
        if not silent:
            await self._notify(
                user_chat_id,
                messages.USER_NOTIFIED_BLOCKED if blocked else messages.USER_NOTIFIED_UNBLOCKED,
            )
