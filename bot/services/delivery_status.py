"""Delivery status - reactions on the sender's message saying what happened to it."""
import asyncio
import logging

from bot.services.gateway import ApiResponse, RemoteRejectionKind, TelegramGateway

logger = logging.getLogger(__name__)

SENT = "🕊"
EDITED = "🦄"
DELETED = "🗿"
FAILED = "❌"

EDITED_MARKER_PAUSE = 1.0


def emoji_reaction(emoji: str) -> list[dict]:
    return [{"type": "emoji", "emoji": emoji}]


class DeliveryStatus:
    def __init__(self, gateway: TelegramGateway, edited_pause: float = EDITED_MARKER_PAUSE):
        self.gateway = gateway
        self.edited_pause = edited_pause

    async def set_reaction(self, chat_id: int, message_id: int, reaction: list | None) -> ApiResponse:
        """
        Set a reaction list on a message.

        Bots may only set one reaction: on REACTIONS_TOO_MANY retry with the
        last one. Premium-only reactions (REACTION_INVALID) are skipped quietly.
        """
        reaction = list(reaction or [])
        response = await self.gateway.call(
            "setMessageReaction",
            {"chat_id": chat_id, "message_id": message_id, "reaction": reaction},
            context="set reaction",
            report=False,
        )
        if response.ok:
            return response

        kind = response.rejection
        if kind is RemoteRejectionKind.TOO_MANY_REACTIONS:
            return await self.gateway.call(
                "setMessageReaction",
                {"chat_id": chat_id, "message_id": message_id, "reaction": reaction[-1:]},
                context="set single reaction",
                report=False,
            )
        if kind is RemoteRejectionKind.INVALID_REACTION:
            logger.info(f"Reaction on {chat_id}/{message_id} skipped (unsupported emoji)")
            return response

        logger.warning(f"setMessageReaction failed on {chat_id}/{message_id}: {response.description}")
        return response

    async def mark_sent(self, chat_id: int, message_id: int) -> None:
        await self.set_reaction(chat_id, message_id, emoji_reaction(SENT))

    async def mark_edited(self, chat_id: int, message_id: int) -> None:
        await self.set_reaction(chat_id, message_id, emoji_reaction(EDITED))
        await asyncio.sleep(self.edited_pause)
        await self.set_reaction(chat_id, message_id, emoji_reaction(SENT))

    async def mark_deleted(self, chat_id: int, message_id: int) -> None:
        await self.set_reaction(chat_id, message_id, emoji_reaction(DELETED))

    async def mark_failed(self, chat_id: int, message_id: int) -> None:
        await self.set_reaction(chat_id, message_id, emoji_reaction(FAILED))
