"""Relay handlers: every message, edit and reaction goes through the sync engine."""

from __future__ import annotations

import logging

from aiogram import Bot, Router
from aiogram.types import Message, MessageReactionUpdated

from bot.container import ServiceContainer
from bot.events import EditedMessage, InboundEvent, Reaction, event_from_message

logger = logging.getLogger(__name__)


def create_relay_handlers(container: ServiceContainer) -> Router:
    router = Router()

    async def dispatch(bot: Bot, event: InboundEvent) -> None:
        engine = container.create_engine(bot)
        await engine.handle(event)

    @router.message()
    async def on_message(message: Message, bot: Bot):
        await dispatch(bot, event_from_message(message))

    @router.edited_message()
    async def on_edited_message(message: Message, bot: Bot):
        await dispatch(bot, EditedMessage(message))

    @router.message_reaction()
    async def on_reaction(update: MessageReactionUpdated, bot: Bot):
        await dispatch(bot, Reaction(update))

    return router
