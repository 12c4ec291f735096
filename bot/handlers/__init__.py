"""Handlers package - update handlers."""
from bot.handlers.relay import create_relay_handlers

__all__ = [
    "create_relay_handlers",
]
