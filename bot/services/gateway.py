"""Bot API gateway - one call shape (method + JSON body) over aiogram's Bot."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from bot.utils import messages

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


class RemoteRejectionKind(str, Enum):
    THREAD_NOT_FOUND = "thread_not_found"
    THREAD_INVALID = "thread_invalid"
    NOT_MODIFIED = "not_modified"
    TOO_MANY_REACTIONS = "too_many_reactions"
    INVALID_REACTION = "invalid_reaction"
    NOT_EDITABLE = "not_editable"
    MESSAGE_NOT_FOUND = "message_not_found"
    OTHER = "other"


# Telegram's error descriptions are not a versioned contract. Every substring the
# relay depends on lives here and nowhere else.
_REJECTION_PATTERNS: tuple[tuple[str, RemoteRejectionKind], ...] = (
    ("message thread not found", RemoteRejectionKind.THREAD_NOT_FOUND),
    ("topic_id_invalid", RemoteRejectionKind.THREAD_INVALID),
    ("invalid thread", RemoteRejectionKind.THREAD_INVALID),
    ("message is not modified", RemoteRejectionKind.NOT_MODIFIED),
    ("reactions_too_many", RemoteRejectionKind.TOO_MANY_REACTIONS),
    ("reaction_invalid", RemoteRejectionKind.INVALID_REACTION),
    ("can't be edited", RemoteRejectionKind.NOT_EDITABLE),
    ("message to delete not found", RemoteRejectionKind.MESSAGE_NOT_FOUND),
    ("message to edit not found", RemoteRejectionKind.MESSAGE_NOT_FOUND),
)

THREAD_GONE = frozenset({RemoteRejectionKind.THREAD_NOT_FOUND, RemoteRejectionKind.THREAD_INVALID})


def classify_rejection(description: str | None) -> RemoteRejectionKind:
    """Map a raw Bot API error description onto a closed set of kinds."""
    lowered = (description or "").lower()
    for needle, kind in _REJECTION_PATTERNS:
        if needle in lowered:
            return kind
    return RemoteRejectionKind.OTHER


@dataclass
class ApiResponse:
    ok: bool
    result: Any = None
    description: str = ""

    @property
    def rejection(self) -> RemoteRejectionKind | None:
        if self.ok:
            return None
        return classify_rejection(self.description)

    @property
    def message_id(self) -> int | None:
        if isinstance(self.result, dict) and self.result.get("message_id"):
            return int(self.result["message_id"])
        return None


def _to_plain(result: Any) -> Any:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", exclude_none=True)
    if isinstance(result, list):
        return [_to_plain(item) for item in result]
    return result


class TelegramGateway:
    """
    Stateless request/response transport to the Bot API.

    Platform failures never raise: they come back as ApiResponse(ok=False).
    A failing call other than sendMessage is reported to the operator's
    private chat so problems surface even when nobody reads the logs.
    """

    def __init__(self, bot: Bot, owner_id: int):
        self.bot = bot
        self.owner_id = int(owner_id)

    async def call(self, method: str, body: dict, *, context: str = "", report: bool = True) -> ApiResponse:
        handler = getattr(self.bot, _CAMEL_RE.sub("_", method).lower(), None)
        if handler is None:
            raise ValueError(f"Unsupported Bot API method: {method}")

        try:
            result = await handler(**body)
        except TelegramAPIError as e:
            response = ApiResponse(ok=False, description=str(e.message))
        except Exception as e:
            logger.error(f"{method} raised ({context or 'no context'}): {e}", exc_info=True)
            response = ApiResponse(ok=False, description=str(e))
        else:
            return ApiResponse(ok=True, result=_to_plain(result))

        logger.warning(f"{method} rejected ({context or 'no context'}): {response.description}")
        if report and method != "sendMessage":
            await self._report(method, context, response.description)
        return response

    async def _report(self, method: str, context: str, description: str) -> None:
        try:
            await self.bot.send_message(
                chat_id=self.owner_id,
                text=messages.api_failure_report(method, context, description),
            )
        except Exception as e:
            logger.error(f"Could not report {method} failure to operator: {e}")
