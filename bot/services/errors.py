"""Relay error hierarchy shared by the stores and the sync engine."""
from bot.services.gateway import ApiResponse, RemoteRejectionKind


class RelayError(Exception):
    """Base class for every failure the relay reports to a sender or the operator."""


class ConfigurationError(RelayError):
    """The group binding is missing or unusable; the operator has to run /init."""


class RemoteRejection(RelayError):
    """The Bot API answered ok=false for a call the event cannot continue without."""

    def __init__(self, method: str, kind: RemoteRejectionKind, description: str):
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.kind = kind
        self.description = description

    @classmethod
    def from_response(cls, method: str, response: ApiResponse) -> "RemoteRejection":
        description = response.description or "no result returned"
        return cls(method, response.rejection or RemoteRejectionKind.OTHER, description)


class StaleReference(RelayError):
    """A message link or thread binding needed by the event no longer exists."""


class AdminConflict(RelayError):
    """Group administrators talk inside the group and never get a thread of their own."""

    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} is an administrator of the bound group")
        self.user_id = user_id
