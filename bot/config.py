"""Configuration loader for the relay bot with validation."""
import os
import re
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

MIN_SECRET_LENGTH = 16


@dataclass
class Config:
    """
    Bot configuration from environment variables.

    All settings are validated on load to fail fast if misconfigured.
    """

    # Telegram Bot
    bot_token: str
    owner_id: int

    # Key-value storage (empty disables it; pinned records are still kept)
    database_url: str = ""

    # Webhook (for production)
    webhook_path: str = "/webhook"
    webhook_url: str = ""
    webhook_secret: str = ""

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.owner_id == 0:
            raise ValueError("OWNER_ID must be a Telegram user id")

        if not self.webhook_path.startswith("/"):
            raise ValueError("WEBHOOK_PATH must start with '/'")

        if self.webhook_secret:
            if len(self.webhook_secret) < MIN_SECRET_LENGTH:
                raise ValueError(f"WEBHOOK_SECRET must be at least {MIN_SECRET_LENGTH} characters")
            if not (
                re.search(r"[A-Z]", self.webhook_secret)
                and re.search(r"[a-z]", self.webhook_secret)
                and re.search(r"\d", self.webhook_secret)
            ):
                raise ValueError("WEBHOOK_SECRET must contain uppercase, lowercase letters and digits")
            if not re.fullmatch(r"[A-Za-z0-9_-]+", self.webhook_secret):
                raise ValueError("WEBHOOK_SECRET may only contain letters, digits, '_' and '-'")

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Raises:
            RuntimeError: If required environment variables are missing
            ValueError: If configuration values are invalid
        """
        # Required fields
        bot_token = os.getenv("BOT_TOKEN")
        if not bot_token:
            raise RuntimeError("BOT_TOKEN environment variable is required")

        owner_id = os.getenv("OWNER_ID")
        if not owner_id:
            raise RuntimeError("OWNER_ID environment variable is required")
        try:
            owner_id = int(owner_id)
        except ValueError:
            raise ValueError("OWNER_ID must be an integer")

        return cls(
            bot_token=bot_token,
            owner_id=owner_id,
            database_url=os.getenv("DATABASE_URL", ""),
            webhook_path=os.getenv("WEBHOOK_PATH", "/webhook"),
            webhook_url=os.getenv("WEBHOOK_URL", ""),
            webhook_secret=os.getenv("WEBHOOK_SECRET", ""),
        )

    @property
    def has_kv_store(self) -> bool:
        return bool(self.database_url)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return bool(self.webhook_url)
