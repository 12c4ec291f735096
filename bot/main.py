"""Main bot entry point - polling mode; webhook_server.py reuses TelegramBot."""
import asyncio
import logging
import sys
from aiogram import Bot, Dispatcher
from aiogram.types import (
    BotCommand,
    BotCommandScopeAllGroupChats,
    BotCommandScopeAllPrivateChats,
    BotCommandScopeChat,
)

from bot.config import Config
from bot.container import ServiceContainer
from bot.handlers.relay import create_relay_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("bot.log")
    ]
)
logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message", "edited_message", "message_reaction"]


class TelegramBot:
    """Owns the Bot, the Dispatcher and the service container."""

    def __init__(self, config: Config):
        """Initialize the bot."""
        self.config = config
        self.bot: Bot = None
        self.dispatcher: Dispatcher = None
        self.container: ServiceContainer = None
        self._running = False
        self.started_at: float | None = None

    async def initialize(self):
        """Initialize all bot components."""
        logger.info("=" * 70)
        logger.info("🤖 TOPIC RELAY BOT - INITIALIZING")
        logger.info("=" * 70)

        try:
            # Initialize service container (connects the key-value database when configured)
            logger.info("🔧 Initializing services...")
            self.container = await ServiceContainer.create(self.config)
            logger.info("✅ Services initialized")

            # Initialize bot. No default parse mode: relayed text is sent verbatim.
            logger.info("🤖 Initializing bot...")
            self.bot = Bot(token=self.config.bot_token)
            logger.info("✅ Bot initialized")

            logger.info("📡 Initializing dispatcher...")
            self.dispatcher = Dispatcher()
            self.dispatcher.include_router(create_relay_handlers(self.container))
            logger.info("✅ Relay handlers registered")

            logger.info("=" * 70)
            logger.info("✅ BOT INITIALIZATION COMPLETE")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"❌ Failed to initialize bot: {e}", exc_info=True)
            raise

    async def start(self):
        """Start the bot and display info."""
        if self._running:
            logger.warning("Bot is already running")
            return

        logger.info("=" * 70)
        logger.info("🚀 STARTING BOT")
        logger.info("=" * 70)

        try:
            self._running = True
            self.started_at = asyncio.get_running_loop().time()

            bot_info = await self.bot.get_me()
            logger.info(f"📱 Bot username: @{bot_info.username}")
            logger.info(f"🆔 Bot ID: {bot_info.id}")
            logger.info(f"👤 Operator: {self.config.owner_id}")
            logger.info(f"🗄️  Key-value store: {'enabled' if self.config.has_kv_store else 'disabled'}")
            logger.info(f"🌐 Mode: {'Production (webhook)' if self.config.is_production else 'Development (polling)'}")

            await self._set_command_menu()

            logger.info("=" * 70)
            logger.info("✅ BOT IS RUNNING")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"❌ Failed to start bot: {e}", exc_info=True)
            self._running = False
            raise

    async def _set_command_menu(self):
        """Configure Telegram's "/" command list."""
        try:
            await self.bot.set_my_commands(
                commands=[BotCommand(command="start", description="How to contact us")],
                scope=BotCommandScopeAllPrivateChats(),
            )

            await self.bot.set_my_commands(
                commands=[
                    BotCommand(command="start", description="Help"),
                    BotCommand(command="init", description="Bind this group"),
                    BotCommand(command="status", description="Show the mapping state"),
                    BotCommand(command="ban", description="Block this thread"),
                    BotCommand(command="silent_ban", description="Block without notifying"),
                    BotCommand(command="unban", description="Unblock this thread"),
                    BotCommand(command="silent_unban", description="Unblock without notifying"),
                ],
                scope=BotCommandScopeAllGroupChats(),
            )

            # The operator's private chat also gets the maintenance commands.
            await self.bot.set_my_commands(
                commands=[
                    BotCommand(command="start", description="Help"),
                    BotCommand(command="status", description="Show the mapping state"),
                    BotCommand(command="reset", description="Clear the group binding"),
                ],
                scope=BotCommandScopeChat(chat_id=self.config.owner_id),
            )
        except Exception as e:
            logger.warning(f"Failed to set command menu: {e}")

    async def stop(self):
        """Stop the bot and cleanup."""
        if not self._running:
            logger.warning("Bot is not running")
            return

        logger.info("=" * 70)
        logger.info("🛑 STOPPING BOT")
        logger.info("=" * 70)

        try:
            self._running = False

            if self.container:
                logger.info("🧹 Cleaning up services...")
                await self.container.cleanup()
                logger.info("✅ Services cleaned up")

            if self.bot:
                logger.info("🤖 Closing bot session...")
                await self.bot.session.close()
                logger.info("✅ Bot session closed")

            logger.info("=" * 70)
            logger.info("✅ BOT STOPPED")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"❌ Error stopping bot: {e}", exc_info=True)
            raise

    async def run_polling(self):
        """Run bot in polling mode (for local development)."""
        await self.start()

        try:
            logger.info("📡 Starting polling...")
            await self.bot.delete_webhook(drop_pending_updates=False)
            await self.dispatcher.start_polling(self.bot, allowed_updates=ALLOWED_UPDATES)
        except KeyboardInterrupt:
            logger.info("⌨️  Received interrupt signal")
        except Exception as e:
            logger.error(f"❌ Polling error: {e}", exc_info=True)
        finally:
            await self.stop()

    def is_running(self) -> bool:
        """Check if bot is running."""
        return self._running

    def uptime_seconds(self) -> int:
        if self.started_at is None:
            return 0
        return int(asyncio.get_running_loop().time() - self.started_at)


async def main():
    """Main entry point for polling mode."""
    try:
        config = Config.from_env()
        logger.info("✅ Configuration loaded")

        bot = TelegramBot(config)
        await bot.initialize()

        await bot.run_polling()

    except KeyboardInterrupt:
        logger.info("⌨️  Bot stopped by user")
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("⌨️  Bot stopped by user")
