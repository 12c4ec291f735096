"""Webhook server for production deployment."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from aiogram.types import Update
from aiogram.exceptions import TelegramAPIError

from bot.main import ALLOWED_UPDATES, TelegramBot
from bot.config import Config

# Don't configure logging here - it's configured in bot/main.py
logger = logging.getLogger(__name__)

# Global bot instance
telegram_bot: TelegramBot = None
config = Config.from_env()


def _update_kind(update: Update) -> str:
    if update.message is not None:
        return "message"
    if update.edited_message is not None:
        return "edited_message"
    if update.message_reaction is not None:
        return "message_reaction"
    return "other"


def _log_update_summary(update: Update) -> None:
    """Record that an update arrived, without logging message contents."""
    kind = _update_kind(update)
    msg = update.message or update.edited_message
    if msg is not None:
        logger.info(
            "tg_update=%s kind=%s chat=%s(%s) thread=%s from=%s",
            update.update_id,
            kind,
            msg.chat.id,
            msg.chat.type,
            msg.message_thread_id,
            msg.from_user.id if msg.from_user else None,
        )
    elif update.message_reaction is not None:
        reaction = update.message_reaction
        logger.info(
            "tg_update=%s kind=message_reaction chat=%s(%s) message=%s",
            update.update_id,
            reaction.chat.id,
            reaction.chat.type,
            reaction.message_id,
        )
    else:
        logger.info("tg_update=%s kind=%s", update.update_id, kind)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global telegram_bot

    logger.info("🚀 Starting Webhook Server...")

    try:
        telegram_bot = TelegramBot(config)
        await telegram_bot.initialize()
        await telegram_bot.start()

        # Set webhook with secret token for validation
        webhook_url = f"{config.webhook_url}{config.webhook_path}"
        webhook_kwargs = {"url": webhook_url, "allowed_updates": ALLOWED_UPDATES}
        if config.webhook_secret:
            webhook_kwargs["secret_token"] = config.webhook_secret
            logger.info("🔒 Webhook secret token configured")
        else:
            logger.warning("⚠️ WEBHOOK_SECRET not set - webhook requests are NOT validated!")

        await telegram_bot.bot.set_webhook(**webhook_kwargs)
        logger.info(f"✅ Webhook set to: {webhook_url}")

        yield

        logger.info("🛑 Shutting down Webhook Server...")
        await telegram_bot.bot.delete_webhook()
        await telegram_bot.stop()

    except Exception as e:
        logger.error(f"❌ Failed to start webhook server: {e}", exc_info=True)
        raise


app = FastAPI(
    lifespan=lifespan,
    title="Topic Relay Bot",
    description="Relays private chats into forum threads and back",
    version="1.0.0"
)


@app.post(config.webhook_path)
async def webhook_handler(request: Request):
    """
    Handle incoming webhook updates from Telegram.

    Security: Validates X-Telegram-Bot-Api-Secret-Token header if WEBHOOK_SECRET is configured.
    """
    if config.webhook_secret:
        secret_header = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
        if secret_header != config.webhook_secret:
            logger.warning("⚠️ Rejected webhook request: invalid or missing secret token")
            return Response(status_code=401)

    try:
        update_data = await request.json()
        update = Update(**update_data)
        _log_update_summary(update)

        try:
            await telegram_bot.dispatcher.feed_update(telegram_bot.bot, update)
        except TelegramAPIError as e:
            # Ack the update so Telegram doesn't retry forever.
            logger.warning("tg_update=%s dropped: %s", update.update_id, e)

        return Response(status_code=200)

    except Exception as e:
        logger.error(f"❌ Error processing webhook update: {e}", exc_info=True)
        return Response(status_code=500)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns the health status of the bot and its key-value database.
    """
    try:
        running = bool(telegram_bot and telegram_bot.is_running())
        payload = {"status": "ok", "running": running, "uptime_seconds": 0}
        if not running:
            payload["detail"] = "initializing"
        else:
            payload["uptime_seconds"] = telegram_bot.uptime_seconds()

        container = telegram_bot.container if telegram_bot else None
        if container is not None and container.database is not None:
            payload["database_ok"] = await container.database.health_check()
        return payload
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


@app.get("/")
async def root():
    return {
        "name": "Topic Relay Bot",
        "version": "1.0.0",
        "status": "running" if telegram_bot and telegram_bot.is_running() else "initializing",
        "endpoints": {"health": "/health"},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
