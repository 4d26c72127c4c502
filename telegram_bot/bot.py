"""Long-polling bot: support chat plus a polling route for payment updates.

Payment updates received here go through the same processor as the HTTP
webhook (``server.services.payment_webhook``). Run either this bot or the
webhook, Telegram does not allow both at once.
"""

import asyncio
import logging

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError
from telegram import Update
from telegram.ext import (
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    PreCheckoutQueryHandler,
    filters,
)

from server.db.session import SessionLocal
from server.services import payment_webhook, support_service
from telegram_bot.gateway import TelegramGateway, load_bot_token

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

WELCOME_TEXT = (
    "👋 Welcome to our store!\n\n"
    "You can:\n"
    "• Browse products\n"
    "• Make purchases\n"
    "• Contact support at any time\n\n"
    "Just send a message here to reach our support team!"
)

SUPPORT_TEXT = (
    "💬 <b>Support</b>\n\n"
    "Send any message or media to this chat:\n"
    "📝 Text messages\n"
    "📷 Photos\n"
    "🎥 Videos\n"
    "📄 Documents\n\n"
    "Our team typically responds within 24 hours."
)


def _gateway(context: ContextTypes.DEFAULT_TYPE) -> TelegramGateway:
    return context.application.bot_data["gateway"]


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text(WELCOME_TEXT)


async def support(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text(SUPPORT_TEXT, parse_mode="HTML")


async def handle_payment_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """pre_checkout_query и successful_payment в том же виде, что и у вебхука."""
    async with SessionLocal() as db:
        result = await payment_webhook.handle_update(db, _gateway(context), update.to_dict())
    logging.info("Polled payment update %s: %s/%s", update.update_id, result.kind, result.outcome)


async def _media_of(message, gateway: TelegramGateway):
    if message.photo:
        # Берём самое большое фото
        return await gateway.get_file_url(message.photo[-1].file_id), "photo"
    if message.video:
        return await gateway.get_file_url(message.video.file_id), "video"
    if message.document:
        return await gateway.get_file_url(message.document.file_id), "document"
    return None, None


async def handle_user_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    gateway = _gateway(context)

    media_url, media_type = None, None
    try:
        media_url, media_type = await _media_of(message, gateway)
    except Exception:
        # Продолжаем без медиа
        logging.exception("Could not resolve media of message %s", message.message_id)

    try:
        async with SessionLocal() as db:
            await support_service.record_user_message(
                db,
                str(message.chat_id),
                message.text or message.caption or "",
                media_url=media_url,
                media_type=media_type,
                gateway=gateway,
                first_name=user.first_name if user else None,
                last_name=user.last_name if user else None,
                username=user.username if user else None,
            )
    except SQLAlchemyError:
        logging.exception("Could not store support message from chat %s", message.chat_id)
        await message.reply_text("❌ Sorry, there was an error. Please try again.")


def build_application(token: str):
    app = ApplicationBuilder().token(token).build()
    app.bot_data["gateway"] = TelegramGateway(app.bot)

    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("support", support))
    app.add_handler(PreCheckoutQueryHandler(handle_payment_update))
    app.add_handler(MessageHandler(filters.SUCCESSFUL_PAYMENT, handle_payment_update))
    app.add_handler(MessageHandler(~filters.COMMAND, handle_user_message))
    return app


async def main() -> None:
    app = build_application(load_bot_token())

    await app.initialize()
    await app.start()
    await app.updater.start_polling(allowed_updates=Update.ALL_TYPES)
    logging.info("Bot started, polling for updates")
    try:
        await asyncio.Event().wait()
    finally:
        await app.updater.stop()
        await app.stop()
        await app.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
