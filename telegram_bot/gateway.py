"""Thin client over the Telegram Bot API used for payments and delivery.

One instance is built at process start (see ``server/main.py`` and
``telegram_bot/bot.py``) and passed to whoever needs to talk to Telegram.
Methods raise ``telegram.error.TelegramError`` on failure; callers that
treat a send as best-effort catch and log it themselves.
"""

import os
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from dotenv import load_dotenv
from telegram import Bot, LabeledPrice

load_dotenv()

PAYMENT_PROVIDER_TOKEN = os.getenv("PAYMENT_PROVIDER_TOKEN", "")
# XTR = Telegram Stars, провайдер-токен не нужен
INVOICE_CURRENCY = os.getenv("INVOICE_CURRENCY", "XTR")
PRICE_MULTIPLIER = Decimal(os.getenv("PRICE_MULTIPLIER", "1"))

ChatId = Union[int, str]


def load_bot_token(required: bool = True) -> Optional[str]:
    """Load and validate Telegram bot token from environment or .env.

    Looks for TELEGRAM_BOT_TOKEN, BOT_TOKEN, or TOKEN. Strips quotes/spaces
    and validates basic format.
    """
    token = (
        os.getenv("TELEGRAM_BOT_TOKEN")
        or os.getenv("BOT_TOKEN")
        or os.getenv("TOKEN")
    )
    if token:
        token = token.strip().strip("'\"")

    if not token:
        if not required:
            return None
        raise RuntimeError(
            "Bot token not found. Set TELEGRAM_BOT_TOKEN in the environment "
            "or in .env, e.g. TELEGRAM_BOT_TOKEN=123456789:ABCDEF..."
        )

    # Бот-токен от BotFather имеет вид '<digits>:<rest>'
    if ":" not in token:
        raise RuntimeError(
            "Malformed TELEGRAM_BOT_TOKEN. Copy the token from @BotFather without quotes."
        )
    return token


def to_minor_units(amount: Decimal, multiplier: Decimal = None) -> int:
    """Convert a decimal price into the integer amount Telegram expects."""
    multiplier = PRICE_MULTIPLIER if multiplier is None else multiplier
    return int((Decimal(amount) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TelegramGateway:
    def __init__(
        self,
        bot: Bot,
        provider_token: str = PAYMENT_PROVIDER_TOKEN,
        currency: str = INVOICE_CURRENCY,
    ):
        self.bot = bot
        self.provider_token = provider_token
        self.currency = currency

    async def create_invoice(
        self, title: str, description: str, payload: str, amount_minor_units: int
    ) -> str:
        """Create an invoice link; ``payload`` comes back verbatim on payment."""
        logging.info(
            "Creating invoice: payload=%s amount=%s %s", payload, amount_minor_units, self.currency
        )
        return await self.bot.create_invoice_link(
            title=title,
            description=description,
            payload=payload,
            provider_token=self.provider_token or None,
            currency=self.currency,
            prices=[LabeledPrice(label=title, amount=amount_minor_units)],
        )

    async def answer_pre_checkout(
        self, query_id: str, ok: bool, error_message: Optional[str] = None
    ) -> None:
        logging.info("Answering pre_checkout_query %s: ok=%s", query_id, ok)
        await self.bot.answer_pre_checkout_query(
            pre_checkout_query_id=query_id,
            ok=ok,
            error_message=None if ok else error_message,
        )

    async def send_message(self, chat_id: ChatId, text: str, parse_mode: Optional[str] = None) -> None:
        logging.info("Отправка сообщения в Telegram: chat_id=%s", chat_id)
        await self.bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)

    async def send_photo(self, chat_id: ChatId, photo: str, caption: Optional[str] = None) -> None:
        await self.bot.send_photo(chat_id=chat_id, photo=photo, caption=caption)

    async def send_video(self, chat_id: ChatId, video: str, caption: Optional[str] = None) -> None:
        await self.bot.send_video(chat_id=chat_id, video=video, caption=caption)

    async def send_document(self, chat_id: ChatId, document: str, caption: Optional[str] = None) -> None:
        await self.bot.send_document(chat_id=chat_id, document=document, caption=caption)

    async def get_file_url(self, file_id: str) -> Optional[str]:
        file = await self.bot.get_file(file_id)
        return file.file_path


def build_gateway() -> Optional[TelegramGateway]:
    token = load_bot_token(required=False)
    if not token:
        logging.warning("TELEGRAM_BOT_TOKEN is not set; Telegram gateway disabled")
        return None
    return TelegramGateway(Bot(token=token))
