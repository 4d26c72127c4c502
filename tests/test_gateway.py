import asyncio
from decimal import Decimal

import pytest

from telegram_bot import gateway as gateway_module
from telegram_bot.gateway import TelegramGateway, load_bot_token, to_minor_units


class RecordingBot:
    def __init__(self):
        self.calls = []

    async def create_invoice_link(self, **kwargs):
        self.calls.append(("create_invoice_link", kwargs))
        return "https://t.me/$abc"

    async def answer_pre_checkout_query(self, **kwargs):
        self.calls.append(("answer_pre_checkout_query", kwargs))


@pytest.mark.parametrize(
    "amount, multiplier, expected",
    [
        (Decimal("20.00"), Decimal("1"), 20),
        (Decimal("49.99"), Decimal("1"), 50),
        (Decimal("49.49"), Decimal("1"), 49),
        (Decimal("15.50"), Decimal("100"), 1550),
        (Decimal("0.005"), Decimal("100"), 1),
    ],
)
def test_to_minor_units(amount, multiplier, expected):
    assert to_minor_units(amount, multiplier) == expected


def test_load_bot_token(monkeypatch):
    for name in ("TELEGRAM_BOT_TOKEN", "BOT_TOKEN", "TOKEN"):
        monkeypatch.delenv(name, raising=False)
    assert load_bot_token(required=False) is None
    with pytest.raises(RuntimeError):
        load_bot_token()

    monkeypatch.setenv("BOT_TOKEN", " '123:abc' ")
    assert load_bot_token() == "123:abc"

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "no-colon")
    with pytest.raises(RuntimeError):
        load_bot_token()


def test_build_gateway_without_token(monkeypatch):
    monkeypatch.setattr(gateway_module, "load_bot_token", lambda required=False: None)
    assert gateway_module.build_gateway() is None


def test_create_invoice_uses_currency_and_single_price():
    bot = RecordingBot()
    gateway = TelegramGateway(bot, provider_token="", currency="XTR")

    url = asyncio.run(gateway.create_invoice("Order", "Payment for order 1", '{"orderId": "1"}', 20))

    assert url == "https://t.me/$abc"
    name, kwargs = bot.calls[0]
    assert name == "create_invoice_link"
    assert kwargs["payload"] == '{"orderId": "1"}'
    assert kwargs["currency"] == "XTR"
    assert kwargs["provider_token"] is None
    assert [(p.label, p.amount) for p in kwargs["prices"]] == [("Order", 20)]


def test_answer_pre_checkout_drops_message_when_ok():
    bot = RecordingBot()
    gateway = TelegramGateway(bot)

    asyncio.run(gateway.answer_pre_checkout("q1", True, "ignored"))
    asyncio.run(gateway.answer_pre_checkout("q2", False, "Invalid order"))

    assert [c[1] for c in bot.calls] == [
        {"pre_checkout_query_id": "q1", "ok": True, "error_message": None},
        {"pre_checkout_query_id": "q2", "ok": False, "error_message": "Invalid order"},
    ]
