import asyncio
import sys
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from telegram.error import TelegramError

sys.path.append(str(Path(__file__).resolve().parents[1]))

import server.models  # noqa: F401
from server.db.base_class import Base
from server.models import Bundle, BundleImage, BundleVideo, Product


def setup_test_db(path):
    # Файл вместо :memory:, чтобы у каждой сессии было своё соединение
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    TestingSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return engine, TestingSessionLocal


class FakeGateway:
    """Records every outbound Telegram call instead of sending it.

    ``fail_on`` is a predicate over a recorded entry; matching sends raise
    ``TelegramError`` after being recorded.
    """

    def __init__(self, fail_on=None, currency="XTR"):
        self.currency = currency
        self.fail_on = fail_on
        self.sent = []
        self.answers = []
        self.invoices = []
        self.invoice_error = None

    def _record(self, entry):
        self.sent.append(entry)
        if self.fail_on is not None and self.fail_on(entry):
            raise TelegramError("Forbidden: bot was blocked by the user")

    def kinds(self):
        return [entry[0] for entry in self.sent]

    async def create_invoice(self, title, description, payload, amount_minor_units):
        if self.invoice_error is not None:
            raise self.invoice_error
        self.invoices.append(
            {"title": title, "description": description, "payload": payload, "amount": amount_minor_units}
        )
        return f"https://t.me/$invoice-{len(self.invoices)}"

    async def answer_pre_checkout(self, query_id, ok, error_message=None):
        self.answers.append((query_id, ok, error_message))

    async def send_message(self, chat_id, text, parse_mode=None):
        self._record(("message", chat_id, text, parse_mode))

    async def send_photo(self, chat_id, photo, caption=None):
        self._record(("photo", chat_id, photo, caption))

    async def send_video(self, chat_id, video, caption=None):
        self._record(("video", chat_id, video, caption))

    async def send_document(self, chat_id, document, caption=None):
        self._record(("document", chat_id, document, caption))

    async def get_file_url(self, file_id):
        return f"https://api.telegram.org/file/bot/{file_id}"


async def seed_catalog(session_factory):
    async with session_factory() as db:
        sticker = Product(name="Sticker", price=Decimal("10.00"), image="https://cdn.test/sticker.jpg")
        poster = Product(name="Poster", price=Decimal("5.50"), description="A2 poster")
        pack = Bundle(
            name="Pack",
            price=Decimal("19.99"),
            image="https://cdn.test/pack/cover.jpg",
            images=[
                BundleImage(url="https://cdn.test/pack/2.jpg", position=2),
                BundleImage(url="https://cdn.test/pack/1.jpg", position=1),
            ],
            videos=[BundleVideo(url="https://cdn.test/pack/clip.mp4", position=1)],
        )
        db.add_all([sticker, poster, pack])
        await db.commit()
        return SimpleNamespace(product_id=sticker.id, poster_id=poster.id, bundle_id=pack.id)


@pytest.fixture
def test_db(tmp_path):
    return setup_test_db(tmp_path / "test.db")


@pytest.fixture
def session_factory(test_db):
    return test_db[1]


@pytest.fixture
def catalog(session_factory):
    return asyncio.run(seed_catalog(session_factory))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def no_admin_chats(monkeypatch):
    from server.services import admin_notifier

    monkeypatch.setattr(admin_notifier, "ADMIN_CHAT_IDS", [])
