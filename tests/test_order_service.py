import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from server.models import Order, OrderItem, Product, Subscription, User
from server.models.order import OrderStatus, PaymentStatus
from server.services import order_service
from server.services.errors import NotFoundError, ValidationError
from server.services.order_service import RequestedItem, ShippingInfo


async def _count(session_factory, model):
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


def test_product_order_total_is_sum_of_snapshotted_prices(session_factory, catalog):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(
                db, 1001, "PRODUCT", items=[RequestedItem("product", catalog.product_id, 2)]
            )
        async with session_factory() as db:
            return await order_service.get_order(db, order.id)

    order = asyncio.run(scenario())
    assert order.total_amount == Decimal("20.00")
    assert order.status == OrderStatus.PENDING.value
    assert order.payment_status == PaymentStatus.PENDING.value
    assert order.user.telegram_id == "1001"
    assert len(order.order_items) == 1
    item = order.order_items[0]
    assert item.price == Decimal("10.00")
    assert item.quantity == 2


def test_later_price_change_does_not_touch_existing_order(session_factory, catalog):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(
                db,
                "1001",
                "PRODUCT",
                items=[
                    RequestedItem("product", catalog.product_id, 1),
                    RequestedItem("product", catalog.poster_id, 3),
                ],
            )
            product = await db.get(Product, catalog.product_id)
            product.price = Decimal("99.00")
            await db.commit()
        async with session_factory() as db:
            return await order_service.get_order(db, order.id)

    order = asyncio.run(scenario())
    assert order.total_amount == Decimal("26.50")
    assert [i.price for i in order.order_items] == [Decimal("10.00"), Decimal("5.50")]


def test_bundle_quantity_is_always_one(session_factory, catalog):
    async def scenario():
        async with session_factory() as db:
            return await order_service.create_order(
                db, "1001", "BUNDLE", items=[RequestedItem("bundle", catalog.bundle_id, 5)]
            )

    order = asyncio.run(scenario())
    assert order.total_amount == Decimal("19.99")
    assert order.order_items[0].quantity == 1
    assert [img.url for img in order.order_items[0].bundle.images] == [
        "https://cdn.test/pack/1.jpg",
        "https://cdn.test/pack/2.jpg",
    ]


def test_missing_references_are_dropped(session_factory, catalog):
    async def scenario():
        async with session_factory() as db:
            return await order_service.create_order(
                db,
                "1001",
                "PRODUCT",
                items=[
                    RequestedItem("product", 9999, 1),
                    RequestedItem("product", catalog.poster_id, 2),
                ],
            )

    order = asyncio.run(scenario())
    assert len(order.order_items) == 1
    assert order.total_amount == Decimal("11.00")


@pytest.mark.parametrize(
    "items",
    [
        [],
        [RequestedItem("product", 9999, 1)],
        [RequestedItem("bundle", 12345, 1), RequestedItem("product", 777, 2)],
    ],
)
def test_empty_or_invalid_items_persist_nothing(session_factory, catalog, items):
    async def scenario():
        async with session_factory() as db:
            await order_service.create_order(db, "1001", "PRODUCT", items=items)

    with pytest.raises(ValidationError) as exc:
        asyncio.run(scenario())
    assert exc.value.field == "items"
    assert asyncio.run(_count(session_factory, Order)) == 0
    assert asyncio.run(_count(session_factory, OrderItem)) == 0
    assert asyncio.run(_count(session_factory, User)) == 0


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"order_type": "SHOES"}, "orderType"),
        ({"order_type": "PRODUCT", "items": [RequestedItem("gift", 1, 1)]}, "items.type"),
        ({"order_type": "PRODUCT", "items": [RequestedItem("product", "abc", 1)]}, "items.id"),
        ({"order_type": "PRODUCT", "items": [RequestedItem("product", 1, 0)]}, "items.quantity"),
        ({"order_type": "DONATION", "donation_amount": 0}, "donationAmount"),
        ({"order_type": "DONATION", "donation_amount": "lots"}, "donationAmount"),
        ({"order_type": "VIP", "tier": "FOREVER"}, "tier"),
    ],
)
def test_invalid_input_is_rejected(session_factory, catalog, kwargs, field):
    async def scenario():
        async with session_factory() as db:
            await order_service.create_order(db, "1001", **kwargs)

    with pytest.raises(ValidationError) as exc:
        asyncio.run(scenario())
    assert exc.value.field == field
    assert asyncio.run(_count(session_factory, Order)) == 0


def test_user_id_is_required(session_factory):
    async def scenario():
        async with session_factory() as db:
            await order_service.create_order(db, "  ", "DONATION", donation_amount="5")

    with pytest.raises(ValidationError) as exc:
        asyncio.run(scenario())
    assert exc.value.field == "userId"


@pytest.mark.parametrize(
    "order_type, tier, total, stored_tier",
    [
        ("VIP", None, "49.99", "MONTHLY"),
        ("VIP", "yearly", "449.99", "YEARLY"),
        ("CUSTOM_VIDEO", "MIN_10", "90.00", "MIN_10"),
        ("VIDEO_CALL", None, "100.00", "MIN_15"),
        ("RATING", "DETAILED", "40.00", "DETAILED"),
    ],
)
def test_tariff_orders(session_factory, order_type, tier, total, stored_tier):
    async def scenario():
        async with session_factory() as db:
            return await order_service.create_order(db, "1001", order_type, tier=tier)

    order = asyncio.run(scenario())
    assert order.total_amount == Decimal(total)
    assert order.order_items == []
    assert order_service.tariffs.order_tier(order) == stored_tier


def test_donation_order_keeps_amount_and_message(session_factory):
    async def scenario():
        async with session_factory() as db:
            return await order_service.create_order(
                db,
                "1001",
                "donation",
                donation_amount="15.50",
                donation_message="  Keep it up!  ",
                shipping=ShippingInfo(first_name=" Ann "),
                profile={"first_name": "Ann", "username": "ann"},
            )

    order = asyncio.run(scenario())
    assert order.order_type == "DONATION"
    assert order.total_amount == Decimal("15.50")
    assert order.donation_message == "Keep it up!"
    assert order.first_name == "Ann"
    assert order.user.username == "ann"


def test_existing_user_is_reused(session_factory):
    async def scenario():
        async with session_factory() as db:
            await order_service.create_order(db, "1001", "RATING")
            await order_service.create_order(db, 1001, "RATING")
            return await order_service.list_user_orders(db, "1001")

    orders = asyncio.run(scenario())
    assert len(orders) == 2
    assert asyncio.run(_count(session_factory, User)) == 1


def test_list_user_orders_unknown_user(session_factory):
    async def scenario():
        async with session_factory() as db:
            await order_service.list_user_orders(db, "404")

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())


def test_confirm_payment_is_a_single_transition(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
        async with session_factory() as db:
            first = await order_service.confirm_payment(db, order.id, charge_id="ch_1", mark_processing=True)
            second = await order_service.confirm_payment(db, order.id, charge_id="ch_2", mark_processing=True)
            stored = await order_service.get_order(db, order.id)
        return first, second, stored

    first, second, stored = asyncio.run(scenario())
    assert (first, second) == (True, False)
    assert stored.payment_status == PaymentStatus.CONFIRMED.value
    assert stored.status == OrderStatus.PROCESSING.value
    assert stored.payment_charge_id == "ch_1"


def test_concurrent_confirmations_only_one_wins(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "VIP", tier="QUARTERLY")

        async def confirm():
            async with session_factory() as db:
                return await order_service.confirm_payment(db, order.id, mark_processing=True)

        return await asyncio.gather(confirm(), confirm())

    results = asyncio.run(scenario())
    assert sorted(results) == [False, True]
    assert asyncio.run(_count(session_factory, Subscription)) == 1


def test_vip_confirmation_creates_subscription(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "VIP", tier="QUARTERLY")
            await order_service.confirm_payment(db, order.id)
            result = await db.execute(select(Subscription))
            return result.scalars().one()

    sub = asyncio.run(scenario())
    assert sub.plan_type == "QUARTERLY"
    assert sub.price == Decimal("129.99")
    assert sub.status == "ACTIVE"
    assert (sub.end_date - sub.start_date).days == 90


def test_cancelled_order_is_never_confirmed(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            await order_service.update_status(db, order.id, "CANCELLED")
            confirmed = await order_service.confirm_payment(db, order.id)
            return confirmed, await order_service.get_order(db, order.id)

    confirmed, order = asyncio.run(scenario())
    assert confirmed is False
    assert order.payment_status == PaymentStatus.PENDING.value


def test_cancelled_order_cannot_be_reopened(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            await order_service.update_status(db, order.id, "cancelled")
            await order_service.update_status(db, order.id, "PROCESSING")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_manual_confirmation_fulfils_once(session_factory, catalog, gateway):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(
                db, "1001", "PRODUCT", items=[RequestedItem("product", catalog.product_id, 1)]
            )
        async with session_factory() as db:
            await order_service.update_payment_status(db, order.id, "CONFIRMED", gateway)
            return await order_service.update_payment_status(db, order.id, "confirmed", gateway)

    order = asyncio.run(scenario())
    assert order.payment_status == PaymentStatus.CONFIRMED.value
    assert gateway.kinds() == ["message", "photo"]


def test_confirmed_payment_cannot_be_moved_back(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            await order_service.update_payment_status(db, order.id, "CONFIRMED")
            await order_service.update_payment_status(db, order.id, "FAILED")

    with pytest.raises(ValidationError) as exc:
        asyncio.run(scenario())
    assert exc.value.field == "paymentStatus"


def test_payment_proof_moves_order_to_awaiting_check(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            return await order_service.submit_payment_proof(
                db, order.id, " https://cdn.test/proof.png ", "card"
            )

    order = asyncio.run(scenario())
    assert order.payment_status == PaymentStatus.AWAITING_CHECK.value
    assert order.screenshot == "https://cdn.test/proof.png"
    assert order.payment_method == "card"


def test_payment_proof_does_not_undo_confirmation(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            await order_service.confirm_payment(db, order.id)
            await order_service.submit_payment_proof(db, order.id, "https://cdn.test/proof.png")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_list_orders_filters_by_payment_status(session_factory):
    async def scenario():
        async with session_factory() as db:
            paid = await order_service.create_order(db, "1001", "RATING")
            await order_service.create_order(db, "1002", "RATING")
            await order_service.confirm_payment(db, paid.id)
            return paid.id, await order_service.list_orders(db, payment_status="confirmed")

    paid_id, orders = asyncio.run(scenario())
    assert [o.id for o in orders] == [paid_id]


@pytest.mark.parametrize("next_status", ["PENDING", "AWAITING_CHECK", "CONFIRMED"])
def test_failed_payment_is_final(session_factory, gateway, next_status):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            await order_service.update_payment_status(db, order.id, "FAILED")
        async with session_factory() as db:
            try:
                await order_service.update_payment_status(db, order.id, next_status, gateway)
            except ValidationError as exc:
                error = exc
            else:
                error = None
            return error, await order_service.get_order(db, order.id)

    error, order = asyncio.run(scenario())
    assert error is not None and error.field == "paymentStatus"
    assert order.payment_status == PaymentStatus.FAILED.value
    assert order.status == OrderStatus.PENDING.value
    assert gateway.sent == []


def test_failed_payment_is_never_confirmed(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "VIP")
            await order_service.update_payment_status(db, order.id, "FAILED")
            confirmed = await order_service.confirm_payment(db, order.id, mark_processing=True)
            return confirmed, await order_service.get_order(db, order.id)

    confirmed, order = asyncio.run(scenario())
    assert confirmed is False
    assert order.payment_status == PaymentStatus.FAILED.value
    assert asyncio.run(_count(session_factory, Subscription)) == 0


def test_manual_confirmation_matches_webhook_state(session_factory, gateway, monkeypatch):
    from server.services import admin_notifier

    monkeypatch.setattr(admin_notifier, "ADMIN_CHAT_IDS", ["-100200"])

    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
        async with session_factory() as db:
            return await order_service.update_payment_status(db, order.id, "CONFIRMED", gateway)

    order = asyncio.run(scenario())
    assert order.status == OrderStatus.PROCESSING.value
    assert order.payment_status == PaymentStatus.CONFIRMED.value
    admin = [e for e in gateway.sent if e[1] == "-100200"]
    assert len(admin) == 1
    assert "Payment confirmed" in admin[0][2]
    assert order.id in admin[0][2]


def test_confirmation_does_not_move_completed_order_back(session_factory):
    async def scenario():
        async with session_factory() as db:
            order = await order_service.create_order(db, "1001", "RATING")
            await order_service.update_status(db, order.id, "COMPLETED")
            await order_service.confirm_payment(db, order.id, mark_processing=True)
            return await order_service.get_order(db, order.id)

    order = asyncio.run(scenario())
    assert order.status == OrderStatus.COMPLETED.value
    assert order.payment_status == PaymentStatus.CONFIRMED.value
