"""Fixed prices for orders that have no line items."""

import json
import logging
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from server.models.order import Order, OrderType
from server.services.errors import ValidationError


class VipPlan(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class CustomVideoLength(str, Enum):
    MIN_5 = "MIN_5"
    MIN_10 = "MIN_10"
    MIN_15 = "MIN_15"


class CallDuration(str, Enum):
    MIN_15 = "MIN_15"
    MIN_30 = "MIN_30"
    MIN_60 = "MIN_60"


class RatingTier(str, Enum):
    STANDARD = "STANDARD"
    DETAILED = "DETAILED"


# Первый подтип в каждом enum - тариф по умолчанию
TIER_ENUMS = {
    OrderType.VIP: VipPlan,
    OrderType.CUSTOM_VIDEO: CustomVideoLength,
    OrderType.VIDEO_CALL: CallDuration,
    OrderType.RATING: RatingTier,
}

TARIFFS: Dict[OrderType, Dict[Enum, Decimal]] = {
    OrderType.VIP: {
        VipPlan.MONTHLY: Decimal("49.99"),
        VipPlan.QUARTERLY: Decimal("129.99"),
        VipPlan.YEARLY: Decimal("449.99"),
    },
    OrderType.CUSTOM_VIDEO: {
        CustomVideoLength.MIN_5: Decimal("50.00"),
        CustomVideoLength.MIN_10: Decimal("90.00"),
        CustomVideoLength.MIN_15: Decimal("120.00"),
    },
    OrderType.VIDEO_CALL: {
        CallDuration.MIN_15: Decimal("100.00"),
        CallDuration.MIN_30: Decimal("180.00"),
        CallDuration.MIN_60: Decimal("300.00"),
    },
    OrderType.RATING: {
        RatingTier.STANDARD: Decimal("20.00"),
        RatingTier.DETAILED: Decimal("40.00"),
    },
}

VIP_PLAN_MONTHS = {
    VipPlan.MONTHLY: 1,
    VipPlan.QUARTERLY: 3,
    VipPlan.YEARLY: 12,
}


def resolve_tier(order_type: OrderType, tier: Optional[str]) -> Enum:
    tier_enum = TIER_ENUMS[order_type]
    if tier is None or str(tier).strip() == "":
        return next(iter(tier_enum))
    try:
        return tier_enum(str(tier).strip().upper())
    except ValueError:
        allowed = ", ".join(t.value for t in tier_enum)
        raise ValidationError(
            "tier", f"Unknown {order_type.value} tier {tier!r}, expected one of: {allowed}"
        )


def price_for(order_type: OrderType, tier: Enum) -> Decimal:
    return TARIFFS[order_type][tier]


def tier_metadata(tier: Enum) -> str:
    return json.dumps({"tier": tier.value})


def order_tier(order: Order) -> Optional[str]:
    if not order.order_metadata:
        return None
    try:
        return json.loads(order.order_metadata).get("tier")
    except (ValueError, AttributeError):
        logging.warning("Order %s has unreadable metadata: %r", order.id, order.order_metadata)
        return None


def vip_plan_of(order: Order) -> VipPlan:
    try:
        return VipPlan(order_tier(order) or VipPlan.MONTHLY.value)
    except ValueError:
        logging.warning("Order %s has unknown VIP plan, using MONTHLY", order.id)
        return VipPlan.MONTHLY
