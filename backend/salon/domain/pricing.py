from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from ..models import DiscountType, PromoCode

CENT = Decimal("0.01")


class PromoRejection(StrEnum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    MIN_AMOUNT = "min_amount"


@dataclass(frozen=True)
class PricedLine:
    service_id: int
    duration_id: int
    duration_minutes: int
    price: Decimal


@dataclass(frozen=True)
class StampDecision:
    stamp_number: int
    is_reward: bool


def money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_price(base_price: Decimal, price_modifier: Decimal) -> Decimal:
    # Not floor-clamped: a negative modifier may produce a negative line.
    return money(base_price + price_modifier)


def promo_rejection(promo: PromoCode | None, *, subtotal: Decimal, now: datetime) -> PromoRejection | None:
    """Return why ``promo`` cannot be applied to ``subtotal`` at ``now``, or None if it can."""
    if promo is None or not promo.is_active:
        return PromoRejection.NOT_FOUND
    if not promo.valid_from <= now <= promo.valid_until:
        return PromoRejection.EXPIRED
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        return PromoRejection.LIMIT_REACHED
    if promo.min_order_amount is not None and subtotal < promo.min_order_amount:
        return PromoRejection.MIN_AMOUNT
    return None


def discount_for(promo: PromoCode, subtotal: Decimal) -> Decimal:
    """Discount amount, always within [0, subtotal]."""
    if subtotal <= 0:
        return money(0)
    if promo.discount_type == DiscountType.PERCENT:
        amount = subtotal * promo.discount_value / Decimal(100)
    else:
        amount = promo.discount_value
    return money(max(Decimal(0), min(amount, subtotal)))


def next_stamp(existing_stamps: int, stamps_for_reward: int) -> StampDecision:
    number = existing_stamps + 1
    return StampDecision(
        stamp_number=number,
        is_reward=stamps_for_reward > 0 and number % stamps_for_reward == 0,
    )
