from datetime import datetime, timedelta
from decimal import Decimal

from salon.domain.pricing import PromoRejection, discount_for, line_price, money, next_stamp, promo_rejection
from salon.models import DiscountType, PromoCode

NOW = datetime(2030, 6, 1, 12, 0)


def _promo(**overrides: object) -> PromoCode:
    fields: dict[str, object] = dict(
        id=1,
        code="SAVE20",
        discount_type=DiscountType.PERCENT,
        discount_value=Decimal("20"),
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=1),
        min_order_amount=Decimal("500"),
        max_uses=None,
        current_uses=0,
        is_active=True,
    )
    fields.update(overrides)
    return PromoCode(**fields)


def test_percent_discount() -> None:
    assert discount_for(_promo(), Decimal("900")) == Decimal("180.00")
    assert discount_for(_promo(), Decimal("1000")) == Decimal("200.00")


def test_fixed_discount_never_exceeds_subtotal() -> None:
    promo = _promo(discount_type=DiscountType.FIXED, discount_value=Decimal("300"))
    assert discount_for(promo, Decimal("1000")) == Decimal("300.00")
    assert discount_for(promo, Decimal("120")) == Decimal("120.00")


def test_discount_is_zero_for_non_positive_subtotal() -> None:
    promo = _promo(discount_type=DiscountType.FIXED, discount_value=Decimal("50"))
    assert discount_for(promo, Decimal("-100")) == Decimal("0.00")


def test_percent_discount_rounds_half_up() -> None:
    promo = _promo(discount_value=Decimal("15"))
    assert discount_for(promo, Decimal("0.10")) == Decimal("0.02")


def test_promo_rejections() -> None:
    assert promo_rejection(None, subtotal=Decimal("900"), now=NOW) == PromoRejection.NOT_FOUND
    assert promo_rejection(_promo(is_active=False), subtotal=Decimal("900"), now=NOW) == PromoRejection.NOT_FOUND
    expired = _promo(valid_until=NOW - timedelta(seconds=1))
    assert promo_rejection(expired, subtotal=Decimal("900"), now=NOW) == PromoRejection.EXPIRED
    used_up = _promo(max_uses=3, current_uses=3)
    assert promo_rejection(used_up, subtotal=Decimal("900"), now=NOW) == PromoRejection.LIMIT_REACHED
    assert promo_rejection(_promo(), subtotal=Decimal("499.99"), now=NOW) == PromoRejection.MIN_AMOUNT
    assert promo_rejection(_promo(), subtotal=Decimal("500"), now=NOW) is None


def test_line_price_allows_negative_modifier() -> None:
    assert line_price(Decimal("500.00"), Decimal("-600")) == Decimal("-100.00")
    assert line_price(Decimal("500"), Decimal("49.995")) == Decimal("550.00")


def test_money_quantizes() -> None:
    assert money(3) == Decimal("3.00")


def test_every_nth_stamp_is_reward() -> None:
    assert next_stamp(0, 5).stamp_number == 1
    assert next_stamp(3, 5).is_reward is False
    assert next_stamp(4, 5).is_reward is True
    assert next_stamp(5, 5).is_reward is False
    assert next_stamp(9, 5).is_reward is True


def test_zero_threshold_never_rewards() -> None:
    assert next_stamp(9, 0).is_reward is False
