from dataclasses import dataclass
import datetime
from typing import Optional

from .models import DiscountType, PromoCode, PromoCodeStatus


@dataclass
class DiscountResult:
    valid: bool
    discount: float = 0.0
    error: Optional[str] = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def calculate_discount(
        promo: Optional[PromoCode],
        order_amount: float,
        today: datetime.date,
        product_id: Optional[int] = None,
) -> DiscountResult:
    """
    Checks a promo code against an order and works out the discount.
    The discount never exceeds the order amount.
    """
    if promo is None:
        return DiscountResult(valid=False, error="Code not found")
    if promo.status != PromoCodeStatus.ACTIVE:
        return DiscountResult(valid=False, error="This code is no longer active")
    if promo.expiration_date is not None and promo.expiration_date < today:
        return DiscountResult(valid=False, error="This code has expired")
    if promo.usage_limit is not None and (promo.usage_count or 0) >= promo.usage_limit:
        return DiscountResult(valid=False, error="This code has reached its usage limit")
    if promo.minimum_order_amount is not None and order_amount < promo.minimum_order_amount:
        return DiscountResult(
            valid=False,
            error=f"This code requires a minimum order of ${promo.minimum_order_amount:.2f}",
        )

    if product_id is not None:
        if promo.excluded_products and product_id in promo.excluded_products:
            return DiscountResult(valid=False, error="This code can't be used for this rental")
        if promo.applicable_products and product_id not in promo.applicable_products:
            return DiscountResult(valid=False, error="This code can't be used for this rental")

    if promo.discount_type == DiscountType.PERCENT:
        discount = order_amount * promo.discount_amount / 100
        if promo.max_discount_cap is not None:
            discount = min(discount, promo.max_discount_cap)
    else:
        discount = promo.discount_amount

    return DiscountResult(valid=True, discount=round(min(discount, order_amount), 2))
