from datetime import date

from party_rentals.models import DiscountType, PromoCode, PromoCodeStatus
from party_rentals.promotions import calculate_discount, normalize_code

TODAY = date(2024, 6, 1)


def make_promo(**overrides) -> PromoCode:
    values = dict(
        code="SUMMER20",
        discount_type=DiscountType.PERCENT,
        discount_amount=20,
        status=PromoCodeStatus.ACTIVE,
        usage_count=0,
    )
    values.update(overrides)
    return PromoCode(**values)


def test_normalize_code():
    assert normalize_code("  summer20 ") == "SUMMER20"


def test_unknown_code():
    result = calculate_discount(None, 150.0, TODAY)
    assert result.valid is False
    assert result.error == "Code not found"


def test_percent_discount():
    result = calculate_discount(make_promo(), 150.0, TODAY)
    assert result.valid is True
    assert result.discount == 30.0


def test_percent_discount_is_capped():
    result = calculate_discount(make_promo(max_discount_cap=25), 150.0, TODAY)
    assert result.discount == 25.0


def test_fixed_discount_never_exceeds_order():
    promo = make_promo(discount_type=DiscountType.FIXED, discount_amount=200)
    assert calculate_discount(promo, 150.0, TODAY).discount == 150.0


def test_expired_code():
    result = calculate_discount(make_promo(expiration_date=date(2024, 5, 31)), 150.0, TODAY)
    assert result.valid is False
    assert "expired" in result.error


def test_code_valid_on_expiration_day():
    assert calculate_discount(make_promo(expiration_date=TODAY), 150.0, TODAY).valid is True


def test_inactive_code():
    result = calculate_discount(make_promo(status=PromoCodeStatus.DISABLED), 150.0, TODAY)
    assert result.valid is False


def test_usage_limit_reached():
    result = calculate_discount(make_promo(usage_limit=5, usage_count=5), 150.0, TODAY)
    assert result.valid is False
    assert "usage limit" in result.error


def test_minimum_order():
    result = calculate_discount(make_promo(minimum_order_amount=200), 150.0, TODAY)
    assert result.valid is False
    assert "$200.00" in result.error


def test_product_restrictions():
    only_slides = make_promo(applicable_products=[3, 4])
    assert calculate_discount(only_slides, 150.0, TODAY, product_id=1).valid is False
    assert calculate_discount(only_slides, 150.0, TODAY, product_id=3).valid is True

    no_castles = make_promo(excluded_products=[1])
    assert calculate_discount(no_castles, 150.0, TODAY, product_id=1).valid is False
