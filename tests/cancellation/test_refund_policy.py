from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.cancellation.policy import (
    CalculationMethod,
    CancellationContext,
    CancellationTiming,
    CustomerInfo,
    OrderFinancials,
    RefundPolicy,
    TimingTier,
    calculate_refund,
    days_between,
    financials_for_order,
    legacy_refund,
)
from domain.common.exceptions import DomainValidationException


ORDER_DATE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _calc(days: float, total="1100", policy=None, customer=None, override=None, **context):
    return calculate_refund(
        OrderFinancials(total_amt=Decimal(total), order_date=ORDER_DATE),
        CancellationContext(request_date=ORDER_DATE + timedelta(days=days), **context),
        policy or RefundPolicy(),
        override,
        customer,
    )


def test_early_full_order_refund():
    result = _calc(1)
    assert result.cancellation_timing == CancellationTiming.EARLY
    assert result.refund_percentage == Decimal("90")
    assert result.refund_amount == Decimal("990.00")
    assert result.calculation_method == CalculationMethod.REFUND_POLICY


@pytest.mark.parametrize(
    "days,timing,percentage",
    [
        (0, CancellationTiming.EARLY, "90"),
        (2, CancellationTiming.EARLY, "90"),
        (3, CancellationTiming.STANDARD, "75"),
        (7, CancellationTiming.STANDARD, "75"),
        (8, CancellationTiming.LATE, "50"),
        (45, CancellationTiming.LATE, "50"),
    ],
)
def test_timing_tier_boundaries(days, timing, percentage):
    result = _calc(days)
    assert result.cancellation_timing == timing
    assert result.refund_percentage == Decimal(percentage)


def test_percentage_never_increases_with_age():
    percentages = [_calc(days).refund_percentage for days in range(0, 15)]
    assert percentages == sorted(percentages, reverse=True)


def test_bonuses_are_clamped_to_hundred():
    customer = CustomerInfo(is_vip=True, membership_tier="VIP", order_count=12)
    result = _calc(1, customer=customer, override="100")
    assert result.bonuses.total == Decimal("7")
    assert len(result.bonuses.reasons) == 2
    assert result.refund_percentage == Decimal("100")
    assert result.refund_amount == Decimal("1100.00")


def test_penalty_is_clamped_to_zero():
    delivered = ORDER_DATE + timedelta(hours=12)
    result = _calc(1, override="10", actual_delivery_date=delivered)
    assert result.penalties.total == Decimal("25")
    assert result.refund_percentage == Decimal("0")
    assert result.refund_amount == Decimal("0.00")


def test_past_estimated_delivery_penalty():
    estimated = ORDER_DATE + timedelta(hours=20)
    result = _calc(1, estimated_delivery_date=estimated)
    assert result.penalties.total == Decimal("10")
    assert result.refund_percentage == Decimal("80")


def test_after_delivery_penalty_wins_over_overdue():
    result = _calc(
        5,
        estimated_delivery_date=ORDER_DATE + timedelta(days=2),
        actual_delivery_date=ORDER_DATE + timedelta(days=4),
    )
    assert result.penalties.total == Decimal("25")
    assert result.refund_percentage == Decimal("50")


def test_loyalty_bonus_needs_minimum_orders():
    assert _calc(1, customer=CustomerInfo(order_count=4)).bonuses.total == Decimal("0")
    assert _calc(1, customer=CustomerInfo(order_count=5)).refund_percentage == Decimal("92")


def test_out_of_range_override_is_ignored():
    assert _calc(1, override="150").refund_percentage == Decimal("90")
    assert _calc(1, override="-5").refund_percentage == Decimal("90")
    assert _calc(1, override="60").refund_percentage == Decimal("60")


def test_zero_total_yields_zero_refund():
    result = _calc(1, total="0")
    assert result.refund_amount == Decimal("0")
    assert result.refund_percentage == Decimal("0")


def test_amount_rounds_half_up():
    result = _calc(1, total="10.05", override="50")
    # 5.025 -> 5.03
    assert result.refund_amount == Decimal("5.03")


def test_legacy_refund_flat_percentage():
    result = legacy_refund(Decimal("1000"), Decimal("75"), order_date=ORDER_DATE, request_date=ORDER_DATE + timedelta(days=4))
    assert result.refund_amount == Decimal("750.00")
    assert result.calculation_method == CalculationMethod.LEGACY_FLAT
    assert result.cancellation_timing == CancellationTiming.STANDARD


def test_days_between_floors_and_never_negative():
    assert days_between(ORDER_DATE, ORDER_DATE + timedelta(hours=47)) == 1
    assert days_between(ORDER_DATE, ORDER_DATE - timedelta(days=3)) == 0
    assert days_between(None, ORDER_DATE) == 0
    naive = datetime(2026, 3, 4, 9, 0)
    assert days_between(ORDER_DATE, naive) == 3


def test_financials_use_customer_paid_amount():
    financials = financials_for_order(
        Decimal("1000"), Decimal("100"), include_delivery=False, order_date=ORDER_DATE, customer_paid="850"
    )
    assert financials.total_amt == Decimal("850")
    assert financials.delivery_charge == Decimal("0")


def test_policy_document_overlay_keeps_unspecified_fields():
    base = RefundPolicy()
    policy = RefundPolicy.from_document(
        {
            "bonuses": {"vip_bonus": "8"},
            "time_based_rules": [
                {"timing": "EARLY", "max_days": 3, "refund_percentage": "95"},
                {"timing": "LATE", "max_days": None, "refund_percentage": "40"},
            ],
        },
        base=base,
    )
    assert policy.vip_bonus == Decimal("8")
    assert policy.loyalty_bonus == base.loyalty_bonus
    assert policy.tier_for(3).percentage == Decimal("95")
    assert policy.tier_for(4).timing == CancellationTiming.LATE

    restored = RefundPolicy.from_document(policy.to_document())
    assert restored.timing_tiers == policy.timing_tiers
    assert restored.vip_bonus == policy.vip_bonus


def test_policy_requires_open_ended_last_tier():
    with pytest.raises(DomainValidationException):
        RefundPolicy(timing_tiers=(TimingTier(CancellationTiming.EARLY, 2, Decimal("90")),))
