"""
Refund policy engine.

The active cancellation policy is a plain configuration object handed to
``calculate_refund``; the engine itself never touches storage, clocks or globals,
so the same call serves both the customer estimate and the admin's value of record.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException, RefundCalculationError
from domain.common.money import HUNDRED, ZERO, percent_of, quantize_money, to_decimal
from domain.order.entity import OrderStatus, PaymentStatus


class CancellationTiming(str, Enum):
    EARLY = "EARLY"
    STANDARD = "STANDARD"
    LATE = "LATE"


class CalculationMethod(str, Enum):
    REFUND_POLICY = "RefundPolicyService"
    LEGACY_FLAT = "LegacyFlatPercentage"


@dataclass(frozen=True)
class TimingTier:
    """``max_days`` is inclusive; None marks the open-ended last tier."""
    timing: CancellationTiming
    max_days: Optional[int]
    percentage: Decimal


@dataclass(frozen=True)
class OrderStatusRule:
    order_status: str
    can_cancel: bool
    refund_percentage: Decimal


@dataclass(frozen=True)
class PolicyTerm:
    title: str
    content: str


DEFAULT_TIMING_TIERS: tuple[TimingTier, ...] = (
    TimingTier(CancellationTiming.EARLY, 2, Decimal("90")),
    TimingTier(CancellationTiming.STANDARD, 7, Decimal("75")),
    TimingTier(CancellationTiming.LATE, None, Decimal("50")),
)

DEFAULT_ALLOWED_REASONS: tuple[str, ...] = (
    "Changed mind",
    "Found better price",
    "Wrong item ordered",
    "Delivery delay",
    "Product defect expected",
    "Financial constraints",
    "Duplicate order",
    "Other",
)

DEFAULT_ORDER_STATUS_RULES: tuple[OrderStatusRule, ...] = (
    OrderStatusRule(OrderStatus.ORDER_PLACED.value, True, Decimal("90")),
    OrderStatusRule(OrderStatus.PROCESSING.value, True, Decimal("75")),
    OrderStatusRule(OrderStatus.OUT_FOR_DELIVERY.value, False, Decimal("0")),
    OrderStatusRule(OrderStatus.DELIVERED.value, False, Decimal("0")),
)

DEFAULT_TERMS: tuple[PolicyTerm, ...] = (
    PolicyTerm("Response Time", "We will respond to your cancellation request within 48 hours."),
    PolicyTerm("Refund Processing", "Approved refunds will be processed within 5-7 business days."),
    PolicyTerm("Refund Amount", "Refund amount depends on order status and time of cancellation request."),
)


@dataclass(frozen=True)
class RefundPolicy:
    """The cancellation policy document, consumed by the engine as parameters."""

    refund_percentage: Decimal = Decimal("65")
    legacy_refund_percentage: Decimal = Decimal("75")
    response_time_hours: int = 48
    timing_tiers: tuple[TimingTier, ...] = DEFAULT_TIMING_TIERS
    vip_bonus: Decimal = Decimal("5")
    loyalty_bonus: Decimal = Decimal("2")
    loyalty_min_orders: int = 5
    after_delivery_penalty: Decimal = Decimal("25")
    past_estimated_delivery_penalty: Decimal = Decimal("10")
    allowed_reasons: tuple[str, ...] = DEFAULT_ALLOWED_REASONS
    order_status_rules: tuple[OrderStatusRule, ...] = DEFAULT_ORDER_STATUS_RULES
    terms: tuple[PolicyTerm, ...] = DEFAULT_TERMS
    non_cancellable_statuses: frozenset[str] = frozenset({
        OrderStatus.OUT_FOR_DELIVERY.value,
        OrderStatus.DELIVERED.value,
        OrderStatus.CANCELLED.value,
    })
    allowed_payment_statuses: frozenset[str] = frozenset({
        PaymentStatus.PAID.value,
        PaymentStatus.PENDING.value,
        PaymentStatus.PARTIAL_REFUND_PROCESSING.value,
        PaymentStatus.REFUND_SUCCESSFUL.value,
    })
    online_payment_markers: tuple[str, ...] = ("online", "razorpay", "card", "upi")
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        tiers = self.timing_tiers
        if not tiers or tiers[-1].max_days is not None:
            raise DomainValidationException(
                "The last timing tier must be open-ended",
                field="timing_tiers",
            )
        bounds = [t.max_days for t in tiers[:-1]]
        if any(b is None for b in bounds) or bounds != sorted(bounds):
            raise DomainValidationException(
                "Timing tiers must be ordered by ascending day limit",
                field="timing_tiers",
            )
        for tier in tiers:
            if not (ZERO <= tier.percentage <= HUNDRED):
                raise DomainValidationException(
                    f"Tier percentage out of range: {tier.percentage}",
                    field="timing_tiers",
                )

    def tier_for(self, days_since_order: int) -> TimingTier:
        for tier in self.timing_tiers:
            if tier.max_days is None or days_since_order <= tier.max_days:
                return tier
        raise RefundCalculationError(
            "No timing tier matches",
            details={"days_since_order": days_since_order},
        )

    # ------------------------------------------------------------------
    # Document (de)serialization
    # ------------------------------------------------------------------
    def to_document(self) -> dict[str, Any]:
        return {
            "refund_percentage": str(self.refund_percentage),
            "legacy_refund_percentage": str(self.legacy_refund_percentage),
            "response_time_hours": self.response_time_hours,
            "time_based_rules": [
                {
                    "timing": t.timing.value,
                    "max_days": t.max_days,
                    "refund_percentage": str(t.percentage),
                }
                for t in self.timing_tiers
            ],
            "bonuses": {
                "vip_bonus": str(self.vip_bonus),
                "loyalty_bonus": str(self.loyalty_bonus),
                "loyalty_min_orders": self.loyalty_min_orders,
            },
            "penalties": {
                "after_delivery_penalty": str(self.after_delivery_penalty),
                "past_estimated_delivery_penalty": str(self.past_estimated_delivery_penalty),
            },
            "allowed_reasons": list(self.allowed_reasons),
            "order_status_rules": [
                {
                    "order_status": r.order_status,
                    "can_cancel": r.can_cancel,
                    "refund_percentage": str(r.refund_percentage),
                }
                for r in self.order_status_rules
            ],
            "terms": [{"title": t.title, "content": t.content} for t in self.terms],
            "non_cancellable_statuses": sorted(self.non_cancellable_statuses),
            "allowed_payment_statuses": sorted(self.allowed_payment_statuses),
            "online_payment_markers": list(self.online_payment_markers),
        }

    @classmethod
    def from_document(cls, doc: Optional[dict[str, Any]], base: Optional["RefundPolicy"] = None) -> "RefundPolicy":
        """Overlay a stored document on ``base`` (or the built-in defaults)."""
        policy = base or cls()
        if not doc:
            return policy
        changes: dict[str, Any] = {}

        def dec(value: Any, current: Decimal) -> Decimal:
            return to_decimal(value, current)

        if "refund_percentage" in doc:
            changes["refund_percentage"] = dec(doc["refund_percentage"], policy.refund_percentage)
        if "legacy_refund_percentage" in doc:
            changes["legacy_refund_percentage"] = dec(doc["legacy_refund_percentage"], policy.legacy_refund_percentage)
        if "response_time_hours" in doc:
            changes["response_time_hours"] = int(doc["response_time_hours"])
        if doc.get("time_based_rules"):
            changes["timing_tiers"] = tuple(
                TimingTier(
                    timing=CancellationTiming(rule["timing"]),
                    max_days=rule.get("max_days"),
                    percentage=dec(rule.get("refund_percentage"), ZERO),
                )
                for rule in doc["time_based_rules"]
            )
        bonuses = doc.get("bonuses") or {}
        if "vip_bonus" in bonuses:
            changes["vip_bonus"] = dec(bonuses["vip_bonus"], policy.vip_bonus)
        if "loyalty_bonus" in bonuses:
            changes["loyalty_bonus"] = dec(bonuses["loyalty_bonus"], policy.loyalty_bonus)
        if "loyalty_min_orders" in bonuses:
            changes["loyalty_min_orders"] = int(bonuses["loyalty_min_orders"])
        penalties = doc.get("penalties") or {}
        if "after_delivery_penalty" in penalties:
            changes["after_delivery_penalty"] = dec(penalties["after_delivery_penalty"], policy.after_delivery_penalty)
        if "past_estimated_delivery_penalty" in penalties:
            changes["past_estimated_delivery_penalty"] = dec(
                penalties["past_estimated_delivery_penalty"], policy.past_estimated_delivery_penalty
            )
        if doc.get("allowed_reasons"):
            changes["allowed_reasons"] = tuple(doc["allowed_reasons"])
        if doc.get("order_status_rules"):
            changes["order_status_rules"] = tuple(
                OrderStatusRule(
                    order_status=r["order_status"],
                    can_cancel=bool(r.get("can_cancel", True)),
                    refund_percentage=dec(r.get("refund_percentage"), ZERO),
                )
                for r in doc["order_status_rules"]
            )
        if doc.get("terms"):
            changes["terms"] = tuple(PolicyTerm(t["title"], t["content"]) for t in doc["terms"])
        if doc.get("non_cancellable_statuses"):
            changes["non_cancellable_statuses"] = frozenset(doc["non_cancellable_statuses"])
        if doc.get("allowed_payment_statuses"):
            changes["allowed_payment_statuses"] = frozenset(doc["allowed_payment_statuses"])
        if doc.get("online_payment_markers"):
            changes["online_payment_markers"] = tuple(m.lower() for m in doc["online_payment_markers"])
        return replace(policy, **changes)


# ---------------------------------------------------------------------------
# Engine inputs and result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderFinancials:
    total_amt: Any
    sub_total_amt: Any = None
    delivery_charge: Any = None
    order_date: Optional[datetime] = None


@dataclass(frozen=True)
class CancellationContext:
    request_date: datetime
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    was_past_delivery_date: Optional[bool] = None


@dataclass(frozen=True)
class CustomerInfo:
    is_vip: bool = False
    membership_tier: str = "REGULAR"
    order_count: int = 0


@dataclass(frozen=True)
class Adjustments:
    total: Decimal = ZERO
    reasons: tuple[str, ...] = ()

    def to_dict(self, key: str) -> dict[str, Any]:
        return {key: str(self.total), "reasons": list(self.reasons)}


@dataclass(frozen=True)
class RefundCalculationResult:
    original_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    cancellation_timing: CancellationTiming
    days_since_order: int
    penalties: Adjustments = field(default_factory=Adjustments)
    bonuses: Adjustments = field(default_factory=Adjustments)
    calculation_method: CalculationMethod = CalculationMethod.REFUND_POLICY

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_amount": str(self.original_amount),
            "refund_percentage": str(self.refund_percentage),
            "refund_amount": str(self.refund_amount),
            "cancellation_timing": self.cancellation_timing.value,
            "days_since_order": self.days_since_order,
            "penalties": self.penalties.to_dict("total_penalty"),
            "bonuses": self.bonuses.to_dict("total_bonus"),
            "calculation_method": self.calculation_method.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundCalculationResult":
        penalties = data.get("penalties") or {}
        bonuses = data.get("bonuses") or {}
        return cls(
            original_amount=to_decimal(data.get("original_amount"), ZERO),
            refund_percentage=to_decimal(data.get("refund_percentage"), ZERO),
            refund_amount=to_decimal(data.get("refund_amount"), ZERO),
            cancellation_timing=CancellationTiming(data.get("cancellation_timing", "EARLY")),
            days_since_order=int(data.get("days_since_order") or 0),
            penalties=Adjustments(
                to_decimal(penalties.get("total_penalty"), ZERO), tuple(penalties.get("reasons") or ())
            ),
            bonuses=Adjustments(
                to_decimal(bonuses.get("total_bonus"), ZERO), tuple(bonuses.get("reasons") or ())
            ),
            calculation_method=CalculationMethod(
                data.get("calculation_method", CalculationMethod.REFUND_POLICY.value)
            ),
        )


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or not isinstance(dt, datetime):
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def days_between(start: Optional[datetime], end: Optional[datetime]) -> int:
    """Whole days from ``start`` to ``end``, floored and never negative."""
    start, end = _utc(start), _utc(end)
    if start is None or end is None:
        return 0
    days = math.floor((end - start).total_seconds() / 86400)
    return max(days, 0)


def _bonuses(policy: RefundPolicy, customer: Optional[CustomerInfo]) -> Adjustments:
    if customer is None:
        return Adjustments()
    total, reasons = ZERO, []
    if customer.is_vip and policy.vip_bonus > 0:
        total += policy.vip_bonus
        reasons.append(f"VIP customer bonus (+{policy.vip_bonus}%)")
    if policy.loyalty_bonus > 0 and (customer.order_count or 0) >= policy.loyalty_min_orders:
        total += policy.loyalty_bonus
        reasons.append(f"Loyal customer bonus (+{policy.loyalty_bonus}%)")
    return Adjustments(total, tuple(reasons))


def _penalties(policy: RefundPolicy, context: CancellationContext) -> Adjustments:
    request_date = _utc(context.request_date)
    actual = _utc(context.actual_delivery_date)
    estimated = _utc(context.estimated_delivery_date)
    if actual is not None and request_date is not None and request_date >= actual:
        if policy.after_delivery_penalty > 0:
            return Adjustments(
                policy.after_delivery_penalty,
                (f"Cancellation requested after delivery (-{policy.after_delivery_penalty}%)",),
            )
        return Adjustments()
    past_due = context.was_past_delivery_date
    if past_due is None:
        past_due = actual is None and estimated is not None and request_date is not None and request_date > estimated
    if past_due and policy.past_estimated_delivery_penalty > 0:
        return Adjustments(
            policy.past_estimated_delivery_penalty,
            (f"Cancellation requested after the estimated delivery date (-{policy.past_estimated_delivery_penalty}%)",),
        )
    return Adjustments()


def calculate_refund(
    financials: OrderFinancials,
    context: CancellationContext,
    policy: RefundPolicy,
    override_percentage: Any = None,
    customer: Optional[CustomerInfo] = None,
) -> RefundCalculationResult:
    """
    Compute refund percentage and amount.

    A missing or non-positive total yields a zero result rather than an error.
    Raises RefundCalculationError only when the policy itself cannot be applied.
    """
    days = days_between(financials.order_date, context.request_date)
    try:
        tier = policy.tier_for(days)
        total = to_decimal(financials.total_amt)
        if total is None or total <= 0:
            return RefundCalculationResult(
                original_amount=ZERO,
                refund_percentage=ZERO,
                refund_amount=ZERO,
                cancellation_timing=tier.timing,
                days_since_order=days,
            )

        override = to_decimal(override_percentage)
        base = override if override is not None and ZERO <= override <= HUNDRED else tier.percentage
        bonuses = _bonuses(policy, customer)
        penalties = _penalties(policy, context)
        final = quantize_money(min(max(base + bonuses.total - penalties.total, ZERO), HUNDRED))
        return RefundCalculationResult(
            original_amount=total,
            refund_percentage=final,
            refund_amount=percent_of(total, final),
            cancellation_timing=tier.timing,
            days_since_order=days,
            penalties=penalties,
            bonuses=bonuses,
        )
    except ArithmeticError as exc:
        raise RefundCalculationError(details={"error": str(exc)}) from exc


def legacy_refund(
    total_amt: Any,
    percentage: Any,
    *,
    order_date: Optional[datetime] = None,
    request_date: Optional[datetime] = None,
) -> RefundCalculationResult:
    """Flat-percentage fallback used when the policy engine is unavailable."""
    total = to_decimal(total_amt, ZERO)
    if total < 0:
        total = ZERO
    pct = min(max(to_decimal(percentage, Decimal("75")), ZERO), HUNDRED)
    days = days_between(order_date, request_date)
    timing = CancellationTiming.EARLY
    for tier in DEFAULT_TIMING_TIERS:
        if tier.max_days is None or days <= tier.max_days:
            timing = tier.timing
            break
    return RefundCalculationResult(
        original_amount=total,
        refund_percentage=pct,
        refund_amount=percent_of(total, pct),
        cancellation_timing=timing,
        days_since_order=days,
        calculation_method=CalculationMethod.LEGACY_FLAT,
    )


def financials_for_order(
    items_total: Decimal,
    delivery_charge: Decimal,
    *,
    include_delivery: bool,
    order_date: Optional[datetime],
    customer_paid: Any = None,
) -> OrderFinancials:
    """
    Financials for the cancelled scope.

    When the client supplies what the customer actually paid (discounts applied),
    that amount replaces the list-price item total.
    """
    paid = to_decimal(customer_paid)
    base = paid if paid is not None and paid >= 0 else items_total
    delivery = delivery_charge if include_delivery else ZERO
    return OrderFinancials(
        total_amt=base + delivery,
        sub_total_amt=base,
        delivery_charge=delivery,
        order_date=order_date,
    )
