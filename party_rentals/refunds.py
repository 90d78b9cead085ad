"""
Refund calculation for cancellation requests.

`calculate_refund` is pure: today's date is passed in by the caller.
"""
from dataclasses import dataclass, field
import datetime
from typing import Optional

from .exceptions import ValidationError
from .models import CancellationType


@dataclass(frozen=True)
class RefundRule:
    min_days: int
    max_days: Optional[int]
    refund_percent: int
    label: str

    def matches(self, days_until_event: int) -> bool:
        if days_until_event < self.min_days:
            return False
        return self.max_days is None or days_until_event <= self.max_days


@dataclass(frozen=True)
class RefundPolicy:
    name: str
    rules: tuple[RefundRule, ...]
    processing_fee: float = 0.0
    weather_full_refund: bool = True
    allow_reschedule: bool = True

    @classmethod
    def from_model(cls, policy) -> "RefundPolicy":
        return cls(
            name=policy.name,
            rules=tuple(
                RefundRule(
                    min_days=int(r["min_days"]),
                    max_days=None if r.get("max_days") is None else int(r["max_days"]),
                    refund_percent=int(r["refund_percent"]),
                    label=r.get("label") or "",
                )
                for r in policy.rules or []
            ),
            processing_fee=float(policy.processing_fee or 0),
            weather_full_refund=bool(policy.weather_full_refund),
            allow_reschedule=bool(policy.allow_reschedule),
        )

    def ordered_rules(self) -> list[RefundRule]:
        """Most lenient bracket first."""
        return sorted(self.rules, key=lambda r: r.min_days, reverse=True)


@dataclass
class RefundCalculation:
    refund_amount: float
    refund_percent: int
    processing_fee: float
    days_until_event: int
    policy_label: str
    is_eligible: bool = field(default=False)


DEFAULT_POLICY = RefundPolicy(
    name="Standard Policy",
    rules=(
        RefundRule(min_days=7, max_days=None, refund_percent=100, label="7+ days before event"),
        RefundRule(min_days=3, max_days=6, refund_percent=50, label="3-6 days before event"),
        RefundRule(min_days=0, max_days=2, refund_percent=0, label="0-2 days before event"),
    ),
    processing_fee=0.0,
    weather_full_refund=True,
    allow_reschedule=True,
)

OVERRIDE_LABELS = {
    CancellationType.WEATHER: "Weather cancellation - full refund",
    CancellationType.EMERGENCY: "Emergency cancellation - full refund",
    CancellationType.OUR_FAULT: "Scheduling conflict on our side - full refund",
    CancellationType.GOODWILL: "Goodwill - full refund",
}


def override_applies(policy: RefundPolicy, cancellation_type: CancellationType) -> bool:
    if cancellation_type == CancellationType.WEATHER:
        return policy.weather_full_refund
    return cancellation_type in OVERRIDE_LABELS


def refund_at_percent(amount_paid: float, refund_percent: int, processing_fee: float = 0.0) -> float:
    return round(max(0.0, amount_paid * refund_percent / 100 - processing_fee), 2)


def refund_for_days(
        days_until_event: int,
        amount_paid: float,
        policy: RefundPolicy = DEFAULT_POLICY,
        cancellation_type: CancellationType = CancellationType.CUSTOMER_REQUEST,
) -> RefundCalculation:
    # Overrides win over the date brackets and waive the fee
    if override_applies(policy, cancellation_type):
        return RefundCalculation(
            refund_amount=round(amount_paid, 2),
            refund_percent=100,
            processing_fee=0.0,
            days_until_event=days_until_event,
            policy_label=OVERRIDE_LABELS[cancellation_type],
            is_eligible=amount_paid > 0,
        )

    rule = next((r for r in policy.ordered_rules() if r.matches(days_until_event)), None)
    if rule is None:
        return RefundCalculation(
            refund_amount=0.0,
            refund_percent=0,
            processing_fee=0.0,
            days_until_event=days_until_event,
            policy_label="Outside cancellation window",
        )

    fee = policy.processing_fee if rule.refund_percent > 0 else 0.0
    net = refund_at_percent(amount_paid, rule.refund_percent, fee)
    return RefundCalculation(
        refund_amount=round(net, 2),
        refund_percent=rule.refund_percent,
        processing_fee=fee,
        days_until_event=days_until_event,
        policy_label=rule.label,
        is_eligible=net > 0,
    )


def calculate_refund(
        event_date: datetime.date,
        amount_paid: float,
        policy: RefundPolicy,
        cancellation_type: CancellationType,
        today: datetime.date,
) -> RefundCalculation:
    days_until_event = (event_date - today).days
    if days_until_event < 0:
        raise ValidationError("This event date has already passed.")
    return refund_for_days(days_until_event, amount_paid, policy, cancellation_type)


def describe_rules(policy: RefundPolicy) -> list[str]:
    lines = []
    for rule in policy.ordered_rules():
        if rule.max_days is None:
            timeframe = f"{rule.min_days}+ days before"
        elif rule.min_days == rule.max_days:
            timeframe = f"{rule.min_days} days before"
        else:
            timeframe = f"{rule.min_days}-{rule.max_days} days before"

        if rule.refund_percent == 100:
            refund = "Full refund"
        elif rule.refund_percent == 0:
            refund = "No refund"
        else:
            refund = f"{rule.refund_percent}% refund"
        lines.append(f"{timeframe}: {refund}")
    return lines
