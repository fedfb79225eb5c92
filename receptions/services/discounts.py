"""Excess-over-threshold quality discount.

Each enabled threshold contributes ``max(0, measured - threshold)`` percent;
contributions add up and are capped at 100 %. The resulting weight is split
across the contributing metrics in proportion to their excess. No I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional

from django.conf import settings
from django.core.exceptions import ValidationError

from receptions.models import QualityMetric
from receptions.weights import (
    HUNDRED,
    ZERO,
    _dec,
    allocate_proportionally,
    q_money,
    q_percent,
    q_weight,
)

ZERO_PCT = Decimal("0.00")


@dataclass(frozen=True)
class ThresholdSpec:
    metric: str
    threshold_percent: Decimal
    enabled: bool = True


@dataclass
class BreakdownItem:
    metric: str
    label: str
    threshold: Decimal
    measured: Decimal
    percent_applied: Decimal
    weight_deducted: Decimal = ZERO


@dataclass
class DiscountResult:
    combined_percent: Decimal
    discount_weight: Decimal
    final_weight: Decimal
    breakdown: List[BreakdownItem] = field(default_factory=list)


@dataclass(frozen=True)
class FinalAmounts:
    price_per_kg: Decimal
    gross_amount: Decimal
    net_amount: Decimal
    discount_amount: Decimal


def _max_weight():
    return _dec(getattr(settings, "RECEPTION_MAX_WEIGHT_KG", "10000"))


def validate_discount_inputs(
    total_weight,
    thresholds: Iterable[ThresholdSpec],
    measured: Mapping[str, object],
) -> List[str]:
    errors = []
    total = _dec(total_weight)
    if total is None or not total.is_finite() or total <= 0:
        errors.append("Total weight must be positive")
    elif total > _max_weight():
        errors.append(f"Total weight cannot exceed {_max_weight()} kg")

    for metric, value in measured.items():
        value = _dec(value)
        if value is not None and (not value.is_finite() or value < 0 or value > HUNDRED):
            errors.append(f"{QualityMetric.label(metric)} must be between 0 and 100")

    for spec in thresholds:
        limit = _dec(spec.threshold_percent)
        if limit is None or not limit.is_finite() or limit < 0 or limit > HUNDRED:
            errors.append(f"Threshold for {QualityMetric.label(spec.metric)} must be between 0 and 100")
    return errors


def compute_discount(
    total_weight,
    thresholds: Iterable[ThresholdSpec],
    measured: Mapping[str, object],
    source_label: Optional[str] = None,
) -> DiscountResult:
    total = q_weight(total_weight)
    if not total.is_finite() or total <= 0:
        raise ValidationError("Total weight must be > 0.")

    breakdown: List[BreakdownItem] = []
    total_excess = ZERO_PCT
    for spec in thresholds:
        if not spec.enabled:
            continue
        value = _dec(measured.get(spec.metric))
        if value is None:
            value = ZERO_PCT
        limit = _dec(spec.threshold_percent)
        if not value.is_finite() or limit is None or not limit.is_finite():
            raise ValidationError(
                f"{QualityMetric.label(spec.metric)}: measured value and threshold must be finite numbers."
            )
        value = q_percent(value)
        limit = q_percent(limit)
        excess = max(ZERO_PCT, value - limit)
        if excess <= 0:
            continue
        total_excess += excess
        label = QualityMetric.label(spec.metric)
        if source_label:
            label = f"{label} ({source_label})"
        breakdown.append(
            BreakdownItem(
                metric=spec.metric,
                label=label,
                threshold=limit,
                measured=value,
                percent_applied=excess,
            )
        )

    combined = min(total_excess, HUNDRED)
    if combined <= 0:
        return DiscountResult(
            combined_percent=ZERO_PCT,
            discount_weight=ZERO,
            final_weight=total,
            breakdown=[],
        )

    discount = q_weight(total * combined / HUNDRED)
    final = q_weight(total - discount)

    shares = allocate_proportionally(discount, [item.percent_applied for item in breakdown])
    for item, share in zip(breakdown, shares):
        item.weight_deducted = share

    return DiscountResult(
        combined_percent=q_percent(combined),
        discount_weight=discount,
        final_weight=final,
        breakdown=breakdown,
    )


def calculate_final_amounts(original_weight, final_weight, price_per_kg) -> FinalAmounts:
    """Value a reception at the day's price.

    Gross is the original weight times the price, net the final weight times
    the price; the difference is the money lost to discounts. 4 dp.
    """
    price = _dec(price_per_kg)
    if price is None or not price.is_finite() or price <= 0:
        raise ValidationError("Price per kg must be > 0.")
    original = q_weight(original_weight)
    final = q_weight(final_weight)
    if not original.is_finite() or not final.is_finite():
        raise ValidationError("Weights must be finite numbers.")
    gross = q_money(original * price)
    net = q_money(final * price)
    return FinalAmounts(
        price_per_kg=q_money(price),
        gross_amount=gross,
        net_amount=net,
        discount_amount=q_money(gross - net),
    )


def as_threshold_specs(rows) -> List[ThresholdSpec]:
    """Convert QualityThreshold rows (or dicts) into calculator input."""
    specs = []
    for row in rows:
        if isinstance(row, dict):
            specs.append(
                ThresholdSpec(
                    metric=row["metric"],
                    threshold_percent=_dec(row["threshold_percent"]),
                    enabled=row.get("enabled", True),
                )
            )
        else:
            specs.append(
                ThresholdSpec(
                    metric=row.metric,
                    threshold_percent=_dec(row.threshold_percent),
                    enabled=row.enabled,
                )
            )
    return specs
