from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.utils import timezone

from receptions.exceptions import OverDeductionError, WeightIntegrityError
from receptions.models import (
    DiscountBreakdownLine,
    QualityEvaluation,
    Reception,
    ReconciliationWarning,
)
from receptions.services.discounts import BreakdownItem, compute_discount
from receptions.services.quality import QualitySource, select_quality_source
from receptions.services.thresholds import get_enabled_thresholds
from receptions.weights import ZERO, is_finite_non_negative, q_weight

logger = logging.getLogger(__name__)

POLICY_CLAMP = "clamp"
POLICY_REJECT = "reject"

AGGREGATE_FIELDS = [
    "original_weight",
    "quality_discount_weight",
    "sample_loss_weight",
    "discount_weight",
    "final_weight",
    "lab_sample_wet_weight",
    "lab_sample_dried_weight",
]


@dataclass
class WeightPlan:
    original_weight: Decimal
    quality_discount: Decimal
    sample_wet: Decimal
    sample_dried: Decimal
    sample_loss: Decimal
    raw_deduction: Decimal
    total_deduction: Decimal
    final_weight: Decimal
    source: Optional[QualitySource] = None
    breakdown: List[BreakdownItem] = field(default_factory=list)

    @property
    def over_deducted(self):
        return self.raw_deduction > self.original_weight


def overdeduction_policy():
    policy = getattr(settings, "RECEPTION_OVERDEDUCTION_POLICY", POLICY_CLAMP)
    if policy not in (POLICY_CLAMP, POLICY_REJECT):
        raise ImproperlyConfigured(
            f"RECEPTION_OVERDEDUCTION_POLICY must be '{POLICY_CLAMP}' or '{POLICY_REJECT}', got {policy!r}"
        )
    return policy


def plan_reception_weights(original_weight, quality_discount, samples, source=None, breakdown=()):
    """Combine the quality discount with lab sample loss for one reception.

    Sample loss counts every sample tied to the reception, not only the one
    used as quality source.
    """
    original = q_weight(original_weight)
    discount = q_weight(quality_discount)
    wet = q_weight(sum((s.sample_weight or 0 for s in samples), Decimal("0")))
    dried = q_weight(sum((s.dried_sample_weight or 0 for s in samples), Decimal("0")))
    loss = q_weight(wet - dried)
    raw = q_weight(discount + loss)
    total = min(max(raw, ZERO), original)
    return WeightPlan(
        original_weight=original,
        quality_discount=discount,
        sample_wet=wet,
        sample_dried=dried,
        sample_loss=loss,
        raw_deduction=raw,
        total_deduction=total,
        final_weight=q_weight(original - total),
        source=source,
        breakdown=list(breakdown),
    )


def _check_plan(reception_id, plan: WeightPlan):
    values = {
        "original_weight": plan.original_weight,
        "discount_weight": plan.total_deduction,
        "final_weight": plan.final_weight,
        "lab_sample_wet_weight": plan.sample_wet,
        "lab_sample_dried_weight": plan.sample_dried,
    }
    bad = [name for name, value in values.items() if not is_finite_non_negative(value)]
    if bad:
        raise WeightIntegrityError(
            f"Reception {reception_id}: refusing to store non-finite or negative {', '.join(bad)}."
        )
    if plan.final_weight != plan.original_weight - plan.total_deduction:
        raise WeightIntegrityError(
            f"Reception {reception_id}: final weight {plan.final_weight} does not equal "
            f"{plan.original_weight} - {plan.total_deduction}."
        )
    line_total = sum((item.weight_deducted for item in plan.breakdown), ZERO)
    if plan.breakdown and line_total != plan.quality_discount:
        raise WeightIntegrityError(
            f"Reception {reception_id}: breakdown lines sum to {line_total}, "
            f"expected {plan.quality_discount}."
        )


def _line_key(metric, label, source, threshold, measured, percent, weight):
    return (metric, label, source, q_weight(threshold), q_weight(measured), q_weight(percent), q_weight(weight))


def _unchanged(reception, plan: WeightPlan):
    stored = {name: getattr(reception, name) for name in AGGREGATE_FIELDS}
    target = {
        "original_weight": plan.original_weight,
        "quality_discount_weight": plan.quality_discount,
        "sample_loss_weight": plan.sample_loss,
        "discount_weight": plan.total_deduction,
        "final_weight": plan.final_weight,
        "lab_sample_wet_weight": plan.sample_wet,
        "lab_sample_dried_weight": plan.sample_dried,
    }
    for name, value in target.items():
        if stored[name] is None or q_weight(stored[name]) != value:
            return False

    existing = {
        _line_key(l.metric, l.label, l.source, l.threshold_value, l.measured_value, l.percent_applied, l.weight_deducted)
        for l in reception.discount_lines.all()
    }
    source_kind = plan.source.kind if plan.source else ""
    wanted = {
        _line_key(i.metric, i.label, source_kind, i.threshold, i.measured, i.percent_applied, i.weight_deducted)
        for i in plan.breakdown
    }
    return existing == wanted


def _set_warning(reception, code, message=None, plan=None):
    """Open, refresh or resolve the single open warning for ``code``."""
    open_warning = ReconciliationWarning.objects.filter(
        reception=reception, code=code, resolved=False
    ).first()
    if message is None:
        if open_warning is not None:
            open_warning.resolved = True
            open_warning.resolved_at = timezone.now()
            open_warning.save(update_fields=["resolved", "resolved_at"])
        return
    if open_warning is None:
        ReconciliationWarning.objects.create(
            reception=reception,
            code=code,
            message=message,
            raw_deduction=plan.raw_deduction,
            original_weight=plan.original_weight,
        )
    elif open_warning.message != message:
        open_warning.message = message
        open_warning.raw_deduction = plan.raw_deduction
        open_warning.original_weight = plan.original_weight
        open_warning.save(update_fields=["message", "raw_deduction", "original_weight"])


def _sync_warnings(reception, plan: WeightPlan):
    over = None
    if plan.over_deducted:
        over = (
            f"Total deduction {plan.raw_deduction} kg (quality {plan.quality_discount} kg + "
            f"sample loss {plan.sample_loss} kg) exceeds original weight "
            f"{plan.original_weight} kg; clamped to {plan.total_deduction} kg."
        )
    _set_warning(reception, ReconciliationWarning.OVER_DEDUCTION, over, plan)

    negative = None
    if plan.sample_loss < 0:
        negative = (
            f"Dried lab samples ({plan.sample_dried} kg) outweigh wet samples "
            f"({plan.sample_wet} kg); check the sample records."
        )
    _set_warning(reception, ReconciliationWarning.NEGATIVE_SAMPLE_LOSS, negative, plan)


def _quality_discount(reception, original, source):
    """Run the calculator, degrading every missing input to no discount."""
    if source is None:
        logger.info("Reception %s: no completed lab sample or field evaluation; skipping quality discount", reception.pk)
        return ZERO, []
    if original <= 0:
        logger.info("Reception %s: original weight is %s; skipping quality discount", reception.pk, original)
        return ZERO, []
    if reception.fruit_type_id is None:
        logger.info("Reception %s has no fruit type; skipping quality discount", reception.pk)
        return ZERO, []
    thresholds = get_enabled_thresholds(reception.fruit_type_id)
    if not thresholds:
        logger.info(
            "Reception %s: no enabled thresholds for fruit type %s; skipping quality discount",
            reception.pk,
            reception.fruit_type_id,
        )
        return ZERO, []
    result = compute_discount(original, thresholds, source.measurements, source.label)
    return result.discount_weight, result.breakdown


def _build_plan(reception):
    samples = list(reception.lab_samples.all())
    evaluation = QualityEvaluation.objects.filter(reception=reception).first()

    original = reception.line_items_weight()
    if original is None:
        original = q_weight(reception.original_weight)
    if not is_finite_non_negative(original):
        raise WeightIntegrityError(
            f"Reception {reception.pk}: original weight {original} is not a valid weight."
        )

    source = select_quality_source(evaluation, samples)
    discount, breakdown = _quality_discount(reception, original, source)
    return plan_reception_weights(original, discount, samples, source=source, breakdown=breakdown)


def preview_reconciliation(reception_id):
    """Return the WeightPlan a reconciliation would store, without writing."""
    reception = Reception.objects.select_related("fruit_type").get(pk=reception_id)
    return reception, _build_plan(reception)


def reconcile_reception(reception_id):
    """Recompute a reception's discount and final weight from current data.

    Idempotent: with unchanged inputs nothing is rewritten. The reception
    row stays locked until the breakdown and aggregate are both stored.
    """
    with transaction.atomic():
        reception = Reception.objects.select_for_update().get(pk=reception_id)
        plan = _build_plan(reception)

        if plan.over_deducted:
            if overdeduction_policy() == POLICY_REJECT:
                logger.error(
                    "Reception %s: deduction %s exceeds original weight %s; refusing to reconcile",
                    reception.pk,
                    plan.raw_deduction,
                    plan.original_weight,
                )
                raise OverDeductionError(
                    f"Reception {reception.pk}: total deduction {plan.raw_deduction} kg exceeds "
                    f"original weight {plan.original_weight} kg."
                )
            logger.warning(
                "Reception %s: deduction %s exceeds original weight %s; clamping",
                reception.pk,
                plan.raw_deduction,
                plan.original_weight,
            )
        _check_plan(reception.pk, plan)

        if _unchanged(reception, plan):
            _sync_warnings(reception, plan)
            logger.info("Reception %s already reconciled; nothing to write", reception.pk)
            return reception

        source_kind = plan.source.kind if plan.source else ""
        DiscountBreakdownLine.objects.filter(reception=reception).delete()
        DiscountBreakdownLine.objects.bulk_create([
            DiscountBreakdownLine(
                reception=reception,
                metric=item.metric,
                label=item.label,
                source=source_kind,
                threshold_value=item.threshold,
                measured_value=item.measured,
                percent_applied=item.percent_applied,
                weight_deducted=item.weight_deducted,
            )
            for item in plan.breakdown
        ])

        reception.original_weight = plan.original_weight
        reception.quality_discount_weight = plan.quality_discount
        reception.sample_loss_weight = plan.sample_loss
        reception.discount_weight = plan.total_deduction
        reception.final_weight = plan.final_weight
        reception.lab_sample_wet_weight = plan.sample_wet
        reception.lab_sample_dried_weight = plan.sample_dried
        reception.reconciled_at = timezone.now()
        reception.save(update_fields=AGGREGATE_FIELDS + ["reconciled_at"])

        _sync_warnings(reception, plan)

    logger.info(
        "Reception %s reconciled: original=%s quality_discount=%s sample_wet=%s sample_dried=%s "
        "sample_loss=%s total_deduction=%s final=%s source=%s",
        reception.pk,
        plan.original_weight,
        plan.quality_discount,
        plan.sample_wet,
        plan.sample_dried,
        plan.sample_loss,
        plan.total_deduction,
        plan.final_weight,
        plan.source.kind if plan.source else None,
    )
    return reception


def reconcile_many(reception_ids):
    """Reconcile each reception independently; returns (done, failures)."""
    done = []
    failures = {}
    for reception_id in reception_ids:
        try:
            reconcile_reception(reception_id)
        except (WeightIntegrityError, Reception.DoesNotExist) as exc:
            logger.error("Reconciliation of reception %s failed: %s", reception_id, exc)
            failures[reception_id] = exc
        else:
            done.append(reception_id)
    return done, failures
