"""Batch formation and the dried-weight allocator.

A batch's wet total is always the exact sum of its memberships' contributions;
completion splits the dried outcome over those contributions so the parts add
up to the batch total at 3 dp, then refreshes each member reception's
cumulative dried weight.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from processing.models import Batch, BatchMembership
from receptions.exceptions import BatchIntegrityError, BatchStateError
from receptions.models import Reception
from receptions.weights import (
    HUNDRED,
    ZERO,
    allocate_proportionally,
    is_finite_non_negative,
    q_percent,
    q_weight,
)

logger = logging.getLogger(__name__)

SACK_WEIGHT_KG = Decimal("70")


def _contribution(reception):
    weight = q_weight(reception.original_weight)
    if not is_finite_non_negative(weight):
        raise BatchIntegrityError(
            f"Reception {reception.reception_number} has an invalid original weight ({reception.original_weight})."
        )
    return weight


def _percentage(part, total):
    return q_percent(part / total * HUNDRED)


def _busy_receptions(reception_ids, exclude_batch=None):
    qs = BatchMembership.objects.filter(
        reception_id__in=reception_ids,
        batch__status=Batch.STATUS_IN_PROGRESS,
    )
    if exclude_batch is not None:
        qs = qs.exclude(batch=exclude_batch)
    return sorted(set(qs.values_list("reception__reception_number", flat=True)))


def _rebalance(batch):
    """Recompute total wet weight and percentages from the memberships."""
    memberships = list(batch.memberships.select_for_update().order_by("id"))
    total = sum((q_weight(m.wet_weight_contribution) for m in memberships), ZERO)
    if not memberships or not total.is_finite() or total <= 0:
        raise BatchIntegrityError(
            f"Batch {batch.pk} would have a total wet weight of {total} kg; "
            "a batch needs members with positive weight."
        )
    for m in memberships:
        m.percentage_of_total = _percentage(q_weight(m.wet_weight_contribution), total)
    BatchMembership.objects.bulk_update(memberships, ["percentage_of_total"])
    batch.total_wet_weight = total
    batch.save(update_fields=["total_wet_weight"])
    return memberships


@transaction.atomic
def form_batch(reception_ids, batch_type=Batch.TYPE_DRYING, start_date=None, duration_days=0, actor=None):
    """Create an in-progress batch whose members contribute their original weight."""
    ids = sorted({int(r) for r in reception_ids or []})
    if not ids:
        raise ValidationError("Select at least one reception for the batch.")
    if batch_type not in dict(Batch.TYPE_CHOICES):
        raise ValidationError(f"Unknown batch type: {batch_type}")

    receptions = list(Reception.objects.select_for_update().filter(pk__in=ids).order_by("pk"))
    missing = set(ids) - {r.pk for r in receptions}
    if missing:
        raise ValidationError(f"Unknown reception(s): {', '.join(str(m) for m in sorted(missing))}")

    busy = _busy_receptions(ids)
    if busy:
        raise BatchStateError(f"Already in an in-progress batch: {', '.join(busy)}")

    contributions = [(r, _contribution(r)) for r in receptions]
    total = sum((c for _, c in contributions), ZERO)
    if total <= 0:
        raise BatchIntegrityError("Selected receptions have no wet weight to process.")

    batch = Batch.objects.create(
        batch_type=batch_type,
        start_date=start_date or timezone.localdate(),
        duration_days=duration_days or 0,
        total_wet_weight=total,
        created_by=actor,
    )
    BatchMembership.objects.bulk_create([
        BatchMembership(
            batch=batch,
            reception=reception,
            wet_weight_contribution=weight,
            percentage_of_total=_percentage(weight, total),
        )
        for reception, weight in contributions
    ])

    stored = batch.memberships.aggregate(total=Sum("wet_weight_contribution"))["total"]
    if q_weight(stored) != total:
        raise BatchIntegrityError(
            f"Batch {batch.pk}: memberships sum to {stored} kg, expected {total} kg."
        )
    logger.info(
        "Formed %s batch %s with %d reception(s), total wet weight %s",
        batch_type,
        batch.pk,
        len(contributions),
        total,
    )
    return batch


def _lock_open_batch(batch_id):
    batch = Batch.objects.select_for_update().get(pk=batch_id)
    if batch.status != Batch.STATUS_IN_PROGRESS:
        raise BatchStateError(f"Batch {batch.pk} is {batch.status}; membership can no longer change.")
    return batch


@transaction.atomic
def add_reception_to_batch(batch_id, reception_id):
    batch = _lock_open_batch(batch_id)
    reception = Reception.objects.select_for_update().get(pk=reception_id)
    if batch.memberships.filter(reception=reception).exists():
        raise ValidationError(f"Reception {reception.reception_number} is already in batch {batch.pk}.")
    busy = _busy_receptions([reception.pk], exclude_batch=batch)
    if busy:
        raise BatchStateError(f"Already in an in-progress batch: {', '.join(busy)}")

    BatchMembership.objects.create(
        batch=batch,
        reception=reception,
        wet_weight_contribution=_contribution(reception),
    )
    _rebalance(batch)
    logger.info("Added reception %s to batch %s", reception.pk, batch.pk)
    return batch


@transaction.atomic
def remove_reception_from_batch(batch_id, reception_id):
    batch = _lock_open_batch(batch_id)
    deleted, _ = batch.memberships.filter(reception_id=reception_id).delete()
    if not deleted:
        raise ValidationError(f"Reception {reception_id} is not part of batch {batch.pk}.")
    _rebalance(batch)
    logger.info("Removed reception %s from batch %s", reception_id, batch.pk)
    return batch


def dried_weight_from_sacks(sacks, remainder=0):
    """Dried outcome counted as full 70 kg sacks plus a loose remainder."""
    try:
        sacks = int(sacks or 0)
    except (TypeError, ValueError):
        raise ValidationError("Sack count must be a whole number.")
    rest = q_weight(remainder)
    if sacks < 0 or not is_finite_non_negative(rest):
        raise ValidationError("Sack count and remainder must be >= 0.")
    return q_weight(SACK_WEIGHT_KG * sacks + rest)


def complete_batch(batch_id, total_dried_weight=None, actor=None, sacks=None, remainder=None):
    """Close the batch and distribute its dried weight to every member.

    Runs at most once per batch. Nothing is written when the stored
    contributions cannot be divided safely.
    """
    if total_dried_weight is None:
        if sacks is None and remainder is None:
            raise ValidationError("Provide the total dried weight or the sack count.")
        dried = dried_weight_from_sacks(sacks, remainder)
    else:
        dried = q_weight(total_dried_weight)
        if not is_finite_non_negative(dried):
            raise ValidationError("Total dried weight must be >= 0.")

    with transaction.atomic():
        batch = Batch.objects.select_for_update().get(pk=batch_id)
        if batch.status == Batch.STATUS_COMPLETED:
            raise BatchStateError(f"Batch {batch.pk} is already completed.")

        memberships = list(batch.memberships.select_for_update().order_by("id"))
        contributions = [q_weight(m.wet_weight_contribution) for m in memberships]
        total_wet = sum(contributions, ZERO)
        if not memberships or not total_wet.is_finite() or total_wet <= 0:
            logger.error("Batch %s: total wet weight is %s; refusing to allocate", batch.pk, total_wet)
            raise BatchIntegrityError(
                f"Batch {batch.pk} has a total wet weight of {total_wet} kg; nothing can be allocated."
            )
        if total_wet != q_weight(batch.total_wet_weight):
            logger.error(
                "Batch %s: memberships sum to %s but batch total is %s",
                batch.pk,
                total_wet,
                batch.total_wet_weight,
            )
            raise BatchIntegrityError(
                f"Batch {batch.pk}: memberships sum to {total_wet} kg, "
                f"batch total is {batch.total_wet_weight} kg."
            )

        shares = allocate_proportionally(dried, contributions)
        bad = [m.reception_id for m, share in zip(memberships, shares) if not is_finite_non_negative(share)]
        if bad or sum(shares, ZERO) != dried:
            raise BatchIntegrityError(
                f"Batch {batch.pk}: allocation of {dried} kg produced invalid shares for reception(s) {bad}."
            )

        for m, share in zip(memberships, shares):
            m.proportional_dried_weight = share
        BatchMembership.objects.bulk_update(memberships, ["proportional_dried_weight"])

        batch.total_dried_weight = dried
        if sacks is not None or remainder is not None:
            batch.total_sacks_70kg = int(sacks or 0)
            batch.remainder_kg = q_weight(remainder)
        batch.status = Batch.STATUS_COMPLETED
        batch.completed_at = timezone.now()
        batch.completed_by = actor
        batch.save(update_fields=[
            "total_dried_weight",
            "total_sacks_70kg",
            "remainder_kg",
            "status",
            "completed_at",
            "completed_by",
        ])

        for reception_id in sorted({m.reception_id for m in memberships}):
            refresh_reception_dried_weight(reception_id)

    logger.info(
        "Completed batch %s: dried %s kg over wet %s kg across %d member(s)",
        batch.pk,
        dried,
        total_wet,
        len(memberships),
    )
    return batch


@transaction.atomic
def refresh_reception_dried_weight(reception_id):
    """Sum the reception's allocations over every completed batch."""
    reception = Reception.objects.select_for_update().get(pk=reception_id)
    total = BatchMembership.objects.filter(
        reception_id=reception_id,
        batch__status=Batch.STATUS_COMPLETED,
    ).aggregate(total=Sum("proportional_dried_weight"))["total"]
    dried = q_weight(total) if total is not None else None
    if dried is not None and not is_finite_non_negative(dried):
        raise BatchIntegrityError(
            f"Reception {reception.reception_number}: cumulative dried weight {dried} is invalid."
        )
    current = q_weight(reception.dried_weight) if reception.dried_weight is not None else None
    if current != dried:
        reception.dried_weight = dried
        reception.save(update_fields=["dried_weight"])
    return dried
