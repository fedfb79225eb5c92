from __future__ import annotations

import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from receptions.models import FruitType, QualityMetric, QualityThreshold
from receptions.services.discounts import ThresholdSpec
from receptions.weights import HUNDRED, _dec, q_percent

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = {
    "CACAO": [
        (QualityMetric.HUMIDITY, "12.00"),
        (QualityMetric.MOLD, "2.00"),
        (QualityMetric.VIOLET, "1.50"),
        (QualityMetric.SLATE, "1.00"),
        (QualityMetric.FLAT_BEAN, "2.00"),
        (QualityMetric.WHITE_BEAN, "0.00"),
    ],
    "CAFE": [
        (QualityMetric.HUMIDITY, "12.00"),
        (QualityMetric.BORER, "2.00"),
        (QualityMetric.BLACK, "1.00"),
        (QualityMetric.SOUR, "1.00"),
    ],
    "MIEL": [
        (QualityMetric.HUMIDITY, "18.00"),
    ],
}


def get_enabled_thresholds(fruit_type_id):
    """Threshold Registry read API.

    A missing fruit type or a failed lookup degrades to an empty schedule
    so the caller applies no discount.
    """
    if fruit_type_id is None:
        return []
    try:
        # Savepoint so a failed read does not poison the caller's transaction.
        with transaction.atomic():
            rows = list(
                QualityThreshold.objects.filter(fruit_type_id=fruit_type_id, enabled=True)
                .order_by("metric")
                .values("metric", "threshold_percent")
            )
    except DatabaseError:
        logger.exception("Threshold lookup failed for fruit type %s", fruit_type_id)
        return []
    return [
        ThresholdSpec(metric=r["metric"], threshold_percent=_dec(r["threshold_percent"]), enabled=True)
        for r in rows
    ]


@transaction.atomic
def set_threshold(fruit_type, metric, threshold_percent, enabled=True, actor=None):
    """Create or update a threshold; the change log is written by signals."""
    if metric not in dict(QualityMetric.CHOICES):
        raise ValidationError(f"Unknown quality metric: {metric}")
    percent = q_percent(threshold_percent)
    if not percent.is_finite() or percent < 0 or percent > HUNDRED:
        raise ValidationError("Threshold must be between 0 and 100.")

    threshold = (
        QualityThreshold.objects.select_for_update()
        .filter(fruit_type=fruit_type, metric=metric)
        .first()
    )
    if threshold is None:
        threshold = QualityThreshold(fruit_type=fruit_type, metric=metric)
    elif threshold.threshold_percent == percent and threshold.enabled == enabled:
        return threshold
    threshold.threshold_percent = percent
    threshold.enabled = enabled
    threshold.updated_by = actor
    threshold._changed_by = actor
    threshold.save()
    return threshold


def seed_default_thresholds(fruit_type: FruitType, actor=None):
    """Insert the commodity family defaults, keeping rows that already exist."""
    defaults = DEFAULT_THRESHOLDS.get(fruit_type.family)
    if not defaults:
        return 0
    created = 0
    for metric, percent in defaults:
        _, was_created = QualityThreshold.objects.get_or_create(
            fruit_type=fruit_type,
            metric=metric,
            defaults={
                "threshold_percent": Decimal(percent),
                "enabled": True,
                "updated_by": actor,
            },
        )
        created += int(was_created)
    return created
