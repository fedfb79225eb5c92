from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from receptions.exceptions import EvaluationLockedError
from receptions.models import QualityEvaluation, Reception
from receptions.weights import HUNDRED, q_percent

EDITABLE_FIELDS = ("humidity", "mold", "violet", "trash")


@transaction.atomic
def record_field_evaluation(reception_id, actor=None, **values):
    """Create the reception's field evaluation or update it while unlocked.

    Only the keys passed are changed; pass ``None`` to clear a metric.
    """
    unknown = set(values) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown evaluation fields: {', '.join(sorted(unknown))}")

    reception = Reception.objects.select_for_update().get(pk=reception_id)
    evaluation = (
        QualityEvaluation.objects.select_for_update()
        .filter(reception=reception)
        .first()
    )
    if evaluation is None:
        evaluation = QualityEvaluation(reception=reception, created_by=actor)
    elif evaluation.locked:
        raise EvaluationLockedError(
            f"Quality evaluation for reception {reception.reception_number} is locked."
        )

    for name, value in values.items():
        if value is not None:
            value = q_percent(value)
            if not value.is_finite() or value < 0 or value > HUNDRED:
                raise ValidationError(f"{name.capitalize()} must be between 0 and 100.")
        setattr(evaluation, name, value)
    evaluation.updated_by = actor
    evaluation.save()
    return evaluation


@transaction.atomic
def lock_field_evaluation(evaluation_id, actor=None):
    evaluation = QualityEvaluation.objects.select_for_update().get(pk=evaluation_id)
    if evaluation.locked:
        return evaluation
    evaluation.locked = True
    evaluation.locked_at = timezone.now()
    evaluation.updated_by = actor
    evaluation.save(update_fields=["locked", "locked_at", "updated_by", "updated_at"])
    return evaluation
