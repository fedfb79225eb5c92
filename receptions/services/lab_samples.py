from __future__ import annotations

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from receptions.exceptions import LabSampleStateError
from receptions.models import LaboratorySample, Reception
from receptions.weights import HUNDRED, _dec, q_percent, q_weight


def _percent(value, name):
    if value is None:
        return None
    pct = q_percent(value)
    if not pct.is_finite() or pct < 0 or pct > HUNDRED:
        raise ValidationError(f"{name} must be between 0 and 100.")
    return pct


@transaction.atomic
def create_lab_sample(reception_id, sample_weight, estimated_drying_days=0):
    reception = Reception.objects.select_for_update().get(pk=reception_id)
    wet = q_weight(sample_weight)
    if not wet.is_finite() or wet <= 0:
        raise ValidationError("Sample weight must be > 0.")
    return LaboratorySample.objects.create(
        reception=reception,
        sample_weight=wet,
        estimated_drying_days=estimated_drying_days or 0,
        status=LaboratorySample.STATUS_DRYING,
    )


@transaction.atomic
def start_analysis(sample_id):
    sample = LaboratorySample.objects.select_for_update().get(pk=sample_id)
    if sample.status == LaboratorySample.STATUS_ANALYSIS:
        return sample
    if sample.status != LaboratorySample.STATUS_DRYING:
        raise LabSampleStateError(
            f"Sample {sample.pk} is {sample.status}; only drying samples move to analysis."
        )
    sample.status = LaboratorySample.STATUS_ANALYSIS
    sample.save(update_fields=["status"])
    return sample


@transaction.atomic
def record_lab_result(sample_id, dried_sample_weight, mold_pct=None, violet_pct=None, trash_pct=None):
    """Enter the laboratory result and close the sample.

    Result Entered is terminal: a completed sample never accepts new values.
    """
    sample = LaboratorySample.objects.select_for_update().get(pk=sample_id)
    if sample.status == LaboratorySample.STATUS_COMPLETED:
        raise LabSampleStateError(f"Sample {sample.pk} already has a result entered.")

    dried = q_weight(dried_sample_weight)
    if not dried.is_finite() or dried < 0:
        raise ValidationError("Dried sample weight must be >= 0.")
    if dried > _dec(sample.sample_weight):
        raise ValidationError("Dried sample weight cannot exceed the wet sample weight.")

    sample.dried_sample_weight = dried
    sample.mold_pct = _percent(mold_pct, "Mold")
    sample.violet_pct = _percent(violet_pct, "Violet")
    sample.trash_pct = _percent(trash_pct, "Trash")
    sample.status = LaboratorySample.STATUS_COMPLETED
    sample.completed_at = timezone.now()
    sample.save(update_fields=[
        "dried_sample_weight",
        "mold_pct",
        "violet_pct",
        "trash_pct",
        "status",
        "completed_at",
    ])
    return sample

