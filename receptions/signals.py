from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from .models import (
    LaboratorySample,
    QualityEvaluation,
    QualityThreshold,
    QualityThresholdChange,
    ReceptionDetail,
)
from .tasks import enqueue_reconciliation


def _schedule_reconciliation(reception_id):
    if reception_id is None:
        return
    transaction.on_commit(partial(enqueue_reconciliation, reception_id))


@receiver(pre_save, sender=QualityThreshold)
def _capture_prev_threshold(sender, instance, **kwargs):
    if instance.pk:
        prev = sender.objects.filter(pk=instance.pk).values(
            "threshold_percent", "enabled"
        ).first() or {}
        instance._prev_fields = prev
    else:
        instance._prev_fields = {}


@receiver(post_save, sender=QualityThreshold)
def _log_threshold_change(sender, instance, created, **kwargs):
    """Every edit becomes an update event; stored breakdowns stay as computed."""
    prev = getattr(instance, "_prev_fields", {})
    if not created and prev.get("threshold_percent") == instance.threshold_percent \
            and prev.get("enabled") == instance.enabled:
        return
    QualityThresholdChange.objects.create(
        threshold=instance,
        previous_percent=prev.get("threshold_percent"),
        new_percent=instance.threshold_percent,
        previous_enabled=prev.get("enabled"),
        new_enabled=instance.enabled,
        changed_by=getattr(instance, "_changed_by", None) or instance.updated_by,
    )


@receiver(post_save, sender=QualityEvaluation)
def _reconcile_on_evaluation(sender, instance, **kwargs):
    _schedule_reconciliation(instance.reception_id)


@receiver(post_save, sender=LaboratorySample)
@receiver(post_delete, sender=LaboratorySample)
def _reconcile_on_lab_sample(sender, instance, **kwargs):
    _schedule_reconciliation(instance.reception_id)


@receiver(post_save, sender=ReceptionDetail)
@receiver(post_delete, sender=ReceptionDetail)
def _reconcile_on_weight_line(sender, instance, **kwargs):
    _schedule_reconciliation(instance.reception_id)
