from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete
from django.dispatch import receiver

from .models import BatchMembership
from .services.batches import refresh_reception_dried_weight


@receiver(post_delete, sender=BatchMembership)
def _refresh_dried_weight_on_delete(sender, instance, **kwargs):
    # Deleting a completed batch cascades here; the member loses that share.
    if instance.proportional_dried_weight is None:
        return
    transaction.on_commit(partial(refresh_reception_dried_weight, instance.reception_id))
