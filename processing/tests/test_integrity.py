from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command

from processing.models import Batch, BatchMembership
from processing.services.batches import complete_batch, form_batch
from processing.services.integrity import find_batch_anomalies
from processing.tasks import audit_batch_weights_task
from receptions.models import Reception


def setup_completed_batch():
    a = Reception.objects.create(reception_number="I-1", original_weight=Decimal("60"))
    b = Reception.objects.create(reception_number="I-2", original_weight=Decimal("40"))
    batch = form_batch([a.pk, b.pk])
    complete_batch(batch.pk, Decimal("35"))
    return batch, a, b


@pytest.mark.django_db
def test_consistent_batches_have_no_alerts():
    setup_completed_batch()
    assert find_batch_anomalies()["alerts"] == []
    assert audit_batch_weights_task() == {"alerts": 0}


@pytest.mark.django_db
def test_tampered_allocations_are_reported():
    batch, a, _ = setup_completed_batch()
    BatchMembership.objects.filter(batch=batch, reception=a).update(proportional_dried_weight=Decimal("20"))
    Batch.objects.filter(pk=batch.pk).update(total_wet_weight=Decimal("99"))

    ids = {alert["id"] for alert in find_batch_anomalies()["alerts"]}

    assert ids == {"ANOM_BATCH_WET_MISMATCH", "ANOM_BATCH_DRIED_MISMATCH", "ANOM_RECEPTION_DRIED_MISMATCH"}


@pytest.mark.django_db
def test_audit_command_prints_alerts():
    batch, _, _ = setup_completed_batch()
    Batch.objects.filter(pk=batch.pk).update(total_dried_weight=Decimal("30"))
    out = StringIO()
    call_command("audit_batch_weights", stdout=out)
    assert "ANOM_BATCH_DRIED_MISMATCH" in out.getvalue()


@pytest.mark.django_db
def test_deleting_completed_batch_withdraws_dried_weight(django_capture_on_commit_callbacks):
    batch, a, b = setup_completed_batch()
    with django_capture_on_commit_callbacks(execute=True):
        batch.delete()
    a.refresh_from_db()
    b.refresh_from_db()
    assert a.dried_weight is None
    assert b.dried_weight is None
