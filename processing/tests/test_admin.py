from decimal import Decimal

import pytest
from django.contrib import admin
from django.contrib.auth.models import User
from django.test import Client, RequestFactory

from processing.models import Batch, BatchMembership
from processing.services.batches import complete_batch, form_batch
from receptions.models import Reception


def setup_batch():
    receptions = [
        Reception.objects.create(reception_number=f"ADM-B-{i}", original_weight=Decimal(w))
        for i, w in enumerate(("60", "40"), start=1)
    ]
    return form_batch([r.pk for r in receptions], duration_days=3), receptions


def admin_client():
    user = User.objects.create_superuser("admin", "admin@example.com", "pass")
    client = Client()
    client.force_login(user)
    return user, client


def batch_form_data(batch, **overrides):
    memberships = list(batch.memberships.order_by("id"))
    data = {
        "batch_type": batch.batch_type,
        "start_date": batch.start_date.isoformat(),
        "duration_days": str(batch.duration_days),
        "notes": "",
        "created_by": "",
        "memberships-TOTAL_FORMS": str(len(memberships)),
        "memberships-INITIAL_FORMS": str(len(memberships)),
        "memberships-MIN_NUM_FORMS": "0",
        "memberships-MAX_NUM_FORMS": "1000",
    }
    for i, m in enumerate(memberships):
        data[f"memberships-{i}-id"] = str(m.pk)
        data[f"memberships-{i}-batch"] = str(batch.pk)
        data[f"memberships-{i}-wet_weight_contribution"] = "999"
    data.update(overrides)
    return data


@pytest.mark.django_db
def test_admin_cannot_complete_batch_or_edit_contributions():
    _, client = admin_client()
    batch, (a, b) = setup_batch()

    resp = client.post(
        f"/admin/processing/batch/{batch.pk}/change/",
        batch_form_data(batch, status=Batch.STATUS_COMPLETED, notes="moved to patio 2"),
    )
    assert resp.status_code == 302

    batch.refresh_from_db()
    assert batch.notes == "moved to patio 2"
    assert batch.status == Batch.STATUS_IN_PROGRESS
    assert batch.total_dried_weight is None
    contributions = sorted(batch.memberships.values_list("wet_weight_contribution", flat=True))
    assert contributions == [Decimal("40.000"), Decimal("60.000")]
    assert sum(contributions) == batch.total_wet_weight

    complete_batch(batch.pk, Decimal("35"))
    a.refresh_from_db()
    b.refresh_from_db()
    assert a.dried_weight == Decimal("21.000")
    assert b.dried_weight == Decimal("14.000")


@pytest.mark.django_db
def test_admin_cannot_reopen_completed_batch():
    _, client = admin_client()
    batch, _ = setup_batch()
    complete_batch(batch.pk, Decimal("35"))
    batch.refresh_from_db()

    resp = client.post(
        f"/admin/processing/batch/{batch.pk}/change/",
        batch_form_data(batch, status=Batch.STATUS_IN_PROGRESS),
    )
    assert resp.status_code == 302
    batch.refresh_from_db()
    assert batch.status == Batch.STATUS_COMPLETED


@pytest.mark.django_db
def test_membership_admin_is_read_only():
    user, _ = admin_client()
    batch, _ = setup_batch()
    membership = batch.memberships.first()
    request = RequestFactory().get("/admin/")
    request.user = user

    membership_admin = admin.site._registry[BatchMembership]
    assert not membership_admin.has_add_permission(request)
    assert not membership_admin.has_delete_permission(request, membership)
    assert "wet_weight_contribution" in membership_admin.get_readonly_fields(request, membership)
    assert "reception" in membership_admin.get_readonly_fields(request, membership)

    batch_admin = admin.site._registry[Batch]
    assert "status" in batch_admin.get_readonly_fields(request, batch)
    assert not batch_admin.has_add_permission(request)
