from decimal import Decimal

import pytest
from django.contrib import admin
from django.contrib.auth.models import User
from django.test import Client, RequestFactory

from receptions.models import FruitType, QualityMetric, Reception
from receptions.services.evaluations import record_field_evaluation
from receptions.services.reconciliation import reconcile_reception
from receptions.services.thresholds import set_threshold


def setup_admin():
    user = User.objects.create_superuser("admin", "admin@example.com", "pass")
    client = Client()
    client.force_login(user)
    return user, client


def setup_reconciled_reception():
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    set_threshold(fruit_type, QualityMetric.HUMIDITY, Decimal("7"))
    reception = Reception.objects.create(
        reception_number="ADM-1", fruit_type=fruit_type, original_weight=Decimal("100")
    )
    record_field_evaluation(reception.pk, humidity=Decimal("9"))
    reconcile_reception(reception.pk)
    reception.refresh_from_db()
    return reception


def change_form_data(reception, **overrides):
    lines = list(reception.discount_lines.all())
    data = {
        "reception_number": reception.reception_number,
        "fruit_type": reception.fruit_type_id,
        "reception_date": reception.reception_date.isoformat(),
        "status": reception.status,
        "notes": "",
        "created_by": "",
        "details-TOTAL_FORMS": "0",
        "details-INITIAL_FORMS": "0",
        "details-MIN_NUM_FORMS": "0",
        "details-MAX_NUM_FORMS": "1000",
        "discount_lines-TOTAL_FORMS": str(len(lines)),
        "discount_lines-INITIAL_FORMS": str(len(lines)),
        "discount_lines-MIN_NUM_FORMS": "0",
        "discount_lines-MAX_NUM_FORMS": "1000",
    }
    for i, line in enumerate(lines):
        data[f"discount_lines-{i}-id"] = str(line.pk)
        data[f"discount_lines-{i}-reception"] = str(reception.pk)
    data.update(overrides)
    return data


@pytest.mark.django_db
def test_admin_cannot_change_original_weight(django_capture_on_commit_callbacks):
    _, client = setup_admin()
    reception = setup_reconciled_reception()
    assert reception.final_weight == Decimal("98.000")

    with django_capture_on_commit_callbacks(execute=True):
        resp = client.post(
            f"/admin/receptions/reception/{reception.pk}/change/",
            change_form_data(reception, original_weight="150", notes="checked"),
        )
    assert resp.status_code == 302

    reception.refresh_from_db()
    assert reception.notes == "checked"
    assert reception.original_weight == Decimal("100.000")
    assert reception.final_weight == reception.original_weight - reception.discount_weight
    assert reception.final_weight == Decimal("98.000")


@pytest.mark.django_db
def test_admin_fruit_type_change_reconciles(django_capture_on_commit_callbacks):
    _, client = setup_admin()
    reception = setup_reconciled_reception()
    coffee = FruitType.objects.create(type="CAFE", subtype="PERGAMINO")

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        resp = client.post(
            f"/admin/receptions/reception/{reception.pk}/change/",
            change_form_data(reception, fruit_type=str(coffee.pk)),
        )
    assert resp.status_code == 302
    assert len(callbacks) >= 1

    reception.refresh_from_db()
    assert reception.fruit_type == coffee
    assert reception.discount_weight == Decimal("0.000")
    assert reception.final_weight == Decimal("100.000")
    assert not reception.discount_lines.exists()


@pytest.mark.django_db
def test_original_weight_is_editable_only_on_add():
    user, _ = setup_admin()
    reception = setup_reconciled_reception()
    model_admin = admin.site._registry[Reception]
    request = RequestFactory().get("/admin/")
    request.user = user

    assert "original_weight" not in model_admin.get_readonly_fields(request)
    assert "original_weight" in model_admin.get_readonly_fields(request, reception)
    assert "final_weight" in model_admin.get_readonly_fields(request, reception)
