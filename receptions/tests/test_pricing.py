from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth.models import User
from django.core.exceptions import ValidationError
from rest_framework.test import APIClient

from receptions.models import DailyPrice, FruitType, QualityMetric, Reception
from receptions.services.discounts import calculate_final_amounts
from receptions.services.evaluations import record_field_evaluation
from receptions.services.pricing import (
    get_active_price,
    reception_amounts,
    set_daily_price,
    set_price_active,
)
from receptions.services.reconciliation import reconcile_reception
from receptions.services.thresholds import set_threshold

DAY = date(2024, 3, 1)


def test_amounts_follow_original_and_final_weight():
    amounts = calculate_final_amounts(Decimal("100"), Decimal("98"), Decimal("2.5"))
    assert amounts.gross_amount == Decimal("250.0000")
    assert amounts.net_amount == Decimal("245.0000")
    assert amounts.discount_amount == Decimal("5.0000")


def test_amounts_round_half_up_to_four_places():
    amounts = calculate_final_amounts(Decimal("33.333"), Decimal("32.666"), Decimal("1.2345"))
    assert amounts.gross_amount == Decimal("41.1496")
    assert amounts.net_amount == Decimal("40.3262")
    assert amounts.discount_amount == Decimal("0.8234")


@pytest.mark.parametrize("price", [0, -1, float("nan"), "abc", None])
def test_invalid_price_is_rejected(price):
    with pytest.raises(ValidationError):
        calculate_final_amounts(Decimal("100"), Decimal("98"), price)


@pytest.mark.django_db
def test_one_active_price_per_fruit_type_and_day():
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    first = set_daily_price(fruit_type, DAY, Decimal("2.5"))

    with pytest.raises(ValidationError):
        set_daily_price(fruit_type, DAY, Decimal("2.7"))

    set_price_active(first.pk, False)
    second = set_daily_price(fruit_type, DAY, "2.7")
    assert get_active_price(fruit_type.pk, DAY) == second
    assert get_active_price(fruit_type.pk, DAY + timedelta(days=1)) is None

    with pytest.raises(ValidationError):
        set_price_active(first.pk, True)
    assert DailyPrice.objects.filter(fruit_type=fruit_type, active=True).count() == 1


@pytest.mark.django_db
def test_reception_amounts_use_the_reception_day_price():
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    set_threshold(fruit_type, QualityMetric.HUMIDITY, Decimal("7"))
    reception = Reception.objects.create(
        reception_number="PR-1", fruit_type=fruit_type, original_weight=Decimal("100"), reception_date=DAY
    )
    assert reception_amounts(reception) is None

    set_daily_price(fruit_type, DAY, Decimal("2.5"))
    set_daily_price(fruit_type, DAY - timedelta(days=1), Decimal("9"))
    record_field_evaluation(reception.pk, humidity=Decimal("9"))
    reconcile_reception(reception.pk)
    reception.refresh_from_db()

    amounts = reception_amounts(reception)
    assert amounts.price_per_kg == Decimal("2.5000")
    assert amounts.net_amount == Decimal("245.0000")
    assert amounts.discount_amount == Decimal("5.0000")


@pytest.mark.django_db
def test_price_api_and_reception_amounts():
    user = User.objects.create_user(username="pricing", password="pass")
    client = APIClient()
    client.force_authenticate(user)
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    reception = Reception.objects.create(
        reception_number="PR-2", fruit_type=fruit_type, original_weight=Decimal("100"), reception_date=DAY
    )

    assert client.get(f"/api/receptions/{reception.pk}/").data["amounts"] is None

    resp = client.post(
        "/api/prices/",
        {"fruit_type": fruit_type.pk, "price_date": DAY.isoformat(), "price_per_kg": "2.5"},
        format="json",
    )
    assert resp.status_code == 201, resp.data
    price_id = resp.data["id"]

    resp = client.post(
        "/api/prices/",
        {"fruit_type": fruit_type.pk, "price_date": DAY.isoformat(), "price_per_kg": "3"},
        format="json",
    )
    assert resp.status_code == 400

    amounts = client.get(f"/api/receptions/{reception.pk}/").data["amounts"]
    assert amounts == {
        "price_per_kg": "2.5000",
        "gross_amount": "250.0000",
        "net_amount": "250.0000",
        "discount_amount": "0.0000",
    }

    resp = client.post(f"/api/prices/{price_id}/active/", {"active": False}, format="json")
    assert resp.status_code == 200
    assert resp.data["active"] is False
    assert client.get(f"/api/receptions/{reception.pk}/").data["amounts"] is None
