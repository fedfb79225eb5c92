from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from receptions.models import FruitType, QualityMetric, QualityThreshold, QualityThresholdChange
from receptions.services.discounts import ThresholdSpec
from receptions.services.thresholds import get_enabled_thresholds, seed_default_thresholds, set_threshold


@pytest.mark.django_db
def test_enabled_thresholds_only():
    fruit_type = FruitType.objects.create(type="CAFE", subtype="PERGAMINO")
    set_threshold(fruit_type, QualityMetric.HUMIDITY, Decimal("12"))
    set_threshold(fruit_type, QualityMetric.BORER, Decimal("2"), enabled=False)

    assert get_enabled_thresholds(fruit_type.pk) == [
        ThresholdSpec(metric=QualityMetric.HUMIDITY, threshold_percent=Decimal("12.00"))
    ]
    assert get_enabled_thresholds(fruit_type.pk + 100) == []


@pytest.mark.django_db
def test_every_edit_is_logged_once():
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    set_threshold(fruit_type, QualityMetric.MOLD, Decimal("2"))
    set_threshold(fruit_type, QualityMetric.MOLD, Decimal("2"))
    set_threshold(fruit_type, QualityMetric.MOLD, Decimal("2"), enabled=False)

    changes = list(QualityThresholdChange.objects.order_by("id"))
    assert len(changes) == 2
    assert changes[0].previous_percent is None
    assert changes[1].previous_enabled is True
    assert changes[1].new_enabled is False


@pytest.mark.django_db
@pytest.mark.parametrize("metric,percent", [("colour", "2"), (QualityMetric.MOLD, "101"), (QualityMetric.MOLD, "-0.5")])
def test_invalid_threshold_is_rejected(metric, percent):
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    with pytest.raises(ValidationError):
        set_threshold(fruit_type, metric, Decimal(percent))


@pytest.mark.django_db
def test_seed_defaults_keeps_existing_rows():
    cacao = FruitType.objects.create(type="CACAO", subtype="VERDE")
    set_threshold(cacao, QualityMetric.HUMIDITY, Decimal("7"))

    assert seed_default_thresholds(cacao) == 5
    assert seed_default_thresholds(cacao) == 0
    assert QualityThreshold.objects.get(fruit_type=cacao, metric=QualityMetric.HUMIDITY).threshold_percent == Decimal("7.00")

    honey = FruitType.objects.create(type="MIEL", subtype="ABEJA")
    assert seed_default_thresholds(honey) == 1
    assert seed_default_thresholds(FruitType.objects.create(type="MANGO", subtype="X")) == 0
