from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from receptions.models import QualityMetric
from receptions.services.discounts import (
    ThresholdSpec,
    as_threshold_specs,
    compute_discount,
    validate_discount_inputs,
)


def spec(metric, percent, enabled=True):
    return ThresholdSpec(metric=metric, threshold_percent=Decimal(percent), enabled=enabled)


def test_single_metric_over_threshold_takes_full_discount():
    result = compute_discount(
        Decimal("100"),
        [spec(QualityMetric.HUMIDITY, "7"), spec(QualityMetric.MOLD, "2")],
        {QualityMetric.HUMIDITY: Decimal("9"), QualityMetric.MOLD: Decimal("1")},
    )
    assert result.combined_percent == Decimal("2.00")
    assert result.discount_weight == Decimal("2.000")
    assert result.final_weight == Decimal("98.000")
    assert len(result.breakdown) == 1
    line = result.breakdown[0]
    assert line.metric == QualityMetric.HUMIDITY
    assert line.weight_deducted == Decimal("2.000")
    assert line.percent_applied == Decimal("2.00")


def test_large_humidity_excess():
    result = compute_discount(
        Decimal("50"),
        [spec(QualityMetric.HUMIDITY, "7")],
        {QualityMetric.HUMIDITY: Decimal("30")},
    )
    assert result.combined_percent == Decimal("23.00")
    assert result.discount_weight == Decimal("11.500")
    assert result.final_weight == Decimal("38.500")


def test_combined_percent_is_capped_at_hundred():
    result = compute_discount(
        Decimal("80"),
        [spec(QualityMetric.HUMIDITY, "0"), spec(QualityMetric.MOLD, "0")],
        {QualityMetric.HUMIDITY: Decimal("80"), QualityMetric.MOLD: Decimal("70")},
    )
    assert result.combined_percent == Decimal("100.00")
    assert result.discount_weight == Decimal("80.000")
    assert result.final_weight == Decimal("0.000")
    assert sum(line.weight_deducted for line in result.breakdown) == Decimal("80.000")


def test_disabled_and_unmeasured_thresholds_are_ignored():
    result = compute_discount(
        Decimal("100"),
        [spec(QualityMetric.HUMIDITY, "7", enabled=False), spec(QualityMetric.VIOLET, "1")],
        {QualityMetric.HUMIDITY: Decimal("20"), QualityMetric.TRASH: Decimal("9")},
    )
    assert result.discount_weight == Decimal("0.000")
    assert result.final_weight == Decimal("100.000")
    assert result.breakdown == []


def test_breakdown_is_proportional_to_excess_and_sums_exactly():
    result = compute_discount(
        Decimal("333.333"),
        [spec(QualityMetric.HUMIDITY, "7"), spec(QualityMetric.MOLD, "2"), spec(QualityMetric.VIOLET, "1")],
        {QualityMetric.HUMIDITY: Decimal("8"), QualityMetric.MOLD: Decimal("3"), QualityMetric.VIOLET: Decimal("2")},
        source_label="Lab",
    )
    assert result.combined_percent == Decimal("3.00")
    assert result.discount_weight == Decimal("10.000")
    assert sum(line.weight_deducted for line in result.breakdown) == result.discount_weight
    assert [line.label for line in result.breakdown] == ["Humidity (Lab)", "Mold (Lab)", "Violet (Lab)"]


@pytest.mark.parametrize("weight", ["0.001", "1", "57.25", "999.999", "10000"])
@pytest.mark.parametrize("measured", ["0", "7.01", "55", "100"])
def test_discount_stays_within_weight(weight, measured):
    total = Decimal(weight)
    result = compute_discount(
        total,
        [spec(QualityMetric.HUMIDITY, "7"), spec(QualityMetric.TRASH, "1")],
        {QualityMetric.HUMIDITY: Decimal(measured), QualityMetric.TRASH: Decimal(measured)},
    )
    assert Decimal("0") <= result.discount_weight <= total
    assert Decimal("0") <= result.combined_percent <= Decimal("100")
    assert result.final_weight == total - result.discount_weight
    if result.breakdown:
        assert sum(line.weight_deducted for line in result.breakdown) == result.discount_weight


@pytest.mark.parametrize("weight", [0, -5])
def test_non_positive_weight_is_rejected(weight):
    with pytest.raises(ValidationError):
        compute_discount(weight, [spec(QualityMetric.HUMIDITY, "7")], {QualityMetric.HUMIDITY: 9})


@pytest.mark.parametrize("measured", [float("nan"), "abc", Decimal("Infinity")])
def test_non_finite_measurement_is_a_validation_error(measured):
    with pytest.raises(ValidationError):
        compute_discount(Decimal("100"), [spec(QualityMetric.HUMIDITY, "7")], {QualityMetric.HUMIDITY: measured})


def test_non_finite_measurement_without_threshold_is_ignored():
    result = compute_discount(Decimal("100"), [spec(QualityMetric.MOLD, "2")], {QualityMetric.HUMIDITY: float("nan")})
    assert result.discount_weight == Decimal("0.000")


def test_validate_discount_inputs_reports_each_problem():
    errors = validate_discount_inputs(
        Decimal("20000"),
        [spec(QualityMetric.MOLD, "120")],
        {QualityMetric.HUMIDITY: Decimal("-1")},
    )
    assert "Total weight cannot exceed 10000 kg" in errors
    assert "Humidity must be between 0 and 100" in errors
    assert "Threshold for Mold must be between 0 and 100" in errors
    assert validate_discount_inputs(Decimal("10"), [spec(QualityMetric.MOLD, "2")], {}) == []
    assert validate_discount_inputs(0, [], {}) == ["Total weight must be positive"]


def test_threshold_rows_and_dicts_convert_alike():
    specs = as_threshold_specs([{"metric": "mold", "threshold_percent": "2.5"}])
    assert specs == [ThresholdSpec(metric="mold", threshold_percent=Decimal("2.5"), enabled=True)]
