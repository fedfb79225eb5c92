from decimal import Decimal
from io import StringIO

import openpyxl
import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from receptions.models import FruitType, QualityMetric, QualityThreshold, Reception, ReconciliationWarning
from receptions.services.evaluations import record_field_evaluation
from receptions.services.thresholds import set_threshold


def setup_reception(number="CMD-1"):
    fruit_type, _ = FruitType.objects.get_or_create(type="CACAO", subtype="VERDE")
    set_threshold(fruit_type, QualityMetric.HUMIDITY, Decimal("7"))
    reception = Reception.objects.create(
        reception_number=number, fruit_type=fruit_type, original_weight=Decimal("100")
    )
    record_field_evaluation(reception.pk, humidity=Decimal("9"))
    return reception


@pytest.mark.django_db
def test_seed_quality_thresholds_command():
    FruitType.objects.create(type="CACAO", subtype="VERDE")
    FruitType.objects.create(type="PLATANO", subtype="X")
    out = StringIO()
    call_command("seed_quality_thresholds", stdout=out)
    assert QualityThreshold.objects.count() == 6
    assert "no default schedule" in out.getvalue()

    call_command("seed_quality_thresholds", stdout=StringIO())
    assert QualityThreshold.objects.count() == 6


@pytest.mark.django_db
def test_import_quality_thresholds_from_excel(tmp_path):
    fruit_type = FruitType.objects.create(type="CACAO", subtype="VERDE")
    path = tmp_path / "thresholds.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["Type", "Subtype", "Metric", "Threshold", "Enabled"])
    ws.append(["cacao", "verde", "Humidity", 7, "yes"])
    ws.append(["CACAO", "VERDE", "mold", 2.5, "no"])
    ws.append(["PAPAYA", "X", "humidity", 5, None])
    wb.save(path)

    out = StringIO()
    call_command("import_quality_thresholds", str(path), stdout=out)

    humidity = QualityThreshold.objects.get(fruit_type=fruit_type, metric=QualityMetric.HUMIDITY)
    mold = QualityThreshold.objects.get(fruit_type=fruit_type, metric=QualityMetric.MOLD)
    assert humidity.threshold_percent == Decimal("7.00") and humidity.enabled
    assert mold.threshold_percent == Decimal("2.50") and not mold.enabled
    assert "Applied 2 threshold(s); skipped 1 row(s)" in out.getvalue()


@pytest.mark.django_db
def test_import_preview_writes_nothing(tmp_path):
    FruitType.objects.create(type="CACAO", subtype="VERDE")
    path = tmp_path / "thresholds.xlsx"
    wb = openpyxl.Workbook()
    wb.active.append(["type", "subtype", "metric", "threshold"])
    wb.active.append(["CACAO", "VERDE", "humidity", 7])
    wb.save(path)

    out = StringIO()
    call_command("import_quality_thresholds", str(path), "--preview", stdout=out)
    assert "Column mapping" in out.getvalue()
    assert not QualityThreshold.objects.exists()


@pytest.mark.django_db
def test_import_rejects_missing_file():
    with pytest.raises(CommandError):
        call_command("import_quality_thresholds", "/nonexistent/thresholds.xlsx")


@pytest.mark.django_db
def test_reconcile_command_is_dry_run_by_default():
    reception = setup_reception()
    out = StringIO()
    call_command("reconcile_receptions", stdout=out)
    reception.refresh_from_db()
    assert reception.final_weight == Decimal("100.000")
    assert "CMD-1: discount 0.000 -> 2.000, final 100.000 -> 98.000" in out.getvalue()

    call_command("reconcile_receptions", "--commit", stdout=StringIO())
    reception.refresh_from_db()
    assert reception.final_weight == Decimal("98.000")


@pytest.mark.django_db
def test_reconcile_command_scopes_to_one_reception():
    first = setup_reception("CMD-1")
    second = setup_reception("CMD-2")
    call_command("reconcile_receptions", "--reception", str(first.pk), "--commit", stdout=StringIO())
    first.refresh_from_db()
    second.refresh_from_db()
    assert first.final_weight == Decimal("98.000")
    assert second.final_weight == Decimal("100.000")


@pytest.mark.django_db
def test_audit_command_reports_and_records():
    reception = setup_reception()
    Reception.objects.filter(pk=reception.pk).update(discount_weight=Decimal("120"))
    out = StringIO()
    call_command("audit_reception_weights", "--record", stdout=out)
    text = out.getvalue()
    assert "ANOM_DISCOUNT_EXCEEDS_ORIGINAL" in text
    assert "ANOM_FINAL_MISMATCH" in text
    assert "Opened 1 warning(s)" in text
    assert ReconciliationWarning.objects.filter(
        reception=reception, code=ReconciliationWarning.INCONSISTENT_AGGREGATE
    ).count() == 1
