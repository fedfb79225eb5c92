from __future__ import annotations

from pathlib import Path

import openpyxl
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from receptions.models import FruitType, QualityMetric
from receptions.services.thresholds import set_threshold

TRUE_VALUES = ("1", "true", "yes", "y", "si", "sí", "x")


class Command(BaseCommand):
    help = "Import quality thresholds from an Excel file (xlsx): type, subtype, metric, threshold, enabled."

    def add_arguments(self, parser):
        parser.add_argument("file", type=str, help="Path to Excel .xlsx file")
        parser.add_argument("--user", type=str, default=None, help="Username recorded on the change log")
        parser.add_argument("--sheet", type=str, default=None, help="Optional sheet name")
        parser.add_argument("--preview", action="store_true", help="Print header mapping and first rows; no writes")

    def handle(self, *args, **opts):
        path = Path(opts["file"]).expanduser()
        if not path.exists():
            raise CommandError(f"File not found: {path}")

        wb = openpyxl.load_workbook(filename=str(path), read_only=True, data_only=True)
        ws = wb[opts["sheet"]] if opts.get("sheet") else wb.active

        rows = ws.iter_rows(values_only=True)
        headers = next(rows, None)
        if not headers:
            raise CommandError("Empty sheet")
        header_map = {str(h).strip().lower(): idx for idx, h in enumerate(headers) if h is not None}

        def pick(*names):
            for raw in names:
                for cand in (raw, raw.replace("_", " ")):
                    idx = header_map.get(str(cand).strip().lower())
                    if idx is not None:
                        return idx
            return None

        idx_type = pick("type", "fruit_type", "fruit type", "commodity", "tipo")
        idx_subtype = pick("subtype", "sub type", "subtipo", "variety")
        idx_metric = pick("metric", "quality_metric", "defect", "metrica")
        idx_value = pick("threshold", "threshold_percent", "percent", "limit", "umbral")
        idx_enabled = pick("enabled", "active", "activo")

        if opts.get("preview"):
            self.stdout.write("Detected headers:")
            for k, v in header_map.items():
                self.stdout.write(f"  {v}: {k}")
            self.stdout.write("Column mapping:")
            self.stdout.write(
                f"  type={idx_type}, subtype={idx_subtype}, metric={idx_metric}, "
                f"threshold={idx_value}, enabled={idx_enabled}"
            )
            for i, row in enumerate(rows):
                if i >= 5:
                    break
                self.stdout.write(f"  row: {list(row)}")
            return

        if None in (idx_type, idx_subtype, idx_metric, idx_value):
            raise CommandError("Sheet needs type, subtype, metric and threshold columns")

        user = None
        if opts.get("user"):
            user = get_user_model().objects.filter(username=opts["user"]).first()

        labels = {label.lower(): code for code, label in QualityMetric.CHOICES}
        codes = dict(QualityMetric.CHOICES)
        applied = 0
        skipped = 0
        with transaction.atomic():
            for line, row in enumerate(rows, start=2):
                if not row or all(v in (None, "") for v in row):
                    continue
                type_name = str(row[idx_type] or "").strip()
                subtype = str(row[idx_subtype] or "").strip()
                metric_raw = str(row[idx_metric] or "").strip().lower()
                metric = metric_raw if metric_raw in codes else labels.get(metric_raw)
                fruit_type = FruitType.objects.filter(type__iexact=type_name, subtype__iexact=subtype).first()
                if fruit_type is None or metric is None:
                    self.stdout.write(self.style.WARNING(
                        f"Row {line}: unknown fruit type '{type_name} / {subtype}' or metric '{metric_raw}', skipped"
                    ))
                    skipped += 1
                    continue
                enabled = True
                if idx_enabled is not None and row[idx_enabled] not in (None, ""):
                    enabled = str(row[idx_enabled]).strip().lower() in TRUE_VALUES
                try:
                    set_threshold(fruit_type, metric, row[idx_value], enabled=enabled, actor=user)
                except ValidationError as exc:
                    raise CommandError(f"Row {line}: {' '.join(exc.messages)}") from exc
                applied += 1

        self.stdout.write(self.style.SUCCESS(f"Applied {applied} threshold(s); skipped {skipped} row(s)"))
