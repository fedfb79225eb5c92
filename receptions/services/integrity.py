"""Deterministic consistency rules over stored reception weights."""

from django.db.models import Sum
from django.utils import timezone

from receptions.models import Reception, ReconciliationWarning
from receptions.weights import ZERO, is_finite_non_negative, q_weight

WEIGHT_FIELDS = (
    "original_weight",
    "discount_weight",
    "final_weight",
    "lab_sample_wet_weight",
    "lab_sample_dried_weight",
    "dried_weight",
)


def _alert(rule, severity, title, reception, **extra):
    alert = {
        "id": rule,
        "severity": severity,
        "title": title,
        "entity": f"Reception {reception.reception_number}",
        "reception_id": reception.pk,
    }
    alert.update(extra)
    return alert


def check_reception(reception, line_totals=None):
    alerts = []
    bad = [
        name for name in WEIGHT_FIELDS
        if getattr(reception, name) is not None and not is_finite_non_negative(getattr(reception, name))
    ]
    if bad:
        alerts.append(_alert("ANOM_INVALID_WEIGHT", "high", "Invalid stored weight", reception, fields=bad))
        return alerts

    original = q_weight(reception.original_weight)
    discount = q_weight(reception.discount_weight)
    final = q_weight(reception.final_weight)
    if discount > original:
        alerts.append(_alert(
            "ANOM_DISCOUNT_EXCEEDS_ORIGINAL", "high", "Discount exceeds original weight", reception,
            qty=float(discount - original),
        ))
    if final != original - discount:
        alerts.append(_alert(
            "ANOM_FINAL_MISMATCH", "high", "Final weight is not original minus discount", reception,
            qty=float(final - (original - discount)),
        ))
    if line_totals is not None:
        lines = q_weight(line_totals.get(reception.pk) or ZERO)
        quality = q_weight(reception.quality_discount_weight)
        if lines and lines != quality:
            alerts.append(_alert(
                "ANOM_BREAKDOWN_MISMATCH", "medium", "Breakdown lines do not sum to quality discount", reception,
                qty=float(lines - quality),
            ))
    return alerts


def find_weight_anomalies(queryset=None):
    receptions = queryset if queryset is not None else Reception.objects.all()
    line_totals = dict(
        receptions.filter(discount_lines__isnull=False)
        .values("pk")
        .annotate(total=Sum("discount_lines__weight_deducted"))
        .values_list("pk", "total")
    )
    alerts = []
    for reception in receptions.order_by("pk").iterator():
        alerts.extend(check_reception(reception, line_totals))
    return {"rules_version": "v1", "alerts": alerts}


def record_anomaly_warnings(alerts):
    """Sync INCONSISTENT_AGGREGATE warnings with a full audit run.

    Each affected reception gets one open warning; open warnings for
    receptions that passed the audit are resolved. Returns
    ``(created, resolved)``.
    """
    created = 0
    by_reception = {}
    for alert in alerts:
        reception_id = alert.get("reception_id")
        if reception_id is not None:
            by_reception.setdefault(reception_id, []).append(alert["title"])
    for reception_id, titles in by_reception.items():
        message = "; ".join(titles)
        _, was_created = ReconciliationWarning.objects.get_or_create(
            reception_id=reception_id,
            code=ReconciliationWarning.INCONSISTENT_AGGREGATE,
            resolved=False,
            defaults={"message": message},
        )
        created += int(was_created)

    clean = ReconciliationWarning.objects.filter(
        code=ReconciliationWarning.INCONSISTENT_AGGREGATE,
        resolved=False,
    ).exclude(reception_id__in=list(by_reception))
    resolved = clean.update(resolved=True, resolved_at=timezone.now())
    return created, resolved
