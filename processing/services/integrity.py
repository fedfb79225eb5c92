"""Consistency rules over stored batch allocations."""

from collections import defaultdict

from processing.models import Batch, BatchMembership
from receptions.models import Reception
from receptions.weights import ZERO, is_finite_non_negative, q_weight


def _alert(rule, severity, title, entity, **extra):
    alert = {"id": rule, "severity": severity, "title": title, "entity": entity}
    alert.update(extra)
    return alert


def find_batch_anomalies():
    alerts = []
    members = defaultdict(list)
    for m in BatchMembership.objects.order_by("batch_id", "id"):
        members[m.batch_id].append(m)

    for batch in Batch.objects.order_by("pk"):
        entity = f"Batch {batch.pk}"
        rows = members.get(batch.pk, [])
        values = [batch.total_wet_weight, batch.total_dried_weight]
        values += [m.wet_weight_contribution for m in rows]
        values += [m.proportional_dried_weight for m in rows]
        if any(v is not None and not is_finite_non_negative(v) for v in values):
            alerts.append(_alert("ANOM_BATCH_INVALID_WEIGHT", "high", "Invalid stored batch weight", entity,
                                 batch_id=batch.pk))
            continue

        wet = sum((q_weight(m.wet_weight_contribution) for m in rows), ZERO)
        if wet != q_weight(batch.total_wet_weight):
            alerts.append(_alert(
                "ANOM_BATCH_WET_MISMATCH", "high", "Contributions do not sum to batch wet weight", entity,
                batch_id=batch.pk, qty=float(wet - q_weight(batch.total_wet_weight)),
            ))
        if batch.is_completed:
            dried = sum((q_weight(m.proportional_dried_weight) for m in rows), ZERO)
            if dried != q_weight(batch.total_dried_weight):
                alerts.append(_alert(
                    "ANOM_BATCH_DRIED_MISMATCH", "high", "Allocations do not sum to batch dried weight", entity,
                    batch_id=batch.pk, qty=float(dried - q_weight(batch.total_dried_weight)),
                ))

    completed = defaultdict(lambda: ZERO)
    for reception_id, share in BatchMembership.objects.filter(
        batch__status=Batch.STATUS_COMPLETED
    ).values_list("reception_id", "proportional_dried_weight"):
        completed[reception_id] += q_weight(share)
    for reception in Reception.objects.filter(pk__in=list(completed)).order_by("pk"):
        stored = q_weight(reception.dried_weight) if reception.dried_weight is not None else None
        if stored != completed[reception.pk]:
            alerts.append(_alert(
                "ANOM_RECEPTION_DRIED_MISMATCH", "medium", "Dried weight differs from completed batch allocations",
                f"Reception {reception.reception_number}", reception_id=reception.pk,
            ))
    return {"rules_version": "v1", "alerts": alerts}
