"""Pick the quality measurement a reconciliation should trust.

A completed laboratory result always beats the field evaluation; among
several completed samples the most recently completed one wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, Optional

from receptions.models import DiscountBreakdownLine, LaboratorySample, QualityMetric
from receptions.weights import HUNDRED, q_percent

FIELD_EVALUATION = DiscountBreakdownLine.SOURCE_EVALUATION
LAB_SAMPLE = DiscountBreakdownLine.SOURCE_LAB

SOURCE_LABELS = {
    FIELD_EVALUATION: "Evaluation",
    LAB_SAMPLE: "Lab",
}


@dataclass(frozen=True)
class QualitySource:
    kind: str
    reference_id: Optional[int]
    measurements: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def label(self):
        return SOURCE_LABELS[self.kind]


def humidity_from_sample(wet_weight, dried_weight) -> Decimal:
    wet = Decimal(wet_weight or 0)
    dry = Decimal(dried_weight or 0)
    if wet > 0 and dry > 0:
        return q_percent((wet - dry) / wet * HUNDRED)
    return q_percent(0)


def _completion_key(sample):
    # Samples completed before completed_at was tracked sort by id.
    completed = sample.completed_at
    return (completed is not None, completed.timestamp() if completed else 0, sample.pk or 0)


def latest_completed_sample(samples: Iterable[LaboratorySample]) -> Optional[LaboratorySample]:
    completed = [s for s in samples if s.status == LaboratorySample.STATUS_COMPLETED]
    if not completed:
        return None
    return max(completed, key=_completion_key)


def select_quality_source(evaluation, samples: Iterable[LaboratorySample]) -> Optional[QualitySource]:
    sample = latest_completed_sample(samples)
    if sample is not None:
        return QualitySource(
            kind=LAB_SAMPLE,
            reference_id=sample.pk,
            measurements={
                QualityMetric.HUMIDITY: humidity_from_sample(sample.sample_weight, sample.dried_sample_weight),
                QualityMetric.MOLD: q_percent(sample.mold_pct),
                QualityMetric.VIOLET: q_percent(sample.violet_pct),
                QualityMetric.TRASH: q_percent(sample.trash_pct),
            },
        )
    if evaluation is not None:
        return QualitySource(
            kind=FIELD_EVALUATION,
            reference_id=evaluation.pk,
            measurements={k: q_percent(v) for k, v in evaluation.measurements().items()},
        )
    return None
