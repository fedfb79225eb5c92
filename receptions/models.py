# models.py

from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Sum
from django.utils import timezone

from .weights import ZERO, q_weight

PERCENT_VALIDATORS = [MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))]


#
# ——————————————————————————————————————
# Core Lookups
# ——————————————————————————————————————
#
class FruitType(models.Model):
    """Commodity category, e.g. CACAO / VERDE, CAFE / PERGAMINO."""

    type = models.CharField(max_length=100)
    subtype = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["type", "subtype"]
        unique_together = ("type", "subtype")

    def __str__(self):
        return f"{self.type} – {self.subtype}"

    @property
    def family(self):
        name = (self.type or "").upper()
        if "CACAO" in name:
            return "CACAO"
        if "CAFE" in name or "CAFÉ" in name or "COFFEE" in name:
            return "CAFE"
        if "MIEL" in name or "HONEY" in name:
            return "MIEL"
        return None


class QualityMetric:
    HUMIDITY = "humidity"
    MOLD = "mold"
    VIOLET = "violet"
    TRASH = "trash"
    SLATE = "slate"
    FLAT_BEAN = "flat_bean"
    WHITE_BEAN = "white_bean"
    BORER = "borer"
    BLACK = "black"
    SOUR = "sour"
    CHOICES = [
        (HUMIDITY, "Humidity"),
        (MOLD, "Mold"),
        (VIOLET, "Violet"),
        (TRASH, "Trash"),
        (SLATE, "Slate"),
        (FLAT_BEAN, "Flat bean"),
        (WHITE_BEAN, "White bean"),
        (BORER, "Borer"),
        (BLACK, "Black"),
        (SOUR, "Sour"),
    ]

    @classmethod
    def label(cls, metric):
        return dict(cls.CHOICES).get(metric, str(metric).replace("_", " ").capitalize())


class QualityThreshold(models.Model):
    """Percentage above which a metric starts discounting weight."""

    fruit_type = models.ForeignKey(
        FruitType,
        on_delete=models.CASCADE,
        related_name="quality_thresholds",
    )
    metric = models.CharField(max_length=20, choices=QualityMetric.CHOICES)
    threshold_percent = models.DecimalField(
        "Threshold (%)", max_digits=5, decimal_places=2, validators=PERCENT_VALIDATORS
    )
    enabled = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["fruit_type", "metric"]
        unique_together = ("fruit_type", "metric")

    def __str__(self):
        return f"{self.fruit_type} | {self.metric} > {self.threshold_percent}%"


class QualityThresholdChange(models.Model):
    threshold = models.ForeignKey(
        QualityThreshold, on_delete=models.CASCADE, related_name="changes"
    )
    previous_percent = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    new_percent = models.DecimalField(max_digits=5, decimal_places=2)
    previous_enabled = models.BooleanField(null=True, blank=True)
    new_enabled = models.BooleanField()
    changed_at = models.DateTimeField(default=timezone.now, editable=False)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-changed_at", "-id"]


#
# ——————————————————————————————————————
# Pricing
# ——————————————————————————————————————
#
class DailyPrice(models.Model):
    """Price per kg of a fruit type on one day; one active row per day."""

    fruit_type = models.ForeignKey(
        FruitType, on_delete=models.PROTECT, related_name="daily_prices"
    )
    price_date = models.DateField(default=timezone.localdate)
    price_per_kg = models.DecimalField(
        max_digits=12, decimal_places=4, validators=[MinValueValidator(Decimal("0.0001"))]
    )
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-price_date", "-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["fruit_type", "price_date"],
                condition=models.Q(active=True),
                name="one_active_price_per_day",
            ),
        ]

    def __str__(self):
        return f"{self.fruit_type} | {self.price_date}: {self.price_per_kg}/kg"


#
# ——————————————————————————————————————
# Receptions
# ——————————————————————————————————————
#
class Reception(models.Model):
    """Raw-material intake and its reconciled weight aggregate.

    Weight fields are written only by the reconciliation and batch services.
    """

    STATUS_DRAFT = "draft"
    STATUS_RECEIVED = "received"
    STATUS_CHOICES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_RECEIVED, "Received"),
    ]

    reception_number = models.CharField(max_length=50, unique=True)
    fruit_type = models.ForeignKey(
        FruitType,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="receptions",
    )
    reception_date = models.DateField(default=timezone.localdate)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    original_weight = models.DecimalField(max_digits=12, decimal_places=3, default=ZERO)
    quality_discount_weight = models.DecimalField(
        max_digits=12, decimal_places=3, default=ZERO,
        help_text="Threshold-based discount before sample loss",
    )
    sample_loss_weight = models.DecimalField(
        max_digits=12, decimal_places=3, default=ZERO,
        help_text="Wet lab sample weight not credited back as dried sample",
    )
    discount_weight = models.DecimalField(
        max_digits=12, decimal_places=3, default=ZERO,
        help_text="Total deduction (quality discount + sample loss), clamped",
    )
    final_weight = models.DecimalField(max_digits=12, decimal_places=3, default=ZERO)
    lab_sample_wet_weight = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    lab_sample_dried_weight = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    dried_weight = models.DecimalField(
        max_digits=12, decimal_places=3, null=True, blank=True,
        help_text="Cumulative dried weight across completed batches",
    )
    reconciled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-reception_date", "-id"]

    def __str__(self):
        return self.reception_number

    def save(self, *args, **kwargs):
        if self.pk is None and not self.final_weight:
            self.final_weight = q_weight(self.original_weight)
        super().save(*args, **kwargs)

    def line_items_weight(self):
        """Sum of intake weight lines, or None when no lines were recorded."""
        total = self.details.aggregate(total=Sum("weight_kg"))["total"]
        return q_weight(total) if total is not None else None


class ReceptionDetail(models.Model):
    reception = models.ForeignKey(
        Reception, related_name="details", on_delete=models.CASCADE
    )
    line_number = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField(default=0)
    weight_kg = models.DecimalField(
        max_digits=12, decimal_places=3, validators=[MinValueValidator(Decimal("0"))]
    )

    class Meta:
        unique_together = ("reception", "line_number")
        ordering = ["line_number"]

    def save(self, *args, **kwargs):
        if not self.pk and not self.line_number:
            last = (
                ReceptionDetail.objects.filter(reception=self.reception)
                .order_by("-line_number")
                .values_list("line_number", flat=True)
                .first()
            )
            self.line_number = (last or 0) + 1
        super().save(*args, **kwargs)


class QualityEvaluation(models.Model):
    """Field quality check taken at intake; editable until locked."""

    reception = models.OneToOneField(
        Reception, related_name="quality_evaluation", on_delete=models.CASCADE
    )
    humidity = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    mold = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    violet = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    trash = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    locked = models.BooleanField(default=False)
    locked_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    MEASURED_FIELDS = (
        ("humidity", QualityMetric.HUMIDITY),
        ("mold", QualityMetric.MOLD),
        ("violet", QualityMetric.VIOLET),
        ("trash", QualityMetric.TRASH),
    )

    def __str__(self):
        return f"Evaluation {self.reception}"

    def measurements(self):
        return {
            metric: getattr(self, field)
            for field, metric in self.MEASURED_FIELDS
            if getattr(self, field) is not None
        }


class LaboratorySample(models.Model):
    """Wet sample pulled from a reception and dried in the lab.

    Drying → Analysis → Completed; Completed is terminal and the dried weight
    and defect percentages are written exactly once with that transition.
    """

    STATUS_DRYING = "Drying"
    STATUS_ANALYSIS = "Analysis"
    STATUS_COMPLETED = "Completed"
    STATUS_CHOICES = [
        (STATUS_DRYING, "Drying"),
        (STATUS_ANALYSIS, "Analysis"),
        (STATUS_COMPLETED, "Result entered"),
    ]
    STATUS_ORDER = {STATUS_DRYING: 0, STATUS_ANALYSIS: 1, STATUS_COMPLETED: 2}

    reception = models.ForeignKey(
        Reception, related_name="lab_samples", on_delete=models.CASCADE
    )
    sample_weight = models.DecimalField(
        "Wet sample weight (kg)", max_digits=10, decimal_places=3,
        validators=[MinValueValidator(Decimal("0"))],
    )
    dried_sample_weight = models.DecimalField(
        "Dried sample weight (kg)", max_digits=10, decimal_places=3, null=True, blank=True,
        validators=[MinValueValidator(Decimal("0"))],
    )
    estimated_drying_days = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRYING)
    mold_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    violet_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    trash_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=PERCENT_VALIDATORS)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-completed_at", "-id"]

    def __str__(self):
        return f"Sample #{self.pk} ({self.status})"

    @property
    def is_completed(self):
        return self.status == self.STATUS_COMPLETED

    def clean(self):
        if self.dried_sample_weight is not None and self.sample_weight is not None:
            if self.dried_sample_weight > self.sample_weight:
                raise ValidationError("Dried sample weight cannot exceed the wet sample weight.")


class DiscountBreakdownLine(models.Model):
    """Per-metric share of a reception's quality discount.

    Derived rows: the whole set for a reception is replaced on every
    reconciliation.
    """

    SOURCE_EVALUATION = "evaluation"
    SOURCE_LAB = "lab"
    SOURCE_CHOICES = [
        (SOURCE_EVALUATION, "Field evaluation"),
        (SOURCE_LAB, "Laboratory"),
    ]

    reception = models.ForeignKey(
        Reception, related_name="discount_lines", on_delete=models.CASCADE
    )
    metric = models.CharField(max_length=20, choices=QualityMetric.CHOICES)
    label = models.CharField(max_length=100)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES)
    threshold_value = models.DecimalField(max_digits=5, decimal_places=2)
    measured_value = models.DecimalField(max_digits=5, decimal_places=2)
    percent_applied = models.DecimalField(max_digits=5, decimal_places=2)
    weight_deducted = models.DecimalField(max_digits=12, decimal_places=3)
    created_at = models.DateTimeField(default=timezone.now, editable=False)

    class Meta:
        ordering = ["reception", "metric"]
        unique_together = ("reception", "metric")

    def __str__(self):
        return f"{self.reception} | {self.label}: -{self.weight_deducted} kg"


class ReconciliationWarning(models.Model):
    """Operator-visible data-quality finding for a reception."""

    OVER_DEDUCTION = "OVER_DEDUCTION"
    NEGATIVE_SAMPLE_LOSS = "NEGATIVE_SAMPLE_LOSS"
    INCONSISTENT_AGGREGATE = "INCONSISTENT_AGGREGATE"
    CODE_CHOICES = [
        (OVER_DEDUCTION, "Deduction exceeds original weight"),
        (NEGATIVE_SAMPLE_LOSS, "Dried samples outweigh wet samples"),
        (INCONSISTENT_AGGREGATE, "Stored weights are inconsistent"),
    ]

    reception = models.ForeignKey(
        Reception, related_name="warnings", on_delete=models.CASCADE
    )
    code = models.CharField(max_length=30, choices=CODE_CHOICES)
    message = models.TextField()
    raw_deduction = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    original_weight = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    resolved = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, editable=False)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["reception", "code"],
                condition=models.Q(resolved=False),
                name="one_open_warning_per_code",
            ),
        ]

    def __str__(self):
        return f"{self.reception} | {self.code}"
