# models.py

from datetime import timedelta

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from receptions.models import Reception
from receptions.weights import ZERO


class Batch(models.Model):
    """Shared drying or fermentation lot blending several receptions."""

    TYPE_DRYING = "Drying"
    TYPE_FERMENTATION = "Fermentation"
    TYPE_CHOICES = [
        (TYPE_DRYING, "Drying"),
        (TYPE_FERMENTATION, "Fermentation"),
    ]

    STATUS_IN_PROGRESS = "InProgress"
    STATUS_COMPLETED = "Completed"
    STATUS_CHOICES = [
        (STATUS_IN_PROGRESS, "In progress"),
        (STATUS_COMPLETED, "Completed"),
    ]

    batch_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_DRYING)
    start_date = models.DateField(default=timezone.localdate)
    duration_days = models.PositiveIntegerField(default=0)
    expected_completion_date = models.DateField(null=True, blank=True)
    total_wet_weight = models.DecimalField(max_digits=12, decimal_places=3, default=ZERO)
    total_dried_weight = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    total_sacks_70kg = models.PositiveIntegerField(null=True, blank=True)
    remainder_kg = models.DecimalField(
        max_digits=10, decimal_places=3, null=True, blank=True,
        validators=[MinValueValidator(ZERO)],
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_IN_PROGRESS)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    class Meta:
        ordering = ["-start_date", "-id"]
        verbose_name_plural = "batches"

    def __str__(self):
        return f"{self.batch_type} batch #{self.pk} ({self.status})"

    def save(self, *args, **kwargs):
        if self.start_date:
            self.expected_completion_date = self.start_date + timedelta(days=self.duration_days or 0)
        super().save(*args, **kwargs)

    @property
    def is_completed(self):
        return self.status == self.STATUS_COMPLETED


class BatchMembership(models.Model):
    """One reception's wet-weight share of a batch and its dried allocation."""

    batch = models.ForeignKey(Batch, related_name="memberships", on_delete=models.CASCADE)
    reception = models.ForeignKey(
        Reception, related_name="batch_memberships", on_delete=models.PROTECT
    )
    wet_weight_contribution = models.DecimalField(
        max_digits=12, decimal_places=3, validators=[MinValueValidator(ZERO)]
    )
    percentage_of_total = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    proportional_dried_weight = models.DecimalField(
        max_digits=12, decimal_places=3, null=True, blank=True
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["batch", "id"]
        unique_together = ("batch", "reception")

    def __str__(self):
        return f"{self.batch} | {self.reception} ({self.wet_weight_contribution} kg)"
