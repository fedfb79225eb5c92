from functools import partial

from django.contrib import admin
from django.db import transaction

from .models import (
    DailyPrice,
    DiscountBreakdownLine,
    FruitType,
    LaboratorySample,
    QualityEvaluation,
    QualityThreshold,
    QualityThresholdChange,
    Reception,
    ReceptionDetail,
    ReconciliationWarning,
)
from .tasks import enqueue_reconciliation


@admin.register(FruitType)
class FruitTypeAdmin(admin.ModelAdmin):
    list_display = ("type", "subtype", "is_active")
    list_filter = ("type", "is_active")


@admin.register(QualityThreshold)
class QualityThresholdAdmin(admin.ModelAdmin):
    list_display = ("fruit_type", "metric", "threshold_percent", "enabled", "updated_at")
    list_filter = ("fruit_type", "metric", "enabled")

    def save_model(self, request, obj, form, change):
        obj.updated_by = request.user
        obj._changed_by = request.user
        super().save_model(request, obj, form, change)


@admin.register(DailyPrice)
class DailyPriceAdmin(admin.ModelAdmin):
    list_display = ("fruit_type", "price_date", "price_per_kg", "active", "created_by")
    list_filter = ("fruit_type", "active")
    date_hierarchy = "price_date"

    def save_model(self, request, obj, form, change):
        if not change:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)


@admin.register(QualityThresholdChange)
class QualityThresholdChangeAdmin(admin.ModelAdmin):
    list_display = (
        "threshold",
        "previous_percent",
        "new_percent",
        "previous_enabled",
        "new_enabled",
        "changed_at",
        "changed_by",
    )
    list_filter = ("threshold__fruit_type",)


class ReceptionDetailInline(admin.TabularInline):
    model = ReceptionDetail
    extra = 0


class DiscountBreakdownLineInline(admin.TabularInline):
    model = DiscountBreakdownLine
    extra = 0
    can_delete = False
    readonly_fields = (
        "metric",
        "label",
        "source",
        "threshold_value",
        "measured_value",
        "percent_applied",
        "weight_deducted",
    )

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Reception)
class ReceptionAdmin(admin.ModelAdmin):
    list_display = (
        "reception_number",
        "reception_date",
        "fruit_type",
        "original_weight",
        "discount_weight",
        "final_weight",
        "dried_weight",
        "reconciled_at",
    )
    list_filter = ("fruit_type", "status", "reception_date")
    search_fields = ("reception_number",)
    readonly_fields = (
        "quality_discount_weight",
        "sample_loss_weight",
        "discount_weight",
        "final_weight",
        "lab_sample_wet_weight",
        "lab_sample_dried_weight",
        "dried_weight",
        "reconciled_at",
    )
    inlines = [ReceptionDetailInline, DiscountBreakdownLineInline]

    def get_readonly_fields(self, request, obj=None):
        fields = super().get_readonly_fields(request, obj)
        if obj is not None:
            # Intake weight is fixed once the reception exists.
            fields = ("original_weight",) + tuple(fields)
        return fields

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        if change:
            transaction.on_commit(partial(enqueue_reconciliation, obj.pk))


@admin.register(QualityEvaluation)
class QualityEvaluationAdmin(admin.ModelAdmin):
    list_display = ("reception", "humidity", "mold", "violet", "trash", "locked")
    list_filter = ("locked",)


@admin.register(LaboratorySample)
class LaboratorySampleAdmin(admin.ModelAdmin):
    list_display = ("id", "reception", "status", "sample_weight", "dried_sample_weight", "completed_at")
    list_filter = ("status",)


@admin.register(ReconciliationWarning)
class ReconciliationWarningAdmin(admin.ModelAdmin):
    list_display = ("reception", "code", "resolved", "created_at")
    list_filter = ("code", "resolved")
    search_fields = ("reception__reception_number", "message")
