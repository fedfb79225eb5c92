from rest_framework import serializers

from .models import (
    DailyPrice,
    DiscountBreakdownLine,
    FruitType,
    LaboratorySample,
    QualityEvaluation,
    QualityThreshold,
    Reception,
    ReconciliationWarning,
)
from .services.pricing import reception_amounts


class FruitTypeSerializer(serializers.ModelSerializer):
    class Meta:
        model = FruitType
        fields = ["id", "type", "subtype", "description", "is_active"]


class QualityThresholdSerializer(serializers.ModelSerializer):
    metric_label = serializers.CharField(source="get_metric_display", read_only=True)

    class Meta:
        model = QualityThreshold
        fields = [
            "id",
            "fruit_type",
            "metric",
            "metric_label",
            "threshold_percent",
            "enabled",
            "updated_at",
        ]


class DiscountBreakdownLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = DiscountBreakdownLine
        fields = [
            "metric",
            "label",
            "source",
            "threshold_value",
            "measured_value",
            "percent_applied",
            "weight_deducted",
        ]


class DailyPriceSerializer(serializers.ModelSerializer):
    class Meta:
        model = DailyPrice
        fields = ["id", "fruit_type", "price_date", "price_per_kg", "active", "created_at"]
        read_only_fields = ["active", "created_at"]


class PriceActiveSerializer(serializers.Serializer):
    active = serializers.BooleanField()


class ReconciliationWarningSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReconciliationWarning
        fields = ["id", "code", "message", "raw_deduction", "original_weight", "created_at"]


class ReceptionSerializer(serializers.ModelSerializer):
    fruit_type = FruitTypeSerializer(read_only=True)
    breakdown = DiscountBreakdownLineSerializer(source="discount_lines", many=True, read_only=True)
    warnings = serializers.SerializerMethodField()
    amounts = serializers.SerializerMethodField()

    class Meta:
        model = Reception
        fields = [
            "id",
            "reception_number",
            "reception_date",
            "status",
            "fruit_type",
            "original_weight",
            "quality_discount_weight",
            "sample_loss_weight",
            "discount_weight",
            "final_weight",
            "lab_sample_wet_weight",
            "lab_sample_dried_weight",
            "dried_weight",
            "reconciled_at",
            "breakdown",
            "warnings",
            "amounts",
        ]

    def get_warnings(self, obj):
        open_warnings = [w for w in obj.warnings.all() if not w.resolved]
        return ReconciliationWarningSerializer(open_warnings, many=True).data

    def get_amounts(self, obj):
        amounts = reception_amounts(obj)
        if amounts is None:
            return None
        return {
            "price_per_kg": str(amounts.price_per_kg),
            "gross_amount": str(amounts.gross_amount),
            "net_amount": str(amounts.net_amount),
            "discount_amount": str(amounts.discount_amount),
        }


class QualityEvaluationSerializer(serializers.ModelSerializer):
    class Meta:
        model = QualityEvaluation
        fields = [
            "id",
            "reception",
            "humidity",
            "mold",
            "violet",
            "trash",
            "locked",
            "locked_at",
            "updated_at",
        ]
        read_only_fields = ["locked", "locked_at", "updated_at"]


class LaboratorySampleSerializer(serializers.ModelSerializer):
    class Meta:
        model = LaboratorySample
        fields = [
            "id",
            "reception",
            "sample_weight",
            "dried_sample_weight",
            "estimated_drying_days",
            "status",
            "mold_pct",
            "violet_pct",
            "trash_pct",
            "created_at",
            "completed_at",
        ]
        read_only_fields = [
            "dried_sample_weight",
            "status",
            "mold_pct",
            "violet_pct",
            "trash_pct",
            "created_at",
            "completed_at",
        ]


class LabResultSerializer(serializers.Serializer):
    dried_sample_weight = serializers.DecimalField(max_digits=10, decimal_places=3)
    mold_pct = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    violet_pct = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    trash_pct = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
