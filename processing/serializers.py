from rest_framework import serializers

from .models import Batch, BatchMembership


class BatchMembershipSerializer(serializers.ModelSerializer):
    reception_number = serializers.CharField(source="reception.reception_number", read_only=True)

    class Meta:
        model = BatchMembership
        fields = [
            "reception",
            "reception_number",
            "wet_weight_contribution",
            "percentage_of_total",
            "proportional_dried_weight",
        ]


class BatchSerializer(serializers.ModelSerializer):
    memberships = BatchMembershipSerializer(many=True, read_only=True)

    class Meta:
        model = Batch
        fields = [
            "id",
            "batch_type",
            "start_date",
            "duration_days",
            "expected_completion_date",
            "total_wet_weight",
            "total_dried_weight",
            "total_sacks_70kg",
            "remainder_kg",
            "status",
            "completed_at",
            "memberships",
        ]


class BatchCreateSerializer(serializers.Serializer):
    receptions = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    batch_type = serializers.ChoiceField(choices=Batch.TYPE_CHOICES, default=Batch.TYPE_DRYING)
    start_date = serializers.DateField(required=False)
    duration_days = serializers.IntegerField(min_value=0, default=0)


class BatchCompleteSerializer(serializers.Serializer):
    total_dried_weight = serializers.DecimalField(max_digits=12, decimal_places=3, required=False, min_value=0)
    sacks = serializers.IntegerField(required=False, min_value=0)
    remainder = serializers.DecimalField(max_digits=10, decimal_places=3, required=False, min_value=0)

    def validate(self, attrs):
        if "total_dried_weight" not in attrs and "sacks" not in attrs and "remainder" not in attrs:
            raise serializers.ValidationError("Provide total_dried_weight or sacks/remainder.")
        return attrs


class BatchMemberSerializer(serializers.Serializer):
    reception = serializers.IntegerField(min_value=1)
