import logging

from django.core.exceptions import ValidationError
from django.db.models import Prefetch
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .exceptions import (
    BatchStateError,
    EvaluationLockedError,
    LabSampleStateError,
    WeightIntegrityError,
)
from .models import (
    DailyPrice,
    LaboratorySample,
    QualityEvaluation,
    QualityThreshold,
    Reception,
    ReconciliationWarning,
)
from .serializers import (
    DailyPriceSerializer,
    LabResultSerializer,
    LaboratorySampleSerializer,
    PriceActiveSerializer,
    QualityEvaluationSerializer,
    QualityThresholdSerializer,
    ReceptionSerializer,
)
from .services.evaluations import EDITABLE_FIELDS, lock_field_evaluation, record_field_evaluation
from .services.lab_samples import create_lab_sample, record_lab_result, start_analysis
from .services.pricing import set_daily_price, set_price_active
from .services.reconciliation import reconcile_reception

logger = logging.getLogger(__name__)

CONFLICT_ERRORS = (WeightIntegrityError, BatchStateError, EvaluationLockedError, LabSampleStateError)


def error_response(exc):
    """Map service-layer ValidationErrors onto 400/409 responses."""
    code = status.HTTP_409_CONFLICT if isinstance(exc, CONFLICT_ERRORS) else status.HTTP_400_BAD_REQUEST
    return Response({"error": " ".join(exc.messages)}, status=code)


class ReceptionViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Reception.objects.select_related("fruit_type").prefetch_related(
        "discount_lines",
        Prefetch("warnings", queryset=ReconciliationWarning.objects.filter(resolved=False)),
    )
    serializer_class = ReceptionSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        fruit_type = self.request.query_params.get("fruit_type")
        if fruit_type:
            qs = qs.filter(fruit_type_id=fruit_type)
        return qs

    @action(detail=True, methods=["post"], url_path="reconcile")
    def reconcile(self, request, pk=None):
        reception = self.get_object()
        try:
            reconcile_reception(reception.pk)
        except ValidationError as exc:
            return error_response(exc)
        serializer = self.get_serializer(self.get_queryset().get(pk=reception.pk))
        return Response(serializer.data)


class QualityThresholdViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = QualityThreshold.objects.select_related("fruit_type")
    serializer_class = QualityThresholdSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        fruit_type = self.request.query_params.get("fruit_type")
        if fruit_type:
            qs = qs.filter(fruit_type_id=fruit_type)
        return qs


class QualityEvaluationViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = QualityEvaluation.objects.select_related("reception")
    serializer_class = QualityEvaluationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def _values(self, serializer):
        return {k: v for k, v in serializer.validated_data.items() if k in EDITABLE_FIELDS}

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reception = serializer.validated_data["reception"]
        try:
            evaluation = record_field_evaluation(reception.pk, actor=request.user, **self._values(serializer))
        except ValidationError as exc:
            return error_response(exc)
        return Response(self.get_serializer(evaluation).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        evaluation = self.get_object()
        serializer = self.get_serializer(evaluation, data=request.data, partial=kwargs.pop("partial", False))
        serializer.is_valid(raise_exception=True)
        try:
            evaluation = record_field_evaluation(
                evaluation.reception_id, actor=request.user, **self._values(serializer)
            )
        except ValidationError as exc:
            return error_response(exc)
        return Response(self.get_serializer(evaluation).data)

    @action(detail=True, methods=["post"], url_path="lock")
    def lock(self, request, pk=None):
        evaluation = lock_field_evaluation(self.get_object().pk, actor=request.user)
        return Response(self.get_serializer(evaluation).data)


class LaboratorySampleViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = LaboratorySample.objects.select_related("reception")
    serializer_class = LaboratorySampleSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        reception = self.request.query_params.get("reception")
        if reception:
            qs = qs.filter(reception_id=reception)
        return qs

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            sample = create_lab_sample(
                data["reception"].pk,
                data["sample_weight"],
                estimated_drying_days=data.get("estimated_drying_days", 0),
            )
        except ValidationError as exc:
            return error_response(exc)
        return Response(self.get_serializer(sample).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="analysis")
    def analysis(self, request, pk=None):
        try:
            sample = start_analysis(self.get_object().pk)
        except ValidationError as exc:
            return error_response(exc)
        return Response(self.get_serializer(sample).data)

    @action(detail=True, methods=["post"], url_path="result")
    def result(self, request, pk=None):
        sample = self.get_object()
        payload = LabResultSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        try:
            sample = record_lab_result(sample.pk, **payload.validated_data)
        except ValidationError as exc:
            return error_response(exc)
        logger.info("Lab result entered for sample %s by %s", sample.pk, request.user)
        return Response(self.get_serializer(sample).data)


class DailyPriceViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = DailyPrice.objects.select_related("fruit_type")
    serializer_class = DailyPriceSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("fruit_type"):
            qs = qs.filter(fruit_type_id=params["fruit_type"])
        if params.get("date"):
            qs = qs.filter(price_date=params["date"])
        if params.get("active") in ("1", "true"):
            qs = qs.filter(active=True)
        return qs

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            price = set_daily_price(
                data["fruit_type"], data.get("price_date"), data["price_per_kg"], actor=request.user
            )
        except ValidationError as exc:
            return error_response(exc)
        return Response(self.get_serializer(price).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="active")
    def set_active(self, request, pk=None):
        payload = PriceActiveSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        try:
            price = set_price_active(self.get_object().pk, payload.validated_data["active"])
        except ValidationError as exc:
            return error_response(exc)
        return Response(self.get_serializer(price).data)
