from django.core.exceptions import ValidationError
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from receptions.models import Reception
from receptions.views import error_response

from .models import Batch
from .serializers import (
    BatchCompleteSerializer,
    BatchCreateSerializer,
    BatchMemberSerializer,
    BatchSerializer,
)
from .services.batches import (
    add_reception_to_batch,
    complete_batch,
    form_batch,
    remove_reception_from_batch,
)


class BatchViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Batch.objects.prefetch_related("memberships__reception")
    serializer_class = BatchSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        status_param = self.request.query_params.get("status")
        if status_param:
            qs = qs.filter(status=status_param)
        return qs

    def _detail(self, batch_id, code=status.HTTP_200_OK):
        return Response(BatchSerializer(self.get_queryset().get(pk=batch_id)).data, status=code)

    def create(self, request, *args, **kwargs):
        payload = BatchCreateSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        try:
            batch = form_batch(
                data["receptions"],
                batch_type=data["batch_type"],
                start_date=data.get("start_date"),
                duration_days=data["duration_days"],
                actor=request.user,
            )
        except ValidationError as exc:
            return error_response(exc)
        return self._detail(batch.pk, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        batch = self.get_object()
        payload = BatchCompleteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        try:
            complete_batch(
                batch.pk,
                data.get("total_dried_weight"),
                actor=request.user,
                sacks=data.get("sacks"),
                remainder=data.get("remainder"),
            )
        except ValidationError as exc:
            return error_response(exc)
        return self._detail(batch.pk)

    @action(detail=True, methods=["post"], url_path="members")
    def add_member(self, request, pk=None):
        batch = self.get_object()
        payload = BatchMemberSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        try:
            add_reception_to_batch(batch.pk, payload.validated_data["reception"])
        except Reception.DoesNotExist:
            return Response({"error": "Reception not found"}, status=status.HTTP_404_NOT_FOUND)
        except ValidationError as exc:
            return error_response(exc)
        return self._detail(batch.pk)

    @action(detail=True, methods=["delete"], url_path=r"members/(?P<reception_id>\d+)")
    def remove_member(self, request, pk=None, reception_id=None):
        batch = self.get_object()
        try:
            remove_reception_from_batch(batch.pk, int(reception_id))
        except ValidationError as exc:
            return error_response(exc)
        return self._detail(batch.pk)
