import logging

from celery import shared_task
from django.conf import settings

from .models import Reception
from .services.integrity import find_weight_anomalies, record_anomaly_warnings
from .services.reconciliation import reconcile_reception

logger = logging.getLogger(__name__)


@shared_task
def reconcile_reception_task(reception_id):
    try:
        reconcile_reception(reception_id)
    except Reception.DoesNotExist:
        logger.info("Reception %s no longer exists; nothing to reconcile", reception_id)


@shared_task
def audit_reception_weights_task():
    report = find_weight_anomalies()
    alerts = report["alerts"]
    if alerts:
        logger.warning("Weight audit found %d anomalies", len(alerts))
    created, resolved = record_anomaly_warnings(alerts)
    return {"alerts": len(alerts), "warnings_created": created, "warnings_resolved": resolved}


def enqueue_reconciliation(reception_id):
    """Queue (or run inline) a reconciliation for one reception."""
    if getattr(settings, "RECEPTION_RECONCILE_ASYNC", True):
        reconcile_reception_task.delay(reception_id)
    else:
        reconcile_reception_task(reception_id)
