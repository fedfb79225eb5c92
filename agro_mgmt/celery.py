# agro_mgmt/celery.py
import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'agro_mgmt.settings')

app = Celery('agro_mgmt')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

app.conf.beat_schedule = {
    'audit-reception-weights-daily': {
        'task': 'receptions.tasks.audit_reception_weights_task',
        'schedule': crontab(hour=2, minute=30),
    },
    'audit-batch-weights-daily': {
        'task': 'processing.tasks.audit_batch_weights_task',
        'schedule': crontab(hour=2, minute=45),
    },
}
