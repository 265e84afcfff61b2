import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.settings')
app = Celery('backend')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

# Per-user monitoring loops: one frequent dispatcher enqueues a cycle for each
# user whose next_check_at has come due (see jobmail.tasks).
app.conf.beat_schedule = {
    'dispatch-email-monitors': {
        'task': 'jobmail.tasks.dispatch_due_monitors',
        'schedule': float(os.environ.get('JOBMAIL_DISPATCH_INTERVAL_SECONDS', '60')),
    },
}
