"""
Celery configuration for the Django application.

Celery carries every deferred step of the refund lifecycle:
- Gateway re-submission after transient failures (countdown = backoff)
- Poll fallback when a refund callback does not arrive in time
- Processing of stored gateway notifications
- Periodic sweeps (stale refunds, crashed submissions, failed notifications)

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps; periodic schedules live in
the database (django-celery-beat).

Usage:
    from payments.tasks import execute_refund_attempt

    execute_refund_attempt.apply_async(args=[str(refund.id)], countdown=60)
"""

import logging
import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

logger = logging.getLogger(__name__)

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()


@app.task(bind=True, ignore_result=True)
def debug_task(self):
    """Log the task request to verify worker connectivity."""
    logger.info(f"Request: {self.request!r}")
