"""
Add celery-beat schedules for refund and notification sweeps.

Periodic tasks:
    - poll_stale_refunds: every 5 minutes, query PROCESSING refunds whose
      callback is overdue
    - resume_pending_refunds: every 5 minutes, submit PENDING refunds a
      crash left unsent
    - retry_failed_notifications: every 10 minutes
    - cleanup_stuck_notifications: every 30 minutes
"""

from django.db import migrations

PERIODIC_TASKS = [
    (
        "Poll Stale Refunds",
        "payments.tasks.poll_stale_refunds",
        5,
        "Queries the gateway for PROCESSING refunds whose callback is overdue.",
    ),
    (
        "Resume Pending Refunds",
        "payments.tasks.resume_pending_refunds",
        5,
        "Submits PENDING refunds that were persisted but never sent to the gateway.",
    ),
    (
        "Retry Failed Gateway Notifications",
        "payments.tasks.retry_failed_notifications",
        10,
        "Re-queues FAILED gateway notifications with retries left.",
    ),
    (
        "Cleanup Stuck Gateway Notifications",
        "payments.tasks.cleanup_stuck_notifications",
        30,
        "Resets notifications stuck in PROCESSING after a worker crash.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for refund sweeps."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, minutes, description in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=minutes,
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[name for name, *_ in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
