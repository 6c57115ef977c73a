"""
Add celery-beat schedules for the reconciliation sweep and webhook upkeep.

- Reconciliation sweep: hourly
- Retry failed webhooks: every 5 minutes
- Reset stuck webhooks: every 15 minutes
- Delete old processed webhooks: daily
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Payment Reconciliation Sweep",
        "task": "payments.workers.reconciliation_worker.run_scheduled_reconciliation",
        "every": 1,
        "period": "hours",
        "description": (
            "Re-drives project updates, resumes stuck refund claims and "
            "applies Stripe outcomes to stale pending payments."
        ),
    },
    {
        "name": "Retry Failed Webhooks",
        "task": "payments.tasks.retry_failed_webhooks",
        "every": 5,
        "period": "minutes",
        "description": "Requeues failed or unqueued Stripe webhook events.",
    },
    {
        "name": "Reset Stuck Webhooks",
        "task": "payments.tasks.cleanup_stuck_webhooks",
        "every": 15,
        "period": "minutes",
        "description": "Marks webhook events stuck in processing as failed.",
    },
    {
        "name": "Delete Old Webhooks",
        "task": "payments.tasks.cleanup_old_webhooks",
        "every": 1,
        "period": "days",
        "description": "Deletes processed webhook events past the retention window.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
