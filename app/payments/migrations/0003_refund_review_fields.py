"""
Add operator review fields to RefundRequest.

Customer refund requests are queued with awaiting_approval set until an
operator approves (submits) or rejects (cancels) them.
"""

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0002_add_refund_beat_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="refundrequest",
            name="awaiting_approval",
            field=models.BooleanField(
                db_index=True,
                default=False,
                help_text="Customer request queued for an operator to approve or reject",
            ),
        ),
        migrations.AddField(
            model_name="refundrequest",
            name="reviewed_by",
            field=models.CharField(
                blank=True,
                default="",
                help_text="Actor label of the operator who approved or rejected the request",
                max_length=100,
            ),
        ),
        migrations.AddField(
            model_name="refundrequest",
            name="reviewed_at",
            field=models.DateTimeField(
                blank=True,
                help_text="When the request was approved or rejected",
                null=True,
            ),
        ),
    ]
