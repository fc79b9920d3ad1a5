import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("courses", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(db_index=True, default="razorpay", max_length=16)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="INR", max_length=8)),
                ("receipt", models.CharField(max_length=40, unique=True)),
                ("gateway_order_id", models.CharField(max_length=64, unique=True)),
                ("gateway_payment_id", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("gateway_signature", models.CharField(blank=True, default="", max_length=256)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("paid", "Paid"), ("failed", "Failed")], db_index=True, default="pending", max_length=8)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("course", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="orders", to="courses.course")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="course_orders", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ("-created_at",),
                "indexes": [models.Index(fields=["user", "course", "status"], name="order_user_course_status")],
            },
        ),
    ]
