import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="MobileDataCache",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("cache_key", models.CharField(max_length=255)),
                (
                    "cache_type",
                    models.CharField(
                        choices=[
                            ("CUSTOMER", "Customer"),
                            ("PRODUCT", "Product"),
                            ("PRICELIST", "Pricelist"),
                            ("STOCK", "Stock"),
                            ("ORDER", "Order"),
                            ("PAYMENT", "Payment"),
                            ("OTHER", "Other"),
                        ],
                        default="OTHER",
                        max_length=20,
                    ),
                ),
                ("data_snapshot", models.JSONField(blank=True, default=dict)),
                ("last_synced_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("expires_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="mobile_cache_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["cache_key"], name="mobile_cache_key_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "cache_key"), name="mobile_cache_user_key"
                    ),
                ],
            },
        ),
    ]
