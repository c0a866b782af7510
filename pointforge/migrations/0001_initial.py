# Initial schema for users, promotions, events and the transaction log

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "utorid",
                    models.CharField(
                        max_length=8,
                        unique=True,
                        validators=[
                            django.core.validators.RegexValidator(
                                "^[A-Za-z0-9]{7,8}$",
                                "UTORid must be 7-8 alphanumeric characters.",
                            )
                        ],
                        verbose_name="utorid",
                    ),
                ),
                ("name", models.CharField(blank=True, max_length=100, verbose_name="name")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email")),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("regular", "Regular"),
                            ("cashier", "Cashier"),
                            ("manager", "Manager"),
                            ("superuser", "Superuser"),
                        ],
                        default="regular",
                        max_length=20,
                        verbose_name="role",
                    ),
                ),
                (
                    "points",
                    models.IntegerField(
                        default=0,
                        help_text="Current balance. Mutated only by the ledger.",
                        verbose_name="points",
                    ),
                ),
                ("verified", models.BooleanField(default=False, verbose_name="verified")),
                (
                    "suspicious",
                    models.BooleanField(
                        default=False,
                        help_text="Point effects of this user's transactions are deferred",
                        verbose_name="suspicious",
                    ),
                ),
                ("activated", models.BooleanField(db_index=True, default=True, verbose_name="activated")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "ordering": ["utorid"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(points__gte=0),
                        name="pointforge_user_points_non_negative",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Promotion",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                ("description", models.TextField(blank=True, verbose_name="description")),
                (
                    "kind",
                    models.CharField(
                        choices=[("automatic", "Automatic"), ("onetime", "One-time")],
                        default="automatic",
                        max_length=20,
                        verbose_name="kind",
                    ),
                ),
                ("start_time", models.DateTimeField(verbose_name="starts at")),
                ("end_time", models.DateTimeField(verbose_name="ends at")),
                (
                    "min_spending",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        max_digits=10,
                        null=True,
                        verbose_name="minimum spending",
                    ),
                ),
                ("points", models.IntegerField(default=0, verbose_name="flat bonus points")),
                (
                    "rate",
                    models.DecimalField(
                        blank=True,
                        decimal_places=4,
                        help_text="Fraction of spend, e.g. 0.05 for 5%",
                        max_digits=6,
                        null=True,
                        verbose_name="rate",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
            ],
            options={
                "verbose_name": "promotion",
                "verbose_name_plural": "promotions",
                "ordering": ["start_time"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(end_time__gt=models.F("start_time")),
                        name="pointforge_promotion_window_ordered",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(points__gte=0),
                        name="pointforge_promotion_points_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Event",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                ("description", models.TextField(blank=True, verbose_name="description")),
                ("location", models.CharField(blank=True, max_length=200, verbose_name="location")),
                ("start_time", models.DateTimeField(verbose_name="starts at")),
                ("end_time", models.DateTimeField(verbose_name="ends at")),
                (
                    "capacity",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Maximum guests. Empty means unlimited.",
                        null=True,
                        verbose_name="capacity",
                    ),
                ),
                ("points_remain", models.IntegerField(default=0, verbose_name="points remaining")),
                ("points_awarded", models.IntegerField(default=0, verbose_name="points awarded")),
                ("published", models.BooleanField(default=False, verbose_name="published")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                (
                    "guests",
                    models.ManyToManyField(
                        blank=True,
                        related_name="attended_events",
                        to="pointforge.user",
                        verbose_name="guests",
                    ),
                ),
                (
                    "organizers",
                    models.ManyToManyField(
                        blank=True,
                        related_name="organized_events",
                        to="pointforge.user",
                        verbose_name="organizers",
                    ),
                ),
            ],
            options={
                "verbose_name": "event",
                "verbose_name_plural": "events",
                "ordering": ["start_time"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(points_remain__gte=0),
                        name="pointforge_event_points_remain_non_negative",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("purchase", "Purchase"),
                            ("redemption", "Redemption"),
                            ("transfer", "Transfer"),
                            ("event", "Event"),
                            ("adjustment", "Adjustment"),
                        ],
                        db_index=True,
                        max_length=20,
                        verbose_name="type",
                    ),
                ),
                ("amount", models.IntegerField(verbose_name="amount")),
                (
                    "spent",
                    models.DecimalField(
                        blank=True,
                        decimal_places=4,
                        max_digits=14,
                        null=True,
                        verbose_name="spent",
                    ),
                ),
                ("processed", models.BooleanField(blank=True, null=True, verbose_name="processed")),
                ("processed_at", models.DateTimeField(blank=True, null=True, verbose_name="processed at")),
                ("suspicious", models.BooleanField(db_index=True, default=False, verbose_name="suspicious")),
                (
                    "applied",
                    models.BooleanField(
                        default=False,
                        help_text="Amount has been applied to the owner's balance",
                        verbose_name="applied",
                    ),
                ),
                ("remark", models.CharField(blank=True, max_length=500, verbose_name="remark")),
                ("created_by", models.CharField(max_length=8, verbose_name="created by")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="created at")),
                (
                    "event",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="pointforge.event",
                        verbose_name="event",
                    ),
                ),
                (
                    "issuer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="issued_transactions",
                        to="pointforge.user",
                        verbose_name="issuer",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        help_text="User whose balance the amount applies to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="pointforge.user",
                        verbose_name="owner",
                    ),
                ),
                (
                    "processed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="processed_redemptions",
                        to="pointforge.user",
                        verbose_name="processed by",
                    ),
                ),
                (
                    "promotions",
                    models.ManyToManyField(
                        blank=True,
                        related_name="transactions",
                        to="pointforge.promotion",
                        verbose_name="promotions applied",
                    ),
                ),
                (
                    "receiver",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="received_transactions",
                        to="pointforge.user",
                        verbose_name="receiver",
                    ),
                ),
                (
                    "related",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="pointforge.transaction",
                        verbose_name="related transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "transaction",
                "verbose_name_plural": "transactions",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["owner", "-created_at"], name="pointforge_tx_owner_created"),
                    models.Index(fields=["type", "-created_at"], name="pointforge_tx_type_created"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromotionWallet",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("added_at", models.DateTimeField(auto_now_add=True, verbose_name="added at")),
                (
                    "promotion",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="wallet_entries",
                        to="pointforge.promotion",
                        verbose_name="promotion",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="wallet",
                        to="pointforge.user",
                        verbose_name="user",
                    ),
                ),
            ],
            options={
                "verbose_name": "wallet entry",
                "verbose_name_plural": "wallet entries",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "promotion"),
                        name="pointforge_wallet_unique_user_promotion",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PromotionUsage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("consumed_at", models.DateTimeField(auto_now_add=True, verbose_name="consumed at")),
                (
                    "promotion",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="usages",
                        to="pointforge.promotion",
                        verbose_name="promotion",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="promotion_usages",
                        to="pointforge.transaction",
                        verbose_name="transaction",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="promotion_usages",
                        to="pointforge.user",
                        verbose_name="user",
                    ),
                ),
            ],
            options={
                "verbose_name": "promotion usage",
                "verbose_name_plural": "promotion usages",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("promotion", "user"),
                        name="pointforge_usage_unique_promotion_user",
                    )
                ],
            },
        ),
    ]
