import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Child",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("family_id", models.UUIDField(db_index=True)),
                ("nickname", models.CharField(blank=True, default="", max_length=64)),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="Wallet",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("child_id", models.UUIDField()),
                ("family_id", models.UUIDField(db_index=True)),
                ("balance_pence", models.BigIntegerField(default=0)),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "constraints": [
                    models.UniqueConstraint(
                        fields=("child_id", "family_id"), name="uniq_wallet_child_family"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_pence__gte", 0)),
                        name="wallet_balance_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("family_id", models.UUIDField()),
                ("child_id", models.UUIDField()),
                ("amount_pence", models.BigIntegerField()),
                (
                    "chore_amount_pence",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Portion paid from earned wallet balance; null when zero.",
                        null=True,
                    ),
                ),
                ("paid_by", models.CharField(max_length=64)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("bank_transfer", "Bank transfer"),
                            ("other", "Other"),
                        ],
                        default="cash",
                        max_length=16,
                    ),
                ),
                ("note", models.TextField(blank=True, null=True)),
                ("gift_ids", models.JSONField(blank=True, default=list)),
                (
                    "idempotency_key",
                    models.UUIDField(
                        blank=True,
                        editable=False,
                        help_text="Client-generated UUID for idempotency.",
                        null=True,
                        unique=True,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(fields=["child_id"], name="idx_payout_child"),
                    models.Index(
                        fields=["family_id", "child_id"], name="idx_payout_family_child"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Gift",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("family_id", models.UUIDField()),
                ("child_id", models.UUIDField()),
                ("money_pence", models.BigIntegerField()),
                ("given_by", models.CharField(blank=True, max_length=64, null=True)),
                ("note", models.TextField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid_out", "Paid out"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("paid_out_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payout",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="gifts",
                        to="family_wallet.payout",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(fields=["child_id", "status"], name="idx_gift_child_status"),
                    models.Index(
                        fields=["family_id", "status"], name="idx_gift_family_status"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("money_pence__gt", 0)),
                        name="gift_money_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("family_id", models.UUIDField()),
                (
                    "type",
                    models.CharField(
                        choices=[("credit", "Credit"), ("debit", "Debit")], max_length=6
                    ),
                ),
                ("amount_pence", models.BigIntegerField()),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("parent", "Parent"),
                            ("relative", "Relative"),
                            ("system", "System"),
                        ],
                        max_length=8,
                    ),
                ),
                ("meta_json", models.JSONField(blank=True, default=dict)),
                (
                    "idempotency_key",
                    models.UUIDField(
                        blank=True,
                        editable=False,
                        help_text="Client-generated UUID for idempotency.",
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "gift",
                    models.ForeignKey(
                        blank=True,
                        help_text="Gift this entry moves money for, if any.",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="family_wallet.gift",
                    ),
                ),
                (
                    "payout",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="family_wallet.payout",
                    ),
                ),
                (
                    "wallet",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="family_wallet.wallet",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(fields=["wallet", "type"], name="idx_tx_wallet_type"),
                    models.Index(fields=["wallet", "gift"], name="idx_tx_wallet_gift"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_pence__gt", 0)),
                        name="tx_amount_positive",
                    ),
                ],
            },
        ),
    ]
