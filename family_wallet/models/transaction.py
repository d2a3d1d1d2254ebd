from django.db import models

from family_wallet.models.base import BaseModel
from family_wallet.models.wallet import Wallet


class Transaction(BaseModel):
    """
    Immutable ledger entry for every change to a wallet balance.

    Gift credits are the one exception to immutability: they are written
    when the gift is received with ``meta_json["status"] == "pending"`` and
    annotated ``paid_out`` (or ``cancelled``) later. A pending or cancelled
    gift credit has not moved money into the wallet and is ignored when the
    balance is rebuilt from the ledger.
    """

    class Type(models.TextChoices):
        CREDIT = "credit", "Credit"
        DEBIT = "debit", "Debit"

    class Source(models.TextChoices):
        PARENT = "parent", "Parent"
        RELATIVE = "relative", "Relative"
        SYSTEM = "system", "System"

    UNSETTLED_GIFT_STATUSES = ("pending", "cancelled")

    wallet = models.ForeignKey(
        Wallet,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    family_id = models.UUIDField()
    type = models.CharField(max_length=6, choices=Type.choices)
    amount_pence = models.BigIntegerField()
    source = models.CharField(max_length=8, choices=Source.choices)
    meta_json = models.JSONField(default=dict, blank=True)
    gift = models.ForeignKey(
        "family_wallet.Gift",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        help_text="Gift this entry moves money for, if any.",
    )
    payout = models.ForeignKey(
        "family_wallet.Payout",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )
    idempotency_key = models.UUIDField(
        unique=True,
        null=True,
        blank=True,
        editable=False,
        help_text="Client-generated UUID for idempotency.",
    )

    class Meta(BaseModel.Meta):
        indexes = [
            models.Index(fields=["wallet", "type"], name="idx_tx_wallet_type"),
            models.Index(fields=["wallet", "gift"], name="idx_tx_wallet_gift"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_pence__gt=0),
                name="tx_amount_positive",
            ),
        ]

    def __str__(self):
        return (
            f"Transaction {self.id} | {self.type} | "
            f"{self.amount_pence} | {self.source}"
        )

    @property
    def is_gift_credit(self) -> bool:
        return (
            self.gift_id is not None
            and self.type == self.Type.CREDIT
            and self.source == self.Source.RELATIVE
        )

    @property
    def counts_toward_balance(self) -> bool:
        if not self.is_gift_credit:
            return True
        return (self.meta_json or {}).get("status") not in self.UNSETTLED_GIFT_STATUSES

    @property
    def signed_amount(self) -> int:
        if self.type == self.Type.DEBIT:
            return -self.amount_pence
        return self.amount_pence
