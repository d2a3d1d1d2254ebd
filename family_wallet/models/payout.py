import uuid

from django.db import models

from family_wallet.models.base import BaseModel


class Payout(BaseModel):
    """
    A settlement record: money handed to a child by a parent.

    ``amount_pence`` always equals ``chore_amount_pence`` plus the sum of the
    gifts listed in ``gift_ids``. Payouts are written once by the settlement
    engine and never updated or deleted.
    """

    class Method(models.TextChoices):
        CASH = "cash", "Cash"
        BANK_TRANSFER = "bank_transfer", "Bank transfer"
        OTHER = "other", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    family_id = models.UUIDField()
    child_id = models.UUIDField()
    amount_pence = models.BigIntegerField()
    chore_amount_pence = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Portion paid from earned wallet balance; null when zero.",
    )
    paid_by = models.CharField(max_length=64)
    method = models.CharField(
        max_length=16,
        choices=Method.choices,
        default=Method.CASH,
    )
    note = models.TextField(null=True, blank=True)
    gift_ids = models.JSONField(default=list, blank=True)
    idempotency_key = models.UUIDField(
        unique=True,
        null=True,
        blank=True,
        editable=False,
        help_text="Client-generated UUID for idempotency.",
    )

    class Meta(BaseModel.Meta):
        indexes = [
            models.Index(fields=["child_id"], name="idx_payout_child"),
            models.Index(fields=["family_id", "child_id"], name="idx_payout_family_child"),
        ]

    def __str__(self):
        return f"Payout {self.id} | child={self.child_id} | {self.amount_pence}p"

    @property
    def gift_amount_pence(self) -> int:
        return self.amount_pence - (self.chore_amount_pence or 0)
