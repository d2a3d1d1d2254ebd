import uuid

from django.db import models

from family_wallet.models.base import BaseModel


class Gift(BaseModel):
    """
    Money pledged by a relative for a specific child.

    A gift sits in PENDING, outside the child's spendable balance, until a
    payout claims it (PAID_OUT) or a parent cancels it (CANCELLED). Both
    transitions are one-way.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID_OUT = "paid_out", "Paid out"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    family_id = models.UUIDField()
    child_id = models.UUIDField()
    money_pence = models.BigIntegerField()
    given_by = models.CharField(max_length=64, null=True, blank=True)
    note = models.TextField(null=True, blank=True)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
    )
    paid_out_at = models.DateTimeField(null=True, blank=True)
    payout = models.ForeignKey(
        "family_wallet.Payout",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="gifts",
    )

    class Meta(BaseModel.Meta):
        indexes = [
            models.Index(fields=["child_id", "status"], name="idx_gift_child_status"),
            models.Index(fields=["family_id", "status"], name="idx_gift_family_status"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(money_pence__gt=0),
                name="gift_money_positive",
            ),
        ]

    def __str__(self):
        return f"Gift {self.id} | child={self.child_id} | {self.money_pence}p | {self.status}"

    @classmethod
    def pending_for_child(cls, family_id, child_id):
        return cls.objects.filter(
            family_id=family_id,
            child_id=child_id,
            status=cls.Status.PENDING,
        )
