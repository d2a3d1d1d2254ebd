from django.db import models

from family_wallet.models.base import BaseModel


class Wallet(BaseModel):
    """
    A child's spendable balance within one family.

    Balances are integer pence. Pending gift money is NOT part of the
    balance; it only enters the wallet while a payout is being settled.
    Concurrency safety is handled at the service layer via
    select_for_update() and F() expressions, and the check constraint
    below stops any write from persisting a negative balance.
    """

    child_id = models.UUIDField()
    family_id = models.UUIDField(db_index=True)
    balance_pence = models.BigIntegerField(default=0)

    class Meta(BaseModel.Meta):
        constraints = [
            models.UniqueConstraint(
                fields=["child_id", "family_id"], name="uniq_wallet_child_family"
            ),
            models.CheckConstraint(
                condition=models.Q(balance_pence__gte=0),
                name="wallet_balance_non_negative",
            ),
        ]

    def __str__(self):
        return f"Wallet {self.id} child={self.child_id} (balance={self.balance_pence})"
