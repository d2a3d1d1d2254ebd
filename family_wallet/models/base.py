from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model providing common timestamp fields.

    Every ledger-side model (wallets, transactions, gifts, payouts) inherits
    from this so audit queries can always order by creation time.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]
