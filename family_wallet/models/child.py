import uuid

from django.db import models

from family_wallet.models.base import BaseModel


class Child(BaseModel):
    """
    Minimal view of a child profile.

    Child records are owned by the family/chores side of the system; the
    ledger only needs them to check that a child belongs to a family before
    touching money.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    family_id = models.UUIDField(db_index=True)
    nickname = models.CharField(max_length=64, blank=True, default="")

    def __str__(self):
        return f"Child {self.nickname or self.id} (family={self.family_id})"

    @classmethod
    def belongs_to_family(cls, child_id, family_id) -> bool:
        return cls.objects.filter(id=child_id, family_id=family_id).exists()
