from rest_framework import serializers

from family_wallet.models import Transaction


class TransactionSerializer(serializers.ModelSerializer):
    """Read-only serializer for ledger entries."""

    child_id = serializers.UUIDField(source="wallet.child_id", read_only=True)

    class Meta:
        model = Transaction
        fields = (
            "id",
            "wallet",
            "child_id",
            "family_id",
            "type",
            "amount_pence",
            "source",
            "meta_json",
            "gift",
            "payout",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
