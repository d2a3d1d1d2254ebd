from rest_framework import serializers

from family_wallet.models import Wallet


class WalletSerializer(serializers.ModelSerializer):
    class Meta:
        model = Wallet
        fields = (
            "id",
            "child_id",
            "family_id",
            "balance_pence",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
