from rest_framework import serializers

from family_wallet.models import Payout


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = (
            "id",
            "family_id",
            "child_id",
            "amount_pence",
            "chore_amount_pence",
            "paid_by",
            "method",
            "note",
            "gift_ids",
            "created_at",
        )
        read_only_fields = fields


class SettlePayoutSerializer(serializers.Serializer):
    """
    Validates payout requests.

    Only the shape is checked here; the money rules (amount reconciliation,
    balance cover, gift ownership) are enforced by the settlement engine
    under the wallet lock.
    """

    child_id = serializers.UUIDField()
    amount_pence = serializers.IntegerField(min_value=1)
    chore_amount_pence = serializers.IntegerField(min_value=0, default=0)
    gift_ids = serializers.ListField(
        child=serializers.UUIDField(), required=False, default=list
    )
    method = serializers.ChoiceField(
        choices=Payout.Method.choices, default=Payout.Method.CASH
    )
    note = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=500
    )
