from rest_framework import serializers

from family_wallet.models import Gift


class GiftSerializer(serializers.ModelSerializer):
    class Meta:
        model = Gift
        fields = (
            "id",
            "family_id",
            "child_id",
            "money_pence",
            "given_by",
            "note",
            "status",
            "paid_out_at",
            "payout",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class CreateGiftSerializer(serializers.Serializer):
    """Validates a relative's money gift."""

    child_id = serializers.UUIDField()
    money_pence = serializers.IntegerField(min_value=1)
    note = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=500
    )
