from rest_framework import serializers

from family_wallet.models import Transaction


class WalletDebitSerializer(serializers.Serializer):
    """Validates wallet debit requests."""

    amount_pence = serializers.IntegerField(min_value=1)
    note = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=500
    )


class WalletCreditSerializer(WalletDebitSerializer):
    """Validates wallet credit requests."""

    source = serializers.ChoiceField(
        choices=[Transaction.Source.PARENT, Transaction.Source.RELATIVE],
        default=Transaction.Source.PARENT,
    )
