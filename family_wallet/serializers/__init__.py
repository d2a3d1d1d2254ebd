from family_wallet.serializers.wallet import WalletSerializer
from family_wallet.serializers.adjustment import (
    WalletCreditSerializer,
    WalletDebitSerializer,
)
from family_wallet.serializers.transaction import TransactionSerializer
from family_wallet.serializers.gift import CreateGiftSerializer, GiftSerializer
from family_wallet.serializers.payout import PayoutSerializer, SettlePayoutSerializer

__all__ = [
    "WalletSerializer",
    "WalletCreditSerializer",
    "WalletDebitSerializer",
    "TransactionSerializer",
    "GiftSerializer",
    "CreateGiftSerializer",
    "PayoutSerializer",
    "SettlePayoutSerializer",
]
