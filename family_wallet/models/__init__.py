from family_wallet.models.child import Child
from family_wallet.models.wallet import Wallet
from family_wallet.models.payout import Payout
from family_wallet.models.gift import Gift
from family_wallet.models.transaction import Transaction

__all__ = [
    "Child",
    "Wallet",
    "Payout",
    "Gift",
    "Transaction",
]
