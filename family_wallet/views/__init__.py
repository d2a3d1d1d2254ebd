from family_wallet.views.wallet import CreditWalletView, DebitWalletView, RetrieveWalletView
from family_wallet.views.transaction import TransactionListView
from family_wallet.views.gift import CancelGiftView, GiftListCreateView
from family_wallet.views.payout import PayoutListCreateView, UnpaidBalanceView

__all__ = [
    "RetrieveWalletView",
    "CreditWalletView",
    "DebitWalletView",
    "TransactionListView",
    "GiftListCreateView",
    "CancelGiftView",
    "PayoutListCreateView",
    "UnpaidBalanceView",
]
