from django.urls import path

from family_wallet.views import (
    CancelGiftView,
    CreditWalletView,
    DebitWalletView,
    GiftListCreateView,
    PayoutListCreateView,
    RetrieveWalletView,
    TransactionListView,
    UnpaidBalanceView,
)

urlpatterns = [
    path(
        "children/<uuid:child_id>/wallet/",
        RetrieveWalletView.as_view(),
        name="wallet-detail",
    ),
    path(
        "children/<uuid:child_id>/wallet/credit",
        CreditWalletView.as_view(),
        name="wallet-credit",
    ),
    path(
        "children/<uuid:child_id>/wallet/debit",
        DebitWalletView.as_view(),
        name="wallet-debit",
    ),
    path(
        "children/<uuid:child_id>/wallet/transactions/",
        TransactionListView.as_view(),
        name="wallet-transactions",
    ),
    path("gifts/", GiftListCreateView.as_view(), name="gift-list"),
    path("gifts/<uuid:gift_id>/cancel", CancelGiftView.as_view(), name="gift-cancel"),
    path("payouts/", PayoutListCreateView.as_view(), name="payout-list"),
    path(
        "payouts/unpaid/<uuid:child_id>/",
        UnpaidBalanceView.as_view(),
        name="payout-unpaid",
    ),
]
