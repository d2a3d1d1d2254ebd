from family_wallet.services.wallet import WalletService, WalletStore
from family_wallet.services.ledger import TransactionLedger
from family_wallet.services.gifts import GiftInbox
from family_wallet.services.settlement import SettlementEngine


def build_wallet_service() -> WalletService:
    return WalletService(store=WalletStore(), ledger=TransactionLedger())


def build_gift_inbox() -> GiftInbox:
    return GiftInbox(store=WalletStore(), ledger=TransactionLedger())


def build_settlement_engine(notifier=None) -> SettlementEngine:
    """Wire a settlement engine; notifications go to Celery unless overridden."""
    if notifier is None:
        from family_wallet.tasks import dispatch_payout_notification

        notifier = dispatch_payout_notification

    store = WalletStore()
    ledger = TransactionLedger()
    return SettlementEngine(
        wallets=store,
        ledger=ledger,
        gifts=GiftInbox(store=store, ledger=ledger),
        notifier=notifier,
    )


__all__ = [
    "WalletStore",
    "WalletService",
    "TransactionLedger",
    "GiftInbox",
    "SettlementEngine",
    "build_wallet_service",
    "build_gift_inbox",
    "build_settlement_engine",
]
