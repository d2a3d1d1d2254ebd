import logging

from family_wallet.exceptions import ValidationError
from family_wallet.models import Transaction
from family_wallet.services.wallet import require_positive_pence

logger = logging.getLogger(__name__)


class TransactionLedger:
    """
    Append-only log of wallet balance changes.

    The only in-place write this class allows is the settlement status
    annotation on gift credits (``annotate_settled``).
    """

    def append(
        self,
        wallet,
        family_id,
        type: str,
        amount_pence: int,
        source: str,
        meta: dict = None,
        gift=None,
        payout=None,
        idempotency_key=None,
    ) -> Transaction:
        require_positive_pence(amount_pence)
        if type not in Transaction.Type.values:
            raise ValidationError("Unknown transaction type.", type=type)
        if source not in Transaction.Source.values:
            raise ValidationError("Unknown transaction source.", source=source)

        return Transaction.objects.create(
            wallet=wallet,
            family_id=family_id,
            type=type,
            amount_pence=amount_pence,
            source=source,
            meta_json=meta or {},
            gift=gift,
            payout=payout,
            idempotency_key=idempotency_key,
        )

    def find_gift_credit_for(self, wallet_id, gift_id):
        """Return the relative credit written when ``gift_id`` was received, or None."""
        return (
            Transaction.objects.filter(
                wallet_id=wallet_id,
                gift_id=gift_id,
                type=Transaction.Type.CREDIT,
                source=Transaction.Source.RELATIVE,
            )
            .order_by("created_at")
            .first()
        )

    def annotate_settled(self, transaction_id, payout_id=None, status: str = "paid_out") -> None:
        tx = Transaction.objects.select_for_update().get(pk=transaction_id)
        if not tx.is_gift_credit:
            raise ValidationError(
                "Only gift credits can be annotated.", transaction_id=transaction_id
            )

        meta = dict(tx.meta_json or {})
        meta["status"] = status
        if payout_id is not None:
            meta["payoutId"] = str(payout_id)
        tx.meta_json = meta
        tx.save(update_fields=["meta_json", "updated_at"])

        logger.debug("Gift credit annotated: tx=%d status=%s payout=%s", tx.id, status, payout_id)

    def balance_for(self, wallet_id) -> int:
        """Rebuild a wallet balance from its ledger entries."""
        return sum(
            tx.signed_amount
            for tx in Transaction.objects.filter(wallet_id=wallet_id)
            if tx.counts_toward_balance
        )

    def list_for_wallet(self, wallet_id, type: str = None, source: str = None):
        queryset = Transaction.objects.filter(wallet_id=wallet_id)
        if type:
            queryset = queryset.filter(type=type)
        if source:
            queryset = queryset.filter(source=source)
        return queryset
