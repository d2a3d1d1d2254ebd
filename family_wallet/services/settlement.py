import logging

from django.db import DatabaseError, transaction
from django.db.models import Sum

from family_wallet.exceptions import (
    AmountMismatch,
    ChildNotFound,
    InsufficientBalance,
    StorageFailure,
    ValidationError,
    WalletError,
)
from family_wallet.models import Child, Payout, Transaction

logger = logging.getLogger(__name__)


def _is_pence(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class SettlementEngine:
    """
    Turns chore earnings and pending gifts into a recorded payout.

    A settlement validates and executes inside one database transaction:

    1. Lock the child's wallet row, then the named gift rows.
    2. Validate: gifts are pending and owned by the child, the declared total
       equals chore portion plus gift total, the chore portion is covered by
       the balance as it stood before any gift money, and balance plus gifts
       covers the total.
    3. Credit the gift money into the wallet, write the Payout, annotate
       the gifts' ledger credits, mark the gifts paid out, debit the full
       amount and record one debit per funding source (chore, gift).

    Nothing is written unless every check passes, and a database fault at
    any point rolls the whole settlement back. A concurrent settlement for
    the same child blocks on the wallet lock and then re-validates, so a
    gift can only ever be claimed once.
    """

    def __init__(self, wallets, ledger, gifts, notifier=None):
        self.wallets = wallets
        self.ledger = ledger
        self.gifts = gifts
        self.notifier = notifier

    def settle(
        self,
        family_id,
        child_id,
        operator_id,
        amount_pence: int,
        chore_amount_pence: int = 0,
        gift_ids=(),
        method: str = Payout.Method.CASH,
        note: str = None,
        idempotency_key=None,
    ) -> Payout:
        """
        Settle a payout for a child.

        Args:
            family_id: Family the child belongs to.
            child_id: Child being paid.
            operator_id: Parent issuing the payout.
            amount_pence: Total handed over, in pence.
            chore_amount_pence: Portion funded from the earned wallet balance.
            gift_ids: Pending gifts folded into this payout.
            method: How the money was handed over.
            note: Optional free text.
            idempotency_key: Optional UUID key for idempotency.

        Returns:
            The created (or existing) Payout.

        Raises:
            ValidationError / ChildNotFound: Malformed input or unknown child.
            InvalidGiftSelection: A gift id is not a pending gift of the child.
            AmountMismatch: amount_pence != chore_amount_pence + gift total.
            InsufficientBalance: The funds do not cover the payout.
            StorageFailure: The database transaction failed; nothing was written.
        """
        chore_amount_pence = chore_amount_pence or 0
        if not _is_pence(amount_pence) or amount_pence <= 0:
            raise ValidationError("Amount must be greater than 0.", amount_pence=amount_pence)
        if not _is_pence(chore_amount_pence):
            raise ValidationError(
                "Chore amount must be an integer number of pence.",
                chore_amount_pence=chore_amount_pence,
            )
        if method not in Payout.Method.values:
            raise ValidationError("Unknown payout method.", method=method)
        gift_ids = list(gift_ids or [])

        try:
            with transaction.atomic():
                payout = self._settle_locked(
                    family_id=family_id,
                    child_id=child_id,
                    operator_id=operator_id,
                    amount_pence=amount_pence,
                    chore_amount_pence=chore_amount_pence,
                    gift_ids=gift_ids,
                    method=method,
                    note=note,
                    idempotency_key=idempotency_key,
                )
        except WalletError as exc:
            logger.warning(
                "Settlement rejected: child=%s amount=%d error=%s context=%s",
                child_id,
                amount_pence,
                type(exc).__name__,
                exc.context,
            )
            raise
        except DatabaseError as exc:
            logger.exception(
                "Settlement rolled back (storage failure): child=%s amount=%d",
                child_id,
                amount_pence,
            )
            raise StorageFailure("Failed to create payout.", child_id=str(child_id)) from exc

        return payout

    def _settle_locked(
        self,
        family_id,
        child_id,
        operator_id,
        amount_pence,
        chore_amount_pence,
        gift_ids,
        method,
        note,
        idempotency_key,
    ) -> Payout:
        if idempotency_key:
            existing = Payout.objects.filter(idempotency_key=idempotency_key).first()
            if existing and (
                str(existing.family_id) != str(family_id)
                or str(existing.child_id) != str(child_id)
                or existing.amount_pence != amount_pence
            ):
                logger.warning(
                    "Idempotency conflict: key=%s existing_payout=%s",
                    idempotency_key,
                    existing.id,
                )
                raise ValidationError(
                    "Idempotency key was already used for a different request.",
                    idempotency_key=str(idempotency_key),
                )
            if existing:
                logger.info(
                    "Idempotent payout request: key=%s payout=%s",
                    idempotency_key,
                    existing.id,
                )
                return existing

        if not Child.belongs_to_family(child_id, family_id):
            raise ChildNotFound("Child not found.", child_id=str(child_id))

        wallet = self.wallets.get_or_create(child_id, family_id, lock=True)
        gifts = self.gifts.find_pending_by_ids(family_id, child_id, gift_ids, lock=True)
        gift_total = sum(gift.money_pence for gift in gifts)

        if chore_amount_pence + gift_total != amount_pence:
            raise AmountMismatch(
                f"Amount mismatch: total ({amount_pence}) must equal gifts "
                f"({gift_total}) + chores ({chore_amount_pence}) = "
                f"{gift_total + chore_amount_pence}",
                amount_pence=amount_pence,
                chore_amount_pence=chore_amount_pence,
                gift_amount_pence=gift_total,
            )
        if chore_amount_pence < 0 or chore_amount_pence > wallet.balance_pence:
            raise InsufficientBalance(
                f"Chore amount ({chore_amount_pence}) exceeds available "
                f"balance ({wallet.balance_pence})",
                chore_amount_pence=chore_amount_pence,
                available_pence=wallet.balance_pence,
            )
        if wallet.balance_pence + gift_total < amount_pence:
            raise InsufficientBalance(
                "Insufficient balance",
                amount_pence=amount_pence,
                available_pence=wallet.balance_pence + gift_total,
            )

        if gift_total:
            self.wallets.increment(wallet.pk, gift_total)

        payout = Payout.objects.create(
            family_id=family_id,
            child_id=child_id,
            amount_pence=amount_pence,
            chore_amount_pence=chore_amount_pence or None,
            paid_by=str(operator_id),
            method=method,
            note=note or None,
            gift_ids=[str(gift.id) for gift in gifts],
            idempotency_key=idempotency_key,
        )

        for gift in gifts:
            self._settle_gift_credit(wallet, family_id, gift, payout)
        if gifts:
            self.gifts.mark_settled([gift.id for gift in gifts], payout)

        wallet = self.wallets.decrement(wallet.pk, amount_pence)

        meta = {
            "payoutId": str(payout.id),
            "method": method,
            "note": note or None,
            "giftIds": payout.gift_ids,
            "choreAmountPence": chore_amount_pence,
            "giftAmountPence": gift_total,
        }
        for funding, funded_pence in (("chore", chore_amount_pence), ("gift", gift_total)):
            if funded_pence:
                self.ledger.append(
                    wallet=wallet,
                    family_id=family_id,
                    type=Transaction.Type.DEBIT,
                    amount_pence=funded_pence,
                    source=Transaction.Source.PARENT,
                    meta={**meta, "funding": funding},
                    payout=payout,
                )

        transaction.on_commit(lambda: self._notify(payout))

        logger.info(
            "Payout settled: payout=%s wallet=%d amount=%d chore=%d gifts=%d "
            "new_balance=%d paid_by=%s",
            payout.id,
            wallet.pk,
            amount_pence,
            chore_amount_pence,
            gift_total,
            wallet.balance_pence,
            operator_id,
        )
        return payout

    def _settle_gift_credit(self, wallet, family_id, gift, payout):
        credit = self.ledger.find_gift_credit_for(wallet.pk, gift.id)
        if credit is not None:
            self.ledger.annotate_settled(credit.pk, payout.id)
            return

        # No credit was recorded when the gift arrived; write one now so the
        # ledger still adds up to the wallet balance.
        logger.warning(
            "No ledger credit found for gift=%s wallet=%d; recording one at settlement",
            gift.id,
            wallet.pk,
        )
        self.ledger.append(
            wallet=wallet,
            family_id=family_id,
            type=Transaction.Type.CREDIT,
            amount_pence=gift.money_pence,
            source=Transaction.Source.RELATIVE,
            meta={
                "type": "gift_money",
                "giftId": str(gift.id),
                "moneyPence": gift.money_pence,
                "status": "paid_out",
                "payoutId": str(payout.id),
            },
            gift=gift,
            payout=payout,
        )

    def _notify(self, payout):
        if self.notifier is None:
            return
        try:
            self.notifier(payout)
        except Exception:
            logger.exception("Payout notification failed: payout=%s", payout.id)

    def list_payouts(self, family_id, child_id=None):
        queryset = Payout.objects.filter(family_id=family_id)
        if child_id:
            queryset = queryset.filter(child_id=child_id)
        return queryset.order_by("-created_at")

    def unpaid_balance(self, family_id, child_id) -> dict:
        if not Child.belongs_to_family(child_id, family_id):
            raise ChildNotFound("Child not found.", child_id=str(child_id))

        wallet = self.wallets.find(child_id, family_id)
        balance = wallet.balance_pence if wallet else 0
        pending = self.gifts.pending_total(family_id, child_id)
        total_paid = (
            Payout.objects.filter(family_id=family_id, child_id=child_id).aggregate(
                total=Sum("amount_pence")
            )["total"]
            or 0
        )
        return {
            "child_id": str(child_id),
            "current_balance_pence": balance,
            "pending_gift_pence": pending,
            "available_for_payout_pence": balance + pending,
            "total_paid_pence": total_paid,
            "unpaid_balance_pence": balance,
        }
