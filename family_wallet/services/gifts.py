import logging
import uuid

from django.db import DatabaseError, transaction
from django.db.models import Sum
from django.utils import timezone

from family_wallet.exceptions import ChildNotFound, InvalidGiftSelection, StorageFailure
from family_wallet.models import Child, Gift, Transaction
from family_wallet.services.wallet import require_positive_pence

logger = logging.getLogger(__name__)


class GiftInbox:
    """
    Holds relative-sent money gifts until a payout claims them.

    Receiving a gift records a pending credit in the ledger but leaves the
    wallet balance alone; the money only reaches the wallet when the
    settlement engine pays the gift out.
    """

    def __init__(self, store, ledger):
        self.store = store
        self.ledger = ledger

    def create(self, family_id, child_id, money_pence: int, given_by=None, note=None) -> Gift:
        require_positive_pence(money_pence)
        try:
            with transaction.atomic():
                return self._create(family_id, child_id, money_pence, given_by, note)
        except DatabaseError as exc:
            logger.exception(
                "Gift rolled back (storage failure): child=%s amount=%d",
                child_id,
                money_pence,
            )
            raise StorageFailure("Failed to record gift.", child_id=str(child_id)) from exc

    def _create(self, family_id, child_id, money_pence, given_by, note) -> Gift:
        if not Child.belongs_to_family(child_id, family_id):
            raise ChildNotFound("Child not found.", child_id=str(child_id))

        gift = Gift.objects.create(
            family_id=family_id,
            child_id=child_id,
            money_pence=money_pence,
            given_by=given_by,
            note=note,
        )
        wallet = self.store.get_or_create(child_id, family_id)
        self.ledger.append(
            wallet=wallet,
            family_id=family_id,
            type=Transaction.Type.CREDIT,
            amount_pence=money_pence,
            source=Transaction.Source.RELATIVE,
            meta={
                "type": "gift_money",
                "giftId": str(gift.id),
                "moneyPence": money_pence,
                "givenBy": given_by,
                "status": Gift.Status.PENDING,
            },
            gift=gift,
        )

        logger.info(
            "Gift received: gift=%s child=%s amount=%d given_by=%s",
            gift.id,
            child_id,
            money_pence,
            given_by,
        )
        return gift

    def find_pending_by_ids(self, family_id, child_id, ids, lock: bool = False) -> list:
        ids = list(ids)
        if not ids:
            return []
        try:
            parsed = [uuid.UUID(str(gift_id)) for gift_id in ids]
        except ValueError:
            raise InvalidGiftSelection(
                "One or more gift IDs are malformed.",
                requested_gift_ids=[str(i) for i in ids],
            )
        ids = parsed

        queryset = Gift.pending_for_child(family_id, child_id).filter(id__in=ids)
        if lock:
            queryset = queryset.select_for_update()
        gifts = list(queryset.order_by("id"))

        if len(gifts) != len(ids):
            raise InvalidGiftSelection(
                "One or more gift IDs are invalid or already paid out.",
                requested_gift_ids=[str(i) for i in ids],
                pending_gift_ids=[str(g.id) for g in gifts],
            )
        return gifts

    def mark_settled(self, ids, payout) -> None:
        ids = list(ids)
        updated = Gift.objects.filter(id__in=ids, status=Gift.Status.PENDING).update(
            status=Gift.Status.PAID_OUT,
            paid_out_at=timezone.now(),
            payout=payout,
            updated_at=timezone.now(),
        )
        if updated != len(ids):
            raise InvalidGiftSelection(
                "Gift was settled concurrently.",
                requested_gift_ids=[str(i) for i in ids],
                settled_count=updated,
            )

    @transaction.atomic
    def cancel(self, family_id, gift_id) -> Gift:
        gift = (
            Gift.objects.select_for_update()
            .filter(id=gift_id, family_id=family_id)
            .first()
        )
        if gift is None:
            raise InvalidGiftSelection("Gift not found.", gift_id=str(gift_id))
        if gift.status == Gift.Status.CANCELLED:
            return gift
        if gift.status == Gift.Status.PAID_OUT:
            raise InvalidGiftSelection(
                "Cannot cancel a gift that has already been paid out.",
                gift_id=str(gift_id),
                payout_id=str(gift.payout_id),
            )

        gift.status = Gift.Status.CANCELLED
        gift.save(update_fields=["status", "updated_at"])

        wallet = self.store.find(gift.child_id, family_id)
        if wallet is not None:
            credit = self.ledger.find_gift_credit_for(wallet.pk, gift.id)
            if credit is not None:
                self.ledger.annotate_settled(credit.pk, status=Gift.Status.CANCELLED)

        logger.info("Gift cancelled: gift=%s child=%s amount=%d", gift.id, gift.child_id, gift.money_pence)
        return gift

    def list(self, family_id, child_id=None, status=None):
        queryset = Gift.objects.filter(family_id=family_id)
        if child_id:
            queryset = queryset.filter(child_id=child_id)
        if status:
            queryset = queryset.filter(status=status)
        return queryset

    def pending_total(self, family_id, child_id) -> int:
        total = Gift.pending_for_child(family_id, child_id).aggregate(
            total=Sum("money_pence")
        )["total"]
        return total or 0
