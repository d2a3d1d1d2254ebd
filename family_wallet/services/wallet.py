import logging

from django.db import DatabaseError, transaction
from django.db.models import F

from family_wallet.exceptions import (
    ChildNotFound,
    InsufficientFunds,
    StorageFailure,
    ValidationError,
)
from family_wallet.models import Child, Transaction, Wallet

logger = logging.getLogger(__name__)


def require_positive_pence(amount_pence) -> int:
    if not isinstance(amount_pence, int) or isinstance(amount_pence, bool):
        raise ValidationError("Amount must be an integer number of pence.", amount_pence=amount_pence)
    if amount_pence <= 0:
        raise ValidationError("Amount must be positive.", amount_pence=amount_pence)
    return amount_pence


class WalletStore:
    """
    Owns the one balance row per (child, family).

    Adjustments are relative F() updates, so they never lose a concurrent
    write. ``decrement`` only matches rows whose balance covers the amount,
    which makes the non-negative check and the write a single statement.
    Callers that need to read-then-decide must hold ``lock()`` inside the
    same ``transaction.atomic`` block.
    """

    def get_or_create(self, child_id, family_id, lock: bool = False) -> Wallet:
        queryset = Wallet.objects.select_for_update() if lock else Wallet.objects
        wallet = queryset.filter(child_id=child_id, family_id=family_id).first()
        if wallet is not None:
            return wallet

        wallet, created = Wallet.objects.get_or_create(
            child_id=child_id, family_id=family_id
        )
        if created:
            logger.info(
                "Wallet created: wallet=%d child=%s family=%s",
                wallet.pk,
                child_id,
                family_id,
            )
        if lock:
            wallet = self.lock(wallet.pk)
        return wallet

    def find(self, child_id, family_id):
        return Wallet.objects.filter(child_id=child_id, family_id=family_id).first()

    def lock(self, wallet_id) -> Wallet:
        return Wallet.objects.select_for_update().get(pk=wallet_id)

    def increment(self, wallet_id, amount_pence: int) -> Wallet:
        require_positive_pence(amount_pence)
        updated = Wallet.objects.filter(pk=wallet_id).update(
            balance_pence=F("balance_pence") + amount_pence
        )
        if not updated:
            raise Wallet.DoesNotExist(f"Wallet {wallet_id} does not exist.")
        return Wallet.objects.get(pk=wallet_id)

    def decrement(self, wallet_id, amount_pence: int) -> Wallet:
        require_positive_pence(amount_pence)
        updated = Wallet.objects.filter(
            pk=wallet_id, balance_pence__gte=amount_pence
        ).update(balance_pence=F("balance_pence") - amount_pence)
        wallet = Wallet.objects.get(pk=wallet_id)
        if not updated:
            raise InsufficientFunds(
                "Insufficient balance.",
                requested_pence=amount_pence,
                available_pence=wallet.balance_pence,
            )
        return wallet


class WalletService:
    """
    Credit and debit operations for callers outside settlement (parents
    topping up, chore completion, bidding side effects).

    Each call runs the wallet adjustment and its ledger entry in one
    atomic block with the wallet row locked, so the balance always equals
    the sum of its ledger entries.
    """

    def __init__(self, store: WalletStore, ledger):
        self.store = store
        self.ledger = ledger

    def get_wallet(self, family_id, child_id) -> Wallet:
        self._require_child(family_id, child_id)
        return self.store.get_or_create(child_id, family_id)

    def credit(
        self,
        family_id,
        child_id,
        amount_pence: int,
        source: str = Transaction.Source.PARENT,
        note: str = None,
        idempotency_key=None,
    ) -> Transaction:
        """
        Credit the child's wallet.

        Args:
            family_id: Family the child belongs to.
            child_id: Child whose wallet is credited.
            amount_pence: Positive integer amount.
            source: Who the money came from (parent or relative).
            note: Optional free-text note stored in the ledger metadata.
            idempotency_key: Optional UUID key for idempotency.

        Returns:
            The created (or existing) credit Transaction.

        Raises:
            ChildNotFound: If the child does not belong to the family.
            ValidationError: If the amount is not a positive integer, or the
                idempotency key was already used for a different request.
            StorageFailure: The database transaction failed; nothing was written.
        """
        require_positive_pence(amount_pence)
        try:
            with transaction.atomic():
                return self._credit(
                    family_id, child_id, amount_pence, source, note, idempotency_key
                )
        except DatabaseError as exc:
            logger.exception(
                "Credit rolled back (storage failure): child=%s amount=%d",
                child_id,
                amount_pence,
            )
            raise StorageFailure("Failed to credit wallet.", child_id=str(child_id)) from exc

    def _credit(self, family_id, child_id, amount_pence, source, note, idempotency_key):
        existing = self._replay(
            idempotency_key, Transaction.Type.CREDIT, family_id, child_id, amount_pence
        )
        if existing:
            return existing

        self._require_child(family_id, child_id)
        wallet = self.store.get_or_create(child_id, family_id, lock=True)
        wallet = self.store.increment(wallet.pk, amount_pence)

        tx = self.ledger.append(
            wallet=wallet,
            family_id=family_id,
            type=Transaction.Type.CREDIT,
            amount_pence=amount_pence,
            source=source,
            meta={"note": note},
            idempotency_key=idempotency_key,
        )

        logger.info(
            "Credit completed: wallet=%d amount=%d new_balance=%d tx=%d source=%s",
            wallet.pk,
            amount_pence,
            wallet.balance_pence,
            tx.id,
            source,
        )
        return tx

    def debit(
        self,
        family_id,
        child_id,
        amount_pence: int,
        note: str = None,
        idempotency_key=None,
    ) -> Transaction:
        """
        Debit the child's wallet.

        Raises:
            ChildNotFound: If the child does not belong to the family.
            ValidationError: If the amount is not a positive integer, or the
                idempotency key was already used for a different request.
            InsufficientFunds: If the balance does not cover the amount.
            StorageFailure: The database transaction failed; nothing was written.
        """
        require_positive_pence(amount_pence)
        try:
            with transaction.atomic():
                return self._debit(family_id, child_id, amount_pence, note, idempotency_key)
        except DatabaseError as exc:
            logger.exception(
                "Debit rolled back (storage failure): child=%s amount=%d",
                child_id,
                amount_pence,
            )
            raise StorageFailure("Failed to debit wallet.", child_id=str(child_id)) from exc

    def _debit(self, family_id, child_id, amount_pence, note, idempotency_key):
        existing = self._replay(
            idempotency_key, Transaction.Type.DEBIT, family_id, child_id, amount_pence
        )
        if existing:
            return existing

        self._require_child(family_id, child_id)
        wallet = self.store.get_or_create(child_id, family_id, lock=True)

        try:
            wallet = self.store.decrement(wallet.pk, amount_pence)
        except InsufficientFunds:
            logger.warning(
                "Debit rejected (insufficient balance): wallet=%d balance=%d amount=%d",
                wallet.pk,
                wallet.balance_pence,
                amount_pence,
            )
            raise

        tx = self.ledger.append(
            wallet=wallet,
            family_id=family_id,
            type=Transaction.Type.DEBIT,
            amount_pence=amount_pence,
            source=Transaction.Source.SYSTEM,
            meta={"note": note},
            idempotency_key=idempotency_key,
        )

        logger.info(
            "Debit completed: wallet=%d amount=%d new_balance=%d tx=%d",
            wallet.pk,
            amount_pence,
            wallet.balance_pence,
            tx.id,
        )
        return tx

    def _require_child(self, family_id, child_id):
        if not Child.belongs_to_family(child_id, family_id):
            raise ChildNotFound("Child not found.", child_id=str(child_id))

    def _replay(self, idempotency_key, tx_type, family_id, child_id, amount_pence):
        if not idempotency_key:
            return None
        existing_tx = Transaction.objects.filter(
            idempotency_key=idempotency_key
        ).select_related("wallet").first()
        if existing_tx is None:
            return None

        if (
            existing_tx.type != tx_type
            or str(existing_tx.family_id) != str(family_id)
            or str(existing_tx.wallet.child_id) != str(child_id)
            or existing_tx.amount_pence != amount_pence
        ):
            logger.warning(
                "Idempotency conflict: key=%s existing_tx=%d existing_type=%s new_type=%s",
                idempotency_key,
                existing_tx.id,
                existing_tx.type,
                tx_type,
            )
            raise ValidationError(
                "Idempotency key was already used for a different request.",
                idempotency_key=str(idempotency_key),
            )

        logger.info(
            "Idempotent wallet request: key=%s tx=%d",
            idempotency_key,
            existing_tx.id,
        )
        return existing_tx
