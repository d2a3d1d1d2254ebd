import uuid
from unittest.mock import MagicMock, patch

import requests
from django.db import DatabaseError, IntegrityError, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.test import APIClient

from family_wallet.exceptions import (
    AmountMismatch,
    ChildNotFound,
    InsufficientBalance,
    InsufficientFunds,
    InvalidGiftSelection,
    StorageFailure,
    ValidationError,
)
from family_wallet.models import Child, Gift, Payout, Transaction, Wallet
from family_wallet.services import (
    GiftInbox,
    TransactionLedger,
    WalletService,
    WalletStore,
    build_settlement_engine,
)

FAMILY_ID = uuid.UUID("5b0f5b7e-3f43-4a59-9a57-3f0f0c1d2e01")
OTHER_FAMILY_ID = uuid.UUID("5b0f5b7e-3f43-4a59-9a57-3f0f0c1d2e02")


def make_child(family_id=FAMILY_ID, nickname="Sam"):
    return Child.objects.create(family_id=family_id, nickname=nickname)


# ============================================================
# Model Tests
# ============================================================


class WalletModelTest(TestCase):
    def setUp(self):
        self.child = make_child()

    def test_create_wallet(self):
        wallet = Wallet.objects.create(child_id=self.child.id, family_id=FAMILY_ID)
        self.assertEqual(wallet.balance_pence, 0)
        self.assertIsNotNone(wallet.created_at)

    def test_wallet_str(self):
        wallet = Wallet.objects.create(child_id=self.child.id, family_id=FAMILY_ID)
        self.assertIn(str(self.child.id), str(wallet))

    def test_one_wallet_per_child_and_family(self):
        Wallet.objects.create(child_id=self.child.id, family_id=FAMILY_ID)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Wallet.objects.create(child_id=self.child.id, family_id=FAMILY_ID)

    def test_negative_balance_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Wallet.objects.create(
                    child_id=self.child.id, family_id=FAMILY_ID, balance_pence=-1
                )


class TransactionModelTest(TestCase):
    def setUp(self):
        self.child = make_child()
        self.wallet = Wallet.objects.create(child_id=self.child.id, family_id=FAMILY_ID)

    def test_transaction_str(self):
        tx = Transaction.objects.create(
            wallet=self.wallet,
            family_id=FAMILY_ID,
            type=Transaction.Type.CREDIT,
            amount_pence=500,
            source=Transaction.Source.PARENT,
        )
        self.assertIn("credit", str(tx))
        self.assertIn("500", str(tx))

    def test_pending_gift_credit_does_not_count_toward_balance(self):
        gift = Gift.objects.create(family_id=FAMILY_ID, child_id=self.child.id, money_pence=300)
        tx = Transaction.objects.create(
            wallet=self.wallet,
            family_id=FAMILY_ID,
            type=Transaction.Type.CREDIT,
            amount_pence=300,
            source=Transaction.Source.RELATIVE,
            meta_json={"status": "pending"},
            gift=gift,
        )
        self.assertTrue(tx.is_gift_credit)
        self.assertFalse(tx.counts_toward_balance)

        tx.meta_json = {"status": "paid_out"}
        self.assertTrue(tx.counts_toward_balance)

    def test_signed_amount(self):
        tx = Transaction(type=Transaction.Type.DEBIT, amount_pence=250)
        self.assertEqual(tx.signed_amount, -250)

    def test_non_positive_amount_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Transaction.objects.create(
                    wallet=self.wallet,
                    family_id=FAMILY_ID,
                    type=Transaction.Type.CREDIT,
                    amount_pence=0,
                    source=Transaction.Source.PARENT,
                )


class PayoutModelTest(TestCase):
    def test_gift_amount_pence(self):
        payout = Payout(amount_pence=500, chore_amount_pence=200)
        self.assertEqual(payout.gift_amount_pence, 300)

        gift_only = Payout(amount_pence=300, chore_amount_pence=None)
        self.assertEqual(gift_only.gift_amount_pence, 300)


# ============================================================
# Wallet Store / Ledger Tests
# ============================================================


class WalletStoreTest(TransactionTestCase):
    def setUp(self):
        self.child = make_child()
        self.store = WalletStore()

    def test_get_or_create_creates_once(self):
        w1 = self.store.get_or_create(self.child.id, FAMILY_ID)
        w2 = self.store.get_or_create(self.child.id, FAMILY_ID)
        self.assertEqual(w1.pk, w2.pk)
        self.assertEqual(Wallet.objects.count(), 1)
        self.assertEqual(w1.balance_pence, 0)

    def test_increment_and_decrement(self):
        wallet = self.store.get_or_create(self.child.id, FAMILY_ID)
        wallet = self.store.increment(wallet.pk, 700)
        self.assertEqual(wallet.balance_pence, 700)

        wallet = self.store.decrement(wallet.pk, 200)
        self.assertEqual(wallet.balance_pence, 500)

    def test_decrement_below_zero_raises_and_leaves_balance(self):
        wallet = self.store.get_or_create(self.child.id, FAMILY_ID)
        self.store.increment(wallet.pk, 100)

        with self.assertRaises(InsufficientFunds) as ctx:
            self.store.decrement(wallet.pk, 101)

        self.assertEqual(ctx.exception.context["available_pence"], 100)
        self.assertEqual(ctx.exception.context["requested_pence"], 101)
        wallet.refresh_from_db()
        self.assertEqual(wallet.balance_pence, 100)

    def test_non_positive_adjustment_raises(self):
        wallet = self.store.get_or_create(self.child.id, FAMILY_ID)
        with self.assertRaises(ValidationError):
            self.store.increment(wallet.pk, 0)
        with self.assertRaises(ValidationError):
            self.store.decrement(wallet.pk, -5)


class TransactionLedgerTest(TransactionTestCase):
    def setUp(self):
        self.child = make_child()
        self.wallet = WalletStore().get_or_create(self.child.id, FAMILY_ID)
        self.ledger = TransactionLedger()

    def test_append_rejects_non_positive_amount(self):
        with self.assertRaises(ValidationError):
            self.ledger.append(
                self.wallet, FAMILY_ID, Transaction.Type.CREDIT, 0, Transaction.Source.PARENT
            )

    def test_append_rejects_bool_amount(self):
        with self.assertRaises(ValidationError):
            self.ledger.append(
                self.wallet, FAMILY_ID, Transaction.Type.CREDIT, True, Transaction.Source.PARENT
            )
        self.assertFalse(Transaction.objects.exists())

    def test_append_rejects_unknown_source(self):
        with self.assertRaises(ValidationError):
            self.ledger.append(self.wallet, FAMILY_ID, Transaction.Type.CREDIT, 10, "bank")

    def test_annotate_refuses_non_gift_transactions(self):
        tx = self.ledger.append(
            self.wallet, FAMILY_ID, Transaction.Type.CREDIT, 100, Transaction.Source.PARENT
        )
        with self.assertRaises(ValidationError):
            self.ledger.annotate_settled(tx.pk, uuid.uuid4())

    def test_find_gift_credit_for(self):
        gift = GiftInbox(WalletStore(), self.ledger).create(FAMILY_ID, self.child.id, 300)

        credit = self.ledger.find_gift_credit_for(self.wallet.pk, gift.id)

        self.assertIsNotNone(credit)
        self.assertEqual(credit.amount_pence, 300)
        self.assertEqual(credit.meta_json["giftId"], str(gift.id))
        self.assertIsNone(self.ledger.find_gift_credit_for(self.wallet.pk, uuid.uuid4()))


class WalletServiceTest(TransactionTestCase):
    def setUp(self):
        self.child = make_child()
        self.service = WalletService(WalletStore(), TransactionLedger())

    def test_credit_success(self):
        tx = self.service.credit(FAMILY_ID, self.child.id, 1000, note="Pocket money")

        wallet = Wallet.objects.get(child_id=self.child.id)
        self.assertEqual(wallet.balance_pence, 1000)
        self.assertEqual(tx.type, Transaction.Type.CREDIT)
        self.assertEqual(tx.source, Transaction.Source.PARENT)
        self.assertEqual(tx.meta_json["note"], "Pocket money")

    def test_debit_success(self):
        self.service.credit(FAMILY_ID, self.child.id, 1000)
        tx = self.service.debit(FAMILY_ID, self.child.id, 400)

        self.assertEqual(tx.type, Transaction.Type.DEBIT)
        self.assertEqual(tx.source, Transaction.Source.SYSTEM)
        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 600)

    def test_debit_insufficient_balance_records_nothing(self):
        self.service.credit(FAMILY_ID, self.child.id, 100)

        with self.assertRaises(InsufficientFunds):
            self.service.debit(FAMILY_ID, self.child.id, 150)

        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 100)
        self.assertEqual(Transaction.objects.filter(type=Transaction.Type.DEBIT).count(), 0)

    def test_child_from_other_family_rejected(self):
        stranger = make_child(family_id=OTHER_FAMILY_ID)
        with self.assertRaises(ChildNotFound):
            self.service.credit(FAMILY_ID, stranger.id, 100)
        self.assertFalse(Wallet.objects.exists())

    def test_zero_amount_raises(self):
        with self.assertRaises(ValidationError):
            self.service.credit(FAMILY_ID, self.child.id, 0)

    def test_credit_idempotency(self):
        key = uuid.uuid4()
        tx1 = self.service.credit(FAMILY_ID, self.child.id, 1000, idempotency_key=key)
        tx2 = self.service.credit(FAMILY_ID, self.child.id, 1000, idempotency_key=key)

        self.assertEqual(tx1.id, tx2.id)
        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 1000)

    def test_credit_key_cannot_be_replayed_as_debit(self):
        key = uuid.uuid4()
        self.service.credit(FAMILY_ID, self.child.id, 500, idempotency_key=key)

        with self.assertRaises(ValidationError):
            self.service.debit(FAMILY_ID, self.child.id, 500, idempotency_key=key)

        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 500)
        self.assertEqual(Transaction.objects.count(), 1)

    def test_idempotency_key_from_other_family_rejected(self):
        key = uuid.uuid4()
        self.service.credit(FAMILY_ID, self.child.id, 500, idempotency_key=key)
        stranger = make_child(family_id=OTHER_FAMILY_ID)

        with self.assertRaises(ValidationError):
            self.service.credit(OTHER_FAMILY_ID, stranger.id, 500, idempotency_key=key)
        self.assertFalse(Wallet.objects.filter(child_id=stranger.id).exists())

    def test_idempotency_key_with_different_amount_rejected(self):
        key = uuid.uuid4()
        self.service.credit(FAMILY_ID, self.child.id, 500, idempotency_key=key)

        with self.assertRaises(ValidationError):
            self.service.credit(FAMILY_ID, self.child.id, 700, idempotency_key=key)
        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 500)

    def test_storage_failure_on_credit_rolls_back(self):
        self.service.credit(FAMILY_ID, self.child.id, 300)

        with patch.object(self.service.ledger, "append", side_effect=DatabaseError("locked")):
            with self.assertRaises(StorageFailure):
                self.service.credit(FAMILY_ID, self.child.id, 200)

        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 300)
        self.assertEqual(Transaction.objects.count(), 1)

    def test_storage_failure_on_debit_rolls_back(self):
        self.service.credit(FAMILY_ID, self.child.id, 300)

        with patch.object(self.service.ledger, "append", side_effect=DatabaseError("locked")):
            with self.assertRaises(StorageFailure):
                self.service.debit(FAMILY_ID, self.child.id, 200)

        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 300)
        self.assertEqual(Transaction.objects.count(), 1)

    def test_balance_matches_ledger_after_mixed_operations(self):
        ledger = TransactionLedger()
        operations = [("credit", 500), ("debit", 200), ("debit", 900), ("credit", 75), ("debit", 375)]
        for kind, amount in operations:
            try:
                getattr(self.service, kind)(FAMILY_ID, self.child.id, amount)
            except InsufficientFunds:
                pass

        wallet = Wallet.objects.get(child_id=self.child.id)
        self.assertEqual(wallet.balance_pence, 0)
        self.assertEqual(ledger.balance_for(wallet.pk), wallet.balance_pence)


# ============================================================
# Gift Inbox Tests
# ============================================================


class GiftInboxTest(TransactionTestCase):
    def setUp(self):
        self.child = make_child()
        self.store = WalletStore()
        self.ledger = TransactionLedger()
        self.inbox = GiftInbox(self.store, self.ledger)

    def test_create_leaves_wallet_balance_alone(self):
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300, given_by="grandma")

        self.assertEqual(gift.status, Gift.Status.PENDING)
        wallet = Wallet.objects.get(child_id=self.child.id)
        self.assertEqual(wallet.balance_pence, 0)

        credit = Transaction.objects.get(gift=gift)
        self.assertEqual(credit.source, Transaction.Source.RELATIVE)
        self.assertEqual(credit.meta_json["status"], "pending")
        self.assertEqual(self.ledger.balance_for(wallet.pk), 0)

    def test_create_rejects_non_positive_amount(self):
        with self.assertRaises(ValidationError):
            self.inbox.create(FAMILY_ID, self.child.id, 0)

    def test_create_storage_failure_leaves_no_gift(self):
        with patch.object(self.ledger, "append", side_effect=DatabaseError("locked")):
            with self.assertRaises(StorageFailure):
                self.inbox.create(FAMILY_ID, self.child.id, 300)

        self.assertFalse(Gift.objects.exists())
        self.assertFalse(Wallet.objects.exists())

    def test_create_for_unknown_child(self):
        with self.assertRaises(ChildNotFound):
            self.inbox.create(FAMILY_ID, uuid.uuid4(), 100)

    def test_find_pending_by_ids(self):
        g1 = self.inbox.create(FAMILY_ID, self.child.id, 100)
        g2 = self.inbox.create(FAMILY_ID, self.child.id, 200)

        gifts = self.inbox.find_pending_by_ids(FAMILY_ID, self.child.id, [str(g1.id), g2.id])

        self.assertEqual({g.id for g in gifts}, {g1.id, g2.id})

    def test_find_pending_rejects_other_childs_gift(self):
        sibling = make_child(nickname="Alex")
        gift = self.inbox.create(FAMILY_ID, sibling.id, 100)

        with self.assertRaises(InvalidGiftSelection):
            self.inbox.find_pending_by_ids(FAMILY_ID, self.child.id, [gift.id])

    def test_find_pending_rejects_duplicates_and_garbage(self):
        gift = self.inbox.create(FAMILY_ID, self.child.id, 100)

        with self.assertRaises(InvalidGiftSelection):
            self.inbox.find_pending_by_ids(FAMILY_ID, self.child.id, [gift.id, gift.id])
        with self.assertRaises(InvalidGiftSelection):
            self.inbox.find_pending_by_ids(FAMILY_ID, self.child.id, ["not-a-gift"])

    def test_cancel_pending_gift(self):
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)

        cancelled = self.inbox.cancel(FAMILY_ID, gift.id)

        self.assertEqual(cancelled.status, Gift.Status.CANCELLED)
        credit = Transaction.objects.get(gift=gift)
        self.assertEqual(credit.meta_json["status"], "cancelled")
        wallet = Wallet.objects.get(child_id=self.child.id)
        self.assertEqual(wallet.balance_pence, 0)
        self.assertEqual(self.ledger.balance_for(wallet.pk), 0)
        self.assertEqual(self.inbox.pending_total(FAMILY_ID, self.child.id), 0)

    def test_cancel_paid_out_gift_raises(self):
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        engine = build_settlement_engine(notifier=MagicMock())
        engine.settle(FAMILY_ID, self.child.id, "parent-1", 300, 0, [gift.id])

        with self.assertRaises(InvalidGiftSelection):
            self.inbox.cancel(FAMILY_ID, gift.id)

    def test_pending_total(self):
        self.inbox.create(FAMILY_ID, self.child.id, 100)
        self.inbox.create(FAMILY_ID, self.child.id, 250)
        self.assertEqual(self.inbox.pending_total(FAMILY_ID, self.child.id), 350)


# ============================================================
# Settlement Engine Tests
# ============================================================


class SettlementEngineTest(TransactionTestCase):
    def setUp(self):
        self.child = make_child()
        self.notifier = MagicMock()
        self.engine = build_settlement_engine(notifier=self.notifier)
        self.wallets = WalletService(WalletStore(), TransactionLedger())
        self.inbox = GiftInbox(WalletStore(), TransactionLedger())

    def fund(self, pence):
        self.wallets.credit(FAMILY_ID, self.child.id, pence)

    def wallet(self):
        return Wallet.objects.get(child_id=self.child.id, family_id=FAMILY_ID)

    def snapshot(self):
        wallet = Wallet.objects.filter(child_id=self.child.id).first()
        return {
            "balance": wallet.balance_pence if wallet else None,
            "gifts": list(Gift.objects.order_by("id").values_list("id", "status", "payout_id")),
            "payouts": Payout.objects.count(),
            "transactions": list(
                Transaction.objects.order_by("id").values_list("id", "amount_pence", "meta_json")
            ),
        }

    def test_chore_only_payout(self):
        self.fund(500)

        payout = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 500)

        self.assertEqual(self.wallet().balance_pence, 0)
        self.assertEqual(payout.chore_amount_pence, 500)
        self.assertEqual(payout.gift_ids, [])
        debits = Transaction.objects.filter(type=Transaction.Type.DEBIT)
        self.assertEqual(debits.count(), 1)
        self.assertEqual(debits.first().amount_pence, 500)
        self.assertEqual(debits.first().payout_id, payout.id)
        self.assertEqual(debits.first().meta_json["funding"], "chore")

    def test_chore_and_gift_payout(self):
        self.fund(200)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)

        payout = self.engine.settle(
            FAMILY_ID, self.child.id, "parent-1", 500, 200, [gift.id], note="Saturday"
        )

        gift.refresh_from_db()
        self.assertEqual(gift.status, Gift.Status.PAID_OUT)
        self.assertEqual(gift.payout_id, payout.id)
        self.assertIsNotNone(gift.paid_out_at)
        self.assertEqual(payout.gift_ids, [str(gift.id)])
        self.assertEqual(payout.paid_by, "parent-1")

        wallet = self.wallet()
        self.assertEqual(wallet.balance_pence, 0)
        self.assertEqual(TransactionLedger().balance_for(wallet.pk), 0)

        credit = Transaction.objects.get(gift=gift)
        self.assertEqual(credit.meta_json["status"], "paid_out")
        self.assertEqual(credit.meta_json["payoutId"], str(payout.id))

        debits = {
            tx.meta_json["funding"]: tx
            for tx in Transaction.objects.filter(payout=payout, type=Transaction.Type.DEBIT)
        }
        self.assertEqual(debits["chore"].amount_pence, 200)
        self.assertEqual(debits["gift"].amount_pence, 300)
        self.assertEqual(debits["gift"].meta_json["giftAmountPence"], 300)
        self.assertEqual(debits["gift"].meta_json["note"], "Saturday")

    def test_chore_portion_cannot_use_gift_money(self):
        self.fund(200)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        before = self.snapshot()

        with self.assertRaises(InsufficientBalance) as ctx:
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 600, 300, [gift.id])

        self.assertEqual(ctx.exception.context["available_pence"], 200)
        self.assertEqual(self.snapshot(), before)

    def test_gift_cannot_be_settled_twice(self):
        self.fund(200)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 200, [gift.id])
        self.fund(100)
        before = self.snapshot()

        with self.assertRaises(InvalidGiftSelection):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 400, 100, [gift.id])

        self.assertEqual(self.snapshot(), before)
        self.assertEqual(Payout.objects.count(), 1)

    def test_amount_mismatch(self):
        self.fund(200)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        before = self.snapshot()

        with self.assertRaises(AmountMismatch) as ctx:
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 450, 200, [gift.id])

        self.assertEqual(ctx.exception.context["gift_amount_pence"], 300)
        self.assertEqual(self.snapshot(), before)

    def test_gift_only_payout_from_empty_wallet(self):
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)

        payout = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 300, 0, [gift.id])

        self.assertIsNone(payout.chore_amount_pence)
        self.assertEqual(self.wallet().balance_pence, 0)
        self.assertEqual(
            Transaction.objects.filter(payout=payout, type=Transaction.Type.DEBIT).count(), 1
        )

    def test_negative_chore_amount_rejected(self):
        self.fund(500)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        before = self.snapshot()

        with self.assertRaises(InsufficientBalance):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 100, -200, [gift.id])
        self.assertEqual(self.snapshot(), before)

    def test_zero_amount_rejected(self):
        with self.assertRaises(ValidationError):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 0, 0)

    def test_unknown_method_rejected(self):
        self.fund(100)
        with self.assertRaises(ValidationError):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 100, 100, method="crypto")

    def test_child_of_other_family_rejected(self):
        stranger = make_child(family_id=OTHER_FAMILY_ID)

        with self.assertRaises(ChildNotFound):
            self.engine.settle(FAMILY_ID, stranger.id, "parent-1", 100, 100)
        self.assertFalse(Wallet.objects.filter(child_id=stranger.id).exists())

    def test_failed_settlement_does_not_create_wallet(self):
        with self.assertRaises(InsufficientBalance):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 100, 100)
        self.assertFalse(Wallet.objects.exists())

    def test_storage_failure_rolls_back_everything(self):
        self.fund(200)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        before = self.snapshot()

        with patch.object(
            self.engine.ledger, "append", side_effect=DatabaseError("disk I/O error")
        ):
            with self.assertRaises(StorageFailure) as ctx:
                self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 200, [gift.id])

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.snapshot(), before)
        self.notifier.assert_not_called()

    def test_notifies_after_commit(self):
        self.fund(500)

        payout = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 500)

        self.notifier.assert_called_once_with(payout)

    def test_notification_failure_keeps_settlement(self):
        self.fund(500)
        self.notifier.side_effect = RuntimeError("socket closed")

        payout = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 500)

        self.assertTrue(Payout.objects.filter(pk=payout.pk).exists())
        self.assertEqual(self.wallet().balance_pence, 0)

    def test_rejected_settlement_does_not_notify(self):
        self.fund(100)
        with self.assertRaises(AmountMismatch):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 100, 50)
        self.notifier.assert_not_called()

    def test_idempotent_settlement(self):
        self.fund(1000)
        key = uuid.uuid4()

        p1 = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 400, 400, idempotency_key=key)
        p2 = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 400, 400, idempotency_key=key)

        self.assertEqual(p1.id, p2.id)
        self.assertEqual(self.wallet().balance_pence, 600)
        self.assertEqual(Payout.objects.count(), 1)
        self.notifier.assert_called_once()

    def test_idempotency_key_from_other_family_rejected(self):
        self.fund(1000)
        key = uuid.uuid4()
        self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 500, idempotency_key=key)
        stranger = make_child(family_id=OTHER_FAMILY_ID)
        WalletService(WalletStore(), TransactionLedger()).credit(OTHER_FAMILY_ID, stranger.id, 300)

        with self.assertRaises(ValidationError) as ctx:
            self.engine.settle(
                OTHER_FAMILY_ID, stranger.id, "parent-2", 300, 300, idempotency_key=key
            )

        self.assertNotIn("payout_id", ctx.exception.context)
        self.assertEqual(Payout.objects.filter(family_id=OTHER_FAMILY_ID).count(), 0)
        self.assertEqual(Wallet.objects.get(child_id=stranger.id).balance_pence, 300)

    def test_idempotency_key_with_different_amount_rejected(self):
        self.fund(1000)
        key = uuid.uuid4()
        self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 500, idempotency_key=key)

        with self.assertRaises(ValidationError):
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 300, 300, idempotency_key=key)
        self.assertEqual(self.wallet().balance_pence, 500)

    def test_gift_claimed_by_concurrent_settlement(self):
        self.fund(200)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        before = self.snapshot()
        find_pending = self.engine.gifts.find_pending_by_ids

        def find_then_lose_race(*args, **kwargs):
            gifts = find_pending(*args, **kwargs)
            # another settlement claims the gift after this one has read it
            Gift.objects.filter(id__in=[g.id for g in gifts]).update(status=Gift.Status.PAID_OUT)
            return gifts

        with patch.object(
            self.engine.gifts, "find_pending_by_ids", side_effect=find_then_lose_race
        ):
            with self.assertRaises(InvalidGiftSelection):
                self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 200, [gift.id])

        self.assertEqual(self.snapshot(), before)
        self.notifier.assert_not_called()

    def test_gift_without_ledger_credit_is_still_reconciled(self):
        self.fund(100)
        gift = Gift.objects.create(family_id=FAMILY_ID, child_id=self.child.id, money_pence=250)

        payout = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 350, 100, [gift.id])

        credit = Transaction.objects.get(gift=gift, type=Transaction.Type.CREDIT)
        self.assertEqual(credit.meta_json["status"], "paid_out")
        self.assertEqual(credit.payout_id, payout.id)
        wallet = self.wallet()
        self.assertEqual(wallet.balance_pence, 0)
        self.assertEqual(TransactionLedger().balance_for(wallet.pk), 0)

    def test_ledger_reconciles_across_flows(self):
        ledger = TransactionLedger()
        self.fund(1000)
        g1 = self.inbox.create(FAMILY_ID, self.child.id, 300)
        g2 = self.inbox.create(FAMILY_ID, self.child.id, 450)
        self.inbox.create(FAMILY_ID, self.child.id, 50)
        self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 700, 400, [g1.id])
        self.wallets.debit(FAMILY_ID, self.child.id, 100)
        self.inbox.cancel(FAMILY_ID, g2.id)
        try:
            self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 950, 500, [g2.id])
        except InvalidGiftSelection:
            pass

        wallet = self.wallet()
        self.assertEqual(wallet.balance_pence, 500)
        self.assertEqual(ledger.balance_for(wallet.pk), wallet.balance_pence)

    def test_list_payouts(self):
        sibling = make_child(nickname="Alex")
        self.fund(1000)
        self.wallets.credit(FAMILY_ID, sibling.id, 500)
        first = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 100, 100)
        second = self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 200, 200)
        self.engine.settle(FAMILY_ID, sibling.id, "parent-1", 300, 300)

        self.assertEqual(self.engine.list_payouts(FAMILY_ID).count(), 3)
        child_payouts = self.engine.list_payouts(FAMILY_ID, child_id=self.child.id)
        self.assertEqual({p.id for p in child_payouts}, {first.id, second.id})
        self.assertEqual(self.engine.list_payouts(OTHER_FAMILY_ID).count(), 0)

    def test_unpaid_balance(self):
        self.fund(800)
        gift = self.inbox.create(FAMILY_ID, self.child.id, 300)
        self.inbox.create(FAMILY_ID, self.child.id, 120)
        self.engine.settle(FAMILY_ID, self.child.id, "parent-1", 500, 200, [gift.id])

        summary = self.engine.unpaid_balance(FAMILY_ID, self.child.id)

        self.assertEqual(summary["current_balance_pence"], 600)
        self.assertEqual(summary["pending_gift_pence"], 120)
        self.assertEqual(summary["available_for_payout_pence"], 720)
        self.assertEqual(summary["total_paid_pence"], 500)
        self.assertEqual(summary["unpaid_balance_pence"], 600)

    def test_unpaid_balance_without_wallet(self):
        summary = self.engine.unpaid_balance(FAMILY_ID, self.child.id)
        self.assertEqual(summary["current_balance_pence"], 0)
        self.assertEqual(summary["total_paid_pence"], 0)

        with self.assertRaises(ChildNotFound):
            self.engine.unpaid_balance(OTHER_FAMILY_ID, self.child.id)


# ============================================================
# Notification Tests
# ============================================================


class NotificationTaskTest(TransactionTestCase):
    def setUp(self):
        self.child = make_child()
        WalletService(WalletStore(), TransactionLedger()).credit(FAMILY_ID, self.child.id, 500)
        self.payout = build_settlement_engine(notifier=MagicMock()).settle(
            FAMILY_ID, self.child.id, "parent-1", 500, 500
        )

    @patch("family_wallet.tasks.post_family_notification")
    def test_send_payout_notification(self, mock_post):
        mock_post.return_value = {"success": True, "response": {"status": 202}}
        from family_wallet.tasks import send_payout_notification

        result = send_payout_notification.apply(args=[str(self.payout.id)])

        self.assertTrue(result.get()["delivered"])
        kwargs = mock_post.call_args.kwargs
        self.assertEqual(kwargs["event"], "payout.completed")
        self.assertEqual(kwargs["family_id"], str(FAMILY_ID))
        self.assertEqual(kwargs["payload"]["amount_pence"], 500)

    @patch("family_wallet.tasks.post_family_notification")
    def test_send_notification_for_missing_payout(self, mock_post):
        from family_wallet.tasks import send_payout_notification

        result = send_payout_notification.apply(args=[str(uuid.uuid4())])

        self.assertFalse(result.get()["delivered"])
        mock_post.assert_not_called()

    @patch("family_wallet.tasks.send_payout_notification")
    def test_dispatch_swallows_broker_errors(self, mock_task):
        mock_task.delay.side_effect = ConnectionError("broker down")
        from family_wallet.tasks import dispatch_payout_notification

        dispatch_payout_notification(self.payout)

        mock_task.delay.assert_called_once_with(str(self.payout.id))


class FamilyNotificationClientTest(TestCase):
    @override_settings(FAMILY_NOTIFICATION_URL="")
    @patch("family_wallet.utils.notify.requests.post")
    def test_disabled_when_no_url(self, mock_post):
        from family_wallet.utils import post_family_notification

        result = post_family_notification(str(FAMILY_ID), "payout.completed", {})

        self.assertTrue(result["success"])
        mock_post.assert_not_called()

    @override_settings(FAMILY_NOTIFICATION_URL="http://notify.local/events")
    @patch("family_wallet.utils.notify.requests.post")
    def test_posts_event(self, mock_post):
        mock_post.return_value = MagicMock(status_code=202)
        from family_wallet.utils import post_family_notification

        result = post_family_notification(str(FAMILY_ID), "payout.completed", {"a": 1})

        self.assertTrue(result["success"])
        self.assertEqual(mock_post.call_args.kwargs["json"]["event"], "payout.completed")

    @override_settings(FAMILY_NOTIFICATION_URL="http://notify.local/events")
    @patch("family_wallet.utils.notify.requests.post")
    def test_timeout_is_reported(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("slow")
        from family_wallet.utils import post_family_notification

        result = post_family_notification(str(FAMILY_ID), "payout.completed", {})

        self.assertFalse(result["success"])
        self.assertEqual(result["response"]["error"], "timeout")


# ============================================================
# API Tests
# ============================================================


class WalletAPITestBase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.client.credentials(
            HTTP_X_FAMILY_ID=str(FAMILY_ID), HTTP_X_OPERATOR_ID="parent-1"
        )
        self.child = make_child()

    def fund(self, pence):
        WalletService(WalletStore(), TransactionLedger()).credit(FAMILY_ID, self.child.id, pence)


class WalletAPITest(WalletAPITestBase):
    def test_missing_family_context(self):
        response = APIClient().get(f"/children/{self.child.id}/wallet/")
        self.assertEqual(response.status_code, 403)

    def test_retrieve_wallet(self):
        response = self.client.get(f"/children/{self.child.id}/wallet/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["balance_pence"], 0)

    def test_retrieve_wallet_unknown_child(self):
        response = self.client.get(f"/children/{uuid.uuid4()}/wallet/")
        self.assertEqual(response.status_code, 404)

    def test_credit(self):
        response = self.client.post(
            f"/children/{self.child.id}/wallet/credit",
            {"amount_pence": 750, "note": "Birthday"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["wallet"]["balance_pence"], 750)
        self.assertEqual(response.data["transaction"]["type"], "credit")

    def test_credit_zero_amount(self):
        response = self.client.post(
            f"/children/{self.child.id}/wallet/credit",
            {"amount_pence": 0},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_debit_insufficient(self):
        self.fund(100)
        response = self.client.post(
            f"/children/{self.child.id}/wallet/debit",
            {"amount_pence": 500},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["available_pence"], 100)
        self.assertEqual(response.data["requested_pence"], 500)

    def test_debit_with_idempotency_key(self):
        self.fund(1000)
        key = str(uuid.uuid4())
        for _ in range(2):
            response = self.client.post(
                f"/children/{self.child.id}/wallet/debit",
                {"amount_pence": 300},
                format="json",
                HTTP_IDEMPOTENCY_KEY=key,
            )
            self.assertEqual(response.status_code, 200)
        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 700)

    def test_debit_reusing_credit_key_rejected(self):
        key = str(uuid.uuid4())
        response = self.client.post(
            f"/children/{self.child.id}/wallet/credit",
            {"amount_pence": 500},
            format="json",
            HTTP_IDEMPOTENCY_KEY=key,
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.post(
            f"/children/{self.child.id}/wallet/debit",
            {"amount_pence": 500},
            format="json",
            HTTP_IDEMPOTENCY_KEY=key,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 500)

    @patch("family_wallet.services.ledger.TransactionLedger.append")
    def test_credit_storage_failure(self, mock_append):
        mock_append.side_effect = DatabaseError("disk I/O error")
        response = self.client.post(
            f"/children/{self.child.id}/wallet/credit",
            {"amount_pence": 500},
            format="json",
        )
        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.data["retryable"])

    def test_list_transactions(self):
        self.fund(1000)
        self.fund(500)
        response = self.client.get(
            f"/children/{self.child.id}/wallet/transactions/?type=CREDIT"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 2)

    def test_request_is_logged(self):
        with self.assertLogs("family_wallet.middleware", level="INFO") as logs:
            self.client.get(f"/children/{self.child.id}/wallet/")
        self.assertIn("status=200", logs.output[0])


class GiftAPITest(WalletAPITestBase):
    def test_create_and_list_gifts(self):
        response = self.client.post(
            "/gifts/", {"child_id": str(self.child.id), "money_pence": 300}, format="json"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], "pending")
        self.assertEqual(response.data["given_by"], "parent-1")

        response = self.client.get(f"/gifts/?child_id={self.child.id}&status=pending")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)

    def test_create_gift_for_unknown_child(self):
        response = self.client.post(
            "/gifts/", {"child_id": str(uuid.uuid4()), "money_pence": 300}, format="json"
        )
        self.assertEqual(response.status_code, 404)

    def test_cancel_gift(self):
        gift = GiftInbox(WalletStore(), TransactionLedger()).create(FAMILY_ID, self.child.id, 300)
        response = self.client.post(f"/gifts/{gift.id}/cancel")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "cancelled")


class PayoutAPITest(WalletAPITestBase):
    def setUp(self):
        super().setUp()
        self.fund(200)
        self.gift = GiftInbox(WalletStore(), TransactionLedger()).create(
            FAMILY_ID, self.child.id, 300
        )

    def payout_body(self, **overrides):
        body = {
            "child_id": str(self.child.id),
            "amount_pence": 500,
            "chore_amount_pence": 200,
            "gift_ids": [str(self.gift.id)],
            "method": "cash",
        }
        body.update(overrides)
        return body

    @patch("family_wallet.tasks.send_payout_notification")
    def test_create_payout(self, mock_task):
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post("/payouts/", self.payout_body(), format="json")

        self.assertEqual(response.status_code, 201)
        payout = response.data["payout"]
        self.assertEqual(payout["amount_pence"], 500)
        self.assertEqual(payout["gift_ids"], [str(self.gift.id)])
        mock_task.delay.assert_called_once_with(str(payout["id"]))

        response = self.client.get(f"/payouts/unpaid/{self.child.id}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["current_balance_pence"], 0)
        self.assertEqual(response.data["total_paid_pence"], 500)

    def test_amount_mismatch(self):
        response = self.client.post(
            "/payouts/", self.payout_body(amount_pence=450), format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("Amount mismatch", response.data["error"])
        self.assertEqual(Payout.objects.count(), 0)

    def test_chore_amount_exceeds_balance(self):
        response = self.client.post(
            "/payouts/",
            self.payout_body(amount_pence=600, chore_amount_pence=300),
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["available_pence"], 200)

    def test_invalid_gift(self):
        response = self.client.post(
            "/payouts/", self.payout_body(gift_ids=[str(uuid.uuid4())]), format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.gift.refresh_from_db()
        self.assertEqual(self.gift.status, Gift.Status.PENDING)

    def test_negative_chore_amount(self):
        response = self.client.post(
            "/payouts/", self.payout_body(chore_amount_pence=-1), format="json"
        )
        self.assertEqual(response.status_code, 400)

    def test_storage_failure(self):
        with patch.object(Payout.objects, "create", side_effect=DatabaseError("gone")):
            response = self.client.post("/payouts/", self.payout_body(), format="json")

        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.data["retryable"])
        self.assertEqual(Wallet.objects.get(child_id=self.child.id).balance_pence, 200)

    def test_list_payouts(self):
        self.client.post("/payouts/", self.payout_body(), format="json")
        response = self.client.get(f"/payouts/?child_id={self.child.id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["payouts"]), 1)

    def test_list_payouts_bad_child_param(self):
        response = self.client.get("/payouts/?child_id=nope")
        self.assertEqual(response.status_code, 400)
