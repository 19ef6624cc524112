import threading
from decimal import Decimal
from unittest import mock

import pytest
from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings

from ledger_core.exceptions import (ConcurrencyConflict, ImmutableRecord,
                                    InvalidInput, NotFound, OverpaymentRejected)
from ledger_core.models import Invoice, Payment, Transaction
from ledger_core.services import create_bill, create_invoice, record_payment
from ledger_core.services import payment as payment_service

from .factories import (TODAY, balance_of, bill_line, invoice_line,
                        make_tenant)


def make_invoice(t, prices=("100.00", "50.00")):
    # 150 + 10% tax = 165.00
    return create_invoice(
        t.company, t.customer, TODAY,
        [invoice_line(t.sales, price) for price in prices],
        user=t.user,
    )


def pay(t, invoice, amount, **kwargs):
    return record_payment(
        t.company, "customer_payment", invoice.pk, amount, TODAY, t.bank,
        payment_method="bank_transfer", user=t.user, **kwargs,
    )


class CustomerPaymentTests(TestCase):
    def setUp(self):
        self.t = make_tenant()
        self.invoice = make_invoice(self.t)

    def test_full_payment_marks_invoice_paid(self):
        payment = pay(self.t, self.invoice, "165.00")

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("165.00"))
        self.assertEqual(self.invoice.status, "paid")
        self.assertEqual(self.invoice.version, 1)

        txn = payment.transaction
        self.assertEqual(txn.source_type, "payment")
        entries = {(e.account.code, e.debit, e.credit) for e in txn.entries.all()}
        self.assertEqual(entries, {
            ("1010", Decimal("165.00"), Decimal("0.00")),
            ("1200", Decimal("0.00"), Decimal("165.00")),
        })
        self.assertEqual(Transaction.objects.for_company(self.t.company).count(), 2)
        self.assertEqual(balance_of(self.t.company, self.t.ar), Decimal("0.00"))
        self.assertEqual(balance_of(self.t.company, self.t.bank), Decimal("165.00"))

    def test_overpayment_rejected_and_nothing_persisted(self):
        with self.assertRaises(OverpaymentRejected):
            pay(self.t, self.invoice, "200.00")

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(self.invoice.status, "open")
        self.assertFalse(Payment.objects.for_company(self.t.company).exists())
        self.assertEqual(Transaction.objects.for_company(self.t.company).count(), 1)

    def test_status_only_moves_forward(self):
        seen = [self.invoice.status]
        for amount in ("15.00", "50.00", "100.00"):
            pay(self.t, self.invoice, amount)
            self.invoice.refresh_from_db()
            seen.append(self.invoice.status)

        self.assertEqual(seen, ["open", "partial", "partial", "paid"])
        with self.assertRaises(OverpaymentRejected):
            pay(self.t, self.invoice, "0.01")

    def test_partial_payments_never_exceed_total(self):
        pay(self.t, self.invoice, "100.00")
        with self.assertRaises(OverpaymentRejected):
            pay(self.t, self.invoice, "65.01")
        pay(self.t, self.invoice, "65.00")
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, self.invoice.total_amount)
        self.assertEqual(self.invoice.payments.count(), 2)

    def test_draft_invoice_cannot_be_paid(self):
        draft = create_invoice(self.t.company, self.t.customer, TODAY,
                               [invoice_line(self.t.sales, "10.00")], post=False)
        with self.assertRaises(InvalidInput):
            pay(self.t, draft, "5.00")

    def test_invalid_amounts_rejected(self):
        for amount in ("0", "-5.00", "1.005", None, "abc", "1e17", "1e40"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidInput):
                    pay(self.t, self.invoice, amount)

    def test_settlement_account_must_be_an_asset(self):
        with self.assertRaises(InvalidInput):
            record_payment(self.t.company, "customer_payment", self.invoice.pk,
                           "10.00", TODAY, self.t.sales)

    def test_unknown_payment_type_rejected(self):
        with self.assertRaises(InvalidInput):
            record_payment(self.t.company, "refund", self.invoice.pk,
                           "10.00", TODAY, self.t.bank)

    def test_unknown_method_rejected(self):
        with self.assertRaises(InvalidInput):
            record_payment(self.t.company, "customer_payment", self.invoice.pk,
                           "10.00", TODAY, self.t.bank, payment_method="bitcoin")

    def test_other_company_invoice_is_not_found(self):
        other = make_tenant("other-co")
        with self.assertRaises(NotFound):
            pay(other, self.invoice, "10.00")

    def test_payment_is_immutable(self):
        payment = pay(self.t, self.invoice, "10.00")
        payment.amount = Decimal("20.00")
        with self.assertRaises(ImmutableRecord):
            payment.save()
        with self.assertRaises(ImmutableRecord):
            payment.delete()


class VendorPaymentTests(TestCase):
    def setUp(self):
        self.t = make_tenant()
        self.bill = create_bill(self.t.company, self.t.vendor, TODAY,
                                [bill_line(self.t.rent, "1000.00")])

    def test_vendor_payment_settles_payable(self):
        payment = record_payment(
            self.t.company, "vendor_payment", self.bill.pk, "1100.00", TODAY,
            self.t.bank, payment_method="check", reference="CHK-1001")

        self.bill.refresh_from_db()
        self.assertEqual(self.bill.status, "paid")
        self.assertEqual(payment.bill, self.bill)
        entries = {(e.account.code, e.debit, e.credit)
                   for e in payment.transaction.entries.all()}
        self.assertEqual(entries, {
            ("2000", Decimal("1100.00"), Decimal("0.00")),
            ("1010", Decimal("0.00"), Decimal("1100.00")),
        })
        self.assertEqual(balance_of(self.t.company, self.t.ap), Decimal("0.00"))
        self.assertEqual(balance_of(self.t.company, self.t.bank), Decimal("-1100.00"))

    def test_partial_vendor_payment(self):
        record_payment(self.t.company, "vendor_payment", self.bill.pk, "300.00",
                       TODAY, self.t.cash)
        self.bill.refresh_from_db()
        self.assertEqual(self.bill.status, "partial")
        self.assertEqual(self.bill.remaining_amount, Decimal("800.00"))

    def test_unknown_bill_is_not_found(self):
        with self.assertRaises(NotFound):
            record_payment(self.t.company, "vendor_payment", 999999,
                           "10.00", TODAY, self.t.bank)
        self.assertFalse(Payment.objects.exists())


@override_settings(LEDGER_RETRY_BACKOFF_SECONDS=0)
class ConcurrentPaymentTests(TestCase):
    """
    Two payments of 100 race for the last 150 of an invoice. The loser's
    read happened before the winner's write; it must re-read, notice only
    50 remains, and be rejected.
    """

    def setUp(self):
        self.t = make_tenant()
        self.invoice = make_invoice(self.t)
        pay(self.t, self.invoice, "15.00")  # 150.00 remaining
        self.original_lock = payment_service._lock_target

    def stale_then_fresh(self, stale):
        calls = []

        def lock(model, company, pk):
            calls.append(pk)
            if len(calls) == 1:
                return stale
            return self.original_lock(model, company, pk)

        return lock, calls

    def test_loser_retries_and_is_rejected(self):
        stale = Invoice.objects.get(pk=self.invoice.pk)  # read before the winner
        pay(self.t, self.invoice, "100.00")               # the winner commits

        lock, calls = self.stale_then_fresh(stale)
        with mock.patch.object(payment_service, "_lock_target", side_effect=lock):
            with self.assertRaises(OverpaymentRejected):
                pay(self.t, self.invoice, "100.00")

        self.assertEqual(len(calls), 2)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("115.00"))
        self.assertEqual(self.invoice.status, "partial")
        self.assertEqual(
            self.invoice.payments.filter(amount=Decimal("100.00")).count(), 1)

    def test_retry_succeeds_when_room_remains(self):
        stale = Invoice.objects.get(pk=self.invoice.pk)
        pay(self.t, self.invoice, "50.00")

        lock, calls = self.stale_then_fresh(stale)
        with mock.patch.object(payment_service, "_lock_target", side_effect=lock):
            pay(self.t, self.invoice, "100.00")

        self.assertEqual(len(calls), 2)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("165.00"))
        self.assertEqual(self.invoice.status, "paid")
        self.assertEqual(self.invoice.version, 3)

    @override_settings(LEDGER_PAYMENT_MAX_ATTEMPTS=3)
    def test_persistent_conflict_gives_up(self):
        stale = Invoice.objects.get(pk=self.invoice.pk)
        pay(self.t, self.invoice, "10.00")
        payments_before = Payment.objects.count()

        with mock.patch.object(payment_service, "_lock_target",
                               return_value=stale) as lock:
            with self.assertRaises(ConcurrencyConflict):
                pay(self.t, self.invoice, "10.00")

        self.assertEqual(lock.call_count, 3)
        self.assertEqual(Payment.objects.count(), payments_before)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("25.00"))


@pytest.mark.skipif(connection.vendor != "postgresql",
                    reason="needs real row locks (PostgreSQL)")
class ThreadedPaymentRaceTests(TransactionTestCase):
    def test_exactly_one_of_two_concurrent_payments_wins(self):
        t = make_tenant()
        invoice = make_invoice(t)
        pay(t, invoice, "15.00")

        barrier = threading.Barrier(2)
        outcomes = []

        def worker():
            from django.db import connections
            try:
                barrier.wait()
                pay(t, invoice, "100.00")
                outcomes.append("ok")
            except OverpaymentRejected:
                outcomes.append("rejected")
            finally:
                connections.close_all()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ["ok", "rejected"])
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("115.00"))
