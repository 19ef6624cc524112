import logging
import time
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..exceptions import ConcurrencyConflict, InvalidInput, OverpaymentRejected
from ..models import Bill, Invoice, Payment, derive_status
from ..models.payment import PAYMENT_METHODS
from .accounts import resolve_account
from .audit_helper import log_action, snapshot
from .documents import payable_account_for, receivable_account_for
from .posting import post_transaction
from .store import backoff_delay, translate_store_errors
from .validation import (get_for_company, require_account_type, to_date,
                         to_money, to_text)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# payment_type -> (document model, Payment field, label)
PAYMENT_TARGETS = {
    "customer_payment": (Invoice, "invoice", "Invoice"),
    "vendor_payment": (Bill, "bill", "Bill"),
}


class StaleDocument(Exception):
    """The document's version moved between our read and our write."""


def _lock_target(model, company, pk):
    """Row-lock the invoice/bill for the rest of the atomic block."""
    return model.objects.for_company(company).select_for_update().get(pk=pk)


def _payment_journal(payment_type, document, settlement, amount, label):
    if payment_type == "customer_payment":
        # Dr Cash/Bank, Cr Accounts Receivable
        control = receivable_account_for(document.customer)
        return [
            {"account": settlement, "debit": amount,
             "description": f"Payment received - {label}"},
            {"account": control, "credit": amount,
             "description": f"AR settled - {label}"},
        ]
    # Dr Accounts Payable, Cr Cash/Bank
    control = payable_account_for(document.vendor)
    return [
        {"account": control, "debit": amount,
         "description": f"AP settled - {label}"},
        {"account": settlement, "credit": amount,
         "description": f"Payment sent - {label}"},
    ]


def _apply_payment(company, payment_type, target_id, amount, date, settlement,
                   payment_method, reference, notes, user):
    model, field, kind = PAYMENT_TARGETS[payment_type]

    with transaction.atomic():
        document = _lock_target(model, company, target_id)
        number = getattr(document, "invoice_number", None) or getattr(
            document, "bill_number", None)
        label = f"{kind} {number or document.pk}"

        if not document.is_posted:
            raise InvalidInput(f"{label} is a draft and cannot be paid yet")

        remaining = document.total_amount - document.paid_amount
        if amount > remaining:
            raise OverpaymentRejected(
                f"Payment of {amount} exceeds remaining {remaining} on {label}")

        old_values = snapshot(document, fields=["paid_amount", "status"])
        new_paid = document.paid_amount + amount
        new_status = derive_status(new_paid, document.total_amount)

        # Conditional write: only succeeds if nobody else moved the document
        updated = model.objects.filter(
            pk=document.pk, version=document.version,
        ).update(
            paid_amount=new_paid,
            status=new_status,
            version=document.version + 1,
            updated_at=timezone.now(),
        )
        if updated != 1:
            raise StaleDocument(f"{label} changed while the payment was applied")

        counterparty = (
            {"customer": document.customer} if payment_type == "customer_payment"
            else {"vendor": document.vendor}
        )
        txn = post_transaction(
            company,
            date,
            f"Payment - {label}",
            _payment_journal(payment_type, document, settlement, amount, label),
            source_type="payment",
            source_id=document.pk,
            user=user,
            **counterparty,
        )

        payment = Payment(
            company=company,
            payment_type=payment_type,
            amount=amount,
            payment_method=payment_method,
            settlement_account=settlement,
            date=date,
            reference=reference,
            notes=notes,
            transaction=txn,
            created_by=user if getattr(user, "is_authenticated", False) else None,
            **{field: document},
        )
        payment.save()

        log_action(action="insert", instance=payment, user=user,
                   new_values=snapshot(payment))
        log_action(
            action="update",
            instance=document,
            user=user,
            old_values=old_values,
            new_values={"paid_amount": new_paid, "status": new_status},
        )

    logger.info(
        "Recorded %s of %s against %s for company %s: %s -> %s",
        payment_type, amount, label, company.slug,
        old_values["status"], new_status,
    )
    return payment


@translate_store_errors
def record_payment(company, payment_type, target_id, amount, date,
                   settlement_account, *, payment_method="cash",
                   reference=None, notes=None, user=None):
    """
    Apply a payment to an invoice (customer_payment) or a bill (vendor_payment).

    The document row is locked and its version re-checked on write; if a
    concurrent payment won the race we re-read and retry with backoff up to
    LEDGER_PAYMENT_MAX_ATTEMPTS, then raise ConcurrencyConflict. Overpayment
    is judged against the fresh state on every attempt, so two payments
    that together exceed the remaining balance never both succeed.
    """
    if not isinstance(payment_type, str) or payment_type not in PAYMENT_TARGETS:
        raise InvalidInput(
            f"payment_type must be one of {sorted(PAYMENT_TARGETS)}, got {payment_type!r}")
    model, _, kind = PAYMENT_TARGETS[payment_type]

    amount = to_money(amount, "amount")
    if amount <= 0:
        raise InvalidInput("Payment amount must be greater than 0")
    date = to_date(date, "date")
    if not isinstance(payment_method, str) or payment_method not in dict(PAYMENT_METHODS):
        raise InvalidInput(
            f"payment_method must be one of {sorted(dict(PAYMENT_METHODS))}")
    settlement = resolve_account(
        company, getattr(settlement_account, "pk", settlement_account))
    require_account_type(settlement, {"asset"}, "Payment settlement")
    reference = to_text(reference, "reference", max_length=200)
    notes = to_text(notes, "notes")

    # NotFound for missing or foreign documents before any retry loop
    target_id = get_for_company(model, company, target_id, kind).pk

    attempts = max(1, settings.LEDGER_PAYMENT_MAX_ATTEMPTS)
    for attempt in range(attempts):
        try:
            return _apply_payment(company, payment_type, target_id, amount, date,
                                  settlement, payment_method, reference, notes, user)
        except StaleDocument as exc:
            logger.warning("Payment attempt %d/%d lost a race: %s",
                           attempt + 1, attempts, exc)
            if attempt + 1 < attempts:
                time.sleep(backoff_delay(attempt))

    logger.error("Giving up on %s payment for %s %s after %d attempts",
                 payment_type, kind, target_id, attempts)
    raise ConcurrencyConflict(
        f"{kind} {target_id} kept changing, payment not applied after {attempts} attempts")
