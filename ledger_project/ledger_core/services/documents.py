import logging
from decimal import Decimal

from django.db import IntegrityError, transaction

from ..exceptions import Conflict, InvalidInput
from ..models import (Bill, BillLine, Company, Customer, Invoice, InvoiceLine,
                      TransactionItem, Vendor)
from .accounts import get_system_account, resolve_account
from .audit_helper import log_action, snapshot
from .posting import post_transaction
from .store import translate_store_errors
from .validation import (MAX_QUANTITY, MAX_UNIT_PRICE, check_magnitude,
                         get_for_company, require_account_type, round_money,
                         to_date, to_money, to_scaled, to_text)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

REVENUE_TYPES = {"revenue"}
EXPENSE_TYPES = {"expense", "cogs"}
SETTLEMENT_TYPES = {"asset"}


# ------------------------------------
# Line parsing and totals
# ------------------------------------
def _build_lines(company, raw_lines, account_key, allowed_types, purpose):
    """Validate document lines and compute line totals (quantity × unit price)."""
    raw_lines = list(raw_lines or [])
    if not raw_lines:
        raise InvalidInput("At least one line item is required")

    built = []
    for position, raw in enumerate(raw_lines, start=1):
        label = f"Line {position}"
        quantity = to_scaled(raw.get("quantity", 1), f"{label} quantity",
                             limit=MAX_QUANTITY)
        if quantity <= 0:
            raise InvalidInput(f"{label}: quantity must be greater than 0")
        unit_price = to_scaled(raw.get("unit_price"), f"{label} unit_price",
                               limit=MAX_UNIT_PRICE)
        if unit_price < 0:
            raise InvalidInput(f"{label}: unit_price cannot be negative")

        account_id = raw.get(account_key)
        if account_id in (None, ""):
            raise InvalidInput(f"{label}: {account_key} is required")
        account = resolve_account(company, account_id)
        require_account_type(account, allowed_types, f"{label} ({purpose})")

        built.append({
            "position": position,
            "description": to_text(raw.get("description"), f"{label} description"),
            "quantity": quantity,
            "unit_price": unit_price,
            "total_amount": check_magnitude(
                round_money(quantity * unit_price), f"{label} total"),
            "account": account,
        })
    return built


def _document_totals(company, lines):
    """(subtotal, tax, total) with tax rounded half-up to the cent."""
    subtotal = check_magnitude(
        sum((line["total_amount"] for line in lines), ZERO), "Document subtotal")
    tax = check_magnitude(
        round_money(subtotal * company.effective_tax_rate), "Document tax")
    total = check_magnitude(subtotal + tax, "Document total")
    if total <= 0:
        raise InvalidInput("Document total must be greater than 0")
    return subtotal, tax, total


def _amounts_by_account(pairs):
    """Sum (account, amount) pairs per GL account, keeping first-seen order."""
    grouped = {}
    for account, amount in pairs:
        if account.pk in grouped:
            grouped[account.pk][1] += amount
        else:
            grouped[account.pk] = [account, amount]
    return list(grouped.values())


def _dates(date, due_date):
    date = to_date(date, "date")
    due_date = to_date(due_date, "due_date", required=False)
    if due_date is not None and due_date < date:
        raise InvalidInput("due_date cannot be before the document date")
    return date, due_date


def _mark_posted(document, txn, user):
    old = snapshot(document, fields=["status", "paid_amount"])
    document.status = "open"
    document.posted_transaction = txn
    document.save(update_fields=["status", "posted_transaction", "updated_at"])
    log_action(
        action="update",
        instance=document,
        user=user,
        old_values=old,
        new_values={
            "status": document.status,
            "paid_amount": document.paid_amount,
            "posted_transaction_id": txn.pk,
        },
    )


def _actor(user):
    return user if getattr(user, "is_authenticated", False) else None


# ------------------------------------
# Invoices (Accounts Receivable)
# ------------------------------------
def _next_invoice_number(company):
    """INV-00001, INV-00002, ... Caller must hold the company row lock."""
    invoices = Invoice.objects.for_company(company)
    n = invoices.count() + 1
    while invoices.filter(invoice_number=f"INV-{n:05d}").exists():
        n += 1
    return f"INV-{n:05d}"


def receivable_account_for(customer):
    if customer.default_ar_account_id and customer.default_ar_account.is_active:
        return customer.default_ar_account
    return get_system_account(customer.company, "accounts_receivable")


def _post_invoice(invoice, user):
    """Dr AR total / Cr revenue per account / Cr tax payable."""
    ar_account = receivable_account_for(invoice.customer)
    lines = list(invoice.lines.select_related("revenue_account"))

    journal = [{
        "account": ar_account,
        "debit": invoice.total_amount,
        "description": f"Invoice {invoice.invoice_number}",
    }]
    for account, amount in _amounts_by_account(
            (line.revenue_account, line.total_amount) for line in lines):
        journal.append({
            "account": account,
            "credit": amount,
            "description": f"Revenue - {invoice.invoice_number}",
        })
    if invoice.tax_amount > 0:
        journal.append({
            "account": get_system_account(invoice.company, "tax_payable"),
            "credit": invoice.tax_amount,
            "description": f"Sales tax - {invoice.invoice_number}",
        })

    txn = post_transaction(
        invoice.company,
        invoice.date,
        f"Invoice {invoice.invoice_number} - {invoice.customer.name}",
        journal,
        customer=invoice.customer,
        source_type="invoice",
        source_id=invoice.pk,
        user=user,
    )
    _mark_posted(invoice, txn, user)
    return txn


@translate_store_errors
def create_invoice(company, customer, date, lines, *, due_date=None, notes=None,
                   invoice_number=None, post=True, user=None):
    """
    Create an invoice with its lines and, unless post=False, its revenue
    posting. The invoice, lines and journal entries commit together or
    not at all.
    """
    if not isinstance(customer, Customer):
        customer = get_for_company(Customer, company, customer, "Customer")
    elif customer.company_id != company.pk:
        customer = get_for_company(Customer, company, customer.pk, "Customer")

    date, due_date = _dates(date, due_date)
    built = _build_lines(company, lines, "revenue_account_id", REVENUE_TYPES, "revenue")
    subtotal, tax, total = _document_totals(company, built)
    invoice_number = to_text(invoice_number, "invoice_number", max_length=64)

    if post:
        # fail before writing anything when the posting accounts are missing
        receivable_account_for(customer)
        if tax > 0:
            get_system_account(company, "tax_payable")

    with transaction.atomic():
        Company.objects.select_for_update().get(pk=company.pk)
        if invoice_number is None:
            invoice_number = _next_invoice_number(company)
        elif Invoice.objects.for_company(company).filter(
                invoice_number=invoice_number).exists():
            raise Conflict(f"Invoice number {invoice_number} already exists")

        invoice = Invoice(
            company=company,
            customer=customer,
            invoice_number=invoice_number,
            date=date,
            due_date=due_date,
            subtotal=subtotal,
            tax_amount=tax,
            total_amount=total,
            notes=to_text(notes, "notes"),
            created_by=_actor(user),
        )
        invoice.save()
        InvoiceLine.objects.bulk_create([
            InvoiceLine(
                invoice=invoice,
                position=line["position"],
                description=line["description"],
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                total_amount=line["total_amount"],
                revenue_account=line["account"],
            )
            for line in built
        ])
        log_action(action="insert", instance=invoice, user=user,
                   new_values=snapshot(invoice))

        if post:
            _post_invoice(invoice, user)

    logger.info("Created invoice %s for company %s: total %s (%s)",
                invoice.invoice_number, company.slug, total, invoice.status)
    return invoice


@translate_store_errors
def post_invoice(company, invoice_id, user=None):
    """Post a draft invoice: draft -> open plus its revenue entry."""
    with transaction.atomic():
        invoice = get_for_company(Invoice, company, invoice_id, "Invoice")
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if invoice.status != "draft":
            raise InvalidInput(f"Invoice {invoice.invoice_number} is already posted")
        _post_invoice(invoice, user)

    logger.info("Posted invoice %s for company %s", invoice.invoice_number, company.slug)
    return invoice


# ------------------------------------
# Bills (Accounts Payable)
# ------------------------------------
def payable_account_for(vendor):
    if vendor.default_ap_account_id and vendor.default_ap_account.is_active:
        return vendor.default_ap_account
    return get_system_account(vendor.company, "accounts_payable")


def _post_bill(bill, user):
    """Dr expense per account / Dr tax payable (input tax) / Cr AP total."""
    ap_account = payable_account_for(bill.vendor)
    label = bill.bill_number or f"#{bill.pk}"
    lines = list(bill.lines.select_related("expense_account"))

    journal = []
    for account, amount in _amounts_by_account(
            (line.expense_account, line.total_amount) for line in lines):
        journal.append({
            "account": account,
            "debit": amount,
            "description": f"Expense - bill {label}",
        })
    if bill.tax_amount > 0:
        journal.append({
            "account": get_system_account(bill.company, "tax_payable"),
            "debit": bill.tax_amount,
            "description": f"Input tax - bill {label}",
        })
    journal.append({
        "account": ap_account,
        "credit": bill.total_amount,
        "description": f"Bill {label}",
    })

    txn = post_transaction(
        bill.company,
        bill.date,
        f"Bill {label} - {bill.vendor.name}",
        journal,
        vendor=bill.vendor,
        source_type="bill",
        source_id=bill.pk,
        user=user,
    )
    _mark_posted(bill, txn, user)
    return txn


@translate_store_errors
def create_bill(company, vendor, date, lines, *, due_date=None, notes=None,
                bill_number=None, post=True, user=None):
    """Mirror of create_invoice for vendor bills."""
    if not isinstance(vendor, Vendor):
        vendor = get_for_company(Vendor, company, vendor, "Vendor")
    elif vendor.company_id != company.pk:
        vendor = get_for_company(Vendor, company, vendor.pk, "Vendor")

    date, due_date = _dates(date, due_date)
    built = _build_lines(company, lines, "expense_account_id", EXPENSE_TYPES, "expense")
    subtotal, tax, total = _document_totals(company, built)

    if post:
        payable_account_for(vendor)
        if tax > 0:
            get_system_account(company, "tax_payable")

    with transaction.atomic():
        bill = Bill(
            company=company,
            vendor=vendor,
            bill_number=to_text(bill_number, "bill_number", max_length=64),
            date=date,
            due_date=due_date,
            subtotal=subtotal,
            tax_amount=tax,
            total_amount=total,
            notes=to_text(notes, "notes"),
            created_by=_actor(user),
        )
        bill.save()
        BillLine.objects.bulk_create([
            BillLine(
                bill=bill,
                position=line["position"],
                description=line["description"],
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                total_amount=line["total_amount"],
                expense_account=line["account"],
            )
            for line in built
        ])
        log_action(action="insert", instance=bill, user=user,
                   new_values=snapshot(bill))

        if post:
            _post_bill(bill, user)

    logger.info("Created bill %s for company %s: total %s (%s)",
                bill.bill_number or bill.pk, company.slug, total, bill.status)
    return bill


@translate_store_errors
def post_bill(company, bill_id, user=None):
    with transaction.atomic():
        bill = get_for_company(Bill, company, bill_id, "Bill")
        bill = Bill.objects.select_for_update().get(pk=bill.pk)
        if bill.status != "draft":
            raise InvalidInput(f"Bill {bill.bill_number or bill.pk} is already posted")
        _post_bill(bill, user)

    logger.info("Posted bill %s for company %s", bill.bill_number or bill.pk, company.slug)
    return bill


# ------------------------------------
# Direct expenses (no bill document)
# ------------------------------------
@translate_store_errors
def create_expense_transaction(company, vendor_name, date, description,
                               payment_account, items, user=None):
    """
    Paid-on-the-spot expense: Dr each item's expense account,
    Cr the cash/bank account for the total. One transaction.
    """
    date = to_date(date, "date")
    vendor_name = to_text(vendor_name, "vendor_name", max_length=200)
    payment_account = resolve_account(
        company, getattr(payment_account, "pk", payment_account))
    require_account_type(payment_account, SETTLEMENT_TYPES, "Expense payment")

    items = list(items or [])
    if not items:
        raise InvalidInput("An expense needs at least one item")
    parsed = []
    for index, item in enumerate(items, start=1):
        amount = to_money(item.get("amount"), f"Item {index} amount")
        if amount <= 0:
            raise InvalidInput(f"Item {index}: amount must be greater than 0")
        account = resolve_account(company, item.get("expense_account_id"))
        require_account_type(account, EXPENSE_TYPES, f"Item {index} (expense)")
        parsed.append({
            "account": account,
            "amount": amount,
            "description": to_text(item.get("description"), f"Item {index} description"),
        })
    total = check_magnitude(sum((p["amount"] for p in parsed), ZERO), "Expense total")

    with transaction.atomic():
        vendor = None
        if vendor_name:
            try:
                vendor, created = Vendor.objects.get_or_create(
                    company=company, name=vendor_name)
            except IntegrityError:
                # lost a race against another insert of the same vendor name
                raise Conflict(f"Vendor {vendor_name!r} was created concurrently, retry")
            if created:
                log_action(action="insert", instance=vendor, user=user,
                           new_values=snapshot(vendor))

        journal = [
            {"account": p["account"], "debit": p["amount"],
             "description": p["description"] or p["account"].name}
            for p in parsed
        ]
        journal.append({
            "account": payment_account,
            "credit": total,
            "description": description or "Expense payment",
        })
        txn = post_transaction(
            company, date, description, journal,
            vendor=vendor, source_type="expense", user=user,
        )
        TransactionItem.objects.bulk_create([
            TransactionItem(
                transaction=txn,
                description=p["description"],
                expense_account=p["account"],
                amount=p["amount"],
            )
            for p in parsed
        ])

    logger.info("Recorded expense transaction %s for company %s: total %s",
                txn.pk, company.slug, total)
    return txn
