"""
The ledger's public operations, taking ids and JSON-like payloads.

These are what the HTTP views and management commands call; they unpack the
payload and delegate to the typed services.
"""
from ..exceptions import InvalidInput
from .accounts import seed_default_accounts
from .balances import account_balances
from .documents import create_bill, create_expense_transaction as _create_expense
from .documents import create_invoice
from .payment import PAYMENT_TARGETS, record_payment
from .validation import to_id


def _mapping(value, field):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidInput(f"{field} must be an object")
    return value


def _items(value, field):
    if not isinstance(value, (list, tuple)):
        raise InvalidInput(f"{field} must be a list")
    for index, item in enumerate(value, start=1):
        if not isinstance(item, dict):
            raise InvalidInput(f"{field}[{index}] must be an object")
    return list(value)


def _flag(data, field, default):
    value = data.get(field, default)
    if not isinstance(value, bool):
        raise InvalidInput(f"{field} must be true or false, got {value!r}")
    return value


def _doc_date(data):
    # accept both the short and the table-column spelling
    return data.get("date") or data.get("invoice_date") or data.get("bill_date")


def create_invoice_with_journal_entries(company, customer_id, invoice_data,
                                        line_items, user=None):
    """Returns the new invoice id."""
    data = _mapping(invoice_data, "invoice_data")
    invoice = create_invoice(
        company,
        to_id(customer_id, "customer_id"),
        _doc_date(data),
        _items(line_items, "line_items"),
        due_date=data.get("due_date"),
        notes=data.get("notes"),
        invoice_number=data.get("invoice_number"),
        post=_flag(data, "post", True),
        user=user,
    )
    return invoice.pk


def create_bill_with_journal_entries(company, vendor_id, bill_data, line_items,
                                     user=None):
    """Returns the new bill id."""
    data = _mapping(bill_data, "bill_data")
    bill = create_bill(
        company,
        to_id(vendor_id, "vendor_id"),
        _doc_date(data),
        _items(line_items, "line_items"),
        due_date=data.get("due_date"),
        notes=data.get("notes"),
        bill_number=data.get("bill_number"),
        post=_flag(data, "post", True),
        user=user,
    )
    return bill.pk


def create_expense_transaction(company, vendor_name, transaction_date,
                               transaction_description, payment_account_id,
                               items, user=None):
    """Returns the new transaction id."""
    txn = _create_expense(
        company,
        vendor_name,
        transaction_date,
        transaction_description,
        to_id(payment_account_id, "payment_account_id"),
        _items(items, "items"),
        user=user,
    )
    return txn.pk


def process_payment_with_journal_entries(company, payment_data, user=None):
    """Returns the new payment id."""
    data = _mapping(payment_data, "payment_data")
    payment_type = data.get("payment_type")
    if not isinstance(payment_type, str) or payment_type not in PAYMENT_TARGETS:
        raise InvalidInput(
            f"payment_type must be one of {sorted(PAYMENT_TARGETS)}, got {payment_type!r}")
    target_key = "invoice_id" if payment_type == "customer_payment" else "bill_id"
    other_key = "bill_id" if target_key == "invoice_id" else "invoice_id"
    if data.get(other_key):
        raise InvalidInput(f"{payment_type} cannot reference {other_key}")

    payment = record_payment(
        company,
        payment_type,
        to_id(data.get(target_key), target_key),
        data.get("amount"),
        data.get("date"),
        to_id(data.get("payment_account_id"), "payment_account_id"),
        payment_method=data.get("payment_method") or "cash",
        reference=data.get("reference"),
        notes=data.get("notes"),
        user=user,
    )
    return payment.pk


def get_account_balances(company, account_type_filter=None):
    return account_balances(company, account_type_filter or None)


def copy_default_accounts_for_user(company, user=None):
    """Seed the default chart of accounts; a no-op when accounts exist."""
    return seed_default_accounts(company, user=user)
