import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from ..exceptions import InvalidInput, NotFound, UnbalancedEntry
from ..models import Account, JournalEntry, Transaction
from .accounts import resolve_account
from .audit_helper import log_action
from .validation import check_magnitude, to_date, to_money, to_text

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ----------------------------
# Ledger posting
# ----------------------------
def _prepare_line(company, index, line):
    account = line.get("account")
    if account is None:
        account = line.get("account_id")
    if account is None:
        raise InvalidInput(f"Line {index}: account is required")
    if isinstance(account, Account):
        if account.company_id != company.pk:
            raise NotFound(f"Line {index}: account {account.pk} not found")
    else:
        account = resolve_account(company, account)
    if not account.is_active:
        raise InvalidInput(f"Line {index}: account {account.code} is inactive")

    debit = to_money(line.get("debit") or ZERO, f"Line {index} debit")
    credit = to_money(line.get("credit") or ZERO, f"Line {index} credit")
    if debit < 0 or credit < 0:
        raise UnbalancedEntry(
            f"Line {index}: debit and credit must be >= 0 (got D:{debit} C:{credit})")
    return {
        "account": account,
        "debit": debit,
        "credit": credit,
        "description": to_text(line.get("description"), "description", max_length=400),
    }


def post_transaction(company, date, description, lines, *, customer=None,
                     vendor=None, source_type=None, source_id=None, user=None):
    """
    The single choke point for journal entries.

    `lines` is a sequence of mappings {account, debit, credit, description?}
    where account is an Account or an account id of `company`.
    Either every entry is committed together with its Transaction, or
    nothing is (UnbalancedEntry / InvalidInput / NotFound raised before
    any write).
    """
    lines = list(lines or [])
    if not lines:
        raise InvalidInput("A transaction needs at least one journal line")

    date = to_date(date, "date")
    prepared = [_prepare_line(company, i, line) for i, line in enumerate(lines, start=1)]

    # Enforce double-entry rule: debits = credits, to the cent
    total_debit = sum((p["debit"] for p in prepared), ZERO)
    total_credit = sum((p["credit"] for p in prepared), ZERO)
    if total_debit != total_credit:
        raise UnbalancedEntry(
            f"Transaction not balanced: debits={total_debit}, credits={total_credit}")
    check_magnitude(total_debit, "Transaction total")

    if customer is not None and vendor is not None:
        raise InvalidInput("A transaction has at most one counterparty")
    for party in (customer, vendor):
        if party is not None and party.company_id != company.pk:
            raise NotFound(f"{type(party).__name__} {party.pk} not found")

    with transaction.atomic():
        txn = Transaction.objects.create(
            company=company,
            date=date,
            description=to_text(description, "description"),
            customer=customer,
            vendor=vendor,
            total_amount=total_debit,
            source_type=source_type,
            source_id=source_id,
            posted_at=timezone.now(),
            created_by=user if getattr(user, "is_authenticated", False) else None,
        )
        for p in prepared:
            JournalEntry.objects.create(
                company=company,
                transaction=txn,
                account=p["account"],
                description=p["description"],
                debit=p["debit"],
                credit=p["credit"],
                date=date,
            )

        log_action(
            action="insert",
            instance=txn,
            user=user,
            new_values={
                "date": date,
                "description": txn.description,
                "total_amount": total_debit,
                "source_type": source_type,
                "source_id": source_id,
                "entries": [
                    {
                        "account_id": p["account"].pk,
                        "debit": p["debit"],
                        "credit": p["credit"],
                    }
                    for p in prepared
                ],
            },
        )

    logger.info(
        "Posted transaction %s for company %s: %d entries, total %s",
        txn.pk, company.slug, len(prepared), total_debit,
        extra={"source_type": source_type, "source_id": source_id},
    )
    return txn
