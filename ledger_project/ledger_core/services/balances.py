import logging
from decimal import Decimal

from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce

from ..exceptions import InvalidInput
from ..models import Account
from ..models.account import AC_TYPES, NORMAL_BALANCE_BY_TYPE
from .store import read_with_retry
from .validation import round_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Only entries of committed (posted) transactions count towards balances
POSTED = Q(journal_entries__transaction__posted_at__isnull=False)


def _money_sum(field):
    return Coalesce(
        Sum(f"journal_entries__{field}", filter=POSTED),
        Value(ZERO),
        output_field=DecimalField(max_digits=18, decimal_places=2),
    )


@read_with_retry
def account_balances(company, type_filter=None):
    """
    Per-account balances in each account's normal sign:
    debit - credit for asset/cogs/expense, credit - debit for the rest.
    Accounts with no postings are included at 0.
    """
    accounts = Account.objects.for_company(company)
    if type_filter:
        if type_filter not in NORMAL_BALANCE_BY_TYPE:
            raise InvalidInput(f"Unknown account type {type_filter!r}")
        accounts = accounts.filter(ac_type=type_filter)

    rows = accounts.annotate(
        total_debit=_money_sum("debit"),
        total_credit=_money_sum("credit"),
    ).order_by("code")

    return [
        {
            "account_id": account.pk,
            "account_code": account.code,
            "account_name": account.name,
            "account_type": account.ac_type,
            # SQLite returns sums at arbitrary scale
            "balance": round_money(
                account.signed_balance(account.total_debit, account.total_credit)),
        }
        for account in rows
    ]


def financial_summary(company):
    """Totals per account type, net income and the accounting-equation check."""
    totals = {ac_type: ZERO for ac_type, _ in AC_TYPES}
    for row in account_balances(company):
        totals[row["account_type"]] += row["balance"]

    totals = {ac_type: round_money(value) for ac_type, value in totals.items()}
    net_income = round_money(totals["revenue"] - totals["cogs"] - totals["expense"])
    liabilities_and_equity = round_money(
        totals["liability"] + totals["equity"] + net_income)
    summary = {
        "totals": totals,
        "net_income": net_income,
        "assets": totals["asset"],
        "liabilities_and_equity": liabilities_and_equity,
        "is_balanced": totals["asset"] == liabilities_and_equity,
    }
    if not summary["is_balanced"]:
        # cannot happen through post_transaction; flags out-of-band writes
        logger.error("Accounting equation off for company %s: assets %s vs %s",
                     company.slug, totals["asset"], liabilities_and_equity)
    return summary
